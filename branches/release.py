"""
Recognize and order release branches named ``release/yyyyMMdd``.

The prefix is matched without regard to case; the eight digits must form a
real calendar date.
"""
import logging
import re
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional


logger = logging.getLogger(__name__)

RELEASE_BRANCH_PREFIX = "release/"
RELEASE_BRANCH_PATTERN = re.compile(r"^release/([0-9]{8})$", re.IGNORECASE)


def parse_release_branch_date(branch: Optional[str]) -> Optional[date]:
    """Return the date encoded in a release branch name, or None if it is not one."""
    if not branch:
        return None
    match = RELEASE_BRANCH_PATTERN.match(branch)
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), "%Y%m%d").date()
    except ValueError:
        return None


def is_release_branch(branch: Optional[str]) -> bool:
    return parse_release_branch_date(branch) is not None


def sort_release_branches_descending(branches: Iterable[str]) -> List[str]:
    """Release branches only, newest first. Other names are dropped."""
    dated = [(parse_release_branch_date(b), b) for b in branches]
    return [b for d, b in sorted((p for p in dated if p[0] is not None), key=lambda p: p[0], reverse=True)]


def latest_release_branch(branches: Iterable[str]) -> Optional[str]:
    ordered = sort_release_branches_descending(branches)
    return ordered[0] if ordered else None


def is_latest_release_branch(branch: str, all_branches: Iterable[str]) -> bool:
    if not is_release_branch(branch):
        return False
    return latest_release_branch(all_branches) == branch


def find_next_newer_release_branch(branch: str, all_branches: Iterable[str]) -> Optional[str]:
    """The oldest release branch strictly newer than ``branch``.

    Returns None when ``branch`` is not a release branch, is not among
    ``all_branches`` or is already the newest one.
    """
    current = parse_release_branch_date(branch)
    if current is None:
        return None
    all_branches = list(all_branches)
    if branch not in all_branches:
        return None
    newer = [(d, b) for d, b in ((parse_release_branch_date(b), b) for b in all_branches) if d is not None and d > current]
    if not newer:
        return None
    return min(newer, key=lambda p: p[0])[1]


def adjust_target_branch(list_branches: Callable[[str, str], List[str]], project_path: str,
                         source_branch: str, target_branch: str) -> str:
    """Pick the diff target for a release source branch.

    When ``source_branch`` is a release branch that is not the newest, the diff
    is taken against the next newer release branch; otherwise ``target_branch``
    is kept. Failures to list branches are logged and the configured target is
    used.
    """
    if not is_release_branch(source_branch):
        return target_branch

    try:
        branches = list_branches(project_path, RELEASE_BRANCH_PREFIX)
    except Exception as e:
        logger.warning("Could not list release branches for %s, keeping target %s: %s", project_path, target_branch, e)
        return target_branch

    if not branches:
        logger.warning("No release branches found for %s, keeping target %s", project_path, target_branch)
        return target_branch

    if is_latest_release_branch(source_branch, branches):
        logger.info("%s is the latest release branch of %s, comparing against %s", source_branch, project_path, target_branch)
        return target_branch

    newer = find_next_newer_release_branch(source_branch, branches)
    if newer is None:
        return target_branch
    logger.info("Comparing %s against next release branch %s in %s", source_branch, newer, project_path)
    return newer
