"""
Link changes to Azure DevOps work items.

A change cites a work item with a ``VSTS<digits>`` token (any letter case) in
its source branch name, or in its title when the branch is blank.
"""
import re
from typing import Dict, Iterable, List, Optional, Tuple

from correlate.models import ChangeWorkItemPair
from normalize.models import Change, FetchResult, ProjectResult

WORK_ITEM_PATTERN = re.compile(r"VSTS([0-9]+)", re.IGNORECASE)
UNKNOWN_PROJECT = "unknown"

# Azure DevOps work item ids are 32-bit signed integers.
_MAX_WORK_ITEM_ID = 2 ** 31 - 1


def _to_work_item_id(digits: str) -> Optional[int]:
    value = int(digits)
    if value <= 0 or value > _MAX_WORK_ITEM_ID:
        return None
    return value


def find_work_item_ids(text: Optional[str]) -> List[int]:
    """Return every work-item id cited in text, in order of appearance, duplicates kept."""
    if not text:
        return []
    ids = (_to_work_item_id(m.group(1)) for m in WORK_ITEM_PATTERN.finditer(text))
    return [i for i in ids if i is not None]


def relevant_text(source_branch: Optional[str], title: Optional[str]) -> str:
    """The branch name when it is non-blank, otherwise the title."""
    if source_branch and source_branch.strip():
        return source_branch
    return title or ''


def parse_work_item_id(source_branch: Optional[str], title: Optional[str]) -> Optional[int]:
    """Return the first work-item id cited by a change, or None.

    A non-blank branch is authoritative: a title match is ignored when the
    branch has no token. Only the first token counts; if it is out of range
    the change cites nothing.
    """
    match = WORK_ITEM_PATTERN.search(relevant_text(source_branch, title))
    return _to_work_item_id(match.group(1)) if match else None


def pair_changes(project_results: Iterable[ProjectResult]) -> List[ChangeWorkItemPair]:
    """Expand changes into (work item id, change, project path) pairs.

    Each token in a change's relevant text yields its own pair; nothing is
    deduplicated, so the same id may be paired with several changes.
    """
    pairs: List[ChangeWorkItemPair] = []
    for project in project_results:
        for change in project.changes:
            for work_item_id in find_work_item_ids(relevant_text(change.source_branch, change.title)):
                pairs.append(ChangeWorkItemPair(work_item_id=work_item_id, change=change,
                                                project_path=project.project_path))
    return pairs


def project_name_from_path(project_path: Optional[str]) -> str:
    """Last '/'-separated segment of a project path, or 'unknown' when blank."""
    if not project_path or not project_path.strip():
        return UNKNOWN_PROJECT
    segments = [s for s in project_path.strip().split('/') if s]
    return segments[-1] if segments else UNKNOWN_PROJECT


def build_change_lookup(fetch_results: Iterable[Optional[FetchResult]]) -> Dict[str, List[Tuple[Change, str]]]:
    """Map each change ``pr_id`` to the (change, project name) pairs carrying it.

    Changes without a ``pr_id`` cannot be joined and are skipped.
    """
    lookup: Dict[str, List[Tuple[Change, str]]] = {}
    for fetch_result in fetch_results:
        if fetch_result is None:
            continue
        for project in fetch_result.results:
            project_name = project_name_from_path(project.project_path)
            for change in project.changes:
                if not change.pr_id:
                    continue
                lookup.setdefault(change.pr_id, []).append((change, project_name))
    return lookup
