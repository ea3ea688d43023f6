"""
Join fetched changes with resolved work items and group them by project.

Steps:
- build a ``pr_id`` lookup over every fetched change
- group resolved records by work-item id and collect the changes of every
  triggering ``pr_id``, keeping the first change per URL
- derive project name, team display name and authors per work item
- group by project and sort by project, team display name, then work-item id
"""
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from consolidate.team import TeamMapping, resolve_display_name
from correlate.linker import UNKNOWN_PROJECT, build_change_lookup
from errors import MissingInputError
from normalize.models import (
    Change,
    ConsolidatedEntry,
    ConsolidatedResult,
    FetchResult,
    ProjectGroup,
    ResolvedWorkItem,
)
from storage import keys

logger = logging.getLogger(__name__)


def _has_results(fetch_result: Optional[FetchResult]) -> bool:
    return fetch_result is not None and len(fetch_result.results) > 0


def validate_inputs(bitbucket: Optional[FetchResult], gitlab: Optional[FetchResult],
                    resolved_items: Optional[Sequence[ResolvedWorkItem]]) -> None:
    """Raise MissingInputError when consolidation has nothing to work with."""
    if not _has_results(bitbucket) and not _has_results(gitlab):
        raise MissingInputError(
            "No pull request data available for consolidation.",
            [keys.BITBUCKET_PULL_REQUESTS_BY_USER, keys.GITLAB_PULL_REQUESTS_BY_USER],
        )
    if not resolved_items:
        raise MissingInputError("No resolved work item data available for consolidation.",
                                [keys.AZURE_DEVOPS_USER_STORIES])


def _dedup_by_url(pairs: Iterable[Tuple[Change, str]]) -> List[Tuple[Change, str]]:
    seen = set()
    unique: List[Tuple[Change, str]] = []
    for change, project_name in pairs:
        if change.pr_url:
            if change.pr_url in seen:
                continue
            seen.add(change.pr_url)
        unique.append((change, project_name))
    return unique


def _unique_authors(changes: Iterable[Change]) -> Tuple[str, ...]:
    authors = dict.fromkeys(c.author_name for c in changes if c.author_name and c.author_name.strip())
    return tuple(authors)


def _build_entry(items: List[ResolvedWorkItem], lookup: Dict[str, List[Tuple[Change, str]]],
                 team_mappings: Sequence[TeamMapping]) -> Tuple[str, ConsolidatedEntry]:
    representative = items[0]
    matched: List[Tuple[Change, str]] = []
    for item in items:
        if item.pr_id:
            matched.extend(lookup.get(item.pr_id, []))
    matched = _dedup_by_url(matched)

    changes = [c for c, _ in matched]
    project_name = matched[0][1] if matched else UNKNOWN_PROJECT
    entry = ConsolidatedEntry(
        pr_title=changes[0].title if changes else '',
        work_item_id=representative.work_item_id,
        team_display_name=resolve_display_name(representative.original_team_name, team_mappings),
        authors=_unique_authors(changes),
        pull_request_urls=tuple(c.pr_url for c in changes if c.pr_url),
        work_item=representative,
        changes=tuple(changes),
    )
    return project_name, entry


def consolidate(fetch_results: Iterable[Optional[FetchResult]], resolved_items: Iterable[ResolvedWorkItem],
                team_mappings: Sequence[TeamMapping] = ()) -> ConsolidatedResult:
    """Build one entry per distinct work-item id, grouped by project.

    Every resolved work item appears exactly once in the result; items whose
    changes cannot be found are grouped under ``"unknown"``.
    """
    lookup = build_change_lookup(fetch_results)

    groups: Dict[int, List[ResolvedWorkItem]] = {}
    for item in resolved_items:
        groups.setdefault(item.work_item_id, []).append(item)

    by_project: Dict[str, List[ConsolidatedEntry]] = {}
    for items in groups.values():
        project_name, entry = _build_entry(items, lookup, team_mappings)
        by_project.setdefault(project_name, []).append(entry)

    projects = tuple(
        ProjectGroup(
            project_name=name,
            entries=tuple(sorted(by_project[name], key=lambda e: (e.team_display_name, e.work_item_id))),
        )
        for name in sorted(by_project)
    )
    logger.info("Consolidated %d work items into %d projects", len(groups), len(projects))
    return ConsolidatedResult(projects=projects)
