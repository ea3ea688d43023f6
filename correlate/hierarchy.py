"""
Resolve work items to their nearest top-level ancestor (User Story, Feature or Epic).

The tracker is reached through a ``fetch(work_item_id) -> WorkItemFetch``
callable. Callers pass in a cache dict so that an id shared by many records is
requested only once per run.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional

from correlate.models import ChangeWorkItemPair, ResolutionSummary
from correlate.linker import project_name_from_path
from normalize.models import (
    ResolutionStatus,
    ResolvedWorkItem,
    WorkItem,
    WorkItemFetch,
    WorkItemOutput,
)

logger = logging.getLogger(__name__)

DEFAULT_TOP_LEVEL_TYPES = frozenset({"User Story", "Feature", "Epic"})
DEFAULT_MAX_DEPTH = 10

FetchWorkItem = Callable[[int], WorkItemFetch]


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    original: Optional[WorkItem] = None
    resolved: Optional[WorkItem] = None
    error_message: Optional[str] = None


def is_top_level(work_item_type: Optional[str], top_level_types: Optional[Iterable[str]] = None) -> bool:
    """True when the type is one of the top-level types, ignoring case."""
    if not work_item_type:
        return False
    types = top_level_types if top_level_types is not None else DEFAULT_TOP_LEVEL_TYPES
    return work_item_type.strip().casefold() in {t.strip().casefold() for t in types}


def fetch_cached(work_item_id: int, fetch: FetchWorkItem, cache: Dict[int, WorkItemFetch]) -> WorkItemFetch:
    outcome = cache.get(work_item_id)
    if outcome is None:
        outcome = fetch(work_item_id)
        cache[work_item_id] = outcome
    return outcome


def prefetch(work_item_ids: Iterable[int], fetch: FetchWorkItem, cache: Dict[int, WorkItemFetch],
             max_workers: int = 1) -> None:
    """Fill the cache for every distinct id not already in it.

    With ``max_workers > 1`` the lookups run on a thread pool; results are
    written to the cache from the calling thread only.
    """
    pending = [i for i in dict.fromkeys(work_item_ids) if i not in cache]
    if not pending:
        return
    if max_workers <= 1 or len(pending) == 1:
        for work_item_id in pending:
            cache[work_item_id] = fetch(work_item_id)
        return
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        for work_item_id, outcome in zip(pending, pool.map(fetch, pending)):
            cache[work_item_id] = outcome


def resolve(work_item_id: int, fetch: FetchWorkItem, cache: Dict[int, WorkItemFetch],
            top_level_types: Optional[Iterable[str]] = None, max_depth: int = DEFAULT_MAX_DEPTH) -> Resolution:
    """Walk the parent chain of a work item until a top-level type is reached.

    The walk stops with NOT_FOUND when an item has no parent, a parent cannot be
    fetched, a parent was already visited (cycle) or more than ``max_depth``
    parents would be followed.
    """
    outcome = fetch_cached(work_item_id, fetch, cache)
    if not outcome.is_success:
        return Resolution(status=ResolutionStatus.ORIGINAL_FETCH_FAILED, error_message=outcome.error)
    return resolve_from(outcome.work_item, fetch, cache, top_level_types, max_depth)


def resolve_from(original: WorkItem, fetch: FetchWorkItem, cache: Dict[int, WorkItemFetch],
                 top_level_types: Optional[Iterable[str]] = None,
                 max_depth: int = DEFAULT_MAX_DEPTH) -> Resolution:
    """Like :func:`resolve`, starting from an item that is already fetched.

    Only parents are requested; ``original`` itself is never fetched again.
    """
    work_item_id = original.work_item_id
    if is_top_level(original.type, top_level_types):
        return Resolution(status=ResolutionStatus.ALREADY_TOP_LEVEL_OR_ABOVE, original=original, resolved=original)

    visited = {original.work_item_id}
    current = original
    depth = 0
    while True:
        parent_id = current.parent_work_item_id
        if parent_id is None:
            return Resolution(
                status=ResolutionStatus.NOT_FOUND,
                original=original,
                error_message=f"No top-level work item found: work item {current.work_item_id} has no parent",
            )
        if parent_id in visited:
            return Resolution(
                status=ResolutionStatus.NOT_FOUND,
                original=original,
                error_message=f"Circular reference detected at work item {parent_id}",
            )
        if depth >= max_depth:
            return Resolution(
                status=ResolutionStatus.NOT_FOUND,
                original=original,
                error_message=f"Exceeded maximum depth {max_depth} while walking parents of work item {work_item_id}",
            )
        depth += 1
        visited.add(parent_id)

        parent = fetch_cached(parent_id, fetch, cache)
        if not parent.is_success:
            return Resolution(
                status=ResolutionStatus.NOT_FOUND,
                original=original,
                error_message=f"Failed to fetch parent work item {parent_id}: {parent.error}",
            )
        if is_top_level(parent.work_item.type, top_level_types):
            return Resolution(status=ResolutionStatus.FOUND_VIA_RECURSION, original=original, resolved=parent.work_item)
        current = parent.work_item


def _snapshot(output: WorkItemOutput) -> WorkItemOutput:
    return replace(output, pr_id=None)


def _stored_item(output: WorkItemOutput) -> WorkItem:
    return WorkItem(
        work_item_id=output.work_item_id,
        title=output.title or '',
        type=output.type or '',
        state=output.state or '',
        url=output.url or '',
        original_team_name=output.original_team_name or '',
        parent_work_item_id=output.parent_work_item_id,
    )


def resolve_output(output: WorkItemOutput, fetch: FetchWorkItem, cache: Dict[int, WorkItemFetch],
                   top_level_types: Optional[Iterable[str]] = None,
                   max_depth: int = DEFAULT_MAX_DEPTH) -> ResolvedWorkItem:
    """Resolve one fetched record, keeping the ``pr_id``/``project_name`` of its trigger.

    The record is classified from its stored fields; only its ancestors are
    requested from the tracker.
    """
    if not output.is_success:
        return ResolvedWorkItem(
            work_item_id=output.work_item_id,
            resolution_status=ResolutionStatus.ORIGINAL_FETCH_FAILED,
            pr_id=output.pr_id,
            project_name=output.project_name,
            is_success=False,
            error_message=output.error_message,
        )

    resolution = resolve_from(_stored_item(output), fetch, cache, top_level_types, max_depth)
    if resolution.resolved is None:
        return ResolvedWorkItem(
            work_item_id=output.work_item_id,
            resolution_status=resolution.status,
            pr_id=output.pr_id,
            project_name=output.project_name,
            title=output.title,
            type=output.type,
            state=output.state,
            url=output.url,
            original_team_name=output.original_team_name,
            error_message=resolution.error_message,
            original_work_item=_snapshot(output),
        )

    item = resolution.resolved
    return ResolvedWorkItem(
        work_item_id=item.work_item_id,
        resolution_status=resolution.status,
        pr_id=output.pr_id,
        project_name=output.project_name,
        title=item.title,
        type=item.type,
        state=item.state,
        url=item.url,
        original_team_name=item.original_team_name,
        original_work_item=_snapshot(output),
    )


def resolve_work_items(outputs: Iterable[WorkItemOutput], fetch: FetchWorkItem,
                       cache: Optional[Dict[int, WorkItemFetch]] = None,
                       top_level_types: Optional[Iterable[str]] = None,
                       max_depth: int = DEFAULT_MAX_DEPTH) -> ResolutionSummary:
    """Resolve every fetched record, one result per input record and in the same order."""
    cache = {} if cache is None else cache
    resolved = [resolve_output(o, fetch, cache, top_level_types, max_depth) for o in outputs]
    summary = ResolutionSummary(work_items=tuple(resolved))
    logger.info(
        "Resolved %d work items: %d already top-level, %d via parents, %d not found, %d fetch failed",
        len(resolved),
        summary.already_top_level_count,
        summary.found_via_recursion_count,
        summary.not_found_count,
        summary.original_fetch_failed_count,
    )
    return summary


def fetch_work_items(pairs: Iterable[ChangeWorkItemPair], fetch: FetchWorkItem,
                     cache: Optional[Dict[int, WorkItemFetch]] = None, max_workers: int = 1) -> List[WorkItemOutput]:
    """Fetch the work item of every pair, one output record per pair.

    Each distinct id is requested once; the results are joined back to the
    pairs by id, so an id cited by two changes yields two records.
    """
    pairs = list(pairs)
    cache = {} if cache is None else cache
    prefetch((p.work_item_id for p in pairs), fetch, cache, max_workers=max_workers)
    outputs: List[WorkItemOutput] = []
    for pair in pairs:
        outcome = cache[pair.work_item_id]
        if not outcome.is_success:
            logger.warning("Failed to fetch work item %s: %s", pair.work_item_id, outcome.error)
        outputs.append(WorkItemOutput.from_fetch(
            pair.work_item_id,
            outcome,
            pr_id=pair.change.pr_id or None,
            project_name=project_name_from_path(pair.project_path),
        ))
    return outputs
