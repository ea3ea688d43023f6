"""
Normalized records passed between the release-kit stages.

All records are frozen dataclasses; every stage builds new records instead of
mutating the ones it reads. ``to_dict`` produces the camelCase JSON shape that
is written to the handoff store and printed to stdout, ``from_dict`` reads it
back.
"""
from __future__ import annotations

from dataclasses import dataclass, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def to_camel_dict(obj: Any) -> Any:
    """Recursively convert dataclasses, enums and datetimes into JSON-ready values."""
    if is_dataclass(obj) and not isinstance(obj, type):
        return {_camel(f.name): to_camel_dict(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [to_camel_dict(v) for v in obj]
    if isinstance(obj, dict):
        return {k: to_camel_dict(v) for k, v in obj.items()}
    return obj


def parse_datetime(raw: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (a trailing 'Z' is accepted). Blank values give None."""
    if raw is None or raw == '':
        return None
    if isinstance(raw, datetime):
        return raw
    text = str(raw).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return datetime.fromisoformat(text)


def _optional_int(raw: Any) -> Optional[int]:
    if raw is None or raw == '':
        return None
    return int(raw)


@dataclass(frozen=True)
class Change:
    """A merged pull/merge request from one of the source-control platforms."""
    pr_id: str
    title: str = ''
    description: Optional[str] = None
    source_branch: str = ''
    target_branch: str = ''
    created_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    state: str = ''
    author_user_id: str = ''
    author_name: str = ''
    pr_url: str = ''
    project_path: str = ''
    platform: str = ''
    work_item_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'Change':
        return cls(
            pr_id=str(raw.get('prId') or ''),
            title=raw.get('title') or '',
            description=raw.get('description'),
            source_branch=raw.get('sourceBranch') or '',
            target_branch=raw.get('targetBranch') or '',
            created_at=parse_datetime(raw.get('createdAt')),
            merged_at=parse_datetime(raw.get('mergedAt')),
            state=raw.get('state') or '',
            author_user_id=str(raw.get('authorUserId') or ''),
            author_name=raw.get('authorName') or '',
            pr_url=raw.get('prUrl') or '',
            project_path=raw.get('projectPath') or '',
            platform=raw.get('platform') or '',
            work_item_id=_optional_int(raw.get('workItemId')),
        )


@dataclass(frozen=True)
class ProjectResult:
    """Changes fetched for one project; ``error`` is set when the fetch failed."""
    project_path: str
    platform: str
    changes: Tuple[Change, ...] = ()
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'ProjectResult':
        return cls(
            project_path=raw.get('projectPath') or '',
            platform=raw.get('platform') or '',
            changes=tuple(Change.from_dict(c) for c in raw.get('changes') or []),
            error=raw.get('error'),
        )


@dataclass(frozen=True)
class FetchResult:
    results: Tuple[ProjectResult, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'FetchResult':
        return cls(results=tuple(ProjectResult.from_dict(r) for r in raw.get('results') or []))


@dataclass(frozen=True)
class WorkItem:
    """A planning item as returned by the tracker; ``original_team_name`` is its area path."""
    work_item_id: int
    title: str = ''
    type: str = ''
    state: str = ''
    url: str = ''
    original_team_name: str = ''
    parent_work_item_id: Optional[int] = None


@dataclass(frozen=True)
class WorkItemFetch:
    """Outcome of one tracker lookup: either ``work_item`` or ``error`` is set."""
    work_item: Optional[WorkItem] = None
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.work_item is not None

    @classmethod
    def success(cls, work_item: WorkItem) -> 'WorkItemFetch':
        return cls(work_item=work_item)

    @classmethod
    def failure(cls, error: str) -> 'WorkItemFetch':
        return cls(error=error)


@dataclass(frozen=True)
class WorkItemOutput:
    """One fetched work item per (change, work-item id) pair."""
    work_item_id: int
    pr_id: Optional[str] = None
    project_name: Optional[str] = None
    title: Optional[str] = None
    type: Optional[str] = None
    state: Optional[str] = None
    url: Optional[str] = None
    original_team_name: Optional[str] = None
    parent_work_item_id: Optional[int] = None
    is_success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'WorkItemOutput':
        return cls(
            work_item_id=int(raw.get('workItemId') or 0),
            pr_id=raw.get('prId'),
            project_name=raw.get('projectName'),
            title=raw.get('title'),
            type=raw.get('type'),
            state=raw.get('state'),
            url=raw.get('url'),
            original_team_name=raw.get('originalTeamName'),
            parent_work_item_id=_optional_int(raw.get('parentWorkItemId')),
            is_success=bool(raw.get('isSuccess', True)),
            error_message=raw.get('errorMessage'),
        )

    @classmethod
    def from_fetch(cls, work_item_id: int, outcome: WorkItemFetch, pr_id: Optional[str] = None,
                   project_name: Optional[str] = None) -> 'WorkItemOutput':
        if not outcome.is_success:
            return cls(work_item_id=work_item_id, pr_id=pr_id, project_name=project_name,
                       is_success=False, error_message=outcome.error)
        item = outcome.work_item
        return cls(
            work_item_id=work_item_id,
            pr_id=pr_id,
            project_name=project_name,
            title=item.title,
            type=item.type,
            state=item.state,
            url=item.url,
            original_team_name=item.original_team_name,
            parent_work_item_id=item.parent_work_item_id,
        )


@dataclass(frozen=True)
class WorkItemFetchResult:
    work_items: Tuple[WorkItemOutput, ...] = ()
    total_prs_analyzed: int = 0

    @property
    def total_work_items_found(self) -> int:
        return len({w.work_item_id for w in self.work_items})

    @property
    def success_count(self) -> int:
        return sum(1 for w in self.work_items if w.is_success)

    @property
    def failure_count(self) -> int:
        return sum(1 for w in self.work_items if not w.is_success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'workItems': [w.to_dict() for w in self.work_items],
            'totalPRsAnalyzed': self.total_prs_analyzed,
            'totalWorkItemsFound': self.total_work_items_found,
            'successCount': self.success_count,
            'failureCount': self.failure_count,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'WorkItemFetchResult':
        return cls(
            work_items=tuple(WorkItemOutput.from_dict(w) for w in raw.get('workItems') or []),
            total_prs_analyzed=int(raw.get('totalPRsAnalyzed') or 0),
        )


class ResolutionStatus(Enum):
    ALREADY_TOP_LEVEL_OR_ABOVE = 'AlreadyUserStoryOrAbove'
    FOUND_VIA_RECURSION = 'FoundViaRecursion'
    NOT_FOUND = 'NotFound'
    ORIGINAL_FETCH_FAILED = 'OriginalFetchFailed'


@dataclass(frozen=True)
class ResolvedWorkItem:
    """
    Result of walking a work item up to its top-level ancestor.

    ``work_item_id`` and the descriptive fields belong to the resolved ancestor
    when one was found, otherwise to the original item. ``original_work_item``
    keeps the original snapshot without its triggering ``pr_id``.
    """
    work_item_id: int
    resolution_status: ResolutionStatus
    pr_id: Optional[str] = None
    project_name: Optional[str] = None
    title: Optional[str] = None
    type: Optional[str] = None
    state: Optional[str] = None
    url: Optional[str] = None
    original_team_name: Optional[str] = None
    is_success: bool = True
    error_message: Optional[str] = None
    original_work_item: Optional[WorkItemOutput] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_camel_dict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'ResolvedWorkItem':
        original = raw.get('originalWorkItem')
        return cls(
            work_item_id=int(raw.get('workItemId') or 0),
            resolution_status=ResolutionStatus(raw.get('resolutionStatus')),
            pr_id=raw.get('prId'),
            project_name=raw.get('projectName'),
            title=raw.get('title'),
            type=raw.get('type'),
            state=raw.get('state'),
            url=raw.get('url'),
            original_team_name=raw.get('originalTeamName'),
            is_success=bool(raw.get('isSuccess', True)),
            error_message=raw.get('errorMessage'),
            original_work_item=WorkItemOutput.from_dict(original) if original else None,
        )


@dataclass(frozen=True)
class ConsolidatedEntry:
    pr_title: str
    work_item_id: int
    team_display_name: str
    authors: Tuple[str, ...] = ()
    pull_request_urls: Tuple[str, ...] = ()
    work_item: Optional[ResolvedWorkItem] = None
    changes: Tuple[Change, ...] = ()

    @property
    def work_item_title(self) -> str:
        return (self.work_item.title if self.work_item else None) or ''

    @property
    def work_item_url(self) -> str:
        return (self.work_item.url if self.work_item else None) or ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'prTitle': self.pr_title,
            'workItemId': self.work_item_id,
            'teamDisplayName': self.team_display_name,
            'authors': [{'authorName': a} for a in self.authors],
            'pullRequests': [{'url': u} for u in self.pull_request_urls],
            'originalData': {
                'workItem': self.work_item.to_dict() if self.work_item else None,
                'pullRequests': [c.to_dict() for c in self.changes],
            },
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'ConsolidatedEntry':
        original = raw.get('originalData') or {}
        work_item = original.get('workItem')
        return cls(
            pr_title=raw.get('prTitle') or '',
            work_item_id=int(raw.get('workItemId') or 0),
            team_display_name=raw.get('teamDisplayName') or '',
            authors=tuple(a.get('authorName', '') for a in raw.get('authors') or []),
            pull_request_urls=tuple(p.get('url', '') for p in raw.get('pullRequests') or []),
            work_item=ResolvedWorkItem.from_dict(work_item) if work_item else None,
            changes=tuple(Change.from_dict(c) for c in original.get('pullRequests') or []),
        )


@dataclass(frozen=True)
class ProjectGroup:
    project_name: str
    entries: Tuple[ConsolidatedEntry, ...] = ()


@dataclass(frozen=True)
class ConsolidatedResult:
    """Entries grouped by project; serialized as ``{"projects": {name: [entry, ...]}}``."""
    projects: Tuple[ProjectGroup, ...] = ()

    def get(self, project_name: str) -> List[ConsolidatedEntry]:
        for group in self.projects:
            if group.project_name == project_name:
                return list(group.entries)
        return []

    @property
    def project_names(self) -> List[str]:
        return [g.project_name for g in self.projects]

    def to_dict(self) -> Dict[str, Any]:
        return {'projects': {g.project_name: [e.to_dict() for e in g.entries] for g in self.projects}}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'ConsolidatedResult':
        projects = raw.get('projects') or {}
        return cls(projects=tuple(
            ProjectGroup(project_name=name, entries=tuple(ConsolidatedEntry.from_dict(e) for e in entries))
            for name, entries in projects.items()
        ))
