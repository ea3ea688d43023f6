"""
Data models produced while correlating changes with work items.
"""
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from normalize.models import Change, ResolutionStatus, ResolvedWorkItem


@dataclass(frozen=True)
class ChangeWorkItemPair:
    """One work-item id found in one change. A change citing N ids yields N pairs."""
    work_item_id: int
    change: Change
    project_path: str


@dataclass(frozen=True)
class ResolutionSummary:
    """
    Resolved records for every fetched work item plus per-status counts.
    """
    work_items: Tuple[ResolvedWorkItem, ...] = ()

    def count(self, status: ResolutionStatus) -> int:
        return sum(1 for w in self.work_items if w.resolution_status == status)

    @property
    def already_top_level_count(self) -> int:
        return self.count(ResolutionStatus.ALREADY_TOP_LEVEL_OR_ABOVE)

    @property
    def found_via_recursion_count(self) -> int:
        return self.count(ResolutionStatus.FOUND_VIA_RECURSION)

    @property
    def not_found_count(self) -> int:
        return self.count(ResolutionStatus.NOT_FOUND)

    @property
    def original_fetch_failed_count(self) -> int:
        return self.count(ResolutionStatus.ORIGINAL_FETCH_FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'workItems': [w.to_dict() for w in self.work_items],
            'totalWorkItems': len(self.work_items),
            'alreadyUserStoryCount': self.already_top_level_count,
            'foundViaRecursionCount': self.found_via_recursion_count,
            'notFoundCount': self.not_found_count,
            'originalFetchFailedCount': self.original_fetch_failed_count,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'ResolutionSummary':
        return cls(work_items=tuple(ResolvedWorkItem.from_dict(w) for w in raw.get('workItems') or []))
