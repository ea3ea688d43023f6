"""
Map tracker area paths to team display names.
"""
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from normalize.models import ResolvedWorkItem


@dataclass(frozen=True)
class TeamMapping:
    original_team_name: str
    display_name: str

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'TeamMapping':
        original = raw.get('original_team_name', raw.get('originalTeamName'))
        display = raw.get('display_name', raw.get('displayName'))
        return cls(original_team_name=str(original or ''), display_name=str(display or ''))


def load_team_mappings(raw: Optional[Iterable[Dict[str, Any]]]) -> List[TeamMapping]:
    return [TeamMapping.from_dict(r) for r in raw or []]


def resolve_display_name(original_team_name: Optional[str], mappings: Iterable[TeamMapping]) -> str:
    """Return the display name of the first mapping contained in ``original_team_name``.

    Matching is a case-insensitive substring test in mapping order. Names with
    no matching mapping are returned unchanged; a blank name gives ''.
    """
    if not original_team_name or not original_team_name.strip():
        return ''
    haystack = original_team_name.casefold()
    for mapping in mappings:
        if mapping.original_team_name and mapping.original_team_name.casefold() in haystack:
            return mapping.display_name
    return original_team_name


def map_team_names(items: Iterable[ResolvedWorkItem], mappings: Iterable[TeamMapping]) -> Tuple[ResolvedWorkItem, ...]:
    """Replace the team of each item and of its original snapshot with the mapped display name."""
    mappings = list(mappings)
    mapped = []
    for item in items:
        original = item.original_work_item
        if original is not None:
            original = replace(original, original_team_name=resolve_display_name(original.original_team_name, mappings))
        mapped.append(replace(
            item,
            original_team_name=resolve_display_name(item.original_team_name, mappings),
            original_work_item=original,
        ))
    return tuple(mapped)
