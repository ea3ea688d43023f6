"""
Consolidate package: join changes and resolved work items into the release report data.
"""

from .engine import consolidate, validate_inputs
from .team import TeamMapping, map_team_names, resolve_display_name

__all__ = ["consolidate", "validate_inputs", "TeamMapping", "map_team_names", "resolve_display_name"]
