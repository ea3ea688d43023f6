"""
Correlate package: link changes to work items and resolve work-item hierarchies.
"""

from .linker import build_change_lookup, pair_changes, parse_work_item_id
from .hierarchy import resolve, resolve_work_items

__all__ = ["build_change_lookup", "pair_changes", "parse_work_item_id", "resolve", "resolve_work_items"]
