"""
Release branch naming helpers (``release/yyyyMMdd``).
"""

from .release import (
    adjust_target_branch,
    find_next_newer_release_branch,
    is_latest_release_branch,
    is_release_branch,
    latest_release_branch,
    sort_release_branches_descending,
)

__all__ = [
    "adjust_target_branch",
    "find_next_newer_release_branch",
    "is_latest_release_branch",
    "is_release_branch",
    "latest_release_branch",
    "sort_release_branches_descending",
]
