import unittest
from datetime import date
from unittest.mock import Mock

from branches.release import (
    adjust_target_branch,
    find_next_newer_release_branch,
    is_latest_release_branch,
    is_release_branch,
    latest_release_branch,
    parse_release_branch_date,
    sort_release_branches_descending,
)
from errors import FetchError

BRANCHES = [
    "release/20250315",
    "release/20250101",
    "release/20241215",
    "release/20241201",
    "release/20240601",
]


class TestReleaseBranchNames(unittest.TestCase):
    def test_recognized(self):
        self.assertTrue(is_release_branch("release/20250315"))
        self.assertEqual(parse_release_branch_date("release/20250315"), date(2025, 3, 15))

    def test_prefix_case_insensitive(self):
        self.assertTrue(is_release_branch("Release/20250315"))

    def test_not_recognized(self):
        for name in ("release/2025010", "releases/20250101", "release/20250101-fix",
                     "release/202501011", "main", "", None, "release/20250230"):
            self.assertFalse(is_release_branch(name), name)

    def test_sort_descending_drops_other_branches(self):
        ordered = sort_release_branches_descending(["main", "release/20240601", "release/20250315", "develop"])
        self.assertEqual(ordered, ["release/20250315", "release/20240601"])

    def test_latest(self):
        self.assertEqual(latest_release_branch(BRANCHES), "release/20250315")
        self.assertIsNone(latest_release_branch(["main"]))
        self.assertTrue(is_latest_release_branch("release/20250315", BRANCHES))
        self.assertFalse(is_latest_release_branch("release/20250101", BRANCHES))
        self.assertFalse(is_latest_release_branch("main", BRANCHES))

    def test_next_newer_is_nearest(self):
        self.assertEqual(find_next_newer_release_branch("release/20241201", BRANCHES), "release/20241215")

    def test_next_newer_none_for_newest_or_unknown(self):
        self.assertIsNone(find_next_newer_release_branch("release/20250315", BRANCHES))
        self.assertIsNone(find_next_newer_release_branch("release/20230101", BRANCHES))
        self.assertIsNone(find_next_newer_release_branch("main", BRANCHES))


class TestAdjustTargetBranch(unittest.TestCase):
    def test_non_release_source_keeps_target_without_listing(self):
        lister = Mock()
        self.assertEqual(adjust_target_branch(lister, "g/app", "feature/x", "main"), "main")
        lister.assert_not_called()

    def test_older_release_compares_to_next_newer(self):
        lister = Mock(return_value=BRANCHES)
        self.assertEqual(adjust_target_branch(lister, "g/app", "release/20250101", "main"), "release/20250315")
        lister.assert_called_once_with("g/app", "release/")

    def test_latest_release_keeps_target(self):
        lister = Mock(return_value=BRANCHES)
        self.assertEqual(adjust_target_branch(lister, "g/app", "release/20250315", "main"), "main")

    def test_listing_failure_keeps_target(self):
        lister = Mock(side_effect=FetchError("boom", status=500))
        self.assertEqual(adjust_target_branch(lister, "g/app", "release/20250101", "main"), "main")

    def test_unexpected_listing_error_keeps_target(self):
        lister = Mock(side_effect=ValueError("unexpected payload"))
        self.assertEqual(adjust_target_branch(lister, "g/app", "release/20250101", "main"), "main")

    def test_empty_listing_keeps_target(self):
        lister = Mock(return_value=[])
        self.assertEqual(adjust_target_branch(lister, "g/app", "release/20250101", "main"), "main")


if __name__ == '__main__':
    unittest.main()
