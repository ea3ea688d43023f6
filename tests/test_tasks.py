import json
import unittest
from datetime import datetime, timezone

import pytest

import tasks
from config import AppConfig, FetchSettings, PlatformConfig, ProjectConfig, UserMapping
from consolidate.team import TeamMapping
from correlate.models import ResolutionSummary
from errors import ConfigError, FetchError, MissingInputError
from normalize.models import (
    Change,
    FetchResult,
    ProjectResult,
    ResolutionStatus,
    ResolvedWorkItem,
    WorkItem,
    WorkItemFetch,
    WorkItemFetchResult,
    WorkItemOutput,
)
from storage import keys
from storage.handoff import HandoffStore


class FakeSourceControl:
    platform = 'gitlab'

    def __init__(self, changes=None, branches=None, failing=(), malformed=()):
        self.changes = changes or {}
        self.branches = branches or {}
        self.failing = set(failing)
        self.malformed = set(malformed)
        self.diff_calls = []

    def get_changes_by_date_range(self, project_path, target_branch, start, end):
        if project_path in self.failing:
            raise FetchError("HTTP 500", status=500)
        if project_path in self.malformed:
            raise ValueError("Invalid isoformat string: 'yesterday'")
        return self.changes.get(project_path, [])

    def get_changes_by_branch_diff(self, project_path, source_branch, target_branch):
        self.diff_calls.append((project_path, source_branch, target_branch))
        if project_path in self.failing:
            raise FetchError("HTTP 500", status=500)
        return self.changes.get(project_path, [])

    def list_branches(self, project_path, prefix=''):
        if project_path in self.failing:
            raise FetchError("HTTP 500", status=500)
        return self.branches.get(project_path, [])


def fake_tracker(items):
    by_id = {i.work_item_id: i for i in items}

    def fetch(work_item_id):
        if work_item_id in by_id:
            return WorkItemFetch.success(by_id[work_item_id])
        return WorkItemFetch.failure(f"Work item {work_item_id} not found")
    return fetch


def gitlab_config(*projects, fetch=None, **kwargs):
    return AppConfig(
        gitlab=PlatformConfig(token="t", projects=tuple(ProjectConfig(project_path=p) for p in projects)),
        fetch=fetch or FetchSettings(fetch_mode="BranchDiff", source_branch="release/20250101", target_branch="main"),
        **kwargs,
    )


class TestFetchStage(unittest.TestCase):
    def setUp(self):
        self.store = HandoffStore()

    def tearDown(self):
        self.store.close()

    def test_branch_diff_adjusts_target_and_keeps_failed_projects(self):
        client = FakeSourceControl(
            changes={"g/web": [Change(pr_id="g/web!1", source_branch="feature/VSTS1")]},
            branches={"g/web": ["release/20250101", "release/20250201"]},
            failing={"g/api"},
        )
        result = tasks.fetch_pull_requests('gitlab', client, gitlab_config("g/web", "g/api"), self.store)

        self.assertEqual(client.diff_calls[0], ("g/web", "release/20250101", "release/20250201"))
        web, api = result.results
        self.assertEqual(len(web.changes), 1)
        self.assertIsNone(web.error)
        self.assertIn("HTTP 500", api.error)
        stored = self.store.get_json(keys.GITLAB_PULL_REQUESTS)
        self.assertEqual(stored["results"][1]["projectPath"], "g/api")

    def test_invalid_settings_recorded_per_project(self):
        cfg = gitlab_config("g/web", fetch=FetchSettings(fetch_mode="DateTimeRange", target_branch="main"))
        result = tasks.fetch_pull_requests('gitlab', FakeSourceControl(), cfg, self.store)
        self.assertIn("start_date_time", result.results[0].error)

    def test_unexpected_error_isolated_to_its_project(self):
        client = FakeSourceControl(changes={"g/good": [Change(pr_id="g/good!1")]}, malformed={"g/bad"})
        fetch = FetchSettings(fetch_mode="DateTimeRange", target_branch="main",
                              start_date_time=datetime(2025, 3, 1, tzinfo=timezone.utc),
                              end_date_time=datetime(2025, 3, 31, tzinfo=timezone.utc))
        result = tasks.fetch_pull_requests('gitlab', client, gitlab_config("g/bad", "g/good", fetch=fetch), self.store)

        bad, good = result.results
        self.assertIn("Invalid isoformat string", bad.error)
        self.assertTrue(bad.error.startswith("Processing failed:"))
        self.assertIsNone(good.error)
        self.assertEqual(len(good.changes), 1)
        self.assertEqual(len(self.store.get_json(keys.GITLAB_PULL_REQUESTS)["results"]), 2)

    def test_date_range_mode(self):
        client = FakeSourceControl(changes={"g/web": [Change(pr_id="1")]})
        fetch = FetchSettings(fetch_mode="DateTimeRange", target_branch="main",
                              start_date_time=datetime(2025, 3, 1, tzinfo=timezone.utc),
                              end_date_time=datetime(2025, 3, 31, tzinfo=timezone.utc))
        result = tasks.fetch_pull_requests('gitlab', client, gitlab_config("g/web", fetch=fetch), self.store)
        self.assertEqual(len(result.results[0].changes), 1)
        self.assertEqual(client.diff_calls, [])


class TestFilterStage(unittest.TestCase):
    def test_keeps_mapped_authors_and_renames(self):
        store = HandoffStore()
        fetched = FetchResult(results=(
            ProjectResult(project_path="g/web", platform="GitLab", changes=(
                Change(pr_id="1", author_user_id="42", author_name="alice"),
                Change(pr_id="2", author_user_id="99", author_name="bot"),
            )),
            ProjectResult(project_path="g/api", platform="GitLab", error="Processing failed: boom"),
        ))
        store.set_json(keys.GITLAB_PULL_REQUESTS, fetched.to_dict())
        cfg = AppConfig(user_mappings=(UserMapping(display_name="Alice Chen", gitlab_user_id="42"),))

        result = tasks.filter_pull_requests_by_user('gitlab', cfg, store)

        web, api = result.results
        self.assertEqual([(c.pr_id, c.author_name) for c in web.changes], [("1", "Alice Chen")])
        self.assertEqual(api.error, "Processing failed: boom")
        self.assertIsNotNone(store.get_json(keys.GITLAB_PULL_REQUESTS_BY_USER))

    def test_missing_input(self):
        with self.assertRaises(MissingInputError):
            tasks.filter_pull_requests_by_user('bitbucket', AppConfig(), HandoffStore())


def test_release_branches_grouped_by_latest():
    store = HandoffStore()
    client = FakeSourceControl(
        branches={
            "g/web": ["release/20250101", "release/20250315", "main"],
            "g/api": ["release/20250315"],
            "g/docs": ["main"],
        },
        failing={"g/broken"},
    )
    grouped = tasks.fetch_release_branches('gitlab', client, gitlab_config("g/web", "g/api", "g/docs", "g/broken"), store)
    assert grouped == {"release/20250315": ["g/web", "g/api"], "NotFound": ["g/docs", "g/broken"]}
    assert store.get_json(keys.GITLAB_RELEASE_BRANCHES) == grouped


def _seed_filtered(store):
    gitlab = FetchResult(results=(ProjectResult(project_path="platform/web", platform="GitLab", changes=(
        Change(pr_id="1", title="Login", source_branch="feature/VSTS123", author_name="Alice", pr_url="https://gl/1"),
        Change(pr_id="2", title="Login fix", source_branch="", author_name="Bob", pr_url="https://gl/2"),
        Change(pr_id="3", title="VSTS123 fix", source_branch="", author_name="Bob", pr_url="https://gl/3"),
    )),))
    store.set_json(keys.GITLAB_PULL_REQUESTS_BY_USER, gitlab.to_dict())


def test_full_pipeline_from_filtered_changes():
    store = HandoffStore()
    _seed_filtered(store)
    tracker = fake_tracker([
        WorkItem(work_item_id=123, title="Login task", type="Task", original_team_name="Acme\\MoneyLogistic", parent_work_item_id=500),
        WorkItem(work_item_id=500, title="Login story", type="User Story", original_team_name="Acme\\MoneyLogistic"),
    ])
    cfg = AppConfig(team_mappings=(TeamMapping(original_team_name="MoneyLogistic", display_name="金流團隊"),))

    fetched = tasks.fetch_azure_work_items(tracker, cfg, store)
    assert [(w.work_item_id, w.pr_id) for w in fetched.work_items] == [(123, "1"), (123, "3")]
    assert fetched.total_prs_analyzed == 3
    assert store.get_json(keys.AZURE_DEVOPS_WORK_ITEMS)["totalWorkItemsFound"] == 1

    summary = tasks.get_user_stories(tracker, cfg, store)
    assert [w.work_item_id for w in summary.work_items] == [500, 500]

    result = tasks.consolidate_release_data(cfg, store)
    entries = result.get("web")
    assert len(entries) == 1
    assert entries[0].work_item_id == 500
    assert entries[0].team_display_name == "金流團隊"
    assert entries[0].authors == ("Alice", "Bob")
    assert entries[0].pull_request_urls == ("https://gl/1", "https://gl/3")
    stored = store.get(keys.CONSOLIDATED_RELEASE_DATA)
    assert "金流團隊" in stored
    assert json.loads(stored)["projects"]["web"][0]["workItemId"] == 500


def test_consolidate_without_inputs_writes_nothing():
    store = HandoffStore()
    with pytest.raises(MissingInputError):
        tasks.consolidate_release_data(AppConfig(), store)
    assert not store.exists(keys.CONSOLIDATED_RELEASE_DATA)


def test_get_user_stories_requires_fetched_items():
    with pytest.raises(MissingInputError) as exc:
        tasks.get_user_stories(fake_tracker([]), AppConfig(), HandoffStore())
    assert exc.value.missing_keys == [keys.AZURE_DEVOPS_WORK_ITEMS]


def test_get_user_stories_classifies_stored_story_without_refetch():
    store = HandoffStore()
    stored = WorkItemFetchResult(work_items=(
        WorkItemOutput(work_item_id=1, pr_id="g/web!1", project_name="web", title="Checkout", type="User Story"),
    ), total_prs_analyzed=1)
    store.set_json(keys.AZURE_DEVOPS_WORK_ITEMS, stored.to_dict())
    calls = []

    def unavailable(work_item_id):
        calls.append(work_item_id)
        return WorkItemFetch.failure("HTTP 503")

    summary = tasks.get_user_stories(unavailable, AppConfig(), store)
    assert calls == []
    assert summary.work_items[0].resolution_status == ResolutionStatus.ALREADY_TOP_LEVEL_OR_ABOVE
    assert summary.already_top_level_count == 1


def test_map_team_display_names_writes_mapped_copy():
    store = HandoffStore()
    resolved = ResolutionSummary(work_items=(
        ResolvedWorkItem(work_item_id=500, resolution_status=ResolutionStatus.FOUND_VIA_RECURSION, pr_id="g/web!1",
                         original_team_name="Acme\\MoneyLogistic",
                         original_work_item=WorkItemOutput(work_item_id=123, original_team_name="Acme\\MoneyLogistic")),
    ))
    store.set_json(keys.AZURE_DEVOPS_USER_STORIES, resolved.to_dict())
    cfg = AppConfig(team_mappings=(TeamMapping(original_team_name="moneylogistic", display_name="金流團隊"),))

    tasks.run_task("map-team-display-name", cfg, store)

    stored = store.get_json(keys.AZURE_DEVOPS_USER_STORIES_TEAM_MAPPED)
    item = stored["workItems"][0]
    assert item["originalTeamName"] == "金流團隊"
    assert item["originalWorkItem"]["originalTeamName"] == "金流團隊"
    assert store.get_json(keys.AZURE_DEVOPS_USER_STORIES)["workItems"][0]["originalTeamName"] == "Acme\\MoneyLogistic"


def test_map_team_display_names_skips_empty_input():
    store = HandoffStore()
    store.set_json(keys.AZURE_DEVOPS_USER_STORIES, ResolutionSummary().to_dict())
    tasks.map_team_display_names(AppConfig(), store)
    assert not store.exists(keys.AZURE_DEVOPS_USER_STORIES_TEAM_MAPPED)
    with pytest.raises(MissingInputError):
        tasks.map_team_display_names(AppConfig(), HandoffStore())


def test_run_task_unknown_and_missing_token():
    with pytest.raises(ConfigError):
        tasks.run_task("nope", AppConfig(), HandoffStore())
    with pytest.raises(ConfigError):
        tasks.run_task("fetch-gitlab-pr", AppConfig(), HandoffStore())
    with pytest.raises(ConfigError):
        tasks.run_task("get-user-story", AppConfig(), HandoffStore())
