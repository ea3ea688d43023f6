import unittest
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from errors import FetchError
from ingest.azure_devops import AzureDevOpsClient
from ingest.bitbucket import BitbucketClient
from ingest.gitlab import GitLabClient


def ok(body):
    return {'response': body, 'status': 200}


def mr(iid, merged_at, branch="feature/VSTS1"):
    return {"iid": iid, "title": f"MR {iid}", "source_branch": branch, "target_branch": "main", "state": "merged",
            "merged_at": merged_at, "author": {"id": 1, "username": "alice"}, "web_url": f"https://gl/{iid}"}


class TestGitLabClient(unittest.TestCase):
    def setUp(self):
        self.client = GitLabClient("tok", base_url="https://gitlab.example.com/", per_page=2)

    def test_date_range_pages_and_filters_merge_time(self):
        pages = [
            ok([mr(1, "2025-03-02T00:00:00Z"), mr(2, "2025-02-01T00:00:00Z")]),
            ok([mr(3, "2025-03-05T00:00:00Z")]),
        ]
        with patch('ingest.gitlab.request_with_retries', side_effect=pages) as req:
            changes = self.client.get_changes_by_date_range(
                "platform/web", "main",
                datetime(2025, 3, 1, tzinfo=timezone.utc), datetime(2025, 3, 31, tzinfo=timezone.utc))
        self.assertEqual([c.pr_id for c in changes], ["platform/web!1", "platform/web!3"])
        url = req.call_args_list[0].args[0]
        self.assertEqual(url, "https://gitlab.example.com/api/v4/projects/platform%2Fweb/merge_requests")
        params = req.call_args_list[1].kwargs['params']
        self.assertEqual(params['page'], 2)
        self.assertEqual(params['updated_after'], "2025-03-01T00:00:00Z")

    def test_branch_diff_dedups_merge_requests(self):
        responses = [
            ok({"commits": [{"id": "a1"}, {"id": "b2"}]}),
            ok([mr(7, "2025-03-02T00:00:00Z")]),
            ok([mr(7, "2025-03-02T00:00:00Z"), dict(mr(8, None), state="opened")]),
        ]
        with patch('ingest.gitlab.request_with_retries', side_effect=responses):
            changes = self.client.get_changes_by_branch_diff("platform/web", "release/20250315", "release/20250101")
        self.assertEqual([c.pr_id for c in changes], ["platform/web!7"])

    def test_error_status_raises(self):
        with patch('ingest.gitlab.request_with_retries', return_value={'response': {'message': '401'}, 'status': 401}):
            with self.assertRaises(FetchError) as ctx:
                self.client.list_branches("platform/web", "release/")
        self.assertEqual(ctx.exception.status, 401)


class TestBitbucketClient(unittest.TestCase):
    def test_follows_next_links_and_filters(self):
        client = BitbucketClient("tok")
        pr = {"id": 1, "title": "t", "state": "MERGED", "source": {"branch": {"name": "feature/VSTS9"}},
              "destination": {"branch": {"name": "main"}}, "closed_on": "2025-03-02T00:00:00+00:00",
              "author": {"uuid": "{u}", "display_name": "Bob"}, "links": {"html": {"href": "https://bb/1"}}}
        other_branch = dict(pr, id=2, destination={"branch": {"name": "develop"}})
        too_late = dict(pr, id=3, closed_on="2025-05-01T00:00:00+00:00")
        pages = [
            ok({"values": [pr, other_branch], "next": "https://api.bitbucket.org/2.0/page2"}),
            ok({"values": [too_late]}),
        ]
        with patch('ingest.bitbucket.request_with_retries', side_effect=pages) as req:
            changes = client.get_changes_by_date_range(
                "acme/money-logistic", "main",
                datetime(2025, 3, 1, tzinfo=timezone.utc), datetime(2025, 3, 31, tzinfo=timezone.utc))
        self.assertEqual([c.pr_id for c in changes], ["acme/money-logistic#1"])
        self.assertEqual(req.call_args_list[1].args[0], "https://api.bitbucket.org/2.0/page2")
        self.assertIsNone(req.call_args_list[1].kwargs['params'])

    def test_list_branches_keeps_prefix_matches(self):
        client = BitbucketClient("tok")
        body = ok({"values": [{"name": "release/20250101"}, {"name": "hotfix/release/x"}]})
        with patch('ingest.bitbucket.request_with_retries', return_value=body):
            self.assertEqual(client.list_branches("acme/app", "release/"), ["release/20250101"])


def test_azure_work_item_success():
    client = AzureDevOpsClient("pat", "https://dev.azure.com/acme/")
    body = {"id": 5, "fields": {"System.WorkItemType": "Task", "System.Title": "x"}, "relations": []}
    with patch('ingest.azure_devops.request_with_retries', return_value=ok(body)) as req:
        outcome = client.get_work_item(5)
    assert outcome.is_success
    assert outcome.work_item.title == "x"
    assert req.call_args.args[0] == "https://dev.azure.com/acme/_apis/wit/workitems/5"
    assert req.call_args.kwargs['auth'] == ('', 'pat')


@pytest.mark.parametrize("status,fragment", [(401, "Unauthorized"), (404, "not found"), (500, "HTTP 500")])
def test_azure_work_item_failures_are_returned(status, fragment):
    client = AzureDevOpsClient("pat", "https://dev.azure.com/acme")
    with patch('ingest.azure_devops.request_with_retries', return_value={'response': None, 'status': status}):
        outcome = client.get_work_item(5)
    assert not outcome.is_success
    assert fragment in outcome.error
