"""
GitLab ingestion client: merged merge requests and release branches of a project.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from errors import FetchError
from normalize.models import Change
from normalize.util import in_window, normalize_gitlab_merge_request
from storage.retry import request_with_retries

logger = logging.getLogger(__name__)


def _utc_param(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


class GitLabClient:
    """GitLab REST v4 client scoped to one instance."""

    platform = 'gitlab'

    def __init__(self, token: str, base_url: str = None, session=None, per_page: int = 100):
        self.token = token
        self.base_url = (base_url or "https://gitlab.com").rstrip('/')
        self.headers = {
            "PRIVATE-TOKEN": self.token or "",
            "Accept": "application/json",
        }
        self.session = session
        self.per_page = per_page

    def _project_url(self, project_path: str) -> str:
        return f"{self.base_url}/api/v4/projects/{quote(project_path, safe='')}"

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        res = request_with_retries(url, headers=self.headers, params=params, session=self.session)
        status = res.get('status', 0)
        if status != 200:
            detail = res.get('error') or res.get('response')
            raise FetchError(f"GitLab request failed with status {status}: {detail}", status=status, url=url)
        return res.get('response')

    def _get_paged(self, url: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        page = 1
        items: List[Dict[str, Any]] = []
        while True:
            data = self._get(url, dict(params, page=page, per_page=self.per_page)) or []
            items.extend(data)
            if len(data) < self.per_page:
                break
            page += 1
        return items

    def get_changes_by_date_range(self, project_path: str, target_branch: str, start: datetime, end: datetime) -> List[Change]:
        """Merged merge requests into target_branch whose merge time is within [start, end]."""
        params = {
            "state": "merged",
            "target_branch": target_branch,
            "updated_after": _utc_param(start),
            "updated_before": _utc_param(end),
        }
        raw = self._get_paged(f"{self._project_url(project_path)}/merge_requests", params)
        changes = [normalize_gitlab_merge_request(mr, project_path) for mr in raw]
        return [c for c in changes if in_window(c.merged_at, start, end)]

    def get_changes_by_branch_diff(self, project_path: str, source_branch: str, target_branch: str) -> List[Change]:
        """Merged merge requests that brought the commits of source_branch missing from target_branch."""
        project_url = self._project_url(project_path)
        compare = self._get(f"{project_url}/repository/compare", {"from": target_branch, "to": source_branch}) or {}
        commits = compare.get('commits') or []
        if not commits:
            logger.info("No commits between %s and %s in %s", target_branch, source_branch, project_path)
            return []

        seen = set()
        changes: List[Change] = []
        for commit in commits:
            sha = commit.get('id')
            if not sha:
                continue
            for mr in self._get(f"{project_url}/repository/commits/{sha}/merge_requests") or []:
                if mr.get('state') != 'merged' or mr.get('iid') in seen:
                    continue
                seen.add(mr.get('iid'))
                changes.append(normalize_gitlab_merge_request(mr, project_path))
        logger.info("Found %d merge requests for %d commits in %s", len(changes), len(commits), project_path)
        return changes

    def list_branches(self, project_path: str, prefix: str = '') -> List[str]:
        params = {"search": f"^{prefix}"} if prefix else {}
        raw = self._get_paged(f"{self._project_url(project_path)}/repository/branches", params)
        return [b.get('name') for b in raw if b.get('name')]
