"""
Bitbucket Cloud ingestion client: merged pull requests and release branches of a repository.
Pages are followed through the 'next' link of each response.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from errors import FetchError
from normalize.models import Change
from normalize.util import in_window, normalize_bitbucket_pull_request
from storage.retry import request_with_retries

logger = logging.getLogger(__name__)


class BitbucketClient:
    """Bitbucket Cloud 2.0 API client; project paths are '<workspace>/<repo_slug>'."""

    platform = 'bitbucket'

    def __init__(self, token: str, base_url: str = None, session=None, page_len: int = 50):
        self.token = token
        self.base_url = (base_url or "https://api.bitbucket.org/2.0").rstrip('/')
        self.headers = {
            "Authorization": f"Bearer {self.token}" if self.token else "",
            "Accept": "application/json",
        }
        self.session = session
        self.page_len = page_len

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        res = request_with_retries(url, headers=self.headers, params=params, session=self.session)
        status = res.get('status', 0)
        if status != 200:
            detail = res.get('error') or res.get('response')
            raise FetchError(f"Bitbucket request failed with status {status}: {detail}", status=status, url=url)
        return res.get('response')

    def _get_paged(self, url: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        values: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        next_params: Optional[Dict[str, Any]] = dict(params, pagelen=self.page_len)
        while next_url:
            data = self._get(next_url, next_params) or {}
            values.extend(data.get('values') or [])
            next_url = data.get('next')
            # the 'next' link already carries the query string
            next_params = None
        return values

    def _repo_url(self, project_path: str) -> str:
        return f"{self.base_url}/repositories/{project_path.strip('/')}"

    def get_changes_by_date_range(self, project_path: str, target_branch: str, start: datetime, end: datetime) -> List[Change]:
        """Merged pull requests into target_branch closed within [start, end]."""
        raw = self._get_paged(f"{self._repo_url(project_path)}/pullrequests", {"state": "MERGED", "fields": "*.*"})
        changes = [normalize_bitbucket_pull_request(pr, project_path) for pr in raw]
        return [c for c in changes
                if in_window(c.merged_at, start, end) and (not target_branch or c.target_branch == target_branch)]

    def get_changes_by_branch_diff(self, project_path: str, source_branch: str, target_branch: str) -> List[Change]:
        """Merged pull requests attached to the commits on source_branch that target_branch lacks."""
        repo_url = self._repo_url(project_path)
        commits = self._get_paged(f"{repo_url}/commits", {"include": source_branch, "exclude": target_branch})
        seen = set()
        changes: List[Change] = []
        for commit in commits:
            sha = commit.get('hash')
            if not sha:
                continue
            for pr in self._get_paged(f"{repo_url}/commit/{sha}/pullrequests", {}):
                if pr.get('state') != 'MERGED' or pr.get('id') in seen:
                    continue
                seen.add(pr.get('id'))
                changes.append(normalize_bitbucket_pull_request(pr, project_path))
        logger.info("Found %d pull requests for %d commits in %s", len(changes), len(commits), project_path)
        return changes

    def list_branches(self, project_path: str, prefix: str = '') -> List[str]:
        params = {"q": f'name ~ "{prefix}"'} if prefix else {}
        raw = self._get_paged(f"{self._repo_url(project_path)}/refs/branches", params)
        names = [b.get('name') for b in raw if b.get('name')]
        # the ~ operator is a substring match
        return [n for n in names if n.lower().startswith(prefix.lower())]
