"""
Azure DevOps ingestion client: single work item lookups with relations.
"""
import logging

from normalize.models import WorkItemFetch
from normalize.util import normalize_work_item
from storage.retry import request_with_retries

logger = logging.getLogger(__name__)

API_VERSION = "7.0"


class AzureDevOpsClient:
    """Fetch work items from an organization (or organization/project) URL using a personal access token."""

    def __init__(self, token: str, organization_url: str, session=None):
        self.token = token
        self.organization_url = organization_url.rstrip('/')
        self.headers = {"Accept": "application/json"}
        self.auth = ('', self.token or '')
        self.session = session

    def get_work_item(self, work_item_id: int) -> WorkItemFetch:
        """Return the work item or a failure describing why it could not be read.

        Failures are returned rather than raised so one bad id never stops a run.
        """
        url = f"{self.organization_url}/_apis/wit/workitems/{work_item_id}"
        params = {"$expand": "all", "api-version": API_VERSION}
        res = request_with_retries(url, headers=self.headers, params=params, auth=self.auth, session=self.session)
        status = res.get('status', 0)
        if status == 401:
            return WorkItemFetch.failure("Unauthorized: check the Azure DevOps personal access token")
        if status == 404:
            return WorkItemFetch.failure(f"Work item {work_item_id} not found")
        if status != 200:
            return WorkItemFetch.failure(res.get('error') or f"HTTP {status}")
        body = res.get('response')
        if not isinstance(body, dict) or body.get('id') is None:
            return WorkItemFetch.failure(f"Work item {work_item_id} returned an empty response")
        logger.debug("Fetched work item %s", work_item_id)
        return WorkItemFetch.success(normalize_work_item(body))

