"""
Pipeline stages. Each stage reads its inputs from the handoff store, writes its
result under a fixed key and returns the result so the CLI can print it.

Stages run one at a time in a fixed order:
fetch PRs -> filter by user -> fetch work items -> resolve user stories -> consolidate.
"""
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import requests

from branches.release import RELEASE_BRANCH_PREFIX, adjust_target_branch, latest_release_branch
from config import DATE_TIME_RANGE, AppConfig, FetchSettings
from consolidate.engine import consolidate, validate_inputs
from consolidate.team import map_team_names
from correlate.hierarchy import fetch_work_items, resolve_work_items
from correlate.linker import pair_changes
from correlate.models import ResolutionSummary
from errors import ConfigError, MissingInputError
from ingest.azure_devops import AzureDevOpsClient
from ingest.bitbucket import BitbucketClient
from ingest.gitlab import GitLabClient
from normalize.models import ConsolidatedResult, FetchResult, ProjectResult, WorkItemFetchResult
from storage import keys
from storage.handoff import HandoffStore

logger = logging.getLogger(__name__)

PLATFORMS = ('gitlab', 'bitbucket')
NOT_FOUND_BRANCH = 'NotFound'


def _load_fetch_result(store: HandoffStore, key: str) -> Optional[FetchResult]:
    raw = store.get_json(key)
    return FetchResult.from_dict(raw) if raw else None


def _fetch_project(client, project_path: str, settings: FetchSettings) -> ProjectResult:
    settings.validate(project_path)
    if settings.fetch_mode == DATE_TIME_RANGE:
        changes = client.get_changes_by_date_range(
            project_path, settings.target_branch, settings.start_date_time, settings.end_date_time)
    else:
        target = adjust_target_branch(client.list_branches, project_path, settings.source_branch, settings.target_branch)
        changes = client.get_changes_by_branch_diff(project_path, settings.source_branch, target)
    return ProjectResult(project_path=project_path, platform=client.platform, changes=tuple(changes))


def fetch_pull_requests(platform: str, client, cfg: AppConfig, store: HandoffStore) -> FetchResult:
    """Fetch merged changes for every configured project of one platform.

    A failing project is recorded with its error and does not stop the others.
    """
    results: List[ProjectResult] = []
    for project in cfg.platform(platform).projects:
        settings = project.fetch.merged_over(cfg.fetch)
        try:
            result = _fetch_project(client, project.project_path, settings)
            logger.info("Fetched %d changes from %s", len(result.changes), project.project_path)
        except Exception as e:
            logger.exception("Failed to fetch changes for %s: %s", project.project_path, e)
            result = ProjectResult(project_path=project.project_path, platform=platform,
                                   error=f"Processing failed: {e}")
        results.append(result)
    fetch_result = FetchResult(results=tuple(results))
    store.set_json(keys.PULL_REQUESTS[platform], fetch_result.to_dict())
    return fetch_result


def filter_changes_by_user(fetch_result: FetchResult, display_names: Dict[str, str]) -> FetchResult:
    """Keep changes whose author is mapped, renaming the author to the mapped display name.

    Projects that failed to fetch are passed through unchanged.
    """
    filtered = []
    for project in fetch_result.results:
        if project.error:
            filtered.append(project)
            continue
        kept = tuple(
            replace(c, author_name=display_names[c.author_user_id])
            for c in project.changes if c.author_user_id in display_names
        )
        filtered.append(replace(project, changes=kept))
    return FetchResult(results=tuple(filtered))


def filter_pull_requests_by_user(platform: str, cfg: AppConfig, store: HandoffStore) -> FetchResult:
    source_key = keys.PULL_REQUESTS[platform]
    fetch_result = _load_fetch_result(store, source_key)
    if fetch_result is None:
        raise MissingInputError(f"No {platform} pull requests to filter.", [source_key])
    display_names = cfg.user_display_names(platform)
    if display_names:
        fetch_result = filter_changes_by_user(fetch_result, display_names)
    else:
        logger.warning("No user mapping configured for %s; keeping every change", platform)
    store.set_json(keys.PULL_REQUESTS_BY_USER[platform], fetch_result.to_dict())
    return fetch_result


def fetch_release_branches(platform: str, client, cfg: AppConfig, store: HandoffStore) -> Dict[str, List[str]]:
    """Group projects by their latest release branch; projects without one go under 'NotFound'."""
    grouped: Dict[str, List[str]] = {}
    for project in cfg.platform(platform).projects:
        try:
            branch = latest_release_branch(client.list_branches(project.project_path, RELEASE_BRANCH_PREFIX))
        except Exception as e:
            logger.exception("Failed to list branches for %s: %s", project.project_path, e)
            branch = None
        grouped.setdefault(branch or NOT_FOUND_BRANCH, []).append(project.project_path)
    store.set_json(keys.RELEASE_BRANCHES[platform], grouped)
    return grouped


def fetch_azure_work_items(fetch: Callable, cfg: AppConfig, store: HandoffStore) -> WorkItemFetchResult:
    """Fetch the work item cited by every change, one record per (change, id) pair."""
    sources = [_load_fetch_result(store, keys.PULL_REQUESTS_BY_USER[p]) for p in PLATFORMS]
    if all(s is None for s in sources):
        raise MissingInputError("No filtered pull requests to scan for work items.",
                                [keys.PULL_REQUESTS_BY_USER[p] for p in PLATFORMS])
    projects = [r for s in sources if s is not None for r in s.results]
    pairs = pair_changes(projects)
    logger.info("Found %d work item references in %d projects", len(pairs), len(projects))
    outputs = fetch_work_items(pairs, fetch, max_workers=cfg.max_workers)
    result = WorkItemFetchResult(
        work_items=tuple(outputs),
        total_prs_analyzed=sum(len(p.changes) for p in projects),
    )
    store.set_json(keys.AZURE_DEVOPS_WORK_ITEMS, result.to_dict())
    return result


def get_user_stories(fetch: Callable, cfg: AppConfig, store: HandoffStore) -> ResolutionSummary:
    raw = store.get_json(keys.AZURE_DEVOPS_WORK_ITEMS)
    if raw is None:
        raise MissingInputError("No fetched work items to resolve.", [keys.AZURE_DEVOPS_WORK_ITEMS])
    fetched = WorkItemFetchResult.from_dict(raw)
    summary = resolve_work_items(fetched.work_items, fetch, cache={},
                                 top_level_types=cfg.top_level_types, max_depth=cfg.max_depth)
    store.set_json(keys.AZURE_DEVOPS_USER_STORIES, summary.to_dict())
    return summary


def map_team_display_names(cfg: AppConfig, store: HandoffStore) -> ResolutionSummary:
    """Write a copy of the resolved work items with team names replaced by their display names.

    Consolidation maps team names itself; this copy is kept for downstream readers.
    """
    raw = store.get_json(keys.AZURE_DEVOPS_USER_STORIES)
    if raw is None:
        raise MissingInputError("No resolved user stories to map.", [keys.AZURE_DEVOPS_USER_STORIES])
    summary = ResolutionSummary.from_dict(raw)
    if not summary.work_items:
        logger.warning("No resolved work items under %s; nothing written", keys.AZURE_DEVOPS_USER_STORIES)
        return summary
    logger.info("Mapping team names of %d work items with %d mappings", len(summary.work_items), len(cfg.team_mappings))
    mapped = ResolutionSummary(work_items=map_team_names(summary.work_items, cfg.team_mappings))
    store.set_json(keys.AZURE_DEVOPS_USER_STORIES_TEAM_MAPPED, mapped.to_dict())
    return mapped


def consolidate_release_data(cfg: AppConfig, store: HandoffStore) -> ConsolidatedResult:
    """Consolidate filtered changes with resolved work items.

    Nothing is written when an input is missing.
    """
    bitbucket = _load_fetch_result(store, keys.BITBUCKET_PULL_REQUESTS_BY_USER)
    gitlab = _load_fetch_result(store, keys.GITLAB_PULL_REQUESTS_BY_USER)
    raw_stories = store.get_json(keys.AZURE_DEVOPS_USER_STORIES)
    resolved = ResolutionSummary.from_dict(raw_stories).work_items if raw_stories else ()
    validate_inputs(bitbucket, gitlab, resolved)
    result = consolidate([bitbucket, gitlab], resolved, cfg.team_mappings)
    store.set_json(keys.CONSOLIDATED_RELEASE_DATA, result.to_dict())
    return result


def build_client(platform: str, cfg: AppConfig):
    platform_cfg = cfg.platform(platform)
    if not platform_cfg.token:
        raise ConfigError(f"Missing {platform} token (config file or env {platform.upper()}_TOKEN)")
    if platform == 'gitlab':
        return GitLabClient(platform_cfg.token, base_url=platform_cfg.base_url, session=requests.Session())
    return BitbucketClient(platform_cfg.token, base_url=platform_cfg.base_url, session=requests.Session())


def build_work_item_fetcher(cfg: AppConfig) -> Callable:
    azure = cfg.azure_devops
    if not azure.token or not azure.organization_url:
        raise ConfigError("Azure DevOps needs organization_url and a token (config file or env AZURE_DEVOPS_TOKEN)")
    return AzureDevOpsClient(azure.token, azure.organization_url, session=requests.Session()).get_work_item


def _platform_task(runner, platform: str, needs_client: bool = True):
    if needs_client:
        return lambda cfg, store: runner(platform, build_client(platform, cfg), cfg, store)
    return lambda cfg, store: runner(platform, cfg, store)


TASKS: Dict[str, Callable[[AppConfig, HandoffStore], Any]] = {
    'fetch-gitlab-pr': _platform_task(fetch_pull_requests, 'gitlab'),
    'fetch-bitbucket-pr': _platform_task(fetch_pull_requests, 'bitbucket'),
    'filter-gitlab-pr-by-user': _platform_task(filter_pull_requests_by_user, 'gitlab', needs_client=False),
    'filter-bitbucket-pr-by-user': _platform_task(filter_pull_requests_by_user, 'bitbucket', needs_client=False),
    'fetch-gitlab-release-branch': _platform_task(fetch_release_branches, 'gitlab'),
    'fetch-bitbucket-release-branch': _platform_task(fetch_release_branches, 'bitbucket'),
    'fetch-azure-workitems': lambda cfg, store: fetch_azure_work_items(build_work_item_fetcher(cfg), cfg, store),
    'get-user-story': lambda cfg, store: get_user_stories(build_work_item_fetcher(cfg), cfg, store),
    'map-team-display-name': map_team_display_names,
    'consolidate-release-data': consolidate_release_data,
}


def run_task(name: str, cfg: AppConfig, store: HandoffStore) -> Any:
    try:
        runner = TASKS[name]
    except KeyError:
        raise ConfigError(f"Unknown task {name!r}; expected one of {', '.join(TASKS)}") from None
    logger.info("Running task %s", name)
    return runner(cfg, store)
