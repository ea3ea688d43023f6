"""
Normalization utility helpers.
Small helpers to normalize raw platform payloads into normalize.models records.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from correlate.linker import parse_work_item_id
from normalize.models import Change, WorkItem, parse_datetime

PARENT_RELATION = "System.LinkTypes.Hierarchy-Reverse"


def normalize_gitlab_merge_request(raw: Dict[str, Any], project_path: str) -> Change:
    """Create a Change from a GitLab merge request payload.

    ``pr_id`` uses GitLab's own reference form, ``<project>!<iid>``.
    """
    author = raw.get('author') or {}
    source_branch = raw.get('source_branch') or ''
    title = raw.get('title') or ''
    return Change(
        pr_id=f"{project_path}!{raw.get('iid') or raw.get('id')}",
        title=title,
        description=raw.get('description'),
        source_branch=source_branch,
        target_branch=raw.get('target_branch') or '',
        created_at=parse_datetime(raw.get('created_at')),
        merged_at=parse_datetime(raw.get('merged_at')),
        state=raw.get('state') or '',
        author_user_id=str(author.get('id') or ''),
        author_name=author.get('username') or author.get('name') or '',
        pr_url=raw.get('web_url') or '',
        project_path=project_path,
        platform='GitLab',
        work_item_id=parse_work_item_id(source_branch, title),
    )


def normalize_bitbucket_pull_request(raw: Dict[str, Any], project_path: str) -> Change:
    """Create a Change from a Bitbucket Cloud pull request payload.

    ``pr_id`` is ``<workspace>/<repo>#<id>``.
    """
    author = raw.get('author') or {}
    source_branch = ((raw.get('source') or {}).get('branch') or {}).get('name') or ''
    title = raw.get('title') or ''
    description = (raw.get('summary') or {}).get('raw') or raw.get('description')
    return Change(
        pr_id=f"{project_path}#{raw.get('id')}",
        title=title,
        description=description,
        source_branch=source_branch,
        target_branch=((raw.get('destination') or {}).get('branch') or {}).get('name') or '',
        created_at=parse_datetime(raw.get('created_on')),
        merged_at=parse_datetime(raw.get('closed_on') or raw.get('updated_on')),
        state=raw.get('state') or '',
        author_user_id=author.get('uuid') or '',
        author_name=author.get('display_name') or '',
        pr_url=((raw.get('links') or {}).get('html') or {}).get('href') or '',
        project_path=project_path,
        platform='Bitbucket',
        work_item_id=parse_work_item_id(source_branch, title),
    )


def _id_from_url(url: Optional[str]) -> Optional[int]:
    if not url:
        return None
    tail = url.rstrip('/').rsplit('/', 1)[-1]
    return int(tail) if tail.isdigit() else None


def extract_parent_work_item_id(relations: Optional[Iterable[Dict[str, Any]]]) -> Optional[int]:
    """Return the parent id from an Azure DevOps relations list, if any."""
    for relation in relations or []:
        if relation.get('rel') == PARENT_RELATION:
            parent = _id_from_url(relation.get('url'))
            if parent is not None:
                return parent
    return None


def normalize_work_item(raw: Dict[str, Any]) -> WorkItem:
    """Create a WorkItem from an Azure DevOps work item payload (fetched with $expand=all)."""
    fields = raw.get('fields') or {}
    url = ((raw.get('_links') or {}).get('html') or {}).get('href') or raw.get('url') or ''
    return WorkItem(
        work_item_id=int(raw.get('id')),
        title=fields.get('System.Title') or '',
        type=fields.get('System.WorkItemType') or '',
        state=fields.get('System.State') or '',
        url=url,
        original_team_name=fields.get('System.AreaPath') or '',
        parent_work_item_id=extract_parent_work_item_id(raw.get('relations')),
    )


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def in_window(when: Optional[datetime], start: datetime, end: datetime) -> bool:
    """True when ``when`` lies within [start, end]; naive datetimes are taken as UTC."""
    if when is None:
        return False
    return _aware(start) <= _aware(when) <= _aware(end)
