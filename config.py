"""
Configuration loading.
Reads a YAML file (PyYAML safe_load) into frozen dataclasses; tokens and the
store path can be overridden from the environment.
"""
import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from consolidate.team import TeamMapping, load_team_mappings
from correlate.hierarchy import DEFAULT_MAX_DEPTH, DEFAULT_TOP_LEVEL_TYPES
from errors import ConfigError
from normalize.models import parse_datetime

CONFIG_FILENAME = 'release-kit.yaml'
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config', CONFIG_FILENAME)
DEFAULT_STORE_PATH = 'release-kit.db'

DATE_TIME_RANGE = 'DateTimeRange'
BRANCH_DIFF = 'BranchDiff'
FETCH_MODES = (DATE_TIME_RANGE, BRANCH_DIFF)


@dataclass(frozen=True)
class FetchSettings:
    """How changes are selected for a project. Unset fields fall back to the global section."""
    fetch_mode: Optional[str] = None
    source_branch: Optional[str] = None
    target_branch: Optional[str] = None
    start_date_time: Optional[datetime] = None
    end_date_time: Optional[datetime] = None

    def merged_over(self, defaults: 'FetchSettings') -> 'FetchSettings':
        """Return these settings with unset fields taken from ``defaults``."""
        return FetchSettings(
            fetch_mode=self.fetch_mode or defaults.fetch_mode,
            source_branch=self.source_branch or defaults.source_branch,
            target_branch=self.target_branch or defaults.target_branch,
            start_date_time=self.start_date_time or defaults.start_date_time,
            end_date_time=self.end_date_time or defaults.end_date_time,
        )

    def validate(self, project_path: str = '') -> None:
        """Raise ConfigError unless the settings are complete for their fetch mode."""
        where = f" for project {project_path}" if project_path else ''
        if self.fetch_mode not in FETCH_MODES:
            raise ConfigError(f"Unknown fetch mode {self.fetch_mode!r}{where}; expected one of {', '.join(FETCH_MODES)}")
        if self.fetch_mode == DATE_TIME_RANGE:
            missing = [n for n in ('target_branch', 'start_date_time', 'end_date_time') if not getattr(self, n)]
        else:
            missing = [n for n in ('source_branch', 'target_branch') if not getattr(self, n)]
        if missing:
            raise ConfigError(f"{self.fetch_mode} fetch mode{where} requires: {', '.join(missing)}")
        if self.fetch_mode == DATE_TIME_RANGE and self.start_date_time > self.end_date_time:
            raise ConfigError(f"start_date_time is after end_date_time{where}")

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> 'FetchSettings':
        raw = raw or {}
        try:
            return cls(
                fetch_mode=raw.get('fetch_mode'),
                source_branch=raw.get('source_branch'),
                target_branch=raw.get('target_branch'),
                start_date_time=parse_datetime(raw.get('start_date_time')),
                end_date_time=parse_datetime(raw.get('end_date_time')),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid date in fetch settings: {e}") from e


@dataclass(frozen=True)
class ProjectConfig:
    project_path: str
    fetch: FetchSettings = field(default_factory=FetchSettings)


@dataclass(frozen=True)
class PlatformConfig:
    token: str = ''
    base_url: Optional[str] = None
    projects: Tuple[ProjectConfig, ...] = ()

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]], section: str) -> 'PlatformConfig':
        raw = raw or {}
        projects = []
        for p in raw.get('projects') or []:
            if not isinstance(p, dict) or not p.get('project_path'):
                raise ConfigError(f"Every {section} project needs a project_path")
            projects.append(ProjectConfig(project_path=p['project_path'], fetch=FetchSettings.from_dict(p)))
        return cls(token=raw.get('token') or '', base_url=raw.get('base_url'), projects=tuple(projects))


@dataclass(frozen=True)
class AzureDevOpsConfig:
    organization_url: str = ''
    token: str = ''


@dataclass(frozen=True)
class UserMapping:
    display_name: str
    gitlab_user_id: Optional[str] = None
    bitbucket_user_id: Optional[str] = None


@dataclass(frozen=True)
class AppConfig:
    gitlab: PlatformConfig = field(default_factory=PlatformConfig)
    bitbucket: PlatformConfig = field(default_factory=PlatformConfig)
    azure_devops: AzureDevOpsConfig = field(default_factory=AzureDevOpsConfig)
    fetch: FetchSettings = field(default_factory=FetchSettings)
    team_mappings: Tuple[TeamMapping, ...] = ()
    user_mappings: Tuple[UserMapping, ...] = ()
    store_path: str = DEFAULT_STORE_PATH
    top_level_types: Tuple[str, ...] = tuple(sorted(DEFAULT_TOP_LEVEL_TYPES))
    max_depth: int = DEFAULT_MAX_DEPTH
    max_workers: int = 1

    def platform(self, name: str) -> PlatformConfig:
        if name == 'gitlab':
            return self.gitlab
        if name == 'bitbucket':
            return self.bitbucket
        raise ConfigError(f"Unknown platform {name!r}")

    def user_display_names(self, platform: str) -> Dict[str, str]:
        """user id -> display name for one platform."""
        attr = f"{platform}_user_id"
        return {str(getattr(m, attr)): m.display_name for m in self.user_mappings if getattr(m, attr)}


def _user_mappings(raw: Optional[List[Mapping[str, Any]]]) -> Tuple[UserMapping, ...]:
    mappings = []
    for m in raw or []:
        if not isinstance(m, dict) or not m.get('display_name'):
            raise ConfigError("Every user_mapping entry needs a display_name")
        mappings.append(UserMapping(
            display_name=m['display_name'],
            gitlab_user_id=str(m['gitlab_user_id']) if m.get('gitlab_user_id') is not None else None,
            bitbucket_user_id=str(m['bitbucket_user_id']) if m.get('bitbucket_user_id') is not None else None,
        ))
    return tuple(mappings)


def config_from_dict(doc: Mapping[str, Any]) -> AppConfig:
    if not isinstance(doc, dict):
        raise ConfigError("Configuration root must be a mapping")
    azure = doc.get('azure_devops') or {}
    top_level_types = doc.get('top_level_types') or sorted(DEFAULT_TOP_LEVEL_TYPES)
    try:
        max_depth = int(doc.get('max_depth', DEFAULT_MAX_DEPTH))
        max_workers = int(doc.get('max_workers', 1))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"max_depth and max_workers must be integers: {e}") from e
    if max_depth < 1 or max_workers < 1:
        raise ConfigError("max_depth and max_workers must be at least 1")
    return AppConfig(
        gitlab=PlatformConfig.from_dict(doc.get('gitlab'), 'gitlab'),
        bitbucket=PlatformConfig.from_dict(doc.get('bitbucket'), 'bitbucket'),
        azure_devops=AzureDevOpsConfig(organization_url=azure.get('organization_url') or '', token=azure.get('token') or ''),
        fetch=FetchSettings.from_dict(doc.get('fetch')),
        team_mappings=tuple(load_team_mappings(doc.get('team_mappings'))),
        user_mappings=_user_mappings(doc.get('user_mapping')),
        store_path=doc.get('store_path') or DEFAULT_STORE_PATH,
        top_level_types=tuple(top_level_types),
        max_depth=max_depth,
        max_workers=max_workers,
    )


def apply_env_overrides(cfg: AppConfig, env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Environment variables win over the file for tokens and the store path."""
    env = os.environ if env is None else env
    if env.get('GITLAB_TOKEN'):
        cfg = replace(cfg, gitlab=replace(cfg.gitlab, token=env['GITLAB_TOKEN']))
    if env.get('BITBUCKET_TOKEN'):
        cfg = replace(cfg, bitbucket=replace(cfg.bitbucket, token=env['BITBUCKET_TOKEN']))
    if env.get('AZURE_DEVOPS_TOKEN'):
        cfg = replace(cfg, azure_devops=replace(cfg.azure_devops, token=env['AZURE_DEVOPS_TOKEN']))
    if env.get('RELEASE_KIT_STORE'):
        cfg = replace(cfg, store_path=env['RELEASE_KIT_STORE'])
    return cfg


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Load configuration from a YAML file, then apply environment overrides.
    Without an explicit path the default file is used when present, otherwise
    an empty configuration. An explicit path that does not exist is an error.
    """
    if path and not os.path.exists(path):
        raise ConfigError(f"Configuration file not found at: {path}")
    path = path or DEFAULT_CONFIG_PATH
    doc: Dict[str, Any] = {}
    if os.path.exists(path):
        try:
            with open(path, 'r', encoding='utf-8') as f:
                doc = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse {path}: {e}") from e
    return apply_env_overrides(config_from_dict(doc), env)
