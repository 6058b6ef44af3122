"""Loading and validation of the JSON tool configuration."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from .exceptions import ConfigurationError
from .patterns import CompiledExclusions, ExclusionRules

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "./config/config.json"
DEFAULT_WORKING_DIRECTORY = "./work"


@dataclass(frozen=True)
class ProjectConfig:
    """One application whose dependencies are compared between two commits."""

    name: str
    git_url: str = ""
    from_commit: str = ""
    to_commit: str = ""
    excludes: ExclusionRules = field(default_factory=ExclusionRules)
    csproj_paths: Tuple[str, ...] = ()
    npm_project_dirs: Tuple[str, ...] = ()
    compiled_excludes: Optional[CompiledExclusions] = None

    @property
    def exclusions(self) -> CompiledExclusions:
        """Compiled exclusion rules, precompiled at load time when available."""
        return self.compiled_excludes or self.excludes.compiled


@dataclass(frozen=True)
class ToolConfig:
    working_directory: str = DEFAULT_WORKING_DIRECTORY
    applications: List[ProjectConfig] = field(default_factory=list)


def _string_list(value, what: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"Config: '{what}' must be a list of strings")
    return tuple(value)


def _lower_keys(raw: dict) -> dict:
    """Key lookup is case-insensitive like .NET configuration binding."""
    return {str(k).lower(): v for k, v in raw.items()}


def _parse_project(raw: dict) -> ProjectConfig:
    if not isinstance(raw, dict):
        raise ConfigurationError("Config: every application must be an object")
    raw = _lower_keys(raw)

    excludes_raw = raw.get('excludes') or {}
    if not isinstance(excludes_raw, dict):
        raise ConfigurationError("Config: 'excludes' must be an object")

    excludes_raw = _lower_keys(excludes_raw)
    excludes = ExclusionRules(
        nuget=_string_list(excludes_raw.get('nuget'), 'excludes.nuget'),
        npm=_string_list(excludes_raw.get('npm'), 'excludes.npm'),
    )

    return ProjectConfig(
        name=raw.get('name') or "",
        git_url=raw.get('giturl') or "",
        from_commit=raw.get('fromcommit') or "",
        to_commit=raw.get('tocommit') or "",
        excludes=excludes,
        csproj_paths=_string_list(raw.get('csprojpaths'), 'csprojPaths'),
        npm_project_dirs=_string_list(raw.get('npmprojectdirs'), 'npmProjectDirs'),
        compiled_excludes=excludes.compile(),
    )


def validate_config(config: ToolConfig) -> None:
    """Raise ConfigurationError if the configuration cannot be run."""
    if not config.applications:
        raise ConfigurationError("Config: 'applications' must not be empty")

    if not config.working_directory or not config.working_directory.strip():
        raise ConfigurationError("Config: 'workingDirectory' must not be empty")

    for app in config.applications:
        if not app.name.strip():
            raise ConfigurationError("Config: every application needs a 'name'")
        if not app.git_url.strip():
            raise ConfigurationError(f"Config: application '{app.name}' needs a 'gitUrl'")
        if not app.from_commit.strip() or not app.to_commit.strip():
            raise ConfigurationError(
                f"Config: application '{app.name}' needs 'fromCommit' and 'toCommit'"
            )
        if not app.csproj_paths and not app.npm_project_dirs:
            raise ConfigurationError(
                f"Config: application '{app.name}' needs at least one csproj or npmProjectDir"
            )


def parse_config(document: dict) -> ToolConfig:
    """Build and validate a ToolConfig from a parsed JSON document."""
    if not isinstance(document, dict):
        raise ConfigurationError("Config: top level must be a JSON object")
    document = _lower_keys(document)

    applications = document.get('applications') or []
    if not isinstance(applications, list):
        raise ConfigurationError("Config: 'applications' must be a list")

    config = ToolConfig(
        working_directory=document.get('workingdirectory', DEFAULT_WORKING_DIRECTORY) or "",
        applications=[_parse_project(app) for app in applications],
    )
    validate_config(config)
    return config


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> ToolConfig:
    """Read the JSON configuration file."""
    path = Path(config_path)
    if not path.is_file():
        raise ConfigurationError(f"Config file not found: {config_path}")

    logger.info(f"Loading config from {path}")
    try:
        with open(path, 'r', encoding='utf-8-sig') as f:
            document = json.load(f)
    except ValueError as e:
        raise ConfigurationError(f"Config file {config_path} is not valid JSON: {e}") from e

    return parse_config(document)
