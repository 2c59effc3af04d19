"""Exporter configuration loading and validation.

Reads bugsnag.toml (or an explicit TOML file), resolves ``${VAR}`` references
from the environment, parses all sections, and returns a validated
BugsnagConfig dataclass.
"""

from __future__ import annotations

import logging
import os
import re
import tomllib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from opentelemetry.sdk.trace import Event

CONFIG_FILENAME = "bugsnag.toml"

DEFAULT_NOTIFY_ENDPOINT = "https://notify.bugsnag.com/"
DEFAULT_SESSIONS_ENDPOINT = "https://sessions.bugsnag.com/"
DEFAULT_BUILD_ENDPOINT = "https://build.bugsnag.com/"

# ${VAR_NAME} references; names are letters, digits and underscores.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

InProjectCallback = Callable[[Event, str, str, bool], bool]
"""``(event, file, method, in_project_namespace) -> in_project`` for one stack frame."""


class ConfigError(Exception):
    """Raised when exporter configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_file: str | None = None


@dataclass
class EndpointsConfig:
    """Bugsnag API endpoints from [bugsnag.endpoints]."""

    notify: str = DEFAULT_NOTIFY_ENDPOINT
    sessions: str = DEFAULT_SESSIONS_ENDPOINT
    build: str = DEFAULT_BUILD_ENDPOINT


@dataclass
class ClientConfig:
    """HTTP delivery settings from [bugsnag]."""

    api_key: str
    endpoints: EndpointsConfig = field(default_factory=EndpointsConfig)
    proxy: str | None = None
    timeout_s: float = 10.0


@dataclass
class AppConfig:
    """Overrides for the app descriptor from [bugsnag.app].

    Unset values fall back to the OpenTelemetry resource
    (``service.name``, ``service.version``, ``deployment.environment``).
    """

    id: str | None = None
    version: str | None = None
    release_stage: str | None = None


@dataclass
class ExporterConfig:
    """Span translation settings from [exporter].

    ``in_project_callback`` decides, per stack frame, whether the frame belongs
    to the application. It receives the exception event, the frame's file and
    method, and the default guess derived from ``project_namespaces``. It is
    code, so it can only be set programmatically.
    """

    project_namespaces: tuple[str, ...] = ()
    trim_path_prefixes: tuple[str, ...] = ()
    in_project_callback: InProjectCallback | None = None


@dataclass
class BugsnagConfig:
    """Parsed and validated exporter configuration."""

    client: ClientConfig
    exporter: ExporterConfig = field(default_factory=ExporterConfig)
    app: AppConfig = field(default_factory=AppConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(f"Unresolved environment variable(s) in config value: {vars_str}")

    return result


def _optional_str(section: dict, key: str, path: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{path}.{key} must be a string when set")
    value = value.strip()
    return value or None


def _str_tuple(section: dict, key: str, path: str) -> tuple[str, ...]:
    raw = section.get(key, [])
    if not isinstance(raw, list):
        raise ConfigError(f"{path}.{key} must be a list of strings")
    values: list[str] = []
    for i, item in enumerate(raw):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{path}.{key}[{i}] must be a non-empty string")
        values.append(item.strip())
    return tuple(values)


def _parse_client(bugsnag_section: dict) -> ClientConfig:
    """Parse [bugsnag] and its [bugsnag.endpoints] sub-section."""
    api_key = bugsnag_section.get("api_key")
    if not isinstance(api_key, str) or not api_key.strip():
        raise ConfigError("Missing required field: bugsnag.api_key")

    endpoints_section = bugsnag_section.get("endpoints", {})
    if not isinstance(endpoints_section, dict):
        raise ConfigError("bugsnag.endpoints must be a TOML table")
    endpoints = EndpointsConfig(
        notify=_optional_str(endpoints_section, "notify", "bugsnag.endpoints")
        or DEFAULT_NOTIFY_ENDPOINT,
        sessions=_optional_str(endpoints_section, "sessions", "bugsnag.endpoints")
        or DEFAULT_SESSIONS_ENDPOINT,
        build=_optional_str(endpoints_section, "build", "bugsnag.endpoints")
        or DEFAULT_BUILD_ENDPOINT,
    )

    try:
        timeout_s = float(bugsnag_section.get("timeout_s", 10.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid bugsnag.timeout_s: {exc}") from exc
    if timeout_s <= 0:
        raise ConfigError(
            f"Invalid bugsnag.timeout_s: {timeout_s!r}. Must be a positive number."
        )

    return ClientConfig(
        api_key=api_key.strip(),
        endpoints=endpoints,
        proxy=_optional_str(bugsnag_section, "proxy", "bugsnag"),
        timeout_s=timeout_s,
    )


def _parse_logging(data: dict) -> LoggingConfig:
    logging_section = data.get("logging", {})
    if not isinstance(logging_section, dict):
        raise ConfigError("logging must be a TOML table")
    log_level = str(logging_section.get("level", "INFO")).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"Invalid logging.level: {log_level!r}")
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    return LoggingConfig(
        level=log_level,
        format=log_format,
        log_file=_optional_str(logging_section, "log_file", "logging"),
    )


def parse_config(data: dict[str, Any]) -> BugsnagConfig:
    """Validate an already-decoded TOML document.

    Environment variable references are resolved first, so every check below
    sees final values.
    """
    data = resolve_env_vars(data)

    bugsnag_section = data.get("bugsnag")
    if not isinstance(bugsnag_section, dict):
        raise ConfigError("Missing [bugsnag] section in config")

    client = _parse_client(bugsnag_section)

    app_section = bugsnag_section.get("app", {})
    if not isinstance(app_section, dict):
        raise ConfigError("bugsnag.app must be a TOML table")
    app = AppConfig(
        id=_optional_str(app_section, "id", "bugsnag.app"),
        version=_optional_str(app_section, "version", "bugsnag.app"),
        release_stage=_optional_str(app_section, "release_stage", "bugsnag.app"),
    )

    exporter_section = data.get("exporter", {})
    if not isinstance(exporter_section, dict):
        raise ConfigError("exporter must be a TOML table")
    exporter = ExporterConfig(
        project_namespaces=_str_tuple(exporter_section, "project_namespaces", "exporter"),
        trim_path_prefixes=_str_tuple(exporter_section, "trim_path_prefixes", "exporter"),
    )

    return BugsnagConfig(
        client=client,
        exporter=exporter,
        app=app,
        logging=_parse_logging(data),
    )


def load_config(path: Path) -> BugsnagConfig:
    """Load and validate exporter configuration.

    Parameters
    ----------
    path:
        Either a TOML file or a directory containing ``bugsnag.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    path = Path(path)
    toml_path = path / CONFIG_FILENAME if path.is_dir() else path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
