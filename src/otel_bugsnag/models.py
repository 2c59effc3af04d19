"""Bugsnag payload models for the Notify, Sessions and Build APIs.

Field names are snake_case in Python and camelCase on the wire; dump with
``model_dump(mode="json", by_alias=True, exclude_none=True)``.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _BugsnagModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


class _FrozenBugsnagModel(_BugsnagModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class BugsnagSeverity(StrEnum):
    error = "error"
    warning = "warning"
    info = "info"


class BugsnagSeverityReasonType(StrEnum):
    """Why an event has the severity it has (subset used by this exporter)."""

    unhandled_exception = "unhandledException"
    handled_exception = "handledException"
    user_specified_severity = "userSpecifiedSeverity"
    user_callback_set_severity = "userCallbackSetSeverity"


class BugsnagStacktraceType(StrEnum):
    """Runtime that produced a stacktrace; drives symbolication on the server."""

    csharp = "csharp"
    python = "python"
    java = "java"
    go = "go"
    nodejs = "nodejs"
    ruby = "ruby"
    php = "php"


class BugsnagBinaryArch(StrEnum):
    x86 = "x86"
    x86_64 = "x86_64"
    arm32 = "arm32"
    arm64 = "arm64"
    armv6 = "armv6"
    armv7 = "armv7"
    amd64 = "amd64"


class NotifyEventBreadcrumbType(StrEnum):
    navigation = "navigation"
    request = "request"
    process = "process"
    log = "log"
    user = "user"
    state = "state"
    error = "error"
    manual = "manual"


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class BugsnagNotifier(_BugsnagModel):
    """Identifies the library sending the payload."""

    name: str
    version: str
    url: str | None = None
    dependencies: list[BugsnagNotifier] | None = None


class BugsnagUser(_BugsnagModel):
    id: str | None = None
    name: str | None = None
    email: str | None = None

    def is_empty(self) -> bool:
        return self.id is None and self.name is None and self.email is None


class SessionApp(_BugsnagModel):
    type: str | None = None
    release_stage: str | None = None
    version: str | None = None


class SessionDevice(_BugsnagModel):
    hostname: str | None = None
    id: str | None = None
    manufacturer: str | None = None
    model: str | None = None
    model_number: str | None = None
    os_name: str | None = None
    os_version: str | None = None
    user_agent: str | None = None
    runtime_versions: dict[str, str] | None = None


# ---------------------------------------------------------------------------
# Notify API (payload version 5)
# ---------------------------------------------------------------------------


class NotifyEventStacktrace(_FrozenBugsnagModel):
    """One stack frame. ``line_number`` is 0 when unknown."""

    file: str
    line_number: int = Field(default=0, ge=0)
    method: str
    column_number: int | None = None
    in_project: bool | None = None


class NotifyEventException(_FrozenBugsnagModel):
    error_class: str
    message: str | None = None
    stacktrace: list[NotifyEventStacktrace] = Field(default_factory=list)
    type: BugsnagStacktraceType | None = None


class NotifyEventBreadcrumb(_BugsnagModel):
    timestamp: datetime
    name: str
    type: NotifyEventBreadcrumbType = NotifyEventBreadcrumbType.log
    meta_data: dict[str, str] | None = None


class NotifyEventRequest(_BugsnagModel):
    client_ip: str | None = None
    headers: dict[str, str] | None = None
    http_method: str | None = None
    url: str | None = None
    referer: str | None = None

    def is_empty(self) -> bool:
        return (
            self.client_ip is None
            and self.http_method is None
            and self.url is None
            and self.referer is None
            and not self.headers
        )


class NotifyEventSeverityReason(_BugsnagModel):
    type: BugsnagSeverityReasonType
    unhandled_overridden: bool | None = None


class NotifyEventSessionEvents(_BugsnagModel):
    """Handled/unhandled counters, shared by every event of one session."""

    handled: int = 0
    unhandled: int = 0


class NotifyEventSession(_BugsnagModel):
    id: str
    started_at: datetime
    events: NotifyEventSessionEvents = Field(default_factory=NotifyEventSessionEvents)


class NotifyEventApp(SessionApp):
    id: str | None = None
    duration: int | None = None
    binary_arch: BugsnagBinaryArch | None = None


class NotifyEventDevice(SessionDevice):
    time: datetime | None = None


class NotifyEvent(_BugsnagModel):
    """One incident report: an error plus the context it happened in."""

    exceptions: list[NotifyEventException] = Field(default_factory=list)
    breadcrumbs: list[NotifyEventBreadcrumb] = Field(default_factory=list)
    request: NotifyEventRequest | None = None
    context: str | None = None
    grouping_hash: str | None = None
    unhandled: bool = False
    severity: BugsnagSeverity = BugsnagSeverity.warning
    severity_reason: NotifyEventSeverityReason | None = None
    project_packages: list[str] | None = None
    user: BugsnagUser | None = None
    app: NotifyEventApp | None = None
    device: NotifyEventDevice | None = None
    session: NotifyEventSession | None = None


class NotifyRequest(_BugsnagModel):
    PAYLOAD_VERSION: ClassVar[str] = "5"

    payload_version: str = "5"
    notifier: BugsnagNotifier
    events: list[NotifyEvent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Sessions API (payload version 1.0)
# ---------------------------------------------------------------------------


class Session(_BugsnagModel):
    id: str
    started_at: datetime
    user: BugsnagUser | None = None


class SessionCount(_BugsnagModel):
    started_at: datetime
    sessions_started: int


class SessionsRequest(_BugsnagModel):
    PAYLOAD_VERSION: ClassVar[str] = "1.0"

    notifier: BugsnagNotifier
    app: SessionApp | None = None
    device: SessionDevice | None = None
    sessions: list[Session] = Field(default_factory=list)
    session_counts: list[SessionCount] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Build API
# ---------------------------------------------------------------------------


class SourceControl(_BugsnagModel):
    repository: str
    revision: str
    provider: str | None = None


class BuildRequest(_BugsnagModel):
    api_key: str
    app_version: str
    source_control: SourceControl
    builder_name: str | None = None
    release_stage: str | None = None
    metadata: dict[str, str] | None = None
    auto_assign_release: bool = False


class StatusResponse(_BugsnagModel):
    status: str
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def __str__(self) -> str:
        if self.errors:
            return "; ".join(self.errors)
        if self.warnings:
            return "; ".join(self.warnings)
        return self.status
