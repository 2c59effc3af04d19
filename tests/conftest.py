"""Shared test fixtures for the otel-bugsnag test suite."""

from __future__ import annotations

import json
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import Event, ReadableSpan
from opentelemetry.trace import SpanContext, TraceFlags

from otel_bugsnag.client import BugsnagClient
from otel_bugsnag.config import ClientConfig

API_KEY = "0123456789abcdef0123456789abcdef"
EVENT_ID = uuid.UUID("6b3f0a58-4f43-4f1e-9d0c-2f0b3c6a9e11")
SESSION_ID = uuid.UUID("0f1e2d3c-4b5a-4978-8695-a4b3c2d1e0f9")

RESOURCE = Resource.create({"service.name": "checkout", "service.version": "2.4.1"})


@dataclass
class FakeBugsnag:
    """In-process stand-in for the Bugsnag APIs behind an ``httpx.MockTransport``.

    Records every request; set ``notify_status`` / ``sessions_status`` to make
    the matching endpoint fail.
    """

    requests: list[httpx.Request] = field(default_factory=list)
    notify_payloads: list[dict[str, Any]] = field(default_factory=list)
    sessions_payloads: list[dict[str, Any]] = field(default_factory=list)
    build_payloads: list[dict[str, Any]] = field(default_factory=list)
    notify_status: int = 200
    sessions_status: int = 202
    build_status: int = 200

    @property
    def events(self) -> list[dict[str, Any]]:
        return [event for payload in self.notify_payloads for event in payload["events"]]

    @property
    def sessions(self) -> list[dict[str, Any]]:
        return [session for payload in self.sessions_payloads for session in payload["sessions"]]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content)
        host = request.url.host

        if host == "notify.bugsnag.com":
            self.notify_payloads.append(body)
            if self.notify_status >= 400:
                return httpx.Response(self.notify_status, text="rejected")
            return httpx.Response(self.notify_status, headers={"Bugsnag-Event-ID": str(EVENT_ID)})

        if host == "sessions.bugsnag.com":
            self.sessions_payloads.append(body)
            if self.sessions_status >= 400:
                return httpx.Response(
                    self.sessions_status,
                    json={"status": "error", "errors": ["invalid api key"]},
                )
            return httpx.Response(
                self.sessions_status,
                json={"status": "ok"},
                headers={"Bugsnag-Session-UUID": str(SESSION_ID)},
            )

        if host == "build.bugsnag.com":
            self.build_payloads.append(body)
            if self.build_status >= 400:
                return httpx.Response(
                    self.build_status,
                    json={"status": "error", "errors": ["unknown revision"]},
                )
            return httpx.Response(
                self.build_status, json={"status": "ok", "warnings": ["no releases"]}
            )

        return httpx.Response(404)


@pytest.fixture
def fake_bugsnag() -> FakeBugsnag:
    return FakeBugsnag()


@pytest.fixture
def client_config() -> ClientConfig:
    return ClientConfig(api_key=API_KEY)


@pytest.fixture
def bugsnag_client(fake_bugsnag: FakeBugsnag, client_config: ClientConfig) -> BugsnagClient:
    http_client = httpx.Client(transport=httpx.MockTransport(fake_bugsnag.handler))
    client = BugsnagClient(client_config, http_client=http_client)
    yield client
    http_client.close()


def span_context(trace_id: int, span_id: int, *, is_remote: bool = False) -> SpanContext:
    return SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        is_remote=is_remote,
        trace_flags=TraceFlags(TraceFlags.SAMPLED),
    )


def make_span(
    name: str,
    *,
    trace_id: int,
    span_id: int,
    parent: SpanContext | None = None,
    attributes: dict[str, Any] | None = None,
    events: Sequence[Event] = (),
    start_time: int = 1_700_000_000_000_000_000,
) -> ReadableSpan:
    """Build a finished span directly, with full control over its parent link."""
    return ReadableSpan(
        name=name,
        context=span_context(trace_id, span_id),
        parent=parent,
        resource=RESOURCE,
        attributes=attributes or {},
        events=events,
        start_time=start_time,
        end_time=start_time + 5_000_000,
    )


def exception_event(
    error_class: str = "System.InvalidOperationException",
    message: str | None = "bar",
    stacktrace: str | None = None,
    *,
    escaped: bool | str | None = None,
    timestamp: int = 1_700_000_000_001_000_000,
) -> Event:
    attributes: dict[str, Any] = {"exception.type": error_class}
    if message is not None:
        attributes["exception.message"] = message
    if stacktrace is not None:
        attributes["exception.stacktrace"] = stacktrace
    if escaped is not None:
        attributes["exception.escaped"] = escaped
    return Event("exception", attributes=attributes, timestamp=timestamp)
