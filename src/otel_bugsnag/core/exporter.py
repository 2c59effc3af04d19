"""OpenTelemetry span exporter that reports errors and sessions to Bugsnag.

Each export call translates one batch of finished spans:

- every span's trace root gets exactly one session for the batch;
- a span with at least one ``exception`` event becomes one Bugsnag event,
  carrying all of its exception chains, its other span events as breadcrumbs,
  and the user and request found in its baggage and attributes;
- sessions are sent first, then events, and the batch fails as a whole if
  anything goes wrong.

Nothing is kept between calls apart from the cached app/device descriptors.
"""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from opentelemetry.context import _SUPPRESS_INSTRUMENTATION_KEY, attach, detach, set_value
from opentelemetry.sdk.trace import Event, ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from opentelemetry.util.types import AttributeValue

from otel_bugsnag.client import BugsnagClient
from otel_bugsnag.config import AppConfig, ExporterConfig
from otel_bugsnag.core.attributes import extract_attributes, split_baggage
from otel_bugsnag.core.environment import EnvironmentDescriptors
from otel_bugsnag.core.sessions import SessionRegistry, SessionTracker
from otel_bugsnag.core.stacktrace import FrameClassifier, parse_exception_chain
from otel_bugsnag.models import (
    BugsnagSeverity,
    BugsnagSeverityReasonType,
    NotifyEvent,
    NotifyEventApp,
    NotifyEventBreadcrumb,
    NotifyEventDevice,
    NotifyEventSeverityReason,
    NotifyRequest,
    SessionApp,
    SessionDevice,
    SessionsRequest,
)

logger = logging.getLogger(__name__)

EXCEPTION_EVENT_NAME = "exception"
ATTR_EXCEPTION_TYPE = "exception.type"
ATTR_EXCEPTION_MESSAGE = "exception.message"
ATTR_EXCEPTION_STACKTRACE = "exception.stacktrace"
ATTR_EXCEPTION_ESCAPED = "exception.escaped"


def _ns_to_datetime(timestamp_ns: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ns / 1e9, UTC)


def _str_attribute(attributes: Mapping[str, AttributeValue], key: str) -> str | None:
    value = attributes.get(key)
    return value if isinstance(value, str) else None


def _is_true(value: AttributeValue | None) -> bool:
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == "true"


def root_identity(span: ReadableSpan) -> str:
    """Session id for a root span: ``<trace id>-<span id>`` in lowercase hex."""
    return f"{span.context.trace_id:032x}-{span.context.span_id:016x}"


def resolve_root(span: ReadableSpan, spans_by_id: Mapping[int, ReadableSpan]) -> ReadableSpan:
    """Walk parent links upward through *spans_by_id*.

    Stops at a span without a parent, with a remote parent, or whose parent
    is not part of the batch.
    """
    root = span
    for _ in range(len(spans_by_id)):
        parent = root.parent
        if parent is None or parent.is_remote:
            break
        parent_span = spans_by_id.get(parent.span_id)
        if parent_span is None or parent_span is root:
            break
        root = parent_span
    return root


class BugsnagSpanExporter(SpanExporter):
    """Translates finished spans into Bugsnag events and sessions."""

    def __init__(
        self,
        client: BugsnagClient,
        config: ExporterConfig | None = None,
        *,
        app_config: AppConfig | None = None,
        environment: EnvironmentDescriptors | None = None,
    ) -> None:
        self._client = client
        self._config = config or ExporterConfig()
        self._environment = environment or EnvironmentDescriptors(app_config)
        self._lock = threading.Lock()
        self._shutdown = False
        self.last_result: SpanExportResult | None = None

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        if self._shutdown:
            logger.warning("Exporter already shut down, dropping %d span(s)", len(spans))
            return SpanExportResult.FAILURE

        with self._lock:
            token = attach(set_value(_SUPPRESS_INSTRUMENTATION_KEY, True))
            try:
                self._export_batch(spans)
                self.last_result = SpanExportResult.SUCCESS
            except Exception:
                logger.exception("Failed to export %d span(s) to Bugsnag", len(spans))
                self.last_result = SpanExportResult.FAILURE
            finally:
                detach(token)
        return self.last_result

    def shutdown(self) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        with self._lock:
            self._client.close()

    def force_flush(self, timeout_millis: int = 30000) -> bool:  # noqa: ARG002
        return True

    # -- batch translation -------------------------------------------------

    def _export_batch(self, spans: Sequence[ReadableSpan]) -> None:
        if not spans:
            return

        resource = spans[0].resource
        app, device = self._environment.refresh(resource)
        registry = SessionRegistry()
        events: list[NotifyEvent] = []
        spans_by_id = {span.context.span_id: span for span in spans}

        for span in spans:
            root = resolve_root(span, spans_by_id)
            root_id = root_identity(root)
            tracker = registry.get_or_create(root_id, _ns_to_datetime(root.start_time))

            event = self._translate_span(span, tracker, app, device)
            if event.exceptions:
                events.append(event)
                registry.record_outcome(root_id, event.unhandled)

        trackers = registry.drain()
        logger.debug(
            "Translated %d span(s) into %d event(s) across %d session(s)",
            len(spans),
            len(events),
            len(trackers),
        )

        notifier = self._environment.notifier(resource)

        if trackers:
            sessions_request = SessionsRequest(
                notifier=notifier,
                app=SessionApp.model_validate(
                    app.model_dump(include={"type", "release_stage", "version"})
                ),
                device=SessionDevice.model_validate(device.model_dump(exclude={"time"})),
                sessions=[tracker.session for tracker in trackers],
            )
            session_batch_id = self._client.create_sessions(sessions_request)
            logger.info("Sent %d session(s) to Bugsnag: %s", len(trackers), session_batch_id)

        if events:
            event_id = self._client.notify(NotifyRequest(notifier=notifier, events=events))
            logger.info("Sent %d event(s) to Bugsnag: %s", len(events), event_id)

    def _translate_span(
        self,
        span: ReadableSpan,
        tracker: SessionTracker,
        app: NotifyEventApp,
        device: NotifyEventDevice,
    ) -> NotifyEvent:
        event = NotifyEvent(
            context=span.name,
            app=app,
            device=device,
            session=tracker.event_session(),
        )

        baggage, tags = split_baggage(span.attributes or {})
        user, request = extract_attributes(baggage, tags)
        if not user.is_empty():
            event.user = user
            tracker.session.user = user
        if not request.is_empty():
            event.request = request

        unhandled = span.parent is None or span.parent.is_remote

        for span_event in span.events:
            if span_event.name == EXCEPTION_EVENT_NAME:
                attributes = span_event.attributes or {}
                if _is_true(attributes.get(ATTR_EXCEPTION_ESCAPED)):
                    unhandled = True
                event.exceptions.extend(
                    parse_exception_chain(
                        _str_attribute(attributes, ATTR_EXCEPTION_STACKTRACE),
                        error_class=_str_attribute(attributes, ATTR_EXCEPTION_TYPE),
                        message=_str_attribute(attributes, ATTR_EXCEPTION_MESSAGE),
                        project_namespaces=self._config.project_namespaces,
                        classify=self._frame_classifier(span_event),
                        trim_path_prefixes=self._config.trim_path_prefixes,
                    )
                )
            else:
                event.breadcrumbs.append(_breadcrumb(span_event))

        event.unhandled = unhandled
        if unhandled:
            event.severity = BugsnagSeverity.error
            event.severity_reason = NotifyEventSeverityReason(
                type=BugsnagSeverityReasonType.unhandled_exception
            )
        else:
            event.severity = BugsnagSeverity.warning
            event.severity_reason = NotifyEventSeverityReason(
                type=BugsnagSeverityReasonType.handled_exception
            )
        return event

    def _frame_classifier(self, span_event: Event) -> FrameClassifier | None:
        callback = self._config.in_project_callback
        if callback is None:
            return None
        return functools.partial(callback, span_event)


def _breadcrumb(span_event: Event) -> NotifyEventBreadcrumb:
    metadata = {
        key: value
        for key, value in (span_event.attributes or {}).items()
        if isinstance(value, str)
    }
    return NotifyEventBreadcrumb(
        timestamp=_ns_to_datetime(span_event.timestamp),
        name=span_event.name,
        meta_data=metadata or None,
    )
