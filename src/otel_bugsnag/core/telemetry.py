"""TracerProvider wiring for the Bugsnag exporter."""

from __future__ import annotations

import logging

from opentelemetry import baggage, trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import Span, SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

from otel_bugsnag.client import BugsnagClient
from otel_bugsnag.config import BugsnagConfig
from otel_bugsnag.core.attributes import BAGGAGE_ATTRIBUTE_PREFIX
from otel_bugsnag.core.exporter import BugsnagSpanExporter

logger = logging.getLogger(__name__)

# Guard flag: True once init_telemetry() has installed the global TracerProvider.
_tracer_provider_installed: bool = False


class BaggageSpanProcessor(SpanProcessor):
    """Copies the baggage active at span start onto the span.

    SDK spans do not carry baggage themselves, so the exporter would never
    see it. Entries are stored as ``bugsnag.baggage.<key>`` attributes.
    """

    def on_start(self, span: Span, parent_context: Context | None = None) -> None:
        for key, value in baggage.get_all(parent_context).items():
            if isinstance(value, str):
                span.set_attribute(f"{BAGGAGE_ATTRIBUTE_PREFIX}{key}", value)


def add_bugsnag_exporter(
    provider: TracerProvider,
    config: BugsnagConfig,
    *,
    client: BugsnagClient | None = None,
    batch: bool = True,
) -> BugsnagSpanExporter:
    """Register the Bugsnag exporter (and baggage capture) on *provider*.

    With ``batch=False`` spans are exported synchronously as they end, which
    is mostly useful in tests and short-lived scripts.
    """
    exporter = BugsnagSpanExporter(
        client or BugsnagClient(config.client),
        config.exporter,
        app_config=config.app,
    )
    provider.add_span_processor(BaggageSpanProcessor())
    if batch:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def init_telemetry(config: BugsnagConfig, service_name: str) -> trace.Tracer:
    """Install a global TracerProvider that reports errors to Bugsnag.

    The resource carries ``service.name`` plus the configured app version and
    release stage. Later calls reuse the provider installed by the first one
    and only return a new tracer.
    """
    global _tracer_provider_installed

    if _tracer_provider_installed:
        logger.debug(
            "TracerProvider already initialized; reusing existing provider for service=%s",
            service_name,
        )
        return trace.get_tracer(service_name)

    attributes: dict[str, str] = {"service.name": service_name}
    if config.app.version:
        attributes["service.version"] = config.app.version
    if config.app.release_stage:
        attributes["deployment.environment"] = config.app.release_stage

    provider = TracerProvider(resource=Resource.create(attributes))
    add_bugsnag_exporter(provider, config)

    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: service=%s", service_name)

    return trace.get_tracer(service_name)
