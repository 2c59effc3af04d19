"""Command line entry points: validate configuration and talk to the Bugsnag APIs."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SpanExportResult

from otel_bugsnag import __version__
from otel_bugsnag.client import BugsnagClient, BugsnagRequestError
from otel_bugsnag.config import BugsnagConfig, ConfigError, load_config
from otel_bugsnag.core.logging import configure_logging
from otel_bugsnag.core.telemetry import add_bugsnag_exporter
from otel_bugsnag.models import BuildRequest, SourceControl

logger = logging.getLogger(__name__)

config_argument = click.argument(
    "config_path",
    type=click.Path(exists=True, path_type=Path),
)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Report OpenTelemetry errors and sessions to Bugsnag."""


def _load(config_path: Path) -> BugsnagConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Invalid configuration: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_file=Path(config.logging.log_file) if config.logging.log_file else None,
    )
    return config


def _mask(secret: str) -> str:
    if len(secret) <= 4:
        return "*" * len(secret)
    return "*" * (len(secret) - 4) + secret[-4:]


@cli.command("check-config")
@config_argument
def check_config(config_path: Path) -> None:
    """Validate a configuration file and print a summary."""
    config = _load(config_path)
    namespaces = ", ".join(config.exporter.project_namespaces) or "(none)"
    click.echo(f"{'API key':<20} {_mask(config.client.api_key)}")
    click.echo(f"{'Notify endpoint':<20} {config.client.endpoints.notify}")
    click.echo(f"{'Sessions endpoint':<20} {config.client.endpoints.sessions}")
    click.echo(f"{'Build endpoint':<20} {config.client.endpoints.build}")
    click.echo(f"{'Proxy':<20} {config.client.proxy or '(none)'}")
    click.echo(f"{'Project namespaces':<20} {namespaces}")
    click.echo(f"{'Log level':<20} {config.logging.level} ({config.logging.format})")


@cli.command()
@config_argument
@click.option("--app-version", required=True, help="Version of the app being released")
@click.option("--repository", required=True, help="Source repository URL")
@click.option("--revision", required=True, help="Commit the build was made from")
@click.option("--provider", default=None, help="Source control provider, e.g. github")
@click.option("--builder-name", default=None, help="Who or what made the build")
@click.option("--release-stage", default=None, help="Overrides the configured release stage")
def build(
    config_path: Path,
    app_version: str,
    repository: str,
    revision: str,
    provider: str | None,
    builder_name: str | None,
    release_stage: str | None,
) -> None:
    """Report a build to the Bugsnag Build API."""
    config = _load(config_path)
    request = BuildRequest(
        api_key=config.client.api_key,
        app_version=app_version,
        source_control=SourceControl(repository=repository, revision=revision, provider=provider),
        builder_name=builder_name,
        release_stage=release_stage or config.app.release_stage,
    )
    with BugsnagClient(config.client) as client:
        try:
            status = client.create_build(request)
        except BugsnagRequestError as exc:
            click.echo(f"Build report failed: {exc}", err=True)
            sys.exit(1)
    click.echo(f"Build {app_version} reported: {status}")


@cli.command("send-test-event")
@config_argument
@click.option("--service-name", default="otel-bugsnag", help="service.name of the test span")
def send_test_event(config_path: Path, service_name: str) -> None:
    """Record a span with an exception and export it synchronously."""
    config = _load(config_path)
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    exporter = add_bugsnag_exporter(provider, config, batch=False)
    tracer = provider.get_tracer(__name__)

    with tracer.start_as_current_span("otel-bugsnag test event") as span:
        try:
            raise RuntimeError("Test event from otel-bugsnag")
        except RuntimeError as exc:
            span.record_exception(exc, escaped=True)

    provider.shutdown()
    if exporter.last_result is SpanExportResult.SUCCESS:
        click.echo("Test event sent")
    else:
        click.echo("Test event could not be delivered; see the log for details", err=True)
        sys.exit(1)
