"""App, device and notifier descriptors attached to every payload.

Values come from the OpenTelemetry resource first and the running platform
second; configured app overrides beat both. Descriptors are built once per
exporter and only their time-varying fields are refreshed per batch.
"""

from __future__ import annotations

import platform
import socket
import sys
from collections.abc import Callable
from datetime import UTC, datetime

import psutil
from opentelemetry.sdk.resources import Resource

from otel_bugsnag import __version__
from otel_bugsnag.config import AppConfig
from otel_bugsnag.models import (
    BugsnagBinaryArch,
    BugsnagNotifier,
    NotifyEventApp,
    NotifyEventDevice,
)

NOTIFIER_NAME = "otel-bugsnag"

# Resource semantic convention attribute names.
RESOURCE_SERVICE_NAME = "service.name"
RESOURCE_SERVICE_VERSION = "service.version"
RESOURCE_DEPLOYMENT_ENVIRONMENT = ("deployment.environment.name", "deployment.environment")
RESOURCE_TELEMETRY_SDK_VERSION = "telemetry.sdk.version"
RESOURCE_USER_AGENT = ("user_agent.original", "browser.user_agent")
RESOURCE_HOST_ID = "host.id"
RESOURCE_DEVICE_ID = "device.id"
RESOURCE_DEVICE_MANUFACTURER = "device.manufacturer"
RESOURCE_DEVICE_MODEL_NAME = "device.model.name"
RESOURCE_DEVICE_MODEL_IDENTIFIER = "device.model.identifier"

_BINARY_ARCH = {
    "x86_64": BugsnagBinaryArch.amd64,
    "amd64": BugsnagBinaryArch.amd64,
    "i386": BugsnagBinaryArch.x86,
    "i686": BugsnagBinaryArch.x86,
    "x86": BugsnagBinaryArch.x86,
    "aarch64": BugsnagBinaryArch.arm64,
    "arm64": BugsnagBinaryArch.arm64,
    "armv7l": BugsnagBinaryArch.armv7,
    "armv6l": BugsnagBinaryArch.armv6,
}

def _resource_str(resource: Resource, *keys: str) -> str | None:
    for key in keys:
        value = resource.attributes.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def process_start_time() -> float:
    """When this process was started, in seconds since the epoch."""
    return psutil.Process().create_time()


def binary_arch(machine: str) -> BugsnagBinaryArch | None:
    """Map ``platform.machine()`` output to a Bugsnag binary architecture."""
    return _BINARY_ARCH.get(machine.lower())


class EnvironmentDescriptors:
    """Lazily built app/device/notifier descriptors for one exporter."""

    def __init__(
        self,
        app_config: AppConfig | None = None,
        *,
        process_started: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._app_config = app_config or AppConfig()
        self._started = process_start_time() if process_started is None else process_started
        self._clock = clock or (lambda: datetime.now(UTC))
        self._app: NotifyEventApp | None = None
        self._device: NotifyEventDevice | None = None
        self._notifier: BugsnagNotifier | None = None

    def refresh(self, resource: Resource) -> tuple[NotifyEventApp, NotifyEventDevice]:
        """Return the cached descriptors with duration and time brought up to date."""
        if self._app is None:
            self._app = self._build_app(resource)
        if self._device is None:
            self._device = self._build_device(resource)
        now = self._clock()
        self._app.duration = max(0, int((now.timestamp() - self._started) * 1000))
        self._device.time = now
        return self._app, self._device

    def notifier(self, resource: Resource) -> BugsnagNotifier:
        if self._notifier is None:
            sdk_version = _resource_str(resource, RESOURCE_TELEMETRY_SDK_VERSION) or ""
            self._notifier = BugsnagNotifier(
                name=NOTIFIER_NAME,
                version=__version__,
                dependencies=[BugsnagNotifier(name="OpenTelemetry", version=sdk_version)],
            )
        return self._notifier

    def _build_app(self, resource: Resource) -> NotifyEventApp:
        config = self._app_config
        app_id = config.id or _resource_str(resource, RESOURCE_SERVICE_NAME)
        if app_id is None:
            app_id = sys.argv[0].rsplit("/", 1)[-1] if sys.argv and sys.argv[0] else None
        return NotifyEventApp(
            id=app_id,
            version=config.version or _resource_str(resource, RESOURCE_SERVICE_VERSION),
            release_stage=config.release_stage
            or _resource_str(resource, *RESOURCE_DEPLOYMENT_ENVIRONMENT),
            binary_arch=binary_arch(platform.machine()),
        )

    def _build_device(self, resource: Resource) -> NotifyEventDevice:
        return NotifyEventDevice(
            hostname=socket.gethostname(),
            id=_resource_str(resource, RESOURCE_HOST_ID, RESOURCE_DEVICE_ID),
            manufacturer=_resource_str(resource, RESOURCE_DEVICE_MANUFACTURER),
            model=_resource_str(resource, RESOURCE_DEVICE_MODEL_NAME),
            model_number=_resource_str(resource, RESOURCE_DEVICE_MODEL_IDENTIFIER),
            os_name=sys.platform,
            os_version=platform.release(),
            user_agent=_resource_str(resource, *RESOURCE_USER_AGENT),
            runtime_versions={"python": platform.python_version()},
        )
