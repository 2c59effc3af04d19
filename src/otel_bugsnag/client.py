"""HTTP client for the Bugsnag Notify, Sessions and Build APIs."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from otel_bugsnag import __version__
from otel_bugsnag.config import ClientConfig
from otel_bugsnag.models import (
    BuildRequest,
    NotifyRequest,
    SessionsRequest,
    StatusResponse,
)

logger = logging.getLogger(__name__)

HEADER_API_KEY = "Bugsnag-Api-Key"
HEADER_PAYLOAD_VERSION = "Bugsnag-Payload-Version"
HEADER_SENT_AT = "Bugsnag-Sent-At"
HEADER_EVENT_ID = "Bugsnag-Event-ID"
HEADER_SESSION_UUID = "Bugsnag-Session-UUID"


class BugsnagRequestError(RuntimeError):
    """Raised when a Bugsnag API request fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response: StatusResponse | None = None,
    ) -> None:
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class BugsnagClient:
    """Delivers payloads to Bugsnag.

    Every call blocks until the server answers. Nothing is retried; a failed
    request raises :class:`BugsnagRequestError` and the caller decides what
    to do with the payload.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.Client(
                timeout=httpx.Timeout(config.timeout_s),
                proxy=config.proxy,
                headers={"User-Agent": f"otel-bugsnag/{__version__}"},
            )
        )

    def close(self) -> None:
        if self._owns_http_client:
            self._http_client.close()

    def __enter__(self) -> BugsnagClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()

    def notify(self, request: NotifyRequest) -> uuid.UUID:
        """Send error events; returns the id Bugsnag assigned to the first one."""
        response = self._post(
            self._config.endpoints.notify, request, payload_version=NotifyRequest.PAYLOAD_VERSION
        )
        if not response.is_success:
            raise BugsnagRequestError(
                f"Bugsnag notify request failed ({response.status_code})",
                status_code=response.status_code,
                response=_try_status_response(response),
            )
        return _header_uuid(response, HEADER_EVENT_ID)

    def create_sessions(self, request: SessionsRequest) -> uuid.UUID:
        """Start sessions; returns the session batch id."""
        response = self._post(
            self._config.endpoints.sessions,
            request,
            payload_version=SessionsRequest.PAYLOAD_VERSION,
        )
        _read_status_response(response)
        return _header_uuid(response, HEADER_SESSION_UUID)

    def create_build(self, request: BuildRequest) -> StatusResponse:
        """Report a build/release to the Build API."""
        response = self._post(self._config.endpoints.build, request)
        return _read_status_response(response)

    def _post(
        self,
        endpoint: str,
        payload: BaseModel,
        *,
        payload_version: str | None = None,
    ) -> httpx.Response:
        headers = {
            HEADER_API_KEY: self._config.api_key,
            HEADER_SENT_AT: datetime.now(UTC).isoformat(),
        }
        if payload_version is not None:
            headers[HEADER_PAYLOAD_VERSION] = payload_version

        body: dict[str, Any] = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
        try:
            response = self._http_client.post(endpoint, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise BugsnagRequestError(f"Bugsnag request to {endpoint} failed: {exc}") from exc

        logger.debug("POST %s -> %s", endpoint, response.status_code)
        return response


def _try_status_response(response: httpx.Response) -> StatusResponse | None:
    try:
        return StatusResponse.model_validate(response.json())
    except (ValueError, ValidationError):
        return None


def _read_status_response(response: httpx.Response) -> StatusResponse:
    """Parse the JSON status body, raising a descriptive error on failure."""
    status = _try_status_response(response)
    if not response.is_success:
        message = str(status) if status is not None else f"status code {response.status_code}"
        raise BugsnagRequestError(
            f"Bugsnag request failed: {message}",
            status_code=response.status_code,
            response=status,
        )
    if status is None:
        raise BugsnagRequestError(
            "Bugsnag returned an unreadable status response",
            status_code=response.status_code,
        )
    return status


def _header_uuid(response: httpx.Response, header: str) -> uuid.UUID:
    value = response.headers.get(header)
    if value is None:
        raise BugsnagRequestError(
            f"Bugsnag response is missing the {header} header",
            status_code=response.status_code,
        )
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise BugsnagRequestError(
            f"Bugsnag response has an invalid {header} header: {value!r}",
            status_code=response.status_code,
        ) from exc
