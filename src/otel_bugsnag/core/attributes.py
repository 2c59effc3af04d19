"""User and request context extraction from span baggage and attributes."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from opentelemetry.util.types import AttributeValue

from otel_bugsnag.models import BugsnagUser, NotifyEventRequest

# OpenTelemetry semantic convention attribute names.
ATTR_DB_USER = "db.user"
ATTR_ENDUSER_ID = "enduser.id"
ATTR_ENDUSER_ROLE = "enduser.role"
ATTR_HTTP_CLIENT_IP = "http.client_ip"
ATTR_HTTP_METHOD = "http.method"
ATTR_HTTP_URL = "http.url"

REQUEST_HEADER_PREFIX = "http.request.header."

# Span attributes holding baggage entries captured when the span started.
BAGGAGE_ATTRIBUTE_PREFIX = "bugsnag.baggage."


def _apply_user_key(user: BugsnagUser, key: str, value: str) -> None:
    if key == ATTR_DB_USER:
        user.name = value
    elif key == ATTR_ENDUSER_ID:
        user.id = value
    elif key == ATTR_ENDUSER_ROLE and user.name is None:
        user.name = value


def _apply_request_key(request: NotifyEventRequest, key: str, value: str) -> None:
    if key == ATTR_HTTP_CLIENT_IP:
        request.client_ip = value
    elif key == ATTR_HTTP_METHOD:
        request.http_method = value
    elif key == ATTR_HTTP_URL:
        request.url = value


def _apply_header(request: NotifyEventRequest, key: str, values: Sequence[str]) -> None:
    header = key[len(REQUEST_HEADER_PREFIX) :].replace("_", "-")
    header_value = ", ".join(values)
    if request.headers is None:
        request.headers = {}
    request.headers[header] = header_value
    if header.lower() == "referer":
        request.referer = header_value


def extract_attributes(
    baggage: Mapping[str, str],
    tags: Mapping[str, AttributeValue],
) -> tuple[BugsnagUser, NotifyEventRequest]:
    """Derive the user and HTTP request a span was handling.

    Baggage is applied first and span attributes second, so attributes win
    when both carry the same key. ``enduser.role`` only fills the user name
    when nothing else has set it. Blank strings are ignored everywhere.

    Array-valued ``http.request.header.<name>`` attributes become request
    headers (``_`` in the name becomes ``-``, values are joined with
    ``", "`` as recorded); arrays that are empty or entirely blank are
    skipped. A ``referer`` header also sets the request referer.

    Either returned object may be empty; check with ``is_empty()``.
    """
    user = BugsnagUser()
    request = NotifyEventRequest()

    for key, value in baggage.items():
        if not isinstance(value, str) or not value.strip():
            continue
        _apply_user_key(user, key, value)

    for key, value in tags.items():
        if isinstance(value, str):
            if not value.strip():
                continue
            _apply_user_key(user, key, value)
            _apply_request_key(request, key, value)
        elif isinstance(value, Sequence) and key.startswith(REQUEST_HEADER_PREFIX):
            values = [str(item) for item in value]
            if any(item.strip() for item in values):
                _apply_header(request, key, values)

    return user, request


def split_baggage(
    attributes: Mapping[str, AttributeValue],
) -> tuple[dict[str, str], dict[str, AttributeValue]]:
    """Separate captured baggage entries from ordinary span attributes.

    Baggage is copied onto spans under :data:`BAGGAGE_ATTRIBUTE_PREFIX` at
    span start; the prefix is stripped here.
    """
    baggage: dict[str, str] = {}
    tags: dict[str, AttributeValue] = {}
    for key, value in attributes.items():
        if key.startswith(BAGGAGE_ATTRIBUTE_PREFIX):
            if isinstance(value, str):
                baggage[key[len(BAGGAGE_ATTRIBUTE_PREFIX) :]] = value
        else:
            tags[key] = value
    return baggage, tags
