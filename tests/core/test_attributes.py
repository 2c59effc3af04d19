"""Tests for user and request extraction from baggage and span attributes."""

from __future__ import annotations

import pytest

from otel_bugsnag.core.attributes import extract_attributes, split_baggage

pytestmark = pytest.mark.unit


class TestRequestHeaders:
    def test_header_attributes_become_request_headers(self):
        _, request = extract_attributes(
            {},
            {
                "http.request.header.content_type": ["application/json"],
                "http.request.header.referer": ["http://x/y"],
            },
        )
        assert request.headers == {"content-type": "application/json", "referer": "http://x/y"}
        assert request.referer == "http://x/y"

    def test_multiple_values_are_joined(self):
        _, request = extract_attributes(
            {}, {"http.request.header.accept": ("text/html", "application/json")}
        )
        assert request.headers == {"accept": "text/html, application/json"}

    def test_all_blank_header_is_skipped(self):
        _, request = extract_attributes({}, {"http.request.header.x_trace": ["", "  "]})
        assert request.headers is None
        assert request.is_empty()

    def test_empty_header_array_is_skipped(self):
        _, request = extract_attributes({}, {"http.request.header.x_trace": []})
        assert request.is_empty()

    def test_blank_items_kept_when_header_has_a_value(self):
        _, request = extract_attributes(
            {}, {"http.request.header.x_forwarded_for": ["10.0.0.1", "", "10.0.0.2"]}
        )
        assert request.headers == {"x-forwarded-for": "10.0.0.1, , 10.0.0.2"}

    def test_sequence_without_header_prefix_is_ignored(self):
        _, request = extract_attributes({}, {"http.response.header.server": ["nginx"]})
        assert request.is_empty()


class TestRequestFields:
    def test_http_attributes(self):
        _, request = extract_attributes(
            {},
            {
                "http.client_ip": "10.0.0.7",
                "http.method": "POST",
                "http.url": "https://shop.example/cart",
            },
        )
        assert request.client_ip == "10.0.0.7"
        assert request.http_method == "POST"
        assert request.url == "https://shop.example/cart"

    def test_request_keys_in_baggage_are_ignored(self):
        _, request = extract_attributes({"http.method": "GET"}, {})
        assert request.is_empty()


class TestUser:
    def test_user_from_attributes(self):
        user, _ = extract_attributes({}, {"enduser.id": "u-42", "db.user": "alice"})
        assert user.id == "u-42"
        assert user.name == "alice"

    def test_user_from_baggage(self):
        user, _ = extract_attributes({"enduser.id": "u-7"}, {})
        assert user.id == "u-7"

    def test_attributes_override_baggage(self):
        user, _ = extract_attributes(
            {"enduser.id": "from-baggage", "db.user": "bob"},
            {"enduser.id": "from-attributes"},
        )
        assert user.id == "from-attributes"
        assert user.name == "bob"

    def test_role_fills_name_when_unset(self):
        user, _ = extract_attributes({}, {"enduser.role": "admin"})
        assert user.name == "admin"

    def test_role_does_not_replace_name(self):
        user, _ = extract_attributes({"db.user": "carol"}, {"enduser.role": "admin"})
        assert user.name == "carol"

    def test_db_user_replaces_role(self):
        user, _ = extract_attributes({"enduser.role": "admin"}, {"db.user": "dave"})
        assert user.name == "dave"

    def test_blank_values_ignored(self):
        user, request = extract_attributes(
            {"enduser.id": "  "}, {"db.user": "", "http.method": " "}
        )
        assert user.is_empty()
        assert request.is_empty()

    def test_non_string_values_ignored(self):
        user, _ = extract_attributes({}, {"enduser.id": 42})
        assert user.is_empty()


class TestSplitBaggage:
    def test_prefixed_attributes_become_baggage(self):
        baggage, tags = split_baggage(
            {
                "bugsnag.baggage.enduser.id": "u-1",
                "http.method": "GET",
            }
        )
        assert baggage == {"enduser.id": "u-1"}
        assert tags == {"http.method": "GET"}

    def test_non_string_baggage_dropped(self):
        baggage, tags = split_baggage({"bugsnag.baggage.count": 3})
        assert baggage == {}
        assert tags == {}
