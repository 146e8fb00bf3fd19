"""Unit tests for request context extraction and binding."""

import pytest

from secaudit.audit.context import (
    ContextVarProvider,
    NullContextProvider,
    RequestContext,
    context_from_headers,
    extract_client_ip,
    get_request_context,
    is_public_ip,
    request_context,
)
from secaudit.common.exceptions import ContextExtractionError


class TestExtractClientIp:
    """Tests for client IP selection from proxy headers."""

    def test_prefers_first_public_address(self):
        headers = {"X-Forwarded-For": "10.0.0.1, 8.8.8.8, 1.1.1.1"}

        assert extract_client_ip(headers) == "8.8.8.8"

    def test_falls_back_to_first_when_all_private(self):
        headers = {"x-forwarded-for": "10.0.0.1, 192.168.1.5"}

        assert extract_client_ip(headers) == "10.0.0.1"

    def test_header_order(self):
        headers = {"x-real-ip": "1.1.1.1", "x-forwarded-for": "8.8.8.8"}

        assert extract_client_ip(headers) == "8.8.8.8"

    def test_later_header_used_when_earlier_empty(self):
        headers = {"x-forwarded-for": "", "cf-connecting-ip": "9.9.9.9"}

        assert extract_client_ip(headers) == "9.9.9.9"

    def test_forwarded_syntax(self):
        headers = {"Forwarded": 'for="[2001:4860:4860::8888]:443";proto=https'}

        assert extract_client_ip(headers) == "2001:4860:4860::8888"

    def test_strips_ipv4_port(self):
        assert extract_client_ip({"x-client-ip": "8.8.4.4:8080"}) == "8.8.4.4"

    def test_none_without_headers(self):
        assert extract_client_ip({"user-agent": "curl/8.0"}) is None

    @pytest.mark.parametrize("value,expected", [
        ("8.8.8.8", True),
        ("10.0.0.1", False),
        ("127.0.0.1", False),
        ("::1", False),
        ("not-an-ip", False),
    ])
    def test_is_public_ip(self, value, expected):
        assert is_public_ip(value) is expected


class TestContextFromHeaders:
    """Tests for building a RequestContext from a request."""

    def test_reads_request_id_and_user_agent(self):
        context = context_from_headers(
            {"X-Request-ID": "req_from_proxy", "User-Agent": "Mozilla/5.0"},
            session_id="sess_1",
        )

        assert context.request_id == "req_from_proxy"
        assert context.user_agent == "Mozilla/5.0"
        assert context.session_id == "sess_1"

    def test_generates_request_id(self):
        context = context_from_headers({})

        assert context.request_id.startswith("req_")
        assert len(context.request_id) == 16
        assert context.user_agent is None

    def test_client_host_fallback(self):
        context = context_from_headers({}, client_host="203.0.113.9")

        assert context.ip_address == "203.0.113.9"

    def test_proxy_header_beats_client_host(self):
        context = context_from_headers({"x-forwarded-for": "8.8.8.8"}, client_host="10.0.0.2")

        assert context.ip_address == "8.8.8.8"

    def test_unreadable_headers(self):
        with pytest.raises(ContextExtractionError):
            context_from_headers(None)


class TestRequestContextBinding:
    """Tests for the ambient context variable and providers."""

    def test_bound_only_inside_block(self):
        assert get_request_context() is None

        with request_context(ip_address="8.8.8.8", request_id="req_1") as bound:
            assert get_request_context() == bound
            assert ContextVarProvider().current().ip_address == "8.8.8.8"

        assert get_request_context() is None

    def test_nested_blocks_restore_outer(self):
        with request_context(request_id="req_outer"):
            with request_context(request_id="req_inner"):
                assert get_request_context().request_id == "req_inner"
            assert get_request_context().request_id == "req_outer"

    def test_fields_override_base_context(self):
        base = RequestContext(ip_address="8.8.8.8", request_id="req_1")

        with request_context(base, user_id="u1") as bound:
            assert bound.ip_address == "8.8.8.8"
            assert bound.user_id == "u1"

    def test_null_provider(self):
        with request_context(request_id="req_1"):
            assert NullContextProvider().current() is None
