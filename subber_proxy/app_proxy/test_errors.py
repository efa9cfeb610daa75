import json
import socket

import httpx
import pytest

from subber_proxy.app_proxy.errors import (
    ProxyError,
    ProxyErrorKind,
    classify_transport_error,
    proxy_error_response,
    to_proxy_error,
)


class TestClassifyTransportError:
    def test_dns_failure_from_gaierror_context(self):
        try:
            try:
                raise socket.gaierror(-3, "Try again later")
            except socket.gaierror as inner:
                raise httpx.ConnectError("connect failed") from inner
        except httpx.ConnectError as exc:
            assert classify_transport_error(exc) == ProxyErrorKind.DNS_FAILURE

    @pytest.mark.parametrize(
        "message",
        [
            "[Errno 8] nodename nor servname provided, or not known",
            "[Errno -3] Temporary failure in name resolution",
            "[Errno 11001] getaddrinfo failed",
        ],
    )
    def test_dns_failure_messages(self, message):
        assert classify_transport_error(httpx.ConnectError(message)) == ProxyErrorKind.DNS_FAILURE

    def test_connection_refused(self):
        exc = httpx.ConnectError("[Errno 111] Connection refused")
        assert classify_transport_error(exc) == ProxyErrorKind.CONNECTION_REFUSED

    @pytest.mark.parametrize(
        "exc",
        [httpx.ReadTimeout("x"), httpx.WriteTimeout("x"), httpx.PoolTimeout("x"), httpx.ConnectTimeout("x")],
    )
    def test_timeouts(self, exc):
        assert classify_transport_error(exc) == ProxyErrorKind.TIMEOUT

    @pytest.mark.parametrize(
        "exc",
        [httpx.RemoteProtocolError("bad status line"), httpx.LocalProtocolError("x"), httpx.UnsupportedProtocol("ftp")],
    )
    def test_protocol_errors(self, exc):
        assert classify_transport_error(exc) == ProxyErrorKind.PROTOCOL_ERROR

    def test_anything_else_is_unknown(self):
        assert classify_transport_error(RuntimeError("boom")) == ProxyErrorKind.UNKNOWN


class TestProxyErrorResponse:
    def test_maps_every_kind_to_500(self, proxy_logs):
        for kind in ProxyErrorKind:
            error = ProxyError(kind, "POST", "/proxy-server1/x", "it broke")
            response = proxy_error_response(error)
            assert response.status_code == 500
            assert json.loads(response.body) == {"error": "Proxy error", "message": "it broke"}

    def test_logs_request_and_kind(self, proxy_logs):
        cause = httpx.ConnectError("[Errno 111] Connection refused")
        error = to_proxy_error(cause, "GET", "/proxy-server1/users?id=1")

        proxy_error_response(error)

        record = next(r for r in proxy_logs.records if "[Proxy] Error" in r.message)
        assert "GET /proxy-server1/users?id=1" in record.message
        assert "connection-refused" in record.message
        assert "Connection refused" in record.message
        assert record.exc_info is not None

    def test_empty_messages_fall_back_to_type_name(self):
        error = to_proxy_error(httpx.ReadTimeout(""), "GET", "/x")
        assert error.message == "ReadTimeout"
        assert error.kind == ProxyErrorKind.TIMEOUT
