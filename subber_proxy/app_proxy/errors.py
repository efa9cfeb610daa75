import logging
import socket
from enum import Enum

import httpx
from fastapi.responses import JSONResponse

from subber_proxy.utils.exception_logging import format_exception_message

logger = logging.getLogger("uvicorn.error")

_DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
)


class ProxyErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection-refused"
    DNS_FAILURE = "dns-failure"
    PROTOCOL_ERROR = "protocol-error"
    UNKNOWN = "unknown"


class ProxyError(Exception):
    """The upstream target could not produce a response for a forwarded request."""

    def __init__(self, kind: ProxyErrorKind, method: str, path: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.method = method
        self.path = path
        self.message = message


class ClientDisconnected(Exception):
    """The caller went away before the upstream answered."""


def _is_dns_failure(exc: BaseException) -> bool:
    seen = set()
    current = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return True
        if any(marker in str(current).lower() for marker in _DNS_FAILURE_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def classify_transport_error(exc: BaseException) -> ProxyErrorKind:
    """Map an httpx failure onto the proxy error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return ProxyErrorKind.TIMEOUT
    if isinstance(exc, httpx.ConnectError):
        if _is_dns_failure(exc):
            return ProxyErrorKind.DNS_FAILURE
        return ProxyErrorKind.CONNECTION_REFUSED
    if isinstance(exc, (httpx.ProtocolError, httpx.UnsupportedProtocol)):
        return ProxyErrorKind.PROTOCOL_ERROR
    return ProxyErrorKind.UNKNOWN


def to_proxy_error(exc: BaseException, method: str, path: str) -> ProxyError:
    error = ProxyError(
        classify_transport_error(exc), method, path, format_exception_message(exc)
    )
    error.__cause__ = exc
    return error


def proxy_error_response(error: ProxyError) -> JSONResponse:
    """
    Log a forwarding failure and answer the caller with a terminal 500.

    The error kind only shows up in the logs; every kind produces the same
    status and body.
    """
    logger.error(
        f"[Proxy] Error for {error.method} {error.path} ({error.kind.value}): {error.message}",
        exc_info=error.__cause__ or error,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Proxy error", "message": error.message},
    )
