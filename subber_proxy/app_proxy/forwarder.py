"""
Outbound leg of the proxy: turn an inbound request into the request sent to
the upstream target and dispatch it.

Headers are copied as raw byte pairs so duplicates, order and non-ASCII
values survive, into a new list owned by the outbound request. When the inbound body was JSON it is
re-serialized, so ``Content-Type`` and ``Content-Length`` are rewritten to
match the bytes actually sent. Any other body is forwarded untouched.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx
from fastapi import Request

from subber_proxy.app_proxy.errors import ClientDisconnected, to_proxy_error
from subber_proxy.config import ProxyConfig
from subber_proxy.utils import decode_header_pairs, dump_json, header_pairs_to_dict

logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers describe the inbound connection only (RFC 9110)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

JSON_MEDIA_TYPE = "application/json"


@dataclass(frozen=True)
class OutboundRequest:
    method: str
    url: str
    original_url: str
    headers: tuple[tuple[bytes, bytes], ...]
    content: Optional[bytes] = None
    payload: Any = None


def request_url(request: Request) -> str:
    """
    Path plus query string, as the caller sent it.

    Built from the undecoded ``raw_path`` so escapes such as ``%2F`` or
    ``%23`` reach the upstream unchanged. Bytes outside ASCII are
    percent-encoded, since a URL cannot carry them literally.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = quote(request.scope["path"], safe="/:@!$&'()*+,;=~")
    path = "".join(c if ord(c) < 0x80 else f"%{ord(c):02X}" for c in path)
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


def is_json_content_type(content_type: Optional[str]) -> bool:
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    return media_type == JSON_MEDIA_TYPE or media_type.endswith("+json")


def has_payload(value: Any) -> bool:
    """A parsed body counts as present unless it is missing or an empty object/array."""
    if value is None:
        return False
    if isinstance(value, (dict, list)):
        return len(value) > 0
    return True


async def read_json_body(request: Request) -> Any:
    """
    Parse the request body when it is declared as JSON.

    Returns None for other content types and for blank bodies. Malformed JSON
    raises ``json.JSONDecodeError``.
    """
    if not is_json_content_type(request.headers.get("content-type")):
        return None
    body = await request.body()
    if not body.strip():
        return None
    return json.loads(body)


def serialize_payload(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def target_url_for(config: ProxyConfig, path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return f"{config.target_url}{path}"


async def build_outbound_request(
    request: Request, rewritten_path: str, config: ProxyConfig
) -> OutboundRequest:
    """Derive the upstream request from the inbound one and the rewritten path."""
    payload = await read_json_body(request)
    raw_body = await request.body()
    json_body = is_json_content_type(request.headers.get("content-type"))

    headers: list[tuple[bytes, bytes]] = []
    for name, value in request.headers.raw:
        name_lower = name.decode("latin-1").lower()
        if name_lower in HOP_BY_HOP_HEADERS:
            continue
        if name_lower == "host" and config.change_origin:
            value = config.target_host.encode("latin-1")
        if json_body and name_lower == "content-length":
            continue
        if has_payload(payload) and name_lower == "content-type":
            continue
        headers.append((name, value))

    content: Optional[bytes] = None
    if has_payload(payload):
        content = serialize_payload(payload)
        headers.append((b"content-type", JSON_MEDIA_TYPE.encode("latin-1")))
        headers.append((b"content-length", str(len(content)).encode("latin-1")))
    elif json_body:
        if raw_body:
            headers.append((b"content-length", b"0"))
    elif raw_body:
        content = raw_body

    return OutboundRequest(
        method=request.method,
        url=target_url_for(config, rewritten_path),
        original_url=request_url(request),
        headers=tuple(headers),
        content=content,
        payload=payload if has_payload(payload) else None,
    )


def _drop_client_default_headers(
    upstream_request: httpx.Request, forwarded: tuple[tuple[bytes, bytes], ...]
) -> None:
    # httpx merges its own defaults (user-agent, accept-encoding, ...) into every
    # request; only the headers the caller sent should reach the upstream.
    keep = {name.decode("latin-1").lower() for name, _ in forwarded}
    keep.update({"host", "content-length", "transfer-encoding"})
    for name in list(upstream_request.headers.keys()):
        if name.lower() not in keep:
            del upstream_request.headers[name]


class Forwarder:
    """Dispatches outbound requests to the configured upstream target."""

    def __init__(self, client: httpx.AsyncClient, config: ProxyConfig):
        self.client = client
        self.config = config

    def log_outbound(self, outbound: OutboundRequest) -> None:
        forwarded = header_pairs_to_dict(decode_header_pairs(outbound.headers))
        lines = [
            "=== PROXY REQUEST FORWARDING ===",
            f"Original URL: {outbound.original_url}",
            f"Target URL: {outbound.url}",
            f"Method: {outbound.method}",
            f"Headers being forwarded: {dump_json(forwarded)}",
        ]
        if outbound.payload is not None:
            lines.append(f"Forwarding Payload: {dump_json(outbound.payload)}")
        logger.info("\n".join(lines))

    def build_request(self, outbound: OutboundRequest) -> httpx.Request:
        upstream_request = self.client.build_request(
            outbound.method,
            outbound.url,
            headers=list(outbound.headers),
            content=outbound.content,
        )
        _drop_client_default_headers(upstream_request, outbound.headers)
        return upstream_request

    async def dispatch(
        self,
        outbound: OutboundRequest,
        disconnected: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> httpx.Response:
        """
        Send ``outbound`` and return the upstream response once its headers arrive.

        The body is left unread (``stream=True``); the caller owns closing it.
        Transport failures raise ``ProxyError``. If ``disconnected`` resolves
        first, the in-flight send is cancelled and ``ClientDisconnected`` is
        raised.
        """
        self.log_outbound(outbound)
        upstream_request = self.build_request(outbound)

        sending = asyncio.ensure_future(self.client.send(upstream_request, stream=True))
        watcher = asyncio.ensure_future(disconnected()) if disconnected else None
        try:
            waiting = {sending} if watcher is None else {sending, watcher}
            await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            if not sending.done():
                failure = watcher.exception()
                if failure is not None:
                    raise failure
                raise ClientDisconnected(f"{outbound.method} {outbound.original_url}")
            return sending.result()
        except httpx.HTTPError as exc:
            raise to_proxy_error(exc, outbound.method, outbound.original_url) from exc
        finally:
            if watcher is not None:
                watcher.cancel()
            if not sending.done():
                sending.cancel()
