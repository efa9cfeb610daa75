"""
Return leg of the proxy: relay the upstream response to the caller while
keeping a copy of the body for the diagnostic log.

The copy is taken by ``TeeSend``, a decorator around the ASGI ``send``
callable. Each message goes to the caller first and only then into the
``BodyCapture`` buffer, so logging never holds back bytes. The body is read
with ``aiter_raw`` and relayed exactly as received, compressed or not.
"""

import json
import logging

import anyio
import httpx
from fastapi.responses import StreamingResponse
from starlette.types import Message, Receive, Scope, Send

from subber_proxy.utils import decode_header_pairs, dump_json, header_pairs_to_dict, preview_text
from subber_proxy.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

PROVENANCE_HEADER = "x-proxied-by"

# Framing of the upstream connection; the server frames the relayed body itself
RESPONSE_HOP_BY_HOP_HEADERS = {
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


def log_upstream_response(response: httpx.Response) -> None:
    logger.info(
        "\n".join(
            [
                "=== PROXY RESPONSE RECEIVED ===",
                f"Status: {response.status_code} {response.reason_phrase}",
                f"Response Headers: "
                f"{dump_json(header_pairs_to_dict(decode_header_pairs(response.headers.raw)))}",
            ]
        )
    )


def relay_headers(response: httpx.Response, identifier: str) -> list[tuple[bytes, bytes]]:
    """
    Upstream headers to send to the caller, plus the provenance marker.

    Values stay as the raw bytes received; names are lower-cased as ASGI expects.
    """
    headers = []
    for name, value in response.headers.raw:
        name = name.lower()
        name_text = name.decode("latin-1")
        if name_text in RESPONSE_HOP_BY_HOP_HEADERS or name_text == PROVENANCE_HEADER:
            continue
        headers.append((name, value))
    headers.append((PROVENANCE_HEADER.encode("latin-1"), identifier.encode("utf-8")))
    return headers


class BodyCapture:
    """In-memory copy of a relayed body, logged once the body is complete."""

    def __init__(self, preview_limit: int = 500):
        self.preview_limit = preview_limit
        self.finalized = False
        self._chunks: list[bytes] = []

    def write(self, chunk: bytes) -> None:
        if chunk:
            self._chunks.append(chunk)

    @property
    def body(self) -> bytes:
        return b"".join(self._chunks)

    def finalize(self) -> None:
        if self.finalized:
            return
        self.finalized = True

        body = self.body
        if not body:
            logger.info("Response Data: (empty)")
            return
        try:
            parsed = json.loads(body)
        except ValueError:
            logger.info(f"Response Data (raw): {preview_text(body, self.preview_limit)}")
            return
        logger.info(f"Response Data: {dump_json(parsed)}")


class TeeSend:
    """ASGI ``send`` that duplicates response body bytes into a ``BodyCapture``."""

    def __init__(self, send: Send, capture: BodyCapture):
        self._send = send
        self.capture = capture

    async def __call__(self, message: Message) -> None:
        await self._send(message)
        if message["type"] != "http.response.body":
            return
        self.capture.write(message.get("body", b""))
        if not message.get("more_body", False):
            self.capture.finalize()


class RelayResponse(StreamingResponse):
    """
    Streams an upstream ``httpx.Response`` to the caller unchanged.

    The upstream response is closed when relaying ends for any reason,
    including the caller hanging up. A failure while reading the upstream
    body is logged and re-raised; by then the status line has been sent, so
    the server drops the connection instead of appending an error payload.
    """

    def __init__(
        self,
        upstream: httpx.Response,
        headers: list[tuple[bytes, bytes]],
        capture: BodyCapture,
        label: str = "",
    ):
        self.upstream = upstream
        self.capture = capture
        self.label = label
        super().__init__(self._relay_body(), status_code=upstream.status_code)
        self.raw_headers.extend(headers)

    async def _relay_body(self):
        try:
            async for chunk in self.upstream.aiter_raw():
                yield chunk
        except httpx.HTTPError as exc:
            log_exception_with_details(
                logger, f"[Proxy] Upstream body interrupted for {self.label}:", exc
            )
            raise

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, TeeSend(send, self.capture))
        finally:
            with anyio.CancelScope(shield=True):
                await self.upstream.aclose()


def relay_response(
    upstream: httpx.Response, identifier: str, preview_limit: int, label: str = ""
) -> RelayResponse:
    log_upstream_response(upstream)
    return RelayResponse(
        upstream,
        relay_headers(upstream, identifier),
        BodyCapture(preview_limit),
        label=label,
    )
