import logging

import anyio
import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from opentelemetry import trace

from subber_proxy.app_proxy.errors import ClientDisconnected, ProxyError, proxy_error_response
from subber_proxy.app_proxy.forwarder import Forwarder, build_outbound_request, request_url
from subber_proxy.app_proxy.relay import relay_response
from subber_proxy.app_proxy.request_logger import log_incoming_request
from subber_proxy.app_proxy.rewrite import rewrite_path
from subber_proxy.config import ProxyConfig

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# nginx convention for "client closed request"; never actually seen by the caller
CLIENT_CLOSED_REQUEST = 499


async def wait_for_disconnect(request: Request) -> None:
    """Resolve once the caller drops the connection. Call only after the body is read."""
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def forward_to_target(
    request: Request, config: ProxyConfig, client: httpx.AsyncClient
) -> Response:
    """
    Proxy one request: rewrite the path, dispatch upstream, then relay the
    response or map the failure to a 500.
    """
    original_url = request_url(request)
    rewritten_url = rewrite_path(original_url, config.rewrite_rules)

    with tracer.start_as_current_span("proxy_request") as span:
        outbound = await build_outbound_request(request, rewritten_url, config)
        span.set_attribute("proxy.target_url", outbound.url)
        span.set_attribute("proxy.method", outbound.method)

        logger.debug(f"Proxying {request.method} {original_url} -> {outbound.url}")

        forwarder = Forwarder(client, config)
        try:
            upstream = await forwarder.dispatch(
                outbound, disconnected=lambda: wait_for_disconnect(request)
            )
        except ProxyError as error:
            span.set_attribute("proxy.error", error.kind.value)
            return proxy_error_response(error)
        except ClientDisconnected:
            logger.warning(
                f"[Proxy] Caller disconnected, abandoned {request.method} {original_url}"
            )
            span.set_attribute("proxy.error", "client_disconnected")
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        span.set_attribute("proxy.status_code", upstream.status_code)
        try:
            return relay_response(
                upstream,
                config.proxy_identifier,
                config.preview_limit,
                label=f"{request.method} {original_url}",
            )
        except Exception:
            # The relay owns closing the upstream only once it exists
            with anyio.CancelScope(shield=True):
                await upstream.aclose()
            raise


def build_proxy_router(config: ProxyConfig) -> APIRouter:
    """Catch-all router forwarding every path to the upstream target."""
    router = APIRouter(dependencies=[Depends(log_incoming_request)])

    @router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def proxy_all(request: Request, path: str):
        """Catch-all route that proxies all requests to the target server."""
        return await forward_to_target(request, config, request.app.state.http_client)

    return router
