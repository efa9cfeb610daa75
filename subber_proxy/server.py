import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from subber_proxy.app_proxy.route import build_proxy_router
from subber_proxy.config import ProxyConfig, load_config
from subber_proxy.logging_setup import configure_logging
from subber_proxy.routes import router
from subber_proxy.security_headers import SecurityHeadersMiddleware
from subber_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from subber_proxy.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    Every relayed chunk would otherwise show up as its own span.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


_tracing_configured = False


def parse_otlp_headers(raw: str) -> list[tuple[str, str]]:
    """Split ``OTLP_HEADERS`` ("k1=v1,k2=v2") into the pairs the exporter expects."""
    pairs = []
    for item in raw.split(","):
        name, sep, value = item.partition("=")
        if sep and name.strip():
            pairs.append((name.strip().lower(), value.strip()))
    return pairs


def configure_tracing() -> None:
    """Install the tracer provider once per process."""
    global _tracing_configured
    if _tracing_configured:
        return
    _tracing_configured = True

    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=parse_otlp_headers(OTLP_HEADERS) or None,
        )
        trace.get_tracer_provider().add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )


# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"error": "Not found"})
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def server_error_handler(request: Request, exc: Exception):
    log_exception_with_details(
        logger, f"[Server] {request.method} {request.url.path}:", exc
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Server error", "message": format_exception_message(exc)},
    )


def create_app(
    config: Optional[ProxyConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the proxy application.

    ``transport`` replaces the network transport of the shared outbound
    client; tests use it to stand in for the upstream target.
    """
    config = config or load_config()
    configure_logging(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(config.proxy_timeout),
            follow_redirects=False,
            transport=transport,
        ) as client:
            app.state.http_client = client
            logger.info(f"Proxy server running on port {config.port}")
            logger.info(f"Proxying requests to: {config.target_url}")
            yield

    # The catch-all proxy owns every path, docs included
    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.config = config

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, server_error_handler)

    Instrumentator().instrument(app).expose(app, include_in_schema=False)

    configure_tracing()
    FastAPIInstrumentor.instrument_app(app, excluded_urls="/health,/metrics")

    # Order matters: fixed routes first, the catch-all proxy last
    app.include_router(router)
    if config.proxy_enabled:
        app.include_router(build_proxy_router(config))
    else:
        logger.info("Proxy disabled, unmatched paths answer 404")
    return app


app = create_app()
