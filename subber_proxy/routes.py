import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from subber_proxy.app_proxy.request_logger import log_incoming_request

router = APIRouter(dependencies=[Depends(log_incoming_request)])
logger = logging.getLogger("uvicorn.error")


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with milliseconds and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@router.get("/health")
async def health():
    return JSONResponse(status_code=200, content={"status": "ok", "timestamp": utc_timestamp()})


@router.get("/")
async def root():
    return JSONResponse(status_code=200, content={"message": "Proxy server is running"})


@router.get("/my-ip")
async def my_ip(request: Request):
    """Report the address this server uses for outbound calls, as seen by a public echo service."""
    config = request.app.state.config
    client = request.app.state.http_client
    response = await client.get(config.my_ip_url)
    logger.debug(f"[MyIP] {config.my_ip_url} answered {response.status_code}")
    return Response(
        content=response.content,
        status_code=200,
        media_type=response.headers.get("content-type"),
    )
