import logging

from fastapi import Request

from subber_proxy.app_proxy.forwarder import has_payload, read_json_body, request_url
from subber_proxy.utils import decode_header_pairs, dump_json, header_pairs_to_dict

logger = logging.getLogger("uvicorn.error")


async def log_incoming_request(request: Request) -> None:
    """Router dependency that dumps every inbound request before it is handled."""
    try:
        payload = await read_json_body(request)
    except ValueError:
        # Malformed JSON is reported by whichever handler consumes the body
        payload = None

    lines = [
        "=== INCOMING REQUEST ===",
        f"Method: {request.method}",
        f"URL: {request_url(request)}",
        f"Headers: {dump_json(header_pairs_to_dict(decode_header_pairs(request.headers.raw)))}",
    ]
    if has_payload(payload):
        lines.append(f"Request Payload: {dump_json(payload)}")
    elif request.method not in ("GET", "HEAD"):
        lines.append("Request Payload: (empty or not JSON)")
    logger.info("\n".join(lines))
