from typing import Iterable, Optional, Union

from starlette.requests import Request


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value if isinstance(value, bytes) else value.encode("latin-1")


def make_request(
    method: str = "GET",
    path: str = "/",
    headers: Optional[Iterable[tuple[str, Union[str, bytes]]]] = None,
    body: bytes = b"",
    query_string: str = "",
    raw_path: Optional[bytes] = None,
) -> Request:
    """
    Build a real Starlette request whose receive channel yields ``body`` once.

    Header values may be given as bytes to send octets latin-1 cannot spell.
    ``raw_path`` defaults to ``path`` and can be set to the undecoded form.
    """
    raw_headers = [
        (name.lower().encode("latin-1"), _as_bytes(value))
        for name, value in (headers or [])
    ]
    body_sent = False

    async def receive():
        nonlocal body_sent
        if not body_sent:
            body_sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return {"type": "http.disconnect"}

    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.4"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": raw_path if raw_path is not None else path.encode("utf-8"),
        "root_path": "",
        "query_string": query_string.encode("latin-1"),
        "headers": raw_headers,
        "server": ("testserver", 80),
        "client": ("127.0.0.1", 50000),
    }
    return Request(scope, receive)
