# Ensure tests import the package from this checkout first, so
# `import subber_proxy.*` works without an editable install.
import contextlib
import logging
import os
import sys

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from subber_proxy.app_proxy.rewrite import RewriteRule  # noqa: E402
from subber_proxy.config import ProxyConfig  # noqa: E402

TEST_TARGET_URL = "http://upstream.test:8080"


@pytest.fixture
def proxy_config():
    return ProxyConfig(
        target_url=TEST_TARGET_URL,
        rewrite_rules=(RewriteRule("/proxy-server1", "/api"),),
        proxy_timeout=5.0,
    )


@pytest.fixture
def proxy_logs(caplog):
    """caplog wired to the "uvicorn.error" logger used throughout the proxy."""
    uvicorn_logger = logging.getLogger("uvicorn.error")
    orig_propagate = uvicorn_logger.propagate
    uvicorn_logger.propagate = True
    try:
        with caplog.at_level(logging.DEBUG, logger="uvicorn.error"):
            yield caplog
    finally:
        uvicorn_logger.propagate = orig_propagate


@pytest.fixture
def make_client(proxy_config):
    """
    Factory for a TestClient whose upstream is answered by ``handler``.

    ``handler`` follows httpx.MockTransport: it receives the outbound
    httpx.Request and returns an httpx.Response (sync or async).
    """
    from subber_proxy.server import create_app

    with contextlib.ExitStack() as stack:

        def _make(handler=None, config=None, raise_server_exceptions=False):
            transport = httpx.MockTransport(handler) if handler is not None else None
            app = create_app(config or proxy_config, transport=transport)
            return stack.enter_context(
                TestClient(app, raise_server_exceptions=raise_server_exceptions)
            )

        yield _make
