"""Immutable process configuration, built once at startup from ``vars``."""

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

from subber_proxy import vars as env
from subber_proxy.app_proxy.rewrite import RewriteRule, parse_rewrite_rules


@dataclass(frozen=True)
class ProxyConfig:
    target_url: str = "http://localhost:8080"
    rewrite_rules: tuple[RewriteRule, ...] = (RewriteRule("/proxy-server1", "/api"),)
    proxy_timeout: float = 300.0
    proxy_enabled: bool = True
    change_origin: bool = True
    proxy_identifier: str = "subber-proxy"
    preview_limit: int = 500
    my_ip_url: str = "https://api.ipify.org?format=json"
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: int = logging.INFO

    def __post_init__(self):
        # Normalise so that target_url + path never yields a double slash
        object.__setattr__(self, "target_url", self.target_url.rstrip("/"))

    @property
    def target_host(self) -> str:
        return urlparse(self.target_url).netloc


def _parse_number(name: str, raw: str, kind):
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(f"{name} must be a {kind.__name__}, got {raw!r}") from None


def _resolve_log_level(development: bool) -> int:
    if env.LOG_LEVEL:
        level = logging.getLevelName(env.LOG_LEVEL.upper())
        if not isinstance(level, int):
            raise ValueError(f"LOG_LEVEL is not a logging level: {env.LOG_LEVEL!r}")
        return level
    return logging.DEBUG if development else logging.INFO


def load_config() -> ProxyConfig:
    """Build the configuration from the process environment."""
    development = env.APP_ENV == "development"
    return ProxyConfig(
        target_url=env.TARGET_URL,
        rewrite_rules=parse_rewrite_rules(env.PATH_REWRITE),
        proxy_timeout=_parse_number("PROXY_TIMEOUT", env.PROXY_TIMEOUT, float),
        proxy_enabled=env.PROXY_ENABLED,
        change_origin=env.CHANGE_ORIGIN,
        proxy_identifier=env.PROXY_IDENTIFIER,
        preview_limit=_parse_number("LOG_PREVIEW_LIMIT", env.LOG_PREVIEW_LIMIT, int),
        my_ip_url=env.MY_IP_URL,
        host=env.HOST,
        port=_parse_number("PORT", env.PORT, int),
        log_level=_resolve_log_level(development),
    )
