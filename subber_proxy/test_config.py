import importlib
import logging

import pytest

import subber_proxy.vars as vars_module
from subber_proxy.app_proxy.rewrite import RewriteRule
from subber_proxy.config import ProxyConfig, load_config

ENV_NAMES = (
    "PORT",
    "HOST",
    "TARGET_URL",
    "PATH_REWRITE",
    "PROXY_TIMEOUT",
    "PROXY_ENABLED",
    "CHANGE_ORIGIN",
    "PROXY_IDENTIFIER",
    "LOG_PREVIEW_LIMIT",
    "MY_IP_URL",
    "APP_ENV",
    "NODE_ENV",
    "LOG_LEVEL",
)


@pytest.fixture
def environ(monkeypatch):
    """Set variables, reload ``vars`` and restore it afterwards."""
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)

    def _set(**values):
        for name, value in values.items():
            monkeypatch.setenv(name, value)
        importlib.reload(vars_module)

    yield _set
    monkeypatch.undo()
    importlib.reload(vars_module)


def test_defaults(environ):
    environ()

    config = load_config()

    assert config.port == 3001
    assert config.host == "0.0.0.0"
    assert config.target_url == "http://localhost:8080"
    assert config.rewrite_rules == (RewriteRule("/proxy-server1", "/api"),)
    assert config.proxy_timeout == 300.0
    assert config.proxy_enabled is True
    assert config.change_origin is True
    assert config.proxy_identifier == "subber-proxy"
    assert config.preview_limit == 500
    assert config.log_level == logging.INFO


def test_values_from_environment(environ):
    environ(
        PORT="4000",
        TARGET_URL="https://api.example.com/",
        PATH_REWRITE="^/svc=/v2,/old=",
        PROXY_TIMEOUT="2.5",
        PROXY_ENABLED="false",
        CHANGE_ORIGIN="FALSE",
        PROXY_IDENTIFIER="edge-1",
        LOG_PREVIEW_LIMIT="80",
    )

    config = load_config()

    assert config.port == 4000
    assert config.target_url == "https://api.example.com"
    assert config.target_host == "api.example.com"
    assert config.rewrite_rules == (RewriteRule("/svc", "/v2"), RewriteRule("/old", ""))
    assert config.proxy_timeout == 2.5
    assert config.proxy_enabled is False
    assert config.change_origin is False
    assert config.proxy_identifier == "edge-1"
    assert config.preview_limit == 80


def test_node_env_development_enables_debug(environ):
    environ(NODE_ENV="development")

    config = load_config()

    assert config.log_level == logging.DEBUG


def test_app_env_takes_precedence(environ):
    environ(NODE_ENV="development", APP_ENV="production")

    assert load_config().log_level == logging.INFO


def test_explicit_log_level(environ):
    environ(NODE_ENV="development", LOG_LEVEL="warning")

    assert load_config().log_level == logging.WARNING


@pytest.mark.parametrize(
    "name, value",
    [("PORT", "http"), ("PROXY_TIMEOUT", "soon"), ("LOG_PREVIEW_LIMIT", "1.5")],
)
def test_invalid_numbers_name_the_variable(environ, name, value):
    environ(**{name: value})

    with pytest.raises(ValueError, match=name):
        load_config()


def test_invalid_log_level(environ):
    environ(LOG_LEVEL="chatty")

    with pytest.raises(ValueError, match="LOG_LEVEL"):
        load_config()


def test_invalid_rewrite_rule(environ):
    environ(PATH_REWRITE="/no-equals-sign")

    with pytest.raises(ValueError):
        load_config()


def test_target_url_trailing_slash_is_trimmed():
    assert ProxyConfig(target_url="http://host:9000///").target_url == "http://host:9000"
