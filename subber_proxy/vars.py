import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "subber-proxy")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = os.environ.get("PORT", "3001")

TARGET_URL = os.environ.get("TARGET_URL", "http://localhost:8080")
# Comma separated "match=replacement" pairs, first match wins
PATH_REWRITE = os.environ.get("PATH_REWRITE", "/proxy-server1=/api")
PROXY_TIMEOUT = os.environ.get("PROXY_TIMEOUT", "300")
PROXY_ENABLED = os.environ.get("PROXY_ENABLED", "true").lower() == "true"
CHANGE_ORIGIN = os.environ.get("CHANGE_ORIGIN", "true").lower() == "true"
PROXY_IDENTIFIER = os.environ.get("PROXY_IDENTIFIER", "subber-proxy")
LOG_PREVIEW_LIMIT = os.environ.get("LOG_PREVIEW_LIMIT", "500")

MY_IP_URL = os.environ.get("MY_IP_URL", "https://api.ipify.org?format=json")

APP_ENV = os.environ.get("APP_ENV", os.environ.get("NODE_ENV", "production")).lower()
LOG_LEVEL = os.environ.get("LOG_LEVEL", "")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
