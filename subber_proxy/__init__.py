"""subber-proxy - a single-target inspecting reverse proxy."""

__version__ = "0.1.0"
