"""API routers."""

__all__ = ["session", "stream", "ws_auth"]
