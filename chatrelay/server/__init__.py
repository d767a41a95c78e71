"""HTTP surface: the FastAPI application factory."""

from chatrelay.server.app import create_app

__all__ = ["create_app"]
