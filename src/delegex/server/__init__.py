"""Delegex HTTP server (FastAPI)."""

from delegex.server.app import create_app
from delegex.server.config import Settings

__all__ = ["create_app", "Settings"]
