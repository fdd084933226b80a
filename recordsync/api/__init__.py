"""
HTTP surface for recordsync.

A thin FastAPI layer over SyncService. All semantics live in the core;
routes only translate requests and responses.
"""

from .http_server import create_app

__all__ = ["create_app"]
