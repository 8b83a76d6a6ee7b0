"""
HTTP API for MarketSync.

A thin FastAPI layer over RoomService. Request validation errors and store
failures are mapped to HTTP status codes here and nowhere else.
"""

from .http_server import create_app, status_for

__all__ = ["create_app", "status_for"]
