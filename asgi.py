"""
asgi.py -- ASGI entry point for the ClassSite auth service.

api/main.py assembles the app (lifespan, middleware, routers); this module
only re-exports it so deployment tooling has a stable import path.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
