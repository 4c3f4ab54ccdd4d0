"""
asgi.py -- ASGI entry point for the Batchmates auth service.

api/main.py builds the app; this module only re-exports it so process
managers have a stable import path that does not depend on the api/ layout.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
