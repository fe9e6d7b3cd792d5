"""
asgi.py -- Application assembly for Signet.

The ASGI entry point uvicorn loads. api/main.py owns the app; this module only
exposes it under a stable import path so deployment config never needs to
know the package layout.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
