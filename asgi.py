"""
asgi.py -- ASGI entry point for PersonaHub.

Run with:  uvicorn asgi:app --reload

api/main.py owns the application; this module only exposes it under the
conventional name so process managers do not need to know the package layout.
"""

from api.main import app

__all__ = ["app"]
