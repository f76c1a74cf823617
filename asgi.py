"""
asgi.py -- ASGI entry point.

The page-rendering service runs behind this app; everything it needs from the
auth core (the route gate, the session cookies, the JSON auth API) is already
assembled in api/main.py.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
