"""
asgi.py -- ASGI entry point for CloudScan.

Run with:  uvicorn asgi:app --reload

The API has no server-rendered UI; api/main.py is the whole application.
Deployments point their ASGI server at this module so the import path stays
stable if a UI layer is mounted here later.
"""

from api.main import app

__all__ = ["app"]
