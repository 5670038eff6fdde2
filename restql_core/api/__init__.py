"""
RestQL REST API

The ``api`` object wraps the FastAPI application for command-line
usage with ``uvicorn restql_core.api:api.app``.
"""

from .api import api, create_app
