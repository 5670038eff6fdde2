"""
RestQL router modules for handling requests to various endpoints

This module exports the ``router`` object which includes all known
endpoints and path operations. The generic endpoints must be registered
first, since the resource endpoints match any first path segment.
"""

from ._router import router

# The order of the imports defines the order of the endpoints in the OpenAPI documentation
from . import generic, resources, associations
