"""
RestQL core REST API definitions

Every table of the served declarative base is exposed as a resource
at `/{resource}`, its rows at `/{resource}/{id}` and its associations
at `/{resource}/{id}/{association}`. Writes are conflict-aware: unique
constraint violations caused by soft-deleted rows restore those rows,
while violations caused by live rows yield `409` (Conflict) responses.

The API always returns JSON-encoded data. All error responses use the
schema of the `APIError`, which includes the affected resource and the
machine-readable failure reason where applicable. The following `4xx`
error responses are used:

1. `400` (Bad Request) for invalid bodies, invalid queries, batches with
   mismatching attributes and operations unsupported by the association.
2. `404` (Not Found) for unknown resources, rows and associations.
3. `409` (Conflict) for unique constraint violations by live rows and for
   conflicting rows which could not be decoded or have vanished meanwhile.

Searches return at most the configured page size of rows. The `X-Range`
header contains the returned range and the total count of rows. The
status code `206` (Partial Content) indicates that more rows exist.
"""

import logging.config
import contextlib
from typing import Any, Callable, Dict, Optional, Type, Union

import fastapi
from fastapi.exceptions import RequestValidationError, StarletteHTTPException
from fastapi.middleware.cors import CORSMiddleware

from . import base
from .routers import router
from .. import schemas, __version__
from ..persistence import database, models
from ..pipeline.descriptors import Registry
from ..pipeline.errors import RestQLError
from ..schemas import config
from ..settings import Settings


DEFAULT_EXCEPTION_HANDLERS = {
    RestQLError: base.handle_restql_error,
    StarletteHTTPException: base.APIException.handle,
    RequestValidationError: base.handle_request_validation_error,
    Exception: base.handle_generic_exception
}


def _make_app(
        title: str,
        version: str,
        description: str,
        exception_handlers: Optional[Dict[Type[Exception], Callable]] = None,
        root_redirect: bool = True,
        responses: Optional[Dict[Union[int, str], Dict[str, Any]]] = None,
        **kwargs
) -> fastapi.FastAPI:
    app = fastapi.FastAPI(
        title=title,
        version=version,
        description=description,
        responses=responses or {400: {"model": schemas.APIError}},
        **kwargs
    )

    handlers = exception_handlers or DEFAULT_EXCEPTION_HANDLERS
    for exc in handlers:
        app.add_exception_handler(exc, handlers[exc])

    if root_redirect:
        @app.get("/", include_in_schema=False)
        async def redirect_root():
            return fastapi.responses.RedirectResponse("./docs")

    return app


def create_app(
        settings: Optional[config.CoreConfig] = None,
        base_class: Optional[Any] = None,
        configure_logging: bool = True,
        configure_database: bool = True
) -> fastapi.FastAPI:
    """
    Create a new ``FastAPI`` instance using the specified settings and switches

    This function is conveniently used to allow overwriting the settings
    before launching the application as well as to allow multiple ``FastAPI``
    instances in one program, which in turn makes unit testing much easier.

    :param settings: optional settings instance (would be created if not present)
    :param base_class: declarative base of the served models (defaults to the demo models)
    :param configure_logging: switch whether to configure logging
    :param configure_database: switch whether to configure the database
    :return: new ``FastAPI`` instance
    """

    if settings is None:
        settings = Settings()
    if base_class is None:
        base_class = models.Base

    if configure_logging:
        logging.config.dictConfig(settings.logging.model_dump())
    logger = logging.getLogger(__name__)
    logger.debug("Starting application...")

    if configure_database:
        database.init(settings.database.connection, settings.database.debug_sql, metadata=base_class.metadata)

    registry = Registry.from_base(base_class)
    logger.debug(f"Serving {len(registry)} resources: {', '.join(model.name for model in registry)}")

    @contextlib.asynccontextmanager
    async def lifespan(_: fastapi.FastAPI):
        logger.info("Starting API...")
        yield
        logger.info("Shutting down...")

    app = _make_app(
        title="RestQL core REST API",
        version=__version__,
        description=__doc__,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors.origins),
        allow_methods=list(settings.cors.methods),
        allow_headers=list(settings.cors.headers),
        expose_headers=list(settings.cors.expose),
        allow_credentials=settings.cors.credentials,
        max_age=settings.cors.max_age
    )
    app.include_router(router)
    return app


class APIWrapper:
    """
    Wrapper class around the FastAPI main object, accessible via the ``app`` property

    There should be only one global instance of this object, which should only
    export its functionality to hold the ``app`` property. This wrapper can be
    used to allow easy command-line usage via ``uvicorn`` calls. Example:

    .. code-block::

        uvicorn restql_core.api:api.app
    """

    def __init__(self):
        self._app: Optional[fastapi.FastAPI] = None

    def get_app(self) -> fastapi.FastAPI:
        return self.app

    def set_app(self, application: fastapi.FastAPI):
        if not isinstance(application, fastapi.FastAPI):
            raise TypeError
        self._app = application

    @property
    def app(self) -> fastapi.FastAPI:
        """
        Return the ``app`` instance (or create it with default settings if it doesn't exist)
        """

        if self._app is not None:
            return self._app
        self._app = create_app()
        return self._app


api = APIWrapper()
