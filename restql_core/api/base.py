"""
RestQL REST API base library
"""

import time
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError, StarletteHTTPException
from fastapi.responses import JSONResponse

from .. import schemas
from ..pipeline.errors import RestQLError


logger = logging.getLogger(__name__)

startup = time.time()


async def handle_generic_exception(request: Request, _: Exception):
    logger.exception("Unhandled exception caught in base exception handler!")
    status_code = 500
    msg = "Unexpected server error. The requested action wasn't completed successfully."

    return JSONResponse(jsonable_encoder(schemas.APIError(
        status=status_code,
        method=request.method,
        request=request.url.path,
        repeat=False,
        message=msg,
        details=""
    )), status_code=status_code)


async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    status_code = 400
    msgs = "\n".join(["\t" + error["msg"] for error in exc.errors()])
    message = f"Failed to process the request:\n{msgs}"

    return JSONResponse(jsonable_encoder(schemas.APIError(
        status=status_code,
        method=request.method,
        request=request.url.path,
        repeat=False,
        message=message,
        details=str(exc.errors())
    )), status_code=status_code)


async def handle_restql_error(request: Request, exc: RestQLError):
    """
    Render errors of the write pipeline with the status code of their class
    """

    status_code = exc.status_code
    if status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc} @ '{request.method} {request.url.path}'")
    else:
        logger.debug(f"{type(exc).__name__}: {exc} @ '{request.method} {request.url.path}'")

    return JSONResponse(jsonable_encoder(schemas.APIError(
        status=status_code,
        method=request.method,
        request=request.url.path,
        repeat=False,
        message=f"{exc.resource}: {exc.reason.value}",
        details=exc.detail or "",
        resource=exc.resource,
        reason=exc.reason.name
    )), status_code=status_code)


class APIException(HTTPException):
    """
    Base class for any kind of generic API exception
    """

    def __init__(
            self,
            status_code: int,
            detail: str,
            repeat: bool = False,
            message: Optional[str] = None,
            headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.repeat = repeat
        self.message = message

    @classmethod
    async def handle(cls, request: Request, exc: StarletteHTTPException) -> Response:
        """
        Handle exceptions in a generic way to produce APIError models
        """

        status_code = getattr(exc, "status_code", 500)
        repeat = getattr(exc, "repeat", False)
        message = getattr(exc, "message", None) or exc.__class__.__name__

        if not isinstance(exc, StarletteHTTPException):
            logger.error("Invalid exception class for base handler")

        logger.debug(
            f"{type(exc).__name__}: {message} @ '{request.method} "
            f"{request.url.path}' (details: {exc.detail})"
        )
        return JSONResponse(jsonable_encoder(schemas.APIError(
            status=status_code,
            method=request.method,
            request=request.url.path,
            repeat=repeat,
            message=message,
            details=str(exc.detail)
        )), status_code=status_code, headers=getattr(exc, "headers", None))
