"""
RestQL API dependency library
"""

import logging
from typing import Generator

import sqlalchemy.exc
from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from . import base
from ..persistence import database
from ..persistence.store import Store
from ..pipeline.descriptors import Registry
from ..schemas import config


def get_session() -> Generator[Session, None, bool]:
    """
    Return a generator to handle database sessions gracefully
    """

    logger = logging.getLogger(__name__)
    session = database.get_new_session()

    try:
        yield session
        session.flush()
    except sqlalchemy.exc.DBAPIError as exc:
        details = (exc.statement or "").replace("\n", "")
        logger.exception(f"{type(exc).__name__}: {exc.orig} @ {details!r}")
        session.rollback()
        raise
    except sqlalchemy.exc.SQLAlchemyError as exc:
        logger.exception(f"{type(exc).__name__}: {str(exc)}")
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
    return True


class MinimalRequestData:
    """
    Collection of minimal dependencies used only for internal functionalities
    """

    def __init__(self, request: Request, response: Response):
        self.request = request
        self.response = response
        self.headers = request.headers

    @property
    def config(self) -> config.CoreConfig:
        settings = getattr(self.request.app.state, "settings", None)
        if settings is None:
            raise base.APIException(status_code=500, detail="app.state.settings", message="Settings are not available")
        return settings


class LocalRequestData(MinimalRequestData):
    """
    Collection of core dependencies used by all resource path operations

    This class stores references to various important objects that
    will almost certainly be used by request handlers (path operations),
    most notably the store adapter bound to the request's database session.
    Note that any dependency added here will be added to the OpenAPI
    definition, if it refers to a Query, Header, Path or Cookie.
    """

    def __init__(
            self,
            request: Request,
            response: Response,
            session: Session = Depends(get_session)
    ):
        super().__init__(request, response)
        self.session: Session = session
        self.registry: Registry = request.app.state.registry
        self.store = Store(session, self.registry, logging.getLogger(__name__))
