"""
Helper functions to make writing unit tests for the RestQL core easier
"""

import os
import sys
import random
import string
import secrets
import unittest
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

import httpx
import sqlalchemy.orm
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine as _Engine

from restql_core import settings as _settings
from restql_core.api.api import create_app
from restql_core.persistence import database, models
from restql_core.persistence.store import Store
from restql_core.pipeline.descriptors import ModelDescriptor, Registry
from restql_core.schemas import config as _config

from . import conf


class BaseTest(unittest.TestCase):
    """
    A base class for unit tests which introduces simple setup and teardown of unit tests

    If a subclass needs special setup or teardown functionality, it **MUST**
    call the superclasses setup and teardown methods: the superclass setup
    method at the beginning of the subclass setup method, the superclass
    teardown method at the end of the subclass teardown method.
    """

    config_file: Optional[str] = None
    database_url: Optional[str] = None
    _database_file: Optional[str] = None

    def setUp(self) -> None:
        self.config_file = f"config_{os.getpid()}_{secrets.token_hex(8)}.json"
        _settings.CONFIG_PATHS = [self.config_file]
        database.PRINT_SQLITE_WARNING = False

        if conf.DATABASE_URL is not None:
            self.database_url = conf.DATABASE_URL
            return

        self._database_file = conf.DATABASE_DEFAULT_FILE_FORMAT.format(
            os.getpid(),
            "".join([random.choice(string.ascii_lowercase) for _ in range(6)])
        )
        try:
            open(self._database_file, "wb").close()
            os.remove(self._database_file)
            self.database_url = conf.DATABASE_URL_FORMAT.format(self._database_file)

        except OSError as exc:
            self.database_url = conf.DATABASE_FALLBACK_URL
            self._database_file = None
            print(
                f"{exc}: Falling back to in-memory database. This is not recommended!",
                file=sys.stderr
            )

    def tearDown(self) -> None:
        if self._database_file and os.path.exists(self._database_file):
            os.remove(self._database_file)
        if self.config_file and os.path.exists(self.config_file):
            os.remove(self.config_file)


class BasePipelineTests(BaseTest, unittest.IsolatedAsyncioTestCase):
    """
    Base class for tests of the write pipeline against a fresh database per test
    """

    engine: _Engine
    session: sqlalchemy.orm.Session
    registry: Registry
    store: Store

    def setUp(self) -> None:
        super().setUp()
        self.engine = database.make_engine(self.database_url, echo=conf.SQLALCHEMY_ECHOING)
        models.Base.metadata.create_all(bind=self.engine)
        self.session = sqlalchemy.orm.sessionmaker(autoflush=False, bind=self.engine)()
        self.registry = Registry.from_base(models.Base)
        self.store = Store(self.session, self.registry)

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()
        super().tearDown()

    def model(self, name: str) -> ModelDescriptor:
        return self.registry.get(name)

    def count(self, name: str, include_soft_deleted: bool = True) -> int:
        return len(self.store.find_all(self.model(name), [{}], include_soft_deleted=include_soft_deleted))


class BaseAPITests(BaseTest):
    """
    Base class for tests of the REST API using an in-process test client
    """

    config: _config.CoreConfig
    client: TestClient

    def setUp(self) -> None:
        super().setUp()
        self.config = _config.CoreConfig()
        self.config.database.connection = self.database_url
        self.config.database.debug_sql = conf.SQLALCHEMY_ECHOING
        self.client = TestClient(create_app(settings=self.config, configure_logging=False))

    def tearDown(self) -> None:
        self.client.close()
        database.get_engine().dispose()
        super().tearDown()

    def assertQuery(
            self,
            endpoint: Tuple[str, str],
            status_code: Union[int, Iterable[int]] = 200,
            json: Optional[Any] = None,
            r_none: bool = False,
            r_headers: Optional[Union[Mapping, Iterable]] = None,
            r_reason: Optional[str] = None,
            **kwargs
    ) -> httpx.Response:
        """
        Do a query to the specified endpoint and return the response

        :param endpoint: tuple of the method and the path of the endpoint
        :param status_code: asserted status code(s) of the response
        :param json: optional JSON-serializable request data
        :param r_none: switch to expect no (=empty) result
        :param r_headers: optional set of headers which are asserted in the response,
            either an iterable to only assert certain keys or a mapping to also assert values
        :param r_reason: optional asserted failure reason of an error response
        :param kwargs: dict of any further keyword arguments, passed to ``TestClient.request``
        :return: response to the requested resource
        """

        method, path = endpoint
        response = self.client.request(method.upper(), path, json=json, **kwargs)

        if isinstance(status_code, int):
            self.assertEqual(status_code, response.status_code, response.text)
        else:
            self.assertIn(response.status_code, status_code, response.text)

        if r_headers is not None:
            for k in (r_headers.keys() if isinstance(r_headers, Mapping) else r_headers):
                self.assertIsNotNone(response.headers.get(k), response.headers)
                if isinstance(r_headers, Mapping):
                    self.assertEqual(r_headers[k], response.headers.get(k), response.headers)

        if r_none:
            self.assertEqual("", response.text)
        if r_reason is not None:
            self.assertEqual(r_reason, response.json()["reason"], response.text)
        return response
