"""
RestQL CLI unit tests
"""

import io
import os
import json
import contextlib
import unittest as _unittest

import sqlalchemy

from restql_core import settings as _settings
from restql_core.__main__ import command_functions, get_parser
from restql_core.persistence import database

from . import utils


class StandaloneCLITests(utils.BaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.parser = get_parser("restql_core")

    def _call(self, *args: str) -> str:
        namespace = self.parser.parse_args(list(args))
        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            self.assertEqual(0, command_functions[namespace.command](namespace))
        return output.getvalue()

    def test_parser(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                self.parser.parse_args([])
            with self.assertRaises(SystemExit):
                self.parser.parse_args(["serve"])

        namespace = self.parser.parse_args(["run", "--port", "8080", "--debug", "--no-access-log"])
        self.assertEqual("run", namespace.command)
        self.assertEqual(8080, namespace.port)
        self.assertIsNone(namespace.host)
        self.assertTrue(namespace.debug)
        self.assertFalse(namespace.debug_sql)
        self.assertTrue(namespace.no_access_log)
        self.assertEqual("config.json", namespace.config)
        self.assertEqual("", namespace.root_path)

        namespace = self.parser.parse_args(["resources", "--json", "--indent", "2"])
        self.assertTrue(namespace.json)
        self.assertEqual(2, namespace.indent)

    def test_resources_json(self):
        summaries = {summary["name"]: summary for summary in json.loads(self._call("resources", "--json"))}
        self.assertEqual(6, len(summaries))
        self.assertEqual({"PRIMARY": ["id"], "single_name_per_house": ["house_id", "name"]},
                         summaries["characters"]["unique_indexes"])
        self.assertEqual({"house": "belongsTo"}, summaries["characters"]["associations"])
        self.assertEqual("id", summaries["tags"]["identity_field"])
        self.assertTrue(summaries["tags"]["paranoid"])
        self.assertFalse(summaries["seats"]["paranoid"])

    def test_resources_table(self):
        lines = self._call("resources").splitlines()
        self.assertEqual(8, len(lines))
        self.assertTrue(lines[0].startswith("name"))
        self.assertIn("identity_field", lines[0])
        self.assertTrue(any("tags (belongsToMany)" in line for line in lines[2:]))

    def test_init(self):
        self.assertFalse(os.path.exists(self.config_file))
        output = self._call("init", "--database", self.database_url)
        self.assertTrue(os.path.exists(self.config_file))
        self.assertIn("Done.", output)
        with open(self.config_file) as f:
            self.assertEqual(self.database_url, json.load(f)["database"]["connection"])

        tables = sqlalchemy.inspect(database.get_engine()).get_table_names()
        self.assertTrue({"users", "tags", "user_tags", "houses", "seats", "characters"}.issubset(tables))

        output = self._call("init")
        self.assertIn("config file has been found", output)
        self.assertEqual(self.database_url, _settings.Settings().database.connection)
        database.get_engine().dispose()


if __name__ == '__main__':
    _unittest.main()
