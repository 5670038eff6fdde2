#!/usr/bin/env python3

import sys
import argparse
import logging.config
from typing import List, Optional
from collections import OrderedDict

try:
    import ujson as json
except ImportError:
    import json

import uvicorn

from restql_core import settings as _settings
from restql_core.api.api import create_app
from restql_core.api.helpers import summarize_resource
from restql_core.persistence import database, models
from restql_core.pipeline.descriptors import Registry


def get_parser(program: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=program)

    commands = parser.add_subparsers(
        description="Available sub-commands: init, resources, run",
        dest="command",
        required=True,
        metavar="<command>",
        help="the sub-command to be executed"
    )

    parser_init = commands.add_parser(
        "init",
        description="Initialize the project by creating the config file and the database tables"
    )
    parser_resources = commands.add_parser(
        "resources",
        description="Show the served resources with their unique indexes and associations"
    )
    parser_run = commands.add_parser(
        "run",
        description="Run 'uvicorn' ASGI server to serve the RestQL core REST API"
    )

    parser_init.add_argument(
        "--database",
        type=str,
        metavar="url",
        help="Database connection URL including scheme and auth"
    )
    parser_init.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file"
    )

    parser_resources.add_argument(
        "--json",
        action="store_true",
        help="Print the result in JSON format instead of human-readable text"
    )
    parser_resources.add_argument(
        "--indent",
        type=int,
        metavar="n",
        help="(JSON-only) Indent the JSON response with n spaces (default: none)"
    )

    parser_run.add_argument(
        "--host",
        type=str,
        metavar="host",
        help="Bind TCP socket to this host (overwrite config)"
    )
    parser_run.add_argument(
        "--port",
        type=int,
        metavar="port",
        help="Bind TCP socket to this port (overwrite config)"
    )
    parser_run.add_argument(
        "--config",
        type=str,
        metavar="config",
        default="config.json",
        help="Overwrite the config file (defaults to 'config.json')"
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging of all loggers and handlers"
    )
    parser_run.add_argument(
        "--debug-sql",
        action="store_true",
        help="Enable echoing of database actions (overwrites config)"
    )
    parser_run.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload"
    )
    parser_run.add_argument(
        "--workers",
        type=int,
        default=None,
        metavar="n",
        help="Number of worker processes (not valid with --reload)",
    )
    parser_run.add_argument(
        "--no-access-log",
        action="store_true",
        help="Disable access logs"
    )
    parser_run.add_argument(
        "--root-path",
        type=str,
        default="",
        metavar="p",
        help="Sub-mount the application below the given path"
    )

    return parser


def run_server(args: argparse.Namespace) -> int:
    _settings.CONFIG_PATHS.insert(0, args.config)
    try:
        settings = _settings.Settings()
    except ValueError:
        print("Ensure that the configuration file is valid. Please correct any errors.", file=sys.stderr)
        raise

    if args.debug:
        settings.logging.root["level"] = "DEBUG"
        for handler in settings.logging.handlers:
            settings.logging.handlers[handler]["level"] = "DEBUG"
    if args.debug_sql:
        settings.database.debug_sql = args.debug_sql

    port = args.port
    if port is None:
        port = settings.server.port
    host = args.host
    if host is None:
        host = settings.server.host

    app = create_app(settings=settings)

    logging.getLogger("restql_core").info(f"Server running at host {host} port {port}")
    uvicorn.run(
        "restql_core.api:api.app" if args.reload else app,
        port=port,
        host=host,
        reload=args.reload,
        workers=args.workers,
        log_level="debug" if args.debug else "info",
        log_config=settings.logging.model_dump(),
        access_log=not args.no_access_log,
        proxy_headers=True,
        root_path=args.root_path
    )
    return 0


def init_project(args: argparse.Namespace) -> int:
    if _settings.read_settings_from_file() and not args.force:
        print(
            "A config file has been found and will be used. If you want a fresh configuration, "
            "remove the config file or use the '--force' flag, then run this command again."
        )
        settings = _settings.Settings()
    else:
        conf = _settings.get_default_core_config(_settings.get_db_from_env(args.database))
        _settings.store_configuration(conf)
        print(f"A new config file has been created as {_settings.CONFIG_PATHS[0]!r}.")
        settings = _settings.Settings()

    database.init(settings.database.connection, settings.database.debug_sql, metadata=models.Base.metadata)
    print("Done.")
    return 0


def print_table(objs: List[dict], keys: Optional[List[str]] = None):
    info = OrderedDict()
    if keys:
        for k in keys:
            info[k] = len(k)
    for obj in objs:
        for key in obj:
            if keys and key not in keys:
                continue
            if key not in info:
                info[key] = len(key)
            info[key] = max(len(str(obj.get(key))), info.get(key))
    print(" | ".join([f"{k:<{info[k]}}" for k in info]))
    print("-+-".join(["-" * info[k] for k in info]))
    for obj in objs:
        print(" | ".join([f"{obj[k]!s:<{info[k]}}" for k in info]))


def show_resources(args: argparse.Namespace) -> int:
    summaries = [summarize_resource(model).model_dump() for model in Registry.from_base(models.Base)]
    if args.json:
        print(json.dumps(summaries, indent=args.indent or 0))
        return 0

    for summary in summaries:
        summary["unique_indexes"] = ", ".join(summary["unique_indexes"])
        summary["associations"] = ", ".join(f"{k} ({v})" for k, v in summary["associations"].items())
    print_table(summaries, ["name", "paranoid", "identity_field", "unique_indexes", "associations"])
    return 0


command_functions = {
    "init": init_project,
    "resources": show_resources,
    "run": run_server
}


if __name__ == '__main__':
    program_name = sys.argv[0] if not sys.argv[0].endswith("__main__.py") else "restql_core"
    namespace = get_parser(program_name).parse_args(sys.argv[1:])
    exit(command_functions[namespace.command](namespace))
