"""
RestQL core settings provider
"""

import os
import sys
import functools
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

try:
    import ujson as json
except ImportError:
    import json

from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .schemas import config


SETTINGS_CREATE_NONEXISTENT: bool = False
"""
switch to create a new configuration file if no existing file has been found
"""

SETTINGS_EXIT_ON_ERROR: bool = False
"""
switch to call ``exit(1)`` for failed config loading (use all defaults otherwise)
"""

SETTINGS_LOG_ERROR_FUNCTION: Optional[Callable[[str], Any]] = functools.partial(print, file=sys.stderr)
"""
optional function to accept log messages on failure
"""

SETTINGS_LOG_INFO_FUNCTION: Optional[Callable[[str], Any]] = None
"""
optional function to accept log messages when creating a new configuration file
"""

CONFIG_PATHS: List[str] = ["config.json", os.path.join("..", "config.json")]
"""
list of search paths for the config file, can be overwritten by the env variable ``CONFIG_PATH``
"""

if os.environ.get("CONFIG_PATH"):
    CONFIG_PATHS = [os.environ.get("CONFIG_PATH")]


def get_db_from_env(db_override: Optional[str] = None) -> Optional[str]:
    if db_override:
        return db_override
    return os.environ.get("DATABASE_CONNECTION", os.environ.get("DATABASE__CONNECTION", None))


class JsonFileSettingsSource(PydanticBaseSettingsSource):
    """
    Settings source reading the first existing JSON config file of ``CONFIG_PATHS``
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return read_settings_from_file().get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        return read_settings_from_file()


class Settings(BaseSettings, config.CoreConfig):
    """
    RestQL core settings

    Do not change most of the settings at runtime, since this might lead to unspecified
    behavior. Always restart the server after changing the config file. But note that
    there are some parts (especially the server config and the database config), which
    might get overwritten during initialization (via command-line arguments) or during
    unit testing (where e.g. some server settings will be ignored completely).
    """

    model_config = SettingsConfigDict(env_nested_delimiter="__", env_file=".env", extra="ignore")

    @classmethod
    def settings_customise_sources(
            cls,
            settings_cls: Type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,
            file_secret_settings: PydanticBaseSettingsSource
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            env_settings,
            dotenv_settings,
            file_secret_settings,
            JsonFileSettingsSource(settings_cls),
            init_settings
        )


def store_configuration(conf: Optional[config.CoreConfig] = None, path: Optional[str] = None) -> config.CoreConfig:
    p = path or os.path.abspath(CONFIG_PATHS[0])
    conf = conf or get_default_core_config(get_db_from_env())
    with open(p, "w") as f:
        json.dump(conf.model_dump(mode="json"), f, indent=4)
    SETTINGS_LOG_INFO_FUNCTION and SETTINGS_LOG_INFO_FUNCTION(f"A new config file has been created as {p!r}.")
    return conf


def read_settings_from_file() -> Dict[str, Any]:
    for path in CONFIG_PATHS:
        if os.path.exists(path):
            with open(path, "r", encoding="UTF-8") as file:
                return json.load(file)

    if SETTINGS_CREATE_NONEXISTENT:
        conf = store_configuration()
        if SETTINGS_EXIT_ON_ERROR:
            sys.exit(1)
        return conf.model_dump(mode="json")

    if SETTINGS_LOG_ERROR_FUNCTION:
        SETTINGS_LOG_ERROR_FUNCTION(
            "No config file found! Use the 'init' command to create a basic configuration "
            "file or set up everything by environment variables. Using the defaults now."
        )
    if SETTINGS_EXIT_ON_ERROR:
        sys.exit(1)
    return {}


def get_default_core_config(database_override: Optional[str] = None) -> config.CoreConfig:
    c = config.CoreConfig()
    if database_override:
        c.database.connection = database_override
    return c
