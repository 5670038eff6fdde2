"""
Special schemas for the configuration file and its properties
"""

from typing import Dict, Optional, Tuple, Union

import pydantic


class GeneralConfig(pydantic.BaseModel):
    default_page_size: pydantic.PositiveInt = 20
    max_page_size: pydantic.PositiveInt = 1000
    ignore_duplicates: bool = False

    @pydantic.model_validator(mode="after")
    def check_page_sizes(self):
        if self.default_page_size > self.max_page_size:
            raise ValueError("Field 'default_page_size' must not exceed 'max_page_size'")
        return self


class ServerConfig(pydantic.BaseModel):
    host: str = "127.0.0.1"
    port: pydantic.conint(gt=0, lt=65536) = 8000
    public_base_url: Optional[pydantic.HttpUrl] = None


class DatabaseConfig(pydantic.BaseModel):
    connection: str = "sqlite://"
    debug_sql: bool = False


class CORSConfig(pydantic.BaseModel):
    """
    Immutable per-request CORS options applied by the REST layer
    """

    model_config = pydantic.ConfigDict(frozen=True)

    origins: Tuple[str, ...] = ("*",)
    methods: Tuple[str, ...] = ("GET", "HEAD", "PUT", "POST", "DELETE")
    headers: Tuple[str, ...] = ("*",)
    expose: Tuple[str, ...] = ("X-Range",)
    max_age: pydantic.NonNegativeInt = 600
    credentials: bool = False


class LoggingConfig(pydantic.BaseModel):
    version: pydantic.conint(ge=1, le=1) = 1
    disable_existing_loggers: bool = False
    incremental: bool = False
    filters: Dict[str, Dict[str, Union[str, list]]] = {
        "sql_quiet": {
            "()": "restql_core.misc.logger.MinimumLevelFilter",
            "name": "sqlalchemy.engine",
            "level": "WARNING"
        }
    }
    formatters: Dict[str, Dict[str, str]] = {
        "default": {
            "style": "{",
            "format": "{asctime}: RestQL {process}: [{levelname}] {name}: {message}",
            "datefmt": "%d.%m.%Y %H:%M:%S"
        },
        "file": {
            "style": "{",
            "format": "{asctime} ({process}): [{levelname}] {name}: {message}",
            "datefmt": "%d.%m.%Y %H:%M"
        },
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "fmt": "%(asctime)s %(client_addr)s - \"%(request_line)s\" %(status_code)s"
        }
    }
    loggers: Dict[str, dict] = {}
    handlers: Dict[str, Dict[str, Union[str, list]]] = {
        "default": {
            "level": "INFO",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "default"
        },
        "file": {
            "level": "DEBUG",
            "class": "logging.FileHandler",
            "filename": "./restql.log",
            "formatter": "file",
            "filters": ["sql_quiet"]
        },
        "access": {
            "level": "INFO",
            "class": "logging.FileHandler",
            "filename": "./access.log",
            "formatter": "access"
        }
    }
    root: dict = {
        "level": "INFO",
        "handlers": ["default", "file"]
    }


class CoreConfig(pydantic.BaseModel):
    general: GeneralConfig = pydantic.Field(default_factory=GeneralConfig)
    server: ServerConfig = pydantic.Field(default_factory=ServerConfig)
    database: DatabaseConfig = pydantic.Field(default_factory=DatabaseConfig)
    cors: CORSConfig = pydantic.Field(default_factory=CORSConfig)
    logging: LoggingConfig = pydantic.Field(default_factory=LoggingConfig)
