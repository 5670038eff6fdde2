"""
RestQL extra schemas for the service status and the served resources
"""

import time
import datetime
from typing import Dict, List, Optional

import pydantic


class Status(pydantic.BaseModel):
    startup: pydantic.NonNegativeInt
    version: str
    timezone: str = time.localtime().tm_zone
    localtime: datetime.datetime
    timestamp: pydantic.NonNegativeInt


class ResourceSummary(pydantic.BaseModel):
    name: str
    paranoid: bool
    identity_field: Optional[str] = None
    unique_indexes: Dict[str, List[str]]
    associations: Dict[str, str]
