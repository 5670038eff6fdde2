"""
RestQL router module generic functionalities
"""

import datetime
from typing import List

from fastapi import Depends

from ._router import router
from .. import base, helpers
from ..dependency import MinimalRequestData
from ... import schemas, __version__
from ...schemas import config


@router.get("/health", tags=["Generic"])
async def verify_running_backend(_: MinimalRequestData = Depends(MinimalRequestData)):
    """
    Return 200 OK with an empty object as body to only verify that the service and the middlewares work
    """

    return {}


@router.get("/status", tags=["Generic"], response_model=schemas.Status)
async def get_status(_: MinimalRequestData = Depends(MinimalRequestData)):
    """
    Return some information about the current status of the server
    """

    now = datetime.datetime.now()
    return schemas.Status(
        startup=int(base.startup),
        version=__version__,
        localtime=now,
        timestamp=int(now.timestamp())
    )


@router.get("/settings", tags=["Generic"], response_model=config.GeneralConfig)
async def get_settings(local: MinimalRequestData = Depends(MinimalRequestData)):
    """
    Return the important RestQL settings which directly affect the handling of requests
    """

    return local.config.general


@router.get("/resources", tags=["Generic"], response_model=List[schemas.ResourceSummary])
async def get_resources(local: MinimalRequestData = Depends(MinimalRequestData)):
    """
    Return the served resources with their unique indexes and associations
    """

    return [helpers.summarize_resource(model) for model in local.request.app.state.registry]
