"""
RestQL router module for /{resource} requests
"""

import logging
from typing import Any, Dict, List, Union

from fastapi import Body, Depends

from ._router import router
from .. import helpers
from ..dependency import LocalRequestData
from ... import schemas
from ...pipeline.dispatch import WriteKind, execute
from ...pipeline.errors import NotFoundError, Reason


logger = logging.getLogger(__name__)

Payload = Union[List[Dict[str, Any]], Dict[str, Any]]

_RESPONSES = {
    400: {"model": schemas.APIError},
    404: {"model": schemas.APIError},
    409: {"model": schemas.APIError}
}


@router.get("/{resource}", tags=["Resources"], responses=_RESPONSES)
async def search_resource(resource: str, local: LocalRequestData = Depends(LocalRequestData)):
    """
    Return the rows of the resource matching the query parameters

    Any query parameter except `limit`, `offset`, `order`, `attributes`
    and `include` filters on the attribute of the same name.
    The `X-Range` header contains the returned range and the total count.

    * `206`: if there are more rows than the returned page
    * `400`: if the query is invalid
    * `404`: if the resource is unknown
    """

    model = local.registry.get(resource)
    query = helpers.parse_query(local, model)
    count, rows = local.store.find_and_count(model, query)
    return helpers.paginate(local, query, count, rows)


@router.post("/{resource}", tags=["Resources"], status_code=201, responses=_RESPONSES)
async def create_resource(
        resource: str,
        body: Payload = Body(...),
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Create one row from an object or many rows from an array of objects

    Conflicts with soft-deleted rows are resolved by restoring those rows.
    Conflicts with live rows are only overwritten with `ignore_duplicates=true`.

    * `400`: if the body is invalid or array elements have different attributes
    * `404`: if the resource is unknown
    * `409`: if a unique constraint is violated by a live row
    """

    kind = WriteKind.BULK_CREATE if isinstance(body, list) else WriteKind.CREATE
    result = await execute(
        local.store, local.registry, resource, kind, body,
        ignore_duplicates=helpers.ignore_duplicates(local)
    )
    local.session.commit()
    return result if kind.batch else result.row


@router.put("/{resource}", tags=["Resources"], responses=_RESPONSES)
async def save_resource(
        resource: str,
        body: Payload = Body(...),
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Upsert one row from an object or many rows from an array of objects

    Objects without a complete unique index are created instead.

    * `201`: if a single object has been created
    * `400`: if the body is invalid or no unique index can be found
    * `404`: if the resource is unknown
    * `409`: if another unique constraint is violated
    """

    kind = WriteKind.BULK_UPSERT if isinstance(body, list) else WriteKind.SAVE
    result = await execute(local.store, local.registry, resource, kind, body)
    local.session.commit()
    if kind.batch:
        return result
    if result.created:
        local.response.status_code = 201
    return result.row


@router.delete("/{resource}", tags=["Resources"], status_code=204, responses=_RESPONSES)
async def delete_resources(resource: str, local: LocalRequestData = Depends(LocalRequestData)):
    """
    Delete all rows of the resource matching the query parameters

    * `400`: if the query is invalid
    * `404`: if the resource is unknown
    """

    model = local.registry.get(resource)
    query = helpers.parse_query(local, model, paginate=False)
    deleted = local.store.destroy(model, query.where)
    local.session.commit()
    logger.debug(f"Deleted {deleted} rows of {resource!r}")


@router.get("/{resource}/{object_id}", tags=["Resources"], responses=_RESPONSES)
async def get_resource(resource: str, object_id: int, local: LocalRequestData = Depends(LocalRequestData)):
    """
    Return the row of the resource with the given ID

    * `404`: if the resource or the row is unknown
    """

    model = local.registry.get(resource)
    query = helpers.parse_query(local, model, paginate=False)
    query.where = {**(query.where or {}), **helpers.path_identity(model, object_id)}
    return helpers.get_one(local, model, query)


@router.put("/{resource}/{object_id}", tags=["Resources"], responses=_RESPONSES)
async def update_resource(
        resource: str,
        object_id: int,
        body: Dict[str, Any] = Body(...),
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Upsert the row of the resource with the given ID

    The body is merged into the stored row, so that omitted
    attributes keep their current values.

    * `400`: if the body is invalid
    * `404`: if the resource or the row is unknown
    * `409`: if a unique constraint is violated
    """

    model, row = helpers.get_owner(local, resource, object_id)
    data = dict(row)
    data.update(body)
    outcome = await execute(
        local.store, local.registry, resource, WriteKind.UPSERT, data,
        identity=helpers.path_identity(model, object_id)
    )
    local.session.commit()
    return outcome.row


@router.delete("/{resource}/{object_id}", tags=["Resources"], status_code=204, responses=_RESPONSES)
async def delete_resource(resource: str, object_id: int, local: LocalRequestData = Depends(LocalRequestData)):
    """
    Delete the row of the resource with the given ID

    * `404`: if the resource or the row is unknown
    """

    model = local.registry.get(resource)
    if not local.store.destroy(model, helpers.path_identity(model, object_id)):
        raise NotFoundError(model.name, Reason.NOT_FOUND, f"{model.name} {object_id}")
    local.session.commit()
