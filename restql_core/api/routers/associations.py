"""
RestQL router module for /{resource}/{object_id}/{association} requests

Singular associations (hasOne, belongsTo) expose exactly one target row,
plural associations (hasMany, belongsToMany) expose a collection of target
rows, which can be addressed individually by their IDs as well.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import Body, Depends

from ._router import router
from .resources import Payload, _RESPONSES
from .. import helpers
from ..dependency import LocalRequestData
from ...pipeline.associations import rewrite
from ...pipeline.descriptors import Association, AssociationKind, ModelDescriptor
from ...pipeline.dispatch import WriteKind, execute
from ...pipeline.errors import InternalError, NotFoundError, Reason, ValidationError
from ...pipeline.indexes import Record
from ...pipeline.query import AND, Query


logger = logging.getLogger(__name__)


def _owner_key(association: Association, owner: Record) -> Any:
    return owner[association.source_key]


def _singular_query(association: Association, owner: Record, query: Optional[Query] = None) -> Query:
    query = query or Query()
    where = dict(query.where or {})
    if association.scope:
        where.update(association.scope)
    if association.kind is AssociationKind.BELONGS_TO:
        if owner[association.foreign_key] is None:
            raise NotFoundError(association.target, Reason.NOT_FOUND, f"no {association.name} assigned")
        where[association.target_key] = owner[association.foreign_key]
    else:
        where[association.foreign_key] = _owner_key(association, owner)
    return query.model_copy(update={"where": where, "limit": None, "offset": 0})


def _pinned(association: Association, owner: Record, body: Payload) -> Payload:
    def pin(record: Dict[str, Any]) -> Dict[str, Any]:
        pinned = dict(record)
        pinned.update(association.scope or {})
        pinned[association.foreign_key] = _owner_key(association, owner)
        return pinned

    if isinstance(body, list):
        return [pin(record) for record in body]
    return pin(body)


def _link(association: Association, owner: Record, target_row: Record) -> Record:
    link = dict(association.through_scope or {})
    link[association.foreign_key] = _owner_key(association, owner)
    link[association.other_key] = target_row[association.target_key]
    return link


def _reread(
        local: LocalRequestData,
        association: Association,
        owner: Record,
        target: ModelDescriptor,
        rows: List[Record]
) -> List[Record]:
    ids = [row[association.target_key] for row in rows]
    query = rewrite(Query(where={association.target_key: ids}), association, _owner_key(association, owner))
    return local.store.find_and_count(target, query)[1]


def _first(target: ModelDescriptor, rows: List[Record]) -> Record:
    if not rows:
        raise InternalError(target.name, Reason.DESYNC, "linked row cannot be found")
    return rows[0]


async def _link_targets(
        local: LocalRequestData,
        association: Association,
        owner: Record,
        target: ModelDescriptor,
        body: Payload,
        upsert_links: bool
) -> Union[Record, List[Record]]:
    """
    Find or upsert the targets, link them to the owner and return them with their join rows
    """

    through_create = WriteKind.UPSERT if upsert_links else WriteKind.CREATE
    ignore = helpers.ignore_duplicates(local)
    if isinstance(body, list):
        targets = await execute(local.store, local.registry, target.name, WriteKind.BULK_FIND_OR_UPSERT, body)
        links = [_link(association, owner, row) for row in targets]
        kind = WriteKind.BULK_UPSERT if upsert_links else WriteKind.BULK_CREATE
        await execute(local.store, local.registry, association.through, kind, links, ignore_duplicates=ignore)
        return _reread(local, association, owner, target, targets)

    outcome = await execute(local.store, local.registry, target.name, WriteKind.FIND_OR_UPSERT, body)
    link = _link(association, owner, outcome.row)
    await execute(local.store, local.registry, association.through, through_create, link, ignore_duplicates=ignore)
    if outcome.created:
        local.response.status_code = 201
    return _first(target, _reread(local, association, owner, target, [outcome.row]))


@router.get("/{resource}/{object_id}/{association}", tags=["Associations"], responses=_RESPONSES)
async def get_association(
        resource: str,
        object_id: int,
        association: str,
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Return the associated row (singular) or the associated rows (plural)

    * `206`: if there are more associated rows than the returned page
    * `400`: if the query is invalid
    * `404`: if the resource, the row, the association or the associated row is unknown
    """

    model, owner = helpers.get_owner(local, resource, object_id)
    relation = helpers.get_association(model, association)
    target = local.registry.get(relation.target)

    if not relation.kind.plural:
        query = _singular_query(relation, owner, helpers.parse_query(local, target, paginate=False))
        return helpers.get_one(local, target, query)

    query = rewrite(helpers.parse_query(local, target), relation, _owner_key(relation, owner))
    count, rows = local.store.find_and_count(target, query)
    return helpers.paginate(local, query, count, rows)


@router.post("/{resource}/{object_id}/{association}", tags=["Associations"], status_code=201, responses=_RESPONSES)
async def create_association(
        resource: str,
        object_id: int,
        association: str,
        body: Payload = Body(...),
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Create associated rows of a plural association

    hasMany targets are created with their foreign key pointing to the row.
    belongsToMany targets are looked up or upserted, before the join rows
    linking them to the row are created.

    * `400`: if the body is invalid or the association is singular
    * `404`: if the resource, the row or the association is unknown
    * `409`: if a unique constraint is violated by a live row
    """

    model, owner = helpers.get_owner(local, resource, object_id)
    relation = helpers.get_association(model, association)
    target = local.registry.get(relation.target)

    if relation.kind is AssociationKind.HAS_MANY:
        kind = WriteKind.BULK_CREATE if isinstance(body, list) else WriteKind.CREATE
        result = await execute(
            local.store, local.registry, target.name, kind, _pinned(relation, owner, body),
            ignore_duplicates=helpers.ignore_duplicates(local)
        )
        local.session.commit()
        return result if kind.batch else result.row

    if relation.kind is AssociationKind.BELONGS_TO_MANY:
        result = await _link_targets(local, relation, owner, target, body, upsert_links=False)
        local.response.status_code = 201
        local.session.commit()
        return result

    raise ValidationError(model.name, Reason.UNSUPPORTED, f"POST on singular association {association!r}")


@router.put("/{resource}/{object_id}/{association}", tags=["Associations"], responses=_RESPONSES)
async def save_association(
        resource: str,
        object_id: int,
        association: str,
        body: Payload = Body(...),
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Upsert the associated row (singular) or associated rows (plural)

    A hasOne target is merged with the stored target and points to the row.
    A belongsTo target is upserted and the row is pointed to it afterwards.
    hasMany and belongsToMany behave like their `POST` counterparts, but
    upsert instead of create.

    * `201`: if a single object has been created
    * `400`: if the body is invalid or no unique index can be found
    * `404`: if the resource, the row or the association is unknown
    * `409`: if another unique constraint is violated
    """

    model, owner = helpers.get_owner(local, resource, object_id)
    relation = helpers.get_association(model, association)
    target = local.registry.get(relation.target)

    if relation.kind is AssociationKind.BELONGS_TO_MANY:
        result = await _link_targets(local, relation, owner, target, body, upsert_links=True)
        local.session.commit()
        return result

    if relation.kind is AssociationKind.HAS_MANY:
        if isinstance(body, list):
            rows = await execute(
                local.store, local.registry, target.name, WriteKind.BULK_UPSERT, _pinned(relation, owner, body)
            )
            local.session.commit()
            return rows
        outcome = await execute(local.store, local.registry, target.name, WriteKind.SAVE, _pinned(relation, owner, body))

    else:
        if isinstance(body, list):
            raise ValidationError(target.name, Reason.INVALID_PAYLOAD, f"{association!r} expects an object")
        existing = None
        if relation.kind is AssociationKind.HAS_ONE or owner[relation.foreign_key] is not None:
            existing = local.store.find_one(target, _singular_query(relation, owner))

        data = dict(existing or {})
        data.update(body)
        if relation.kind is AssociationKind.HAS_ONE:
            data = _pinned(relation, owner, data)
        if existing is None:
            outcome = await execute(local.store, local.registry, target.name, WriteKind.SAVE, data)
        else:
            identity = {name: existing[name] for name in target.primary_key}
            outcome = await execute(local.store, local.registry, target.name, WriteKind.UPSERT, data, identity=identity)

        if relation.kind is AssociationKind.BELONGS_TO:
            await execute(
                local.store, local.registry, model.name, WriteKind.UPDATE,
                {relation.foreign_key: outcome.row[relation.target_key]},
                scope=helpers.path_identity(model, object_id)
            )

    local.session.commit()
    if outcome.created:
        local.response.status_code = 201
    return outcome.row


@router.delete("/{resource}/{object_id}/{association}", tags=["Associations"], status_code=204, responses=_RESPONSES)
async def delete_association(
        resource: str,
        object_id: int,
        association: str,
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Delete the associated row (singular), the associated rows (hasMany) or the join rows (belongsToMany)

    * `400`: if the query is invalid
    * `404`: if the resource, the row, the association or the associated row is unknown
    """

    model, owner = helpers.get_owner(local, resource, object_id)
    relation = helpers.get_association(model, association)
    target = local.registry.get(relation.target)
    query = helpers.parse_query(local, target, paginate=False)

    if not relation.kind.plural:
        row = helpers.get_one(local, target, _singular_query(relation, owner, query))
        local.store.destroy(target, {name: row[name] for name in target.primary_key})

    elif relation.kind is AssociationKind.HAS_MANY:
        scope = {relation.foreign_key: _owner_key(relation, owner)}
        scope.update(relation.scope or {})
        local.store.destroy(target, {AND: [where for where in (scope, query.where) if where]})

    else:
        _, rows = local.store.find_and_count(target, rewrite(query, relation, _owner_key(relation, owner)))
        if rows:
            scope = dict(relation.through_scope or {})
            scope[relation.foreign_key] = _owner_key(relation, owner)
            scope[relation.other_key] = [row[relation.target_key] for row in rows]
            unlinked = local.store.destroy(local.registry.get(relation.through), scope)
            logger.debug(f"Unlinked {unlinked} {target.name} rows from {model.name} {object_id}")

    local.session.commit()


def _plural(model: ModelDescriptor, association: str) -> Association:
    relation = helpers.get_association(model, association)
    if not relation.kind.plural:
        raise ValidationError(model.name, Reason.UNSUPPORTED, f"{association!r} is a singular association")
    return relation


@router.get("/{resource}/{object_id}/{association}/{association_id}", tags=["Associations"], responses=_RESPONSES)
async def get_associated_row(
        resource: str,
        object_id: int,
        association: str,
        association_id: int,
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Return the associated row with the given ID of a plural association

    * `400`: if the association is singular
    * `404`: if the resource, the row, the association or the associated row is unknown
    """

    model, owner = helpers.get_owner(local, resource, object_id)
    relation = _plural(model, association)
    target = local.registry.get(relation.target)

    query = helpers.parse_query(local, target, paginate=False)
    query.where = {**(query.where or {}), **helpers.path_identity(target, association_id)}
    return helpers.get_one(local, target, rewrite(query, relation, _owner_key(relation, owner)))


@router.put("/{resource}/{object_id}/{association}/{association_id}", tags=["Associations"], responses=_RESPONSES)
async def save_associated_row(
        resource: str,
        object_id: int,
        association: str,
        association_id: int,
        body: Dict[str, Any] = Body(...),
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Upsert the associated row with the given ID of a plural association

    belongsToMany targets are linked to the row, too.

    * `201`: if the associated row has been created
    * `400`: if the body is invalid or the association is singular
    * `404`: if the resource, the row or the association is unknown
    * `409`: if a unique constraint is violated
    """

    model, owner = helpers.get_owner(local, resource, object_id)
    relation = _plural(model, association)
    target = local.registry.get(relation.target)
    identity = helpers.path_identity(target, association_id)

    if relation.kind is AssociationKind.HAS_MANY:
        outcome = await execute(
            local.store, local.registry, target.name, WriteKind.UPSERT,
            _pinned(relation, owner, body), identity=identity
        )
        row = outcome.row
    else:
        outcome = await execute(local.store, local.registry, target.name, WriteKind.UPSERT, body, identity=identity)
        link = _link(relation, owner, outcome.row)
        await execute(local.store, local.registry, relation.through, WriteKind.UPSERT, link)
        row = _first(target, _reread(local, relation, owner, target, [outcome.row]))

    local.session.commit()
    if outcome.created:
        local.response.status_code = 201
    return row


@router.delete(
    "/{resource}/{object_id}/{association}/{association_id}",
    tags=["Associations"],
    status_code=204,
    responses=_RESPONSES
)
async def delete_associated_row(
        resource: str,
        object_id: int,
        association: str,
        association_id: int,
        local: LocalRequestData = Depends(LocalRequestData)
):
    """
    Delete the associated row (hasMany) or its join row (belongsToMany) with the given ID

    * `400`: if the association is singular
    * `404`: if the resource, the row, the association or the associated row is unknown
    """

    model, owner = helpers.get_owner(local, resource, object_id)
    relation = _plural(model, association)
    target = local.registry.get(relation.target)
    identity = helpers.path_identity(target, association_id)

    row = helpers.get_one(local, target, rewrite(Query(where=identity), relation, _owner_key(relation, owner)))
    if relation.kind is AssociationKind.HAS_MANY:
        local.store.destroy(target, identity)
    else:
        scope = dict(relation.through_scope or {})
        scope[relation.foreign_key] = _owner_key(relation, owner)
        scope[relation.other_key] = row[relation.target_key]
        local.store.destroy(local.registry.get(relation.through), scope)
    local.session.commit()
