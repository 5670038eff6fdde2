"""
RestQL API helper library
"""

import decimal
import datetime
from typing import Any, Dict, List, Optional, Tuple

import sqlalchemy

from starlette.datastructures import QueryParams

from .dependency import LocalRequestData
from .. import schemas
from ..pipeline import paranoid
from ..pipeline.descriptors import Association, ModelDescriptor
from ..pipeline.errors import NotFoundError, Reason, ValidationError
from ..pipeline.indexes import Record, list_unique_indexes
from ..pipeline.query import Include, Query, has_plural_include


RESERVED_PARAMETERS = {"limit", "offset", "order", "attributes", "include", "ignore_duplicates"}

_BOOLEANS = {"true": True, "false": False, "1": True, "0": False}


def _coerce(model: ModelDescriptor, column: sqlalchemy.Column, value: str) -> Any:
    """
    Convert a query parameter value into the Python type of the column

    The value ``null`` always stands for ``None``. Columns of types
    without a known Python type get the plain string.

    :raises ValidationError: if the value can't be converted
    """

    if value == "null":
        return None
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value

    try:
        if python_type is bool:
            return _BOOLEANS[value.lower()]
        if python_type is datetime.datetime:
            return datetime.datetime.fromisoformat(value)
        if python_type is datetime.date:
            return datetime.date.fromisoformat(value)
        if python_type in (int, float, decimal.Decimal):
            return python_type(value)
    except (KeyError, ValueError, decimal.InvalidOperation):
        raise ValidationError(
            model.name, Reason.INVALID_QUERY, f"{value!r} is no valid value of {column.name!r}"
        ) from None
    return value


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _integer(model: ModelDescriptor, params: QueryParams, name: str, default: Optional[int]) -> Optional[int]:
    if name not in params:
        return default
    try:
        value = int(params[name])
    except ValueError:
        raise ValidationError(model.name, Reason.INVALID_QUERY, f"{name!r} must be an integer") from None
    if value < 0:
        raise ValidationError(model.name, Reason.INVALID_QUERY, f"{name!r} must not be negative")
    return value


def parse_query(local: LocalRequestData, model: ModelDescriptor, paginate: bool = True) -> Query:
    """
    Translate the query parameters of the current request into a query

    Parameters other than the reserved ones are equality filters on
    attributes of the resource. Repeated parameters become membership
    filters. Values are converted into the Python type of the column,
    where ``null`` stands for ``None``.

    :param local: request data of the current request
    :param model: descriptor of the queried resource
    :param paginate: whether to apply the configured page sizes
    :raises ValidationError: for unknown attributes or invalid values
    """

    params = local.request.query_params
    table = local.registry.table(model.name)
    where: Dict[str, Any] = {}
    for key in params.keys():
        if key in RESERVED_PARAMETERS:
            continue
        if key not in model.attributes:
            raise ValidationError(model.name, Reason.INVALID_QUERY, f"unknown attribute {key!r}")
        column = table.c[key]
        values = [_coerce(model, column, value) for value in params.getlist(key)]
        where[key] = values[0] if len(values) == 1 else values

    attributes = _split(params.get("attributes")) or None
    order = []
    for name in _split(params.get("order")):
        descending = name.startswith("-")
        order.append((name.lstrip("-"), descending))

    include = []
    for name in _split(params.get("include")):
        if name not in model.associations:
            raise ValidationError(model.name, Reason.INVALID_QUERY, f"unknown association {name!r}")
        include.append(Include(association=model.associations[name]))

    limit = offset = None
    if paginate:
        general = local.config.general
        limit = min(_integer(model, params, "limit", general.default_page_size), general.max_page_size)
        offset = _integer(model, params, "offset", 0)

    return Query(
        where=where or None,
        attributes=attributes,
        include=include,
        order=order,
        limit=limit,
        offset=offset or 0,
        distinct=has_plural_include(include)
    )


def ignore_duplicates(local: LocalRequestData) -> bool:
    value = local.request.query_params.get("ignore_duplicates")
    if value is None:
        return local.config.general.ignore_duplicates
    return value.lower() in ("1", "true", "yes")


def paginate(local: LocalRequestData, query: Query, count: int, rows: List[Record]) -> List[Record]:
    """
    Set the X-Range header and the partial content status for a page of rows
    """

    start = query.offset or 0
    local.response.headers["X-Range"] = f"objects {start}-{start + len(rows)}/{count}"
    if query.limit is not None and count > query.limit:
        local.response.status_code = 206
    return rows


def path_identity(model: ModelDescriptor, object_id: int) -> Record:
    if len(model.primary_key) != 1:
        raise ValidationError(model.name, Reason.UNSUPPORTED, "resources without a single primary key")
    return {model.primary_key[0]: object_id}


def get_association(model: ModelDescriptor, name: str) -> Association:
    if name not in model.associations:
        raise NotFoundError(model.name, Reason.UNKNOWN_ASSOCIATION, name)
    return model.associations[name]


def get_owner(local: LocalRequestData, resource: str, object_id: int) -> Tuple[ModelDescriptor, Record]:
    """
    Return the descriptor of the resource and its row with the given ID

    :raises NotFoundError: if the resource or the row doesn't exist
    """

    model = local.registry.get(resource)
    row = local.store.find(model, path_identity(model, object_id))
    if row is None:
        raise NotFoundError(model.name, Reason.NOT_FOUND, f"{model.name} {object_id}")
    return model, row


def get_one(local: LocalRequestData, model: ModelDescriptor, query: Query) -> Record:
    row = local.store.find_one(model, query)
    if row is None:
        raise NotFoundError(model.name, Reason.NOT_FOUND, str(query.where))
    return row


def summarize_resource(model: ModelDescriptor) -> schemas.ResourceSummary:
    return schemas.ResourceSummary(
        name=model.name,
        paranoid=paranoid.is_paranoid(model),
        identity_field=model.identity_field,
        unique_indexes={index.name: list(index.fields) for index in list_unique_indexes(model)},
        associations={name: association.kind.value for name, association in model.associations.items()}
    )
