"""
RestQL soft-delete reconciler for paranoid models
"""

import datetime
import logging
from typing import Any, List, Optional, Union

from .descriptors import ModelDescriptor
from .indexes import Record


logger = logging.getLogger(__name__)


def is_paranoid(model: ModelDescriptor) -> bool:
    return model.options.paranoid and model.options.deleted_at is not None


def not_deleted_value(model: ModelDescriptor) -> Any:
    """
    Return the sentinel of the deleted_at field which marks live rows
    """

    attribute = model.attributes[model.options.deleted_at]
    return attribute.default if attribute.has_default else None


def _as_utc(value: Any) -> Any:
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc)
    return value


def is_deleted(model: ModelDescriptor, row: Optional[Record]) -> bool:
    """
    Check whether the given row of a paranoid model is soft-deleted

    Rows of other models are never deleted. An absent row of a
    paranoid model always counts as deleted.
    """

    if not is_paranoid(model):
        return False
    if row is None:
        return True

    field = model.options.deleted_at
    sentinel = not_deleted_value(model)
    value = row.get(field)
    if model.attributes[field].temporal:
        return _as_utc(sentinel) != _as_utc(value)
    return sentinel != value


def stamp_not_deleted(model: ModelDescriptor, data: Union[Record, List[Record]]) -> Union[Record, List[Record]]:
    """
    Overwrite the deleted_at field of a record or every record of a batch

    The records are modified in place and returned for convenience.
    Models without soft-delete support are left untouched.
    """

    if not is_paranoid(model):
        return data
    sentinel = not_deleted_value(model)
    for record in [data] if isinstance(data, dict) else data:
        record[model.options.deleted_at] = sentinel
    return data


async def restore_if_deleted(store, model: ModelDescriptor, row: Optional[Record]) -> Optional[Record]:
    """
    Persist the live sentinel on a soft-deleted row and return the restored row

    :param store: store adapter used to write and re-read the row
    :param model: descriptor of the row's resource
    :param row: stored row, possibly ``None`` in which case nothing is restored
    """

    if row is None or not is_deleted(model, row):
        return row

    key = {field: row[field] for field in model.primary_key}
    logger.debug(f"Restoring soft-deleted {model.name} row {key}")
    store.update(model, {model.options.deleted_at: not_deleted_value(model)}, key, include_soft_deleted=True)
    return store.find(model, key, include_soft_deleted=True)
