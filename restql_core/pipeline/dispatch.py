"""
RestQL caller contract mapping write requests onto the orchestrator
"""

import enum
from typing import Any, List, Optional, Union

from . import writes
from .descriptors import Registry
from .errors import Reason, ValidationError
from .indexes import Record
from .query import Where


@enum.unique
class WriteKind(enum.Enum):
    CREATE = "create"
    BULK_CREATE = "bulk_create"
    UPSERT = "upsert"
    BULK_UPSERT = "bulk_upsert"
    SAVE = "save"
    UPDATE = "update"
    FIND_OR_UPSERT = "find_or_upsert"
    BULK_FIND_OR_UPSERT = "bulk_find_or_upsert"

    @property
    def batch(self) -> bool:
        return self in (WriteKind.BULK_CREATE, WriteKind.BULK_UPSERT, WriteKind.BULK_FIND_OR_UPSERT)


async def execute(
        store,
        registry: Registry,
        resource: str,
        kind: WriteKind,
        payload: Any,
        identity: Optional[Record] = None,
        scope: Optional[Where] = None,
        ignore_duplicates: bool = False
) -> Union[writes.WriteOutcome, List[Record]]:
    """
    Execute one write operation on the named resource

    :param store: store adapter of the current request
    :param registry: registry of the served resources
    :param resource: name of the written resource
    :param kind: kind of the write operation
    :param payload: a record for single operations, a list of records for batches
    :param identity: server-determined identity for upserts and saves
    :param scope: where mapping of the rows to update
    :param ignore_duplicates: whether creates may overwrite live duplicates
    :return: a write outcome for single operations, the rows otherwise
    :raises ValidationError: if the payload doesn't fit the operation
    """

    model = registry.get(resource)
    if kind.batch:
        if not isinstance(payload, list) or not all(isinstance(record, dict) for record in payload):
            raise ValidationError(resource, Reason.INVALID_PAYLOAD, f"{kind.value} expects a list of objects")
    elif not isinstance(payload, dict):
        raise ValidationError(resource, Reason.INVALID_PAYLOAD, f"{kind.value} expects an object")

    if kind is WriteKind.CREATE:
        return writes.WriteOutcome(True, await writes.create(store, model, payload, ignore_duplicates))
    if kind is WriteKind.BULK_CREATE:
        return await writes.bulk_create(store, model, payload, ignore_duplicates)
    if kind is WriteKind.UPSERT:
        return await writes.upsert(store, model, payload, identity)
    if kind is WriteKind.BULK_UPSERT:
        return await writes.bulk_upsert(store, model, payload)
    if kind is WriteKind.SAVE:
        return await writes.save(store, model, payload, identity)
    if kind is WriteKind.UPDATE:
        return await writes.update(store, model, payload, scope if scope is not None else identity)
    if kind is WriteKind.FIND_OR_UPSERT:
        return await writes.find_or_upsert(store, model, payload)
    return await writes.bulk_find_or_upsert(store, model, payload)
