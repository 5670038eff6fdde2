"""
RestQL write orchestrator

All operations strip the client-supplied identity field (the surrogate
key assigned by the store) before writing. Identities determined by the
server, e.g. from the request path, are passed separately and merged in
afterwards. Batches must be homogeneous and all inserts and upserts stamp
the soft-delete sentinel of paranoid models.
"""

import logging
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from . import conflicts, paranoid
from .descriptors import ModelDescriptor
from .errors import ConflictError, InternalError, Reason, ValidationError
from .indexes import Record, matches_identity, select_identity
from .partition import partition
from .query import Where
from ..persistence.violations import UniquenessViolation


logger = logging.getLogger(__name__)


class WriteOutcome(NamedTuple):
    created: bool
    row: Record


def _strip_identity(model: ModelDescriptor, record: Record, identity: Optional[Record] = None) -> Record:
    data = dict(record)
    if model.identity_field is not None:
        data.pop(model.identity_field, None)
    if identity:
        data.update(identity)
    return data


def ensure_homogeneous(model: ModelDescriptor, records: Sequence[Record]):
    """
    Ensure that all records of a batch share the same set of field names

    :raises ValidationError: if any record differs from the first one
    """

    if not records:
        return
    expected = set(records[0])
    for position, record in enumerate(records):
        if set(record) != expected:
            raise ValidationError(
                model.name,
                Reason.HETEROGENEOUS_BATCH,
                f"record {position} has fields {sorted(record)}, expected {sorted(expected)}"
            )


def _require_identity(model: ModelDescriptor, record: Record) -> Record:
    identity = select_identity(model, record)
    if identity is None:
        raise ValidationError(model.name, Reason.NO_IDENTITY, f"fields {sorted(record)}")
    return identity


async def create(store, model: ModelDescriptor, record: Record, ignore_duplicates: bool = False) -> Record:
    """
    Insert a record, reusing a conflicting soft-deleted row if necessary

    When the insert breaks a unique constraint, the conflicting row is
    looked up and (if it is soft-deleted or duplicates are ignored) reset
    to its defaults, merged with the new values and written back.

    :raises ConflictError: if the conflict can't be resolved
    :raises InternalError: if the written row can't be found afterwards
    """

    data = paranoid.stamp_not_deleted(model, _strip_identity(model, record))
    try:
        key = store.insert(model, data)
    except UniquenessViolation as violation:
        resolution = await conflicts.resolve_conflict(store, model, violation, ignore_duplicates)
        merged = dict(resolution.row)
        merged.update(data)
        rows = await update(store, model, merged, resolution.identity, include_soft_deleted=True)
        if not rows:
            raise InternalError(model.name, Reason.DESYNC, f"updated row {resolution.identity} vanished")
        return rows[0]

    row = store.find(model, key) if key else None
    if row is None:
        raise InternalError(model.name, Reason.DESYNC, f"inserted row {key} cannot be found")
    return row


async def update(
        store,
        model: ModelDescriptor,
        patch: Record,
        scope: Optional[Where],
        include_soft_deleted: bool = False
) -> List[Record]:
    """
    Apply the patch to all rows in the scope and return the updated rows

    Uniqueness violations are never recovered from here. The conflicting
    row is only looked up to describe the conflict in the error.

    :raises ConflictError: if the patch breaks a unique constraint
    """

    data = _strip_identity(model, patch)
    try:
        store.update(model, data, scope, include_soft_deleted=include_soft_deleted)
    except UniquenessViolation as violation:
        detail = str(violation)
        try:
            resolution = await conflicts.resolve_conflict(store, model, violation, ignore_duplicates=True)
            detail = f"conflicting row {resolution.identity}"
        except ConflictError as exc:
            detail = exc.detail or detail
        raise ConflictError(model.name, Reason.DUPLICATE, detail) from violation

    return store.find_all(model, [scope or {}], include_soft_deleted=include_soft_deleted)


async def upsert(store, model: ModelDescriptor, record: Record, identity: Optional[Record] = None) -> WriteOutcome:
    """
    Insert or update the row matching the record's first usable unique index

    :param store: store adapter
    :param model: descriptor of the written resource
    :param record: new values of the row
    :param identity: server-determined identity merged into the record
    :raises ValidationError: if no unique index matches the record
    :raises ConflictError: if the upsert breaks another unique constraint
    """

    data = paranoid.stamp_not_deleted(model, _strip_identity(model, record, identity))
    where = _require_identity(model, data)
    try:
        created = store.native_upsert(model, data, list(where))
    except UniquenessViolation as violation:
        raise ConflictError(model.name, Reason.DUPLICATE, str(violation)) from violation

    row = store.find(model, where)
    if row is None:
        row = store.find(model, where, include_soft_deleted=True)
    if row is None:
        raise InternalError(model.name, Reason.DESYNC, f"upserted row {where} cannot be found")
    if paranoid.is_deleted(model, row):
        row = await paranoid.restore_if_deleted(store, model, row)
    return WriteOutcome(created, row)


async def save(store, model: ModelDescriptor, record: Record, identity: Optional[Record] = None) -> WriteOutcome:
    """
    Upsert the record if an identity is selectable, create it otherwise
    """

    if select_identity(model, _strip_identity(model, record, identity)) is not None:
        return await upsert(store, model, record, identity)
    return WriteOutcome(True, await create(store, model, _strip_identity(model, record, identity)))


async def bulk_upsert(store, model: ModelDescriptor, records: Sequence[Record]) -> List[Record]:
    """
    Upsert a homogeneous batch of records with a single store call

    :return: all affected rows, ordered by ascending identity field
    :raises ValidationError: if the batch is heterogeneous or a record has no identity
    :raises ConflictError: if the upsert breaks a unique constraint
    """

    if not records:
        return []
    batch = [_strip_identity(model, record) for record in records]
    ensure_homogeneous(model, batch)
    paranoid.stamp_not_deleted(model, batch)
    identities = [_require_identity(model, record) for record in batch]

    try:
        store.bulk_upsert(model, batch, list(batch[0]), list(identities[0]))
    except UniquenessViolation as violation:
        raise ConflictError(model.name, Reason.DUPLICATE, str(violation)) from violation
    return store.find_all(model, identities)


async def _take_offender(
        store,
        model: ModelDescriptor,
        pending: List[Record],
        violation: UniquenessViolation,
        ignore_duplicates: bool
) -> Tuple[Record, Tuple[str, ...]]:
    identity = conflicts.decode_violation(model, violation)
    if identity is None:
        raise ConflictError(model.name, Reason.UNDECODABLE_CONFLICT, str(violation))

    matches = [position for position, record in enumerate(pending) if matches_identity(record, identity)]
    if not matches:
        raise InternalError(model.name, Reason.DESYNC, f"no pending record matches {identity}")

    if len(matches) > 1:
        # only records with the same identity are duplicates of each other,
        # others merely share the values of another unique index
        first = select_identity(model, pending[matches[0]])
        if any(select_identity(model, pending[position]) != first for position in matches[1:]):
            raise ConflictError(model.name, Reason.DUPLICATE, f"records of the batch share {identity}")
        logger.debug(f"Deferring duplicate {model.name} record {identity} of the same batch")
        return pending.pop(matches[-1]), tuple(identity)

    resolution = await conflicts.resolve_conflict(store, model, violation, ignore_duplicates)
    row = dict(resolution.row)
    row.update(pending.pop(matches[0]))
    logger.debug(f"Deferring conflicting {model.name} record {identity}")
    return row, model.primary_key


async def bulk_create(
        store,
        model: ModelDescriptor,
        records: Sequence[Record],
        ignore_duplicates: bool = False
) -> List[Record]:
    """
    Insert a homogeneous batch, resolving conflicting records one at a time

    Each failed insert removes exactly one offending record from the
    pending batch and queues it as a conflict, before the rest is inserted
    again. The queued conflicts are written afterwards with a single
    update-on-duplicate write.

    :return: all written rows, ordered by ascending identity field
    :raises ValidationError: if the batch is heterogeneous or a record has no identity
    :raises ConflictError: if a conflict can't be resolved or the final write fails
    :raises InternalError: if a violation can't be matched to a pending record
    """

    if not records:
        return []
    pending = [_strip_identity(model, record) for record in records]
    ensure_homogeneous(model, pending)
    paranoid.stamp_not_deleted(model, pending)
    identities = [_require_identity(model, record) for record in pending]

    queued: List[Tuple[Record, Tuple[str, ...]]] = []
    for attempt in range(len(records) + 1):
        try:
            store.insert(model, pending)
            break
        except UniquenessViolation as violation:
            logger.debug(f"Insert attempt {attempt + 1} of {len(records)} {model.name} records failed")
            queued.append(await _take_offender(store, model, pending, violation, ignore_duplicates))
    else:
        raise InternalError(model.name, Reason.DESYNC, "conflicts did not settle within the batch size")

    # later records of the batch are written last; duplicates within the
    # batch were deferred starting from the last one
    resolved = [item for item in queued if item[1] == model.primary_key]
    deferred = [item for item in queued if item[1] != model.primary_key]
    groups: Dict[Tuple[Tuple[str, ...], Tuple[str, ...]], List[Record]] = {}
    for row, target in resolved + deferred[::-1]:
        groups.setdefault((target, tuple(sorted(row))), []).append(row)
    try:
        for (target, fields), rows in groups.items():
            store.insert(model, rows, update_on_duplicate=fields, conflict_fields=target)
    except UniquenessViolation as violation:
        raise ConflictError(model.name, Reason.DUPLICATE, str(violation)) from violation

    return store.find_all(model, identities)


async def find_or_upsert(store, model: ModelDescriptor, record: Record) -> WriteOutcome:
    """
    Return the stored row matching the record or upsert the record
    """

    existing, new = await partition(store, model, [record])
    if existing:
        return WriteOutcome(False, existing[0])
    return await upsert(store, model, new[0])


async def bulk_find_or_upsert(store, model: ModelDescriptor, records: Sequence[Record]) -> List[Record]:
    existing, new = await partition(store, model, records)
    return existing + await bulk_upsert(store, model, new)
