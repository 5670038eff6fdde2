"""
RestQL conflict translator for uniqueness violations reported by the store
"""

import logging
from typing import NamedTuple, Optional

from . import paranoid
from .descriptors import ModelDescriptor
from .errors import ConflictError, Reason
from .indexes import Record, list_unique_indexes
from ..persistence.violations import UniquenessViolation


logger = logging.getLogger(__name__)


class Resolution(NamedTuple):
    row: Record
    identity: Record


def decode_violation(model: ModelDescriptor, violation: UniquenessViolation) -> Optional[Record]:
    """
    Decode a uniqueness violation into the identity of the conflicting row

    Violations naming real attributes are returned as-is. Otherwise the
    violation names a unique index, whose ordered values are mapped onto
    the index fields. A field mapping with a single unknown key is read
    as ``{index name: value}``, where a scalar value is the only part.

    :return: identity predicate or ``None`` if the violation can't be decoded
    """

    fields = violation.fields
    if fields and all(name in model.attributes for name in fields):
        return dict(fields)

    name, values = violation.index, violation.values
    if fields and len(fields) == 1:
        name, value = next(iter(fields.items()))
        values = tuple(value) if isinstance(value, (list, tuple)) else (value,)

    index = next((i for i in list_unique_indexes(model) if i.name == name), None)
    if index is None or not values or len(values) != len(index.fields):
        return None
    return dict(zip(index.fields, values))


async def resolve_conflict(
        store,
        model: ModelDescriptor,
        violation: UniquenessViolation,
        ignore_duplicates: bool = False
) -> Resolution:
    """
    Look up the row conflicting with a failed write and prepare it for reuse

    Only soft-deleted rows are reused, unless ``ignore_duplicates`` is
    set. Every attribute with a declared default is reset to it, so that
    merging the caller's new values yields a freshly initialized row.

    :param store: store adapter used for the soft-delete-inclusive lookup
    :param model: descriptor of the written resource
    :param violation: violation raised by the store
    :param ignore_duplicates: whether live duplicates may be overwritten
    :raises ConflictError: if the violation can't be decoded, the row
        can't be found or the row is a live duplicate
    """

    identity = decode_violation(model, violation)
    if identity is None:
        logger.warning(f"Undecodable uniqueness violation: {violation}")
        raise ConflictError(model.name, Reason.UNDECODABLE_CONFLICT, str(violation))

    row = store.find(model, identity, include_soft_deleted=True)
    if row is None:
        raise ConflictError(model.name, Reason.VANISHED_CONFLICT, str(identity))
    if not ignore_duplicates and not paranoid.is_deleted(model, row):
        raise ConflictError(model.name, Reason.DUPLICATE, str(identity))

    logger.debug(f"Reusing conflicting {model.name} row {identity}")
    reset = dict(row)
    for name, attribute in model.attributes.items():
        if attribute.has_default:
            reset[name] = attribute.default
    return Resolution(reset, identity)
