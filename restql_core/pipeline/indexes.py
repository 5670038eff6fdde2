"""
RestQL unique index resolver
"""

from typing import Any, Dict, List, Optional, Sequence

from .descriptors import ModelDescriptor, Index, PRIMARY_INDEX_NAME


Record = Dict[str, Any]


def list_indexes(model: ModelDescriptor) -> List[Index]:
    """
    Return all indexes of the model in priority order

    The primary index comes first, followed by the declared indexes and
    the named unique keys. This order is the tie-break priority whenever
    more than one index could match a record.
    """

    indexes = []
    if model.primary_key:
        indexes.append(Index(name=PRIMARY_INDEX_NAME, unique=True, primary=True, fields=model.primary_key))
    indexes.extend(model.options.indexes)
    indexes.extend(model.options.unique_keys.values())
    return indexes


def list_unique_indexes(model: ModelDescriptor) -> List[Index]:
    return [index for index in list_indexes(model) if index.unique]


def select_matching_index(indexes: Sequence[Index], record: Record) -> Optional[Index]:
    """
    Return the first index whose fields are all present in the record

    A field is present when its key exists, even if its value is ``None``.
    """

    for index in indexes:
        if all(field in record for field in index.fields):
            return index
    return None


def extract_identity(index: Index, record: Record) -> Record:
    return {field: record[field] for field in index.fields}


def select_identity(model: ModelDescriptor, record: Record) -> Optional[Record]:
    index = select_matching_index(list_unique_indexes(model), record)
    if index is None:
        return None
    return extract_identity(index, record)


def matches_identity(row: Record, identity: Record) -> bool:
    """
    Check whether the row carries the values of every identity field

    Values are compared loosely: values reported by a store driver may be
    plain strings while the row holds the typed value.
    """

    for field, value in identity.items():
        stored = row.get(field)
        if stored == value:
            continue
        if stored is None or value is None or str(stored) != str(value):
            return False
    return True
