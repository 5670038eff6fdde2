"""
RestQL existing-row partitioner
"""

from typing import List, NamedTuple, Sequence

from .descriptors import ModelDescriptor
from .indexes import Record, matches_identity, select_identity


class Partition(NamedTuple):
    existing_rows: List[Record]
    new_rows: List[Record]


async def partition(store, model: ModelDescriptor, records: Sequence[Record]) -> Partition:
    """
    Split candidate records into already stored rows and genuinely new records

    All identities are looked up with one batched query. Every stored row
    is matched at most once. Records without a selectable identity can't
    exist in the store and are always new.

    :param store: store adapter
    :param model: descriptor of the resource
    :param records: candidate records
    :return: the stored rows of matched records and the unmatched records
    """

    candidates = [(select_identity(model, record), record) for record in records]
    predicates = [identity for identity, _ in candidates if identity is not None]
    stored = store.find_all(model, predicates) if predicates else []

    existing_rows, new_rows = [], []
    for identity, record in candidates:
        if identity is None:
            new_rows.append(record)
            continue
        for position, row in enumerate(stored):
            if matches_identity(row, identity):
                existing_rows.append(stored.pop(position))
                break
        else:
            new_rows.append(record)
    return Partition(existing_rows, new_rows)
