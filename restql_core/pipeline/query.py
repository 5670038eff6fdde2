"""
RestQL query values passed from read-path collaborators to the store
"""

from typing import Any, Dict, List, Optional, Tuple

import pydantic

from .descriptors import Association


AND = "$and"
OR = "$or"

Where = Dict[str, Any]


class Include(pydantic.BaseModel):
    association: Association
    where: Optional[Where] = None
    attributes: Optional[List[str]] = None
    required: bool = False
    include: List["Include"] = []


class ThroughOptions(pydantic.BaseModel):
    where: Optional[Where] = None


class Query(pydantic.BaseModel):
    """
    Search query for a single resource

    ``where`` maps attribute names to plain values (equality, ``None``
    for null checks, lists for membership) or to operator mappings like
    ``{"$gte": 3}``; the keys ``$and`` and ``$or`` combine nested where
    mappings. ``order`` holds ``(attribute, descending)`` pairs.
    """

    where: Optional[Where] = None
    attributes: Optional[List[str]] = None
    include: List[Include] = []
    order: List[Tuple[str, bool]] = []
    limit: Optional[int] = None
    offset: int = 0
    distinct: bool = False
    through: Optional[ThroughOptions] = None
    join_table_attributes: Optional[List[str]] = None


def has_plural_include(includes: List[Include]) -> bool:
    return any(include.association.kind.plural for include in includes)
