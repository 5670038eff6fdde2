"""
RestQL association query rewriter

The rewriters are pure: they never alter the caller's base query
but return a modified deep copy of it.
"""

from typing import Any, Callable, Dict

from .descriptors import Association, AssociationKind
from .errors import Reason, ValidationError
from .query import AND, Include, Query, has_plural_include


def for_has_many(base_query: Query, association: Association, owner_id: Any) -> Query:
    """
    Restrict the query to the targets owned by the given source row
    """

    query = base_query.model_copy(deep=True)
    where = dict(query.where or {})
    if association.scope:
        where.update(association.scope)
    where[association.foreign_key] = owner_id
    query.where = where
    if has_plural_include(query.include):
        query.distinct = True
    return query


def for_belongs_to_many(base_query: Query, association: Association, owner_id: Any) -> Query:
    """
    Restrict the query to the targets linked to the given source row

    The join rows are included as a required nested inclusion of the
    inverse through association, filtered by the owner and exposing the
    requested join table attributes.
    """

    query = base_query.model_copy(deep=True)
    query.where = {AND: [where for where in (association.scope, query.where) if where]}

    if association.through is not None and association.inverse is not None:
        through_where = {association.foreign_key: owner_id}
        if association.through_scope:
            through_where.update(association.through_scope)
        if query.through is not None and query.through.where:
            through_where = {AND: [through_where, query.through.where]}
        query.include.append(Include(
            association=association.inverse,
            where=through_where,
            attributes=query.join_table_attributes,
            required=True
        ))

    if has_plural_include(query.include):
        query.distinct = True
    return query


_REWRITERS: Dict[AssociationKind, Callable[[Query, Association, Any], Query]] = {
    AssociationKind.HAS_MANY: for_has_many,
    AssociationKind.BELONGS_TO_MANY: for_belongs_to_many
}

if set(_REWRITERS) != {kind for kind in AssociationKind if kind.plural}:
    raise RuntimeError("every plural association kind needs a query rewriter")


def rewrite(base_query: Query, association: Association, owner_id: Any) -> Query:
    """
    Rewrite the query for the plural association of the given owner

    :raises ValidationError: for singular associations
    """

    if association.kind not in _REWRITERS:
        raise ValidationError(association.source, Reason.UNSUPPORTED, f"{association.name} is not a to-many association")
    return _REWRITERS[association.kind](base_query, association, owner_id)
