"""
RestQL compiler of query values into SQLAlchemy Core selects
"""

import operator
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, func, select, tuple_
from sqlalchemy.orm import Session
from sqlalchemy.sql.expression import ColumnElement, FromClause

from ..pipeline import paranoid
from ..pipeline.descriptors import AssociationKind, ModelDescriptor, Registry
from ..pipeline.errors import Reason, ValidationError
from ..pipeline.indexes import Record
from ..pipeline.query import AND, OR, Include, Query, Where


OPERATORS: Dict[str, Callable[[ColumnElement, Any], ColumnElement]] = {
    "$eq": operator.eq,
    "$ne": operator.ne,
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
    "$in": lambda column, value: column.in_(value),
    "$notIn": lambda column, value: column.not_in(value),
    "$like": lambda column, value: column.like(value)
}


def _compare(resource: str, column: ColumnElement, value: Any) -> ColumnElement:
    if isinstance(value, dict):
        clauses = []
        for name, operand in value.items():
            if name not in OPERATORS:
                raise ValidationError(resource, Reason.INVALID_QUERY, f"unknown operator {name!r}")
            if operand is None and name in ("$eq", "$ne"):
                clauses.append(column.is_(None) if name == "$eq" else column.is_not(None))
            else:
                clauses.append(OPERATORS[name](column, operand))
        return and_(*clauses)
    if isinstance(value, (list, tuple)):
        return column.in_(value)
    if value is None:
        return column.is_(None)
    return column == value


def compile_where(resource: str, table: FromClause, where: Optional[Where]) -> Optional[ColumnElement]:
    """
    Compile a where mapping into a boolean clause for the given table or alias

    :param resource: name of the resource, used in error reports
    :param table: table or alias whose columns are referenced
    :param where: where mapping, see :class:`restql_core.pipeline.query.Query`
    :return: boolean clause or ``None`` if there is nothing to filter
    """

    if not where:
        return None

    clauses = []
    for key, value in where.items():
        if key in (AND, OR):
            parts = [compile_where(resource, table, part) for part in value or []]
            parts = [part for part in parts if part is not None]
            if parts:
                clauses.append(and_(*parts) if key == AND else or_(*parts))
        elif key in table.c:
            clauses.append(_compare(resource, table.c[key], value))
        else:
            raise ValidationError(resource, Reason.INVALID_QUERY, f"unknown attribute {key!r}")

    if not clauses:
        return None
    return and_(*clauses)


def not_deleted(model: ModelDescriptor, table: FromClause) -> Optional[ColumnElement]:
    """
    Return the clause selecting live rows of a paranoid model, if any
    """

    if not paranoid.is_paranoid(model):
        return None
    return _compare(model.name, table.c[model.options.deleted_at], paranoid.not_deleted_value(model))


def _conditions(*clauses: Optional[ColumnElement]) -> List[ColumnElement]:
    return [clause for clause in clauses if clause is not None]


class _Node:
    def __init__(self, path: str, model: ModelDescriptor, table: FromClause, include: Optional[Include] = None):
        self.path = path
        self.model = model
        self.table = table
        self.include = include
        self.children: List[_Node] = []
        self.columns: List[Tuple[str, str]] = []
        self.keys: List[str] = []

    @property
    def plural(self) -> bool:
        return self.include is not None and self.include.association.kind.plural

    def label(self, attribute: str) -> str:
        return f"{self.path}.{attribute}" if self.path else attribute

    def select(self, attributes: Optional[List[str]]) -> List[ColumnElement]:
        names = list(self.model.attributes) if attributes is None else list(attributes)
        for name in names:
            if name not in self.model.attributes:
                raise ValidationError(self.model.name, Reason.INVALID_QUERY, f"unknown attribute {name!r}")
        for name in self.model.primary_key:
            if name not in names:
                names.append(name)
        self.columns = [(self.label(name), name) for name in names]
        self.keys = [self.label(name) for name in self.model.primary_key]
        return [self.table.c[name].label(label) for label, name in self.columns]

    def extract(self, result: Dict[str, Any]) -> Record:
        return {name: result[label] for label, name in self.columns}


class QueryCompiler:
    """
    Compiler of :class:`Query` values for the resources of a registry

    Includes are compiled into joins: required includes become inner
    joins, optional ones outer joins with their filters in the join
    condition. Joined rows are assembled into nested records, where
    to-many includes become lists and to-one includes single records.
    """

    def __init__(self, registry: Registry):
        self.registry = registry

    def _join(self, parent: _Node, includes: List[Include], source: FromClause, columns: List[ColumnElement]):
        for include in includes:
            association = include.association
            target = self.registry.get(association.target)
            path = f"{parent.path}.{association.name}" if parent.path else association.name
            alias_name = "include__" + path.replace(".", "__")
            alias = self.registry.table(target.name).alias(alias_name)
            outer = not include.required

            if association.kind is AssociationKind.BELONGS_TO_MANY:
                through = self.registry.table(association.through).alias(alias_name + "__through")
                source = source.join(
                    through,
                    and_(*_conditions(
                        parent.table.c[association.source_key] == through.c[association.foreign_key],
                        compile_where(association.through, through, association.through_scope)
                    )),
                    isouter=outer
                )
                condition = through.c[association.other_key] == alias.c[association.target_key]
            elif association.kind is AssociationKind.BELONGS_TO:
                condition = parent.table.c[association.foreign_key] == alias.c[association.target_key]
            else:
                condition = alias.c[association.foreign_key] == parent.table.c[association.source_key]

            source = source.join(
                alias,
                and_(*_conditions(
                    condition,
                    compile_where(target.name, alias, association.scope),
                    compile_where(target.name, alias, include.where),
                    not_deleted(target, alias)
                )),
                isouter=outer
            )

            node = _Node(path, target, alias, include)
            columns.extend(node.select(include.attributes))
            parent.children.append(node)
            source = self._join(node, include.include, source, columns)
        return source

    def _compile(self, model: ModelDescriptor, query: Query, include_soft_deleted: bool):
        table = self.registry.table(model.name)
        root = _Node("", model, table)
        columns = root.select(query.attributes)
        source = self._join(root, query.include, table, columns)
        conditions = _conditions(
            compile_where(model.name, table, query.where),
            None if include_soft_deleted else not_deleted(model, table)
        )

        order = []
        for name, descending in query.order:
            if name not in table.c:
                raise ValidationError(model.name, Reason.INVALID_QUERY, f"unknown order attribute {name!r}")
            order.append(table.c[name].desc() if descending else table.c[name].asc())
        order.extend(table.c[name].asc() for name in model.primary_key)
        return root, columns, source, conditions, order

    def count(self, session: Session, model: ModelDescriptor, query: Query, include_soft_deleted: bool = False) -> int:
        root, _, source, conditions, _ = self._compile(model, query, include_soft_deleted)
        if query.distinct:
            keys = [root.table.c[name] for name in model.primary_key]
            subquery = select(*keys).select_from(source).where(*conditions).group_by(*keys).subquery()
            statement = select(func.count()).select_from(subquery)
        else:
            statement = select(func.count()).select_from(source).where(*conditions)
        return session.execute(statement).scalar_one()

    def find_all(
            self,
            session: Session,
            model: ModelDescriptor,
            query: Query,
            include_soft_deleted: bool = False
    ) -> List[Record]:
        """
        Execute the query and return the assembled rows

        Paginated distinct queries select the page of primary keys first
        and fetch the joined rows of those keys afterwards, so that
        to-many joins can't shrink the page.
        """

        root, columns, source, conditions, order = self._compile(model, query, include_soft_deleted)
        statement = select(*columns).select_from(source).where(*conditions).order_by(*order)
        paginated = query.limit is not None or query.offset

        if query.distinct and paginated:
            keys = [root.table.c[name] for name in model.primary_key]
            page = select(*keys).select_from(source).where(*conditions).group_by(*keys).order_by(*order)
            page = page.limit(query.limit).offset(query.offset or None)
            found = session.execute(page).all()
            if not found:
                return []
            if len(keys) == 1:
                statement = statement.where(keys[0].in_([row[0] for row in found]))
            else:
                statement = statement.where(tuple_(*keys).in_([tuple(row) for row in found]))
        elif paginated:
            statement = statement.limit(query.limit).offset(query.offset or None)

        return self._assemble(root, session.execute(statement).mappings().all())

    def _assemble(self, root: _Node, results) -> List[Record]:
        entities: Dict[tuple, Record] = {}
        seen: Dict[Tuple[int, str], Dict[tuple, Record]] = {}
        for result in results:
            key = tuple(result[label] for label in root.keys)
            entity = entities.get(key)
            if entity is None:
                entity = entities[key] = root.extract(result)
            self._attach(root, entity, result, seen)
        return list(entities.values())

    def _attach(self, node: _Node, entity: Record, result, seen: Dict[Tuple[int, str], Dict[tuple, Record]]):
        for child in node.children:
            name = child.include.association.name
            entity.setdefault(name, [] if child.plural else None)
            key = tuple(result[label] for label in child.keys)
            if all(value is None for value in key):
                continue
            bucket = seen.setdefault((id(entity), child.path), {})
            item = bucket.get(key)
            if item is None:
                item = bucket[key] = child.extract(result)
                if child.plural:
                    entity[name].append(item)
                else:
                    entity[name] = item
            self._attach(child, item, result, seen)

    def find_one(
            self,
            session: Session,
            model: ModelDescriptor,
            query: Query,
            include_soft_deleted: bool = False
    ) -> Optional[Record]:
        rows = self.find_all(session, model, query.model_copy(update={"limit": 1}), include_soft_deleted)
        return rows[0] if rows else None
