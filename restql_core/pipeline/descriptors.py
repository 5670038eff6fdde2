"""
RestQL model descriptors derived from SQLAlchemy declarative models

Descriptors are built once at process start by the :class:`Registry`
and are immutable afterwards. They are the only view of the models
used by the write pipeline, which keeps it independent of the ORM.
"""

import enum
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pydantic
import sqlalchemy
from sqlalchemy.orm import MANYTOONE, Mapper, RelationshipProperty, configure_mappers

from .errors import NotFoundError, Reason


logger = logging.getLogger(__name__)

PRIMARY_INDEX_NAME = "PRIMARY"


@enum.unique
class AssociationKind(enum.Enum):
    HAS_ONE = "hasOne"
    BELONGS_TO = "belongsTo"
    HAS_MANY = "hasMany"
    BELONGS_TO_MANY = "belongsToMany"

    @property
    def plural(self) -> bool:
        return self in (AssociationKind.HAS_MANY, AssociationKind.BELONGS_TO_MANY)


class Attribute(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    name: str
    default: Any = None
    has_default: bool = False
    temporal: bool = False
    primary_key: bool = False


class Index(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    name: str
    unique: bool = False
    primary: bool = False
    fields: Tuple[str, ...]


class Association(pydantic.BaseModel):
    """
    Relation from the ``source`` resource to the ``target`` resource

    The ``foreign_key`` lives on the target for HAS_ONE and HAS_MANY,
    on the source for BELONGS_TO and on the ``through`` resource for
    BELONGS_TO_MANY, where ``other_key`` references the target and
    ``inverse`` is the HAS_ONE relation from the target to its join rows.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    name: str
    kind: AssociationKind
    source: str
    target: str
    foreign_key: str
    source_key: str = "id"
    target_key: str = "id"
    other_key: Optional[str] = None
    through: Optional[str] = None
    scope: Optional[Dict[str, Any]] = None
    through_scope: Optional[Dict[str, Any]] = None
    inverse: Optional["Association"] = None


class ModelOptions(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    paranoid: bool = False
    deleted_at: Optional[str] = None
    indexes: Tuple[Index, ...] = ()
    unique_keys: Dict[str, Index] = {}


class ModelDescriptor(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    name: str
    attributes: Dict[str, Attribute]
    associations: Dict[str, Association] = {}
    options: ModelOptions = ModelOptions()
    primary_key: Tuple[str, ...] = ()
    identity_field: Optional[str] = None


def _ordered(table: sqlalchemy.Table, indexes: List[Index]) -> Tuple[Index, ...]:
    positions = {name: position for position, name in enumerate(table.columns.keys())}
    return tuple(sorted(indexes, key=lambda i: (tuple(positions[f] for f in i.fields), i.name)))


def _describe_attribute(column: sqlalchemy.Column) -> Attribute:
    default = column.default
    has_default = default is not None and default.is_scalar
    return Attribute(
        name=column.key,
        default=default.arg if has_default else None,
        has_default=has_default,
        temporal=isinstance(column.type, (sqlalchemy.DateTime, sqlalchemy.Date)),
        primary_key=column.primary_key
    )


def describe_table(
        table: sqlalchemy.Table,
        associations: Optional[Dict[str, Association]] = None
) -> ModelDescriptor:
    """
    Build the descriptor of a single table

    :param table: SQLAlchemy table object (``Model.__table__``)
    :param associations: optional mapping of already described associations
    :return: frozen model descriptor
    """

    declared = []
    for index in table.indexes:
        fields = tuple(column.key for column in index.columns)
        if not fields:
            logger.debug(f"Skipping expression index {index.name!r} of {table.name!r}")
            continue
        declared.append(Index(name=index.name, unique=bool(index.unique), fields=fields))

    unique_keys = []
    for constraint in table.constraints:
        if not isinstance(constraint, sqlalchemy.UniqueConstraint):
            continue
        fields = tuple(column.key for column in constraint.columns)
        name = constraint.name
        if not isinstance(name, str) or not name:
            name = "_".join((table.name, *fields, "key"))
        unique_keys.append(Index(name=name, unique=True, fields=fields))

    info = table.info or {}
    paranoid = bool(info.get("paranoid", False))
    deleted_at = info.get("deleted_at")
    if paranoid and deleted_at not in table.columns:
        logger.warning(f"Paranoid table {table.name!r} has no deleted_at column {deleted_at!r}")
        deleted_at = None

    autoincrement = table.autoincrement_column
    return ModelDescriptor(
        name=table.name,
        attributes={column.key: _describe_attribute(column) for column in table.columns},
        associations=associations or {},
        options=ModelOptions(
            paranoid=paranoid,
            deleted_at=deleted_at,
            indexes=_ordered(table, declared),
            unique_keys={index.name: index for index in _ordered(table, unique_keys)}
        ),
        primary_key=tuple(column.key for column in table.primary_key.columns),
        identity_field=autoincrement.key if autoincrement is not None else None
    )


def describe_relationship(name: str, relationship: RelationshipProperty) -> Association:
    """
    Translate a SQLAlchemy relationship into an association descriptor
    """

    source = relationship.parent.local_table.name
    target = relationship.mapper.local_table.name
    info = relationship.info or {}
    scope = info.get("scope")

    if relationship.secondary is not None:
        source_key, foreign_key = relationship.synchronize_pairs[0]
        target_key, other_key = relationship.secondary_synchronize_pairs[0]
        through = relationship.secondary.name
        return Association(
            name=name,
            kind=AssociationKind.BELONGS_TO_MANY,
            source=source,
            target=target,
            foreign_key=foreign_key.key,
            source_key=source_key.key,
            target_key=target_key.key,
            other_key=other_key.key,
            through=through,
            scope=scope,
            through_scope=info.get("through_scope"),
            inverse=Association(
                name=through,
                kind=AssociationKind.HAS_ONE,
                source=target,
                target=through,
                foreign_key=other_key.key,
                source_key=target_key.key
            )
        )

    local, remote = relationship.local_remote_pairs[0]
    if relationship.direction is MANYTOONE:
        return Association(
            name=name,
            kind=AssociationKind.BELONGS_TO,
            source=source,
            target=target,
            foreign_key=local.key,
            target_key=remote.key,
            scope=scope
        )
    return Association(
        name=name,
        kind=AssociationKind.HAS_MANY if relationship.uselist else AssociationKind.HAS_ONE,
        source=source,
        target=target,
        foreign_key=remote.key,
        source_key=local.key,
        scope=scope
    )


class Registry:
    """
    Read-only collection of model descriptors and their tables by resource name
    """

    def __init__(self, descriptors: Dict[str, ModelDescriptor], tables: Dict[str, sqlalchemy.Table]):
        self._descriptors = dict(descriptors)
        self._tables = dict(tables)

    @classmethod
    def from_base(cls, base) -> "Registry":
        """
        Describe every table and relationship of a declarative base

        :param base: declarative base class whose registry holds the mapped models
        """

        configure_mappers()
        relations: Dict[str, Dict[str, Association]] = {}
        mapper: Mapper
        for mapper in base.registry.mappers:
            associations = relations.setdefault(mapper.local_table.name, {})
            for name, relationship in mapper.relationships.items():
                associations[name] = describe_relationship(name, relationship)

        descriptors = {}
        tables = {}
        for table in base.metadata.sorted_tables:
            descriptors[table.name] = describe_table(table, relations.get(table.name))
            tables[table.name] = table
        logger.debug(f"Registered {len(descriptors)} resources: {', '.join(descriptors)}")
        return cls(descriptors, tables)

    def get(self, name: str) -> ModelDescriptor:
        if name not in self._descriptors:
            raise NotFoundError(name, Reason.UNKNOWN_RESOURCE)
        return self._descriptors[name]

    def table(self, name: str) -> sqlalchemy.Table:
        if name not in self._tables:
            raise NotFoundError(name, Reason.UNKNOWN_RESOURCE)
        return self._tables[name]

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)
