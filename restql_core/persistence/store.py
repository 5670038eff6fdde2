"""
RestQL store adapter over a SQLAlchemy session

Every mutating call runs in its own SAVEPOINT of the session's
transaction, so that a failed statement is undone without breaking
the surrounding request transaction. Integrity errors are translated
into :class:`UniquenessViolation` where possible, all other database
errors are wrapped into :class:`InternalError`.
"""

import contextlib
import logging
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import sqlalchemy
import sqlalchemy.exc
from sqlalchemy import or_, select, func
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.orm import Session

from .querying import QueryCompiler, compile_where, not_deleted
from .violations import UniquenessViolation, parse_integrity_error, split_entry
from ..misc.logger import enforce_logger
from ..pipeline import paranoid
from ..pipeline.descriptors import ModelDescriptor, Registry
from ..pipeline.errors import InternalError, Reason
from ..pipeline.indexes import Record, list_unique_indexes
from ..pipeline.query import Query, Where


class Store:
    """
    Store adapter used by the write pipeline and the read-path collaborators

    :param session: database session owning the request transaction
    :param registry: registry of the served resources
    :param logger: optional logger, defaults to the module logger
    """

    def __init__(self, session: Session, registry: Registry, logger: Optional[logging.Logger] = None):
        self.session = session
        self.registry = registry
        self.compiler = QueryCompiler(registry)
        self.logger = enforce_logger(logger, fallback=__name__)

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def _table(self, model: ModelDescriptor) -> sqlalchemy.Table:
        return self.registry.table(model.name)

    def _filters(self, model: ModelDescriptor, where: Optional[Where], include_soft_deleted: bool) -> list:
        table = self._table(model)
        clauses = [compile_where(model.name, table, where)]
        if not include_soft_deleted:
            clauses.append(not_deleted(model, table))
        return [clause for clause in clauses if clause is not None]

    def _exists(self, model: ModelDescriptor, predicate: Record) -> bool:
        table = self._table(model)
        statement = select(func.count()).select_from(table).where(*self._filters(model, predicate, True))
        return self.session.execute(statement).scalar_one() > 0

    def _locate_offender(self, model: ModelDescriptor, records: Sequence[Record], fields: Sequence[str]) -> Optional[Record]:
        seen = set()
        for record in records:
            if not all(field in record for field in fields):
                continue
            key = tuple(record[field] for field in fields)
            if key in seen or self._exists(model, dict(zip(fields, key))):
                return record
            seen.add(key)
        return None

    def _violation(
            self,
            model: ModelDescriptor,
            exc: sqlalchemy.exc.IntegrityError,
            records: Sequence[Record]
    ) -> Optional[UniquenessViolation]:
        report = parse_integrity_error(exc)
        if report is None:
            return None

        fields = report.columns
        values = report.values
        named_by_index = fields is None
        if named_by_index:
            index = next((i for i in list_unique_indexes(model) if i.name == report.index), None)
            if index is None:
                return UniquenessViolation(model.name, index=report.index, values=values)
            fields = index.fields
            values = split_entry(values, fields)

        if len(records) == 1 and all(field in records[0] for field in fields):
            offender = records[0]
        else:
            offender = self._locate_offender(model, records, fields)
        if offender is not None:
            values = tuple(offender[field] for field in fields)
        if values is None:
            return UniquenessViolation(model.name, index=report.index)

        if named_by_index:
            return UniquenessViolation(model.name, index=report.index, values=values)
        return UniquenessViolation(model.name, fields=dict(zip(fields, values)), index=report.index)

    @contextlib.contextmanager
    def _writing(self, model: ModelDescriptor, records: Sequence[Record] = ()) -> Iterator[None]:
        try:
            with self.session.begin_nested():
                yield
        except sqlalchemy.exc.IntegrityError as exc:
            violation = self._violation(model, exc, records)
            if violation is None:
                self.logger.warning(f"Integrity error on {model.name!r}: {exc.orig}")
                raise InternalError(model.name, Reason.STORE_FAILURE, str(exc.orig)) from exc
            self.logger.debug(str(violation))
            raise violation from exc
        except sqlalchemy.exc.SQLAlchemyError as exc:
            self.logger.error(f"{type(exc).__name__} on {model.name!r}: {exc}")
            raise InternalError(model.name, Reason.STORE_FAILURE, type(exc).__name__) from exc

    def _upsert_statement(self, model: ModelDescriptor, update_fields: Sequence[str], conflict_fields: Sequence[str]):
        table = self._table(model)
        dialect = self.dialect
        if dialect in ("postgresql", "sqlite"):
            statement = (postgresql.insert if dialect == "postgresql" else sqlite.insert)(table)
            if not update_fields:
                return statement.on_conflict_do_nothing(index_elements=list(conflict_fields))
            return statement.on_conflict_do_update(
                index_elements=list(conflict_fields),
                set_={field: statement.excluded[field] for field in update_fields}
            )
        if dialect in ("mysql", "mariadb"):
            statement = mysql.insert(table)
            return statement.on_duplicate_key_update(
                {field: statement.inserted[field] for field in (update_fields or conflict_fields)}
            )
        raise InternalError(model.name, Reason.UNSUPPORTED, f"native upserts are not available for {dialect!r}")

    def insert(
            self,
            model: ModelDescriptor,
            data: Union[Record, List[Record]],
            update_on_duplicate: Optional[Sequence[str]] = None,
            conflict_fields: Optional[Sequence[str]] = None
    ) -> Optional[Record]:
        """
        Insert a single record or a batch of records

        :param model: descriptor of the target resource
        :param data: record or list of records with identical field sets
        :param update_on_duplicate: fields to overwrite when a row with the
            same ``conflict_fields`` exists already (the primary key by default)
        :param conflict_fields: fields of the unique index used to detect duplicates
        :return: primary key of the inserted row for single plain inserts
        """

        records = [data] if isinstance(data, dict) else list(data)
        if not records:
            return None

        if update_on_duplicate is not None:
            self.bulk_upsert(model, records, update_on_duplicate, conflict_fields or model.primary_key)
            return None

        table = self._table(model)
        if not isinstance(data, dict):
            with self._writing(model, records):
                self.session.execute(sqlalchemy.insert(table), records)
            return None

        with self._writing(model, records):
            result = self.session.execute(sqlalchemy.insert(table).values(data))
        key = result.inserted_primary_key
        if key is None:
            return None
        return dict(zip(model.primary_key, key))

    def update(
            self,
            model: ModelDescriptor,
            patch: Record,
            scope: Optional[Where],
            include_soft_deleted: bool = False
    ) -> int:
        if not patch:
            return 0
        table = self._table(model)
        statement = sqlalchemy.update(table).where(*self._filters(model, scope, include_soft_deleted)).values(patch)
        with self._writing(model, [patch]):
            result = self.session.execute(statement)
        return result.rowcount

    def find(self, model: ModelDescriptor, predicate: Where, include_soft_deleted: bool = False) -> Optional[Record]:
        table = self._table(model)
        statement = select(table).where(*self._filters(model, predicate, include_soft_deleted)).limit(1)
        row = self.session.execute(statement).mappings().first()
        return dict(row) if row is not None else None

    def find_all(
            self,
            model: ModelDescriptor,
            predicates: Sequence[Where],
            include_soft_deleted: bool = False,
            order_by_identity: bool = True
    ) -> List[Record]:
        """
        Return all rows matching any of the predicates

        :param model: descriptor of the resource
        :param predicates: where mappings combined with logical OR
        :param include_soft_deleted: whether soft-deleted rows should be returned
        :param order_by_identity: whether rows are ordered by ascending
            identity field (or primary key if there is none)
        """

        if not predicates:
            return []
        table = self._table(model)
        clauses = [compile_where(model.name, table, predicate) for predicate in predicates]
        statement = select(table)
        if all(clause is not None for clause in clauses):
            statement = statement.where(or_(*clauses))
        live = None if include_soft_deleted else not_deleted(model, table)
        if live is not None:
            statement = statement.where(live)
        if order_by_identity:
            order = [model.identity_field] if model.identity_field else list(model.primary_key)
            statement = statement.order_by(*[table.c[name].asc() for name in order])
        return [dict(row) for row in self.session.execute(statement).mappings().all()]

    def native_upsert(self, model: ModelDescriptor, record: Record, conflict_fields: Sequence[str]) -> bool:
        """
        Insert the record or update the row with the same conflict fields

        :return: whether a new row has been created
        """

        existed = self._exists(model, {field: record[field] for field in conflict_fields})
        update_fields = [field for field in record if field not in conflict_fields]
        statement = self._upsert_statement(model, update_fields, conflict_fields)
        with self._writing(model, [record]):
            self.session.execute(statement, [record])
        return not existed

    def bulk_upsert(
            self,
            model: ModelDescriptor,
            records: Sequence[Record],
            update_fields: Sequence[str],
            conflict_fields: Sequence[str]
    ):
        if not records:
            return
        statement = self._upsert_statement(model, update_fields, conflict_fields)
        with self._writing(model, records):
            self.session.execute(statement, list(records))

    def destroy(self, model: ModelDescriptor, scope: Optional[Where]) -> int:
        """
        Delete all rows in the scope, soft-deleting rows of paranoid models

        :return: number of deleted rows
        """

        table = self._table(model)
        filters = self._filters(model, scope, False)
        if paranoid.is_paranoid(model):
            statement = sqlalchemy.update(table).where(*filters).values({model.options.deleted_at: func.now()})
        else:
            statement = sqlalchemy.delete(table).where(*filters)
        with self._writing(model):
            result = self.session.execute(statement)
        self.logger.debug(f"Deleted {result.rowcount} {model.name} rows")
        return result.rowcount

    def find_and_count(self, model: ModelDescriptor, query: Query) -> Tuple[int, List[Record]]:
        count = self.compiler.count(self.session, model, query)
        return count, self.compiler.find_all(self.session, model, query)

    def find_one(self, model: ModelDescriptor, query: Query) -> Optional[Record]:
        return self.compiler.find_one(self.session, model, query)


__all__ = ["Store", "UniquenessViolation"]
