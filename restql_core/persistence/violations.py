"""
RestQL translation of driver integrity errors into uniqueness violations
"""

import re
from typing import Any, Dict, NamedTuple, Optional, Sequence, Tuple

import sqlalchemy.exc


MYSQL_ENTRY_DELIMITER = "-"

_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: (?P<target>.+)$", re.MULTILINE)
_SQLITE_INDEX = re.compile(r"^index '(?P<name>[^']+)'$")
_POSTGRES_UNIQUE = re.compile(r'duplicate key value violates unique constraint "(?P<name>[^"]+)"')
_POSTGRES_DETAIL = re.compile(r"Key \((?P<columns>.+?)\)=\((?P<values>.*)\) already exists")
_MYSQL_UNIQUE = re.compile(r"Duplicate entry '(?P<entry>.*)' for key '(?P<key>[^']+)'")


class UniquenessViolation(Exception):
    """
    Exception raised by the store when a write breaks a unique or primary constraint

    The violation either names the offending attributes with their values
    in ``fields`` or names the violated unique ``index`` together with an
    explicit ordered tuple of ``values`` for its fields.
    """

    def __init__(
            self,
            resource: str,
            fields: Optional[Dict[str, Any]] = None,
            index: Optional[str] = None,
            values: Optional[Sequence[Any]] = None
    ):
        self.resource = resource
        self.fields = dict(fields) if fields else None
        self.index = index
        self.values = tuple(values) if values is not None else None
        super().__init__(
            f"Uniqueness violation on {resource!r} (fields={self.fields}, index={index!r}, values={self.values})"
        )


class ViolationReport(NamedTuple):
    """
    Raw information about a uniqueness violation extracted from a driver message
    """

    columns: Optional[Tuple[str, ...]]
    index: Optional[str]
    values: Optional[Tuple[Any, ...]]


def parse_integrity_error(exc: sqlalchemy.exc.IntegrityError) -> Optional[ViolationReport]:
    """
    Extract the violated columns, index and values from an integrity error

    Messages of the SQLite, PostgreSQL and MySQL/MariaDB drivers are
    understood. Other integrity errors (e.g. foreign key or not-null
    violations) and unknown messages return ``None``.
    """

    message = str(exc.orig)

    match = _SQLITE_UNIQUE.search(message)
    if match:
        target = match.group("target").strip()
        index = _SQLITE_INDEX.match(target)
        if index:
            return ViolationReport(None, index.group("name"), None)
        columns = tuple(column.strip().split(".")[-1] for column in target.split(","))
        return ViolationReport(columns, None, None)

    match = _POSTGRES_UNIQUE.search(message)
    if match:
        columns = values = None
        detail = _POSTGRES_DETAIL.search(message)
        if detail:
            columns = tuple(column.strip().strip('"') for column in detail.group("columns").split(","))
            values = tuple(value.strip() for value in detail.group("values").split(","))
            if len(values) != len(columns):
                values = None
        return ViolationReport(columns, match.group("name"), values)

    match = _MYSQL_UNIQUE.search(message)
    if match:
        return ViolationReport(None, match.group("key").split(".")[-1], (match.group("entry"),))

    return None


def split_entry(values: Optional[Tuple[Any, ...]], fields: Sequence[str]) -> Optional[Tuple[Any, ...]]:
    """
    Split a delimited composite MySQL entry into one value per index field

    Entries are only split when the number of parts equals the number of
    fields, since values containing the delimiter make the split ambiguous.
    """

    if values is None or len(values) == len(fields):
        return values
    if len(values) != 1 or not isinstance(values[0], str):
        return None
    parts = tuple(values[0].split(MYSQL_ENTRY_DELIMITER))
    if len(parts) != len(fields):
        return None
    return parts
