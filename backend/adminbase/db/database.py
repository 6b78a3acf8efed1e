"""
Request-owned database handle.

A ``Database`` wraps one SQLAlchemy ``Connection`` together with the
``AuditContext`` of the request that borrowed it. SQL produced by the query
builder uses ``?`` placeholders; they are rewritten to the driver's native
paramstyle right before execution.
"""
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from sqlalchemy.engine import Connection, CursorResult

from adminbase.core.audit_context import AuditContext
from adminbase.core.errors import QueryValidationError
from adminbase.core.logging import get_logger
from adminbase.core.security import utcnow
from adminbase.db.base import to_storage

logger = get_logger(__name__)

# Dialects that silently ignore or reject SELECT ... FOR UPDATE
_NO_ROW_LOCK_DIALECTS = {"sqlite"}


@dataclass(frozen=True)
class QueryHistoryEntry:
    """One executed statement, as the query builder produced it."""
    sql: str
    params: Tuple[Any, ...]
    executed_at: datetime


def adapt_placeholders(
    sql: str, params: Sequence[Any], paramstyle: str
) -> Tuple[str, Union[Tuple[Any, ...], Dict[str, Any]]]:
    """Rewrite ``?`` placeholders into the DBAPI's paramstyle."""
    if sql.count("?") != len(params):
        raise QueryValidationError(
            f"Statement has {sql.count('?')} placeholders but {len(params)} parameters"
        )
    if not params:
        return sql, ()
    if paramstyle == "qmark":
        return sql, tuple(params)

    pieces = sql.split("?")
    if paramstyle in ("format", "pyformat"):
        return "%s".join(piece.replace("%", "%%") for piece in pieces), tuple(params)
    if paramstyle == "numeric":
        statement = pieces[0] + "".join(
            f":{index}{piece}" for index, piece in enumerate(pieces[1:], start=1)
        )
        return statement, tuple(params)
    if paramstyle == "named":
        statement = pieces[0] + "".join(
            f":p{index}{piece}" for index, piece in enumerate(pieces[1:])
        )
        return statement, {f"p{index}": value for index, value in enumerate(params)}
    raise QueryValidationError(f"Unsupported paramstyle: {paramstyle}")


class Database:
    """One connection plus the audit context of the request using it."""

    def __init__(
        self,
        connection: Connection,
        audit_context: Optional[AuditContext] = None,
        history_size: int = 200,
    ):
        self.connection = connection
        self.audit_context = audit_context or AuditContext()
        self.history: Deque[QueryHistoryEntry] = deque(maxlen=history_size)

    @property
    def dialect(self):
        return self.connection.dialect

    @property
    def supports_row_locks(self) -> bool:
        return self.dialect.name not in _NO_ROW_LOCK_DIALECTS

    @property
    def supports_returning(self) -> bool:
        return bool(getattr(self.dialect, "insert_returning", False))

    def execute(self, sql: str, params: Sequence[Any] = ()) -> CursorResult:
        """Execute builder SQL; storage errors propagate untouched."""
        bound = [to_storage(value) for value in params]
        statement, driver_params = adapt_placeholders(sql, bound, self.dialect.paramstyle)
        self.history.append(QueryHistoryEntry(sql, tuple(bound), utcnow()))
        logger.debug("SQL: %s | params=%d", sql, len(bound))
        return self.connection.exec_driver_sql(statement, driver_params)

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        result = self.execute(sql, params)
        return [dict(row) for row in result.mappings()]

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        row = self.execute(sql, params).mappings().first()
        return dict(row) if row is not None else None

    def insert(self, table: str, data: Dict[str, Any], primary_key: Optional[str] = None) -> Any:
        """Insert one row and return its primary key value."""
        columns = list(data)
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        values = [data[column] for column in columns]

        if primary_key and self.supports_returning:
            return self.execute(f"{sql} RETURNING {primary_key}", values).scalar()

        result = self.execute(sql, values)
        if primary_key and data.get(primary_key) is not None:
            return data[primary_key]
        return result.lastrowid

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Run a block atomically, as a SAVEPOINT when a transaction is already open."""
        if self.connection.in_transaction():
            with self.connection.begin_nested():
                yield self
        else:
            with self.connection.begin():
                yield self

    def commit(self) -> None:
        if self.connection.in_transaction():
            self.connection.commit()

    def rollback(self) -> None:
        if self.connection.in_transaction():
            self.connection.rollback()

    def close(self) -> None:
        self.connection.close()

    def clear_history(self) -> None:
        self.history.clear()
