"""
Parameterized query builder.

Filters are small immutable values; a ``QueryPlan`` collects them in append
order and compiles to ``(sql, params)`` with ``?`` placeholders. Values are
always bound. Identifiers (columns, tables, order/group keys) are
concatenated, so each one is checked against ``SAFE_IDENTIFIER`` first.
"""
import re
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    Union,
)

from adminbase.core.errors import QueryValidationError

if TYPE_CHECKING:
    from adminbase.db.database import Database
    from adminbase.db.record import Record

SAFE_IDENTIFIER = re.compile(r"^[A-Za-z0-9_.]+$")
_SELECT_COLUMN = re.compile(
    r"^(\*|[A-Za-z0-9_]+\.\*|[A-Za-z0-9_.]+(\s+AS\s+[A-Za-z0-9_]+)?)$", re.IGNORECASE
)
_AGGREGATE = re.compile(
    r"^(COUNT|SUM|AVG|MIN|MAX)\((\*|(DISTINCT\s+)?[A-Za-z0-9_.]+)\)(\s+AS\s+[A-Za-z0-9_]+)?$",
    re.IGNORECASE,
)

COMPARISON_OPERATORS = frozenset(
    {"=", "!=", "<>", "<", ">", "<=", ">=", "LIKE", "NOT LIKE", "IS", "IS NOT"}
)
JOIN_OPERATORS = frozenset({"=", "!=", "<>", "<", ">", "<=", ">="})
JOIN_TYPES = frozenset({"INNER", "LEFT", "RIGHT"})
DIRECTIONS = frozenset({"ASC", "DESC"})
CONNECTORS = frozenset({"AND", "OR"})

_MISSING = object()


def is_safe_identifier(identifier: str) -> bool:
    return isinstance(identifier, str) and bool(SAFE_IDENTIFIER.match(identifier))


def _identifier(identifier: str, what: str) -> str:
    if not is_safe_identifier(identifier):
        raise QueryValidationError(f"Invalid {what}: {identifier!r}")
    return identifier


def _keyword(value: str, allowed: frozenset, what: str) -> str:
    normalized = " ".join(str(value).split()).upper()
    if normalized not in allowed:
        raise QueryValidationError(f"Invalid {what}: {value!r}")
    return normalized


# -- filter expressions -------------------------------------------------------


@dataclass(frozen=True)
class Comparison:
    """``column <op> ?``; a None value against =/!= renders IS [NOT] NULL."""
    column: str
    operator: str
    value: Any

    def compile(self) -> Tuple[str, List[Any]]:
        if self.value is None:
            if self.operator in ("=", "IS"):
                return f"{self.column} IS NULL", []
            if self.operator in ("!=", "<>", "IS NOT"):
                return f"{self.column} IS NOT NULL", []
        return f"{self.column} {self.operator} ?", [self.value]


@dataclass(frozen=True)
class InList:
    """``column [NOT] IN (?, ...)``. Empty IN is always false, empty NOT IN always true."""
    column: str
    values: Tuple[Any, ...]
    negated: bool = False

    def compile(self) -> Tuple[str, List[Any]]:
        if not self.values:
            return ("1 = 1" if self.negated else "1 = 0"), []
        keyword = "NOT IN" if self.negated else "IN"
        placeholders = ", ".join("?" for _ in self.values)
        return f"{self.column} {keyword} ({placeholders})", list(self.values)


@dataclass(frozen=True)
class RawFilter:
    """Hand-written predicate with its own positional parameters."""
    sql: str
    params: Tuple[Any, ...] = ()

    def compile(self) -> Tuple[str, List[Any]]:
        return f"({self.sql})", list(self.params)


@dataclass(frozen=True)
class FilterGroup:
    """Parenthesised sub-clause; the first member's connector is never rendered."""
    filters: Tuple[Tuple[str, "FilterExpression"], ...]

    def compile(self) -> Tuple[str, List[Any]]:
        sql, params = compile_filters(self.filters)
        return f"({sql})", params


FilterExpression = Union[Comparison, InList, RawFilter, FilterGroup]


def compile_filters(filters: Sequence[Tuple[str, FilterExpression]]) -> Tuple[str, List[Any]]:
    """Join filters left to right, collecting parameters depth-first."""
    parts: List[str] = []
    params: List[Any] = []
    for index, (connector, expression) in enumerate(filters):
        sql, expression_params = expression.compile()
        parts.append(sql if index == 0 else f"{connector} {sql}")
        params.extend(expression_params)
    return " ".join(parts), params


@dataclass(frozen=True)
class Join:
    table: str
    first: str
    operator: str
    second: str
    kind: str = "INNER"

    def compile(self) -> str:
        return f"{self.kind} JOIN {self.table} ON {self.first} {self.operator} {self.second}"


# -- query plan ---------------------------------------------------------------


class QueryPlan:
    """Fluent SELECT builder bound to a Record type, with immediate UPDATE/DELETE."""

    def __init__(self, model: Type["Record"], db: Optional["Database"] = None):
        self.model = model
        self.db = db
        self._columns: List[str] = []
        self._joins: List[Join] = []
        self._filters: List[Tuple[str, FilterExpression]] = []
        self._group_by: List[str] = []
        self._having: List[Tuple[str, str, Any]] = []
        self._order_by: List[Tuple[str, str]] = []
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None
        self._lock = False

    @property
    def table(self) -> str:
        return self.model.table_name()

    @property
    def primary_key(self) -> str:
        return self.model.primary_key

    @property
    def filters(self) -> Tuple[Tuple[str, FilterExpression], ...]:
        return tuple(self._filters)

    # builders

    def select(self, *columns: Union[str, Sequence[str]]) -> "QueryPlan":
        flattened = _flatten(columns)
        for column in flattened:
            if not (_SELECT_COLUMN.match(column) or _AGGREGATE.match(column)):
                raise QueryValidationError(f"Invalid select column: {column!r}")
        self._columns = flattened
        return self

    def where(
        self,
        column: Any,
        operator: Any = _MISSING,
        value: Any = _MISSING,
        boolean: str = "AND",
    ) -> "QueryPlan":
        boolean = _keyword(boolean, CONNECTORS, "boolean connector")

        if callable(column) and not isinstance(column, str):
            return self._where_nested(column, boolean)

        if isinstance(column, dict):
            for key, item in column.items():
                self.where(key, "=", item, boolean)
            return self

        if isinstance(column, (list, tuple)):
            for condition in column:
                if len(condition) == 3:
                    self.where(condition[0], condition[1], condition[2], boolean)
                elif len(condition) == 2:
                    self.where(condition[0], "=", condition[1], boolean)
                else:
                    raise QueryValidationError(f"Invalid where condition: {condition!r}")
            return self

        if operator is _MISSING:
            # where(5) matches the primary key
            column, operator, value = self.primary_key, "=", column
        elif value is _MISSING:
            operator, value = "=", operator

        self._filters.append((
            boolean,
            Comparison(
                _identifier(column, "where column"),
                _keyword(operator, COMPARISON_OPERATORS, "operator"),
                value,
            ),
        ))
        return self

    def or_where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> "QueryPlan":
        return self.where(column, operator, value, "OR")

    def where_in(
        self, column: str, values: Iterable[Any], boolean: str = "AND", negated: bool = False
    ) -> "QueryPlan":
        self._filters.append((
            _keyword(boolean, CONNECTORS, "boolean connector"),
            InList(_identifier(column, "where column"), tuple(values), negated),
        ))
        return self

    def where_not_in(self, column: str, values: Iterable[Any], boolean: str = "AND") -> "QueryPlan":
        return self.where_in(column, values, boolean, negated=True)

    def or_where_in(self, column: str, values: Iterable[Any]) -> "QueryPlan":
        return self.where_in(column, values, "OR")

    def or_where_not_in(self, column: str, values: Iterable[Any]) -> "QueryPlan":
        return self.where_in(column, values, "OR", negated=True)

    def where_raw(self, sql: str, params: Sequence[Any] = (), boolean: str = "AND") -> "QueryPlan":
        if sql.count("?") != len(params):
            raise QueryValidationError("Raw filter placeholder count does not match its parameters")
        self._filters.append((_keyword(boolean, CONNECTORS, "boolean connector"), RawFilter(sql, tuple(params))))
        return self

    def _where_nested(self, callback: Callable[["QueryPlan"], Any], boolean: str) -> "QueryPlan":
        nested = QueryPlan(self.model, self.db)
        callback(nested)
        if nested._filters:
            self._filters.append((boolean, FilterGroup(tuple(nested._filters))))
        return self

    def join(self, table: str, first: str, operator: str, second: str, kind: str = "INNER") -> "QueryPlan":
        self._joins.append(Join(
            _identifier(table, "join table"),
            _identifier(first, "join column"),
            _keyword(operator, JOIN_OPERATORS, "join operator"),
            _identifier(second, "join column"),
            _keyword(kind, JOIN_TYPES, "join type"),
        ))
        return self

    def left_join(self, table: str, first: str, operator: str, second: str) -> "QueryPlan":
        return self.join(table, first, operator, second, "LEFT")

    def right_join(self, table: str, first: str, operator: str, second: str) -> "QueryPlan":
        return self.join(table, first, operator, second, "RIGHT")

    def group_by(self, *columns: Union[str, Sequence[str]]) -> "QueryPlan":
        self._group_by = [_identifier(column, "group by column") for column in _flatten(columns)]
        return self

    def having(self, column: str, operator: str, value: Any) -> "QueryPlan":
        if not (is_safe_identifier(column) or _AGGREGATE.match(column)):
            raise QueryValidationError(f"Invalid having column: {column!r}")
        self._having.append((column, _keyword(operator, COMPARISON_OPERATORS, "operator"), value))
        return self

    def order_by(self, column: str, direction: str = "ASC") -> "QueryPlan":
        direction = str(direction).upper()
        if direction not in DIRECTIONS:
            raise QueryValidationError("Invalid order by direction")
        if not is_safe_identifier(column):
            raise QueryValidationError("Invalid order by column")
        self._order_by.append((column, direction))
        return self

    def limit(self, limit: int) -> "QueryPlan":
        self._limit = _non_negative(limit, "limit")
        return self

    def offset(self, offset: int) -> "QueryPlan":
        self._offset = _non_negative(offset, "offset")
        return self

    def lock_for_update(self) -> "QueryPlan":
        """Lock selected rows until the surrounding transaction ends, where supported."""
        if self.db is None or self.db.supports_row_locks:
            self._lock = True
        return self

    # compilation

    def compile(self) -> Tuple[str, List[Any]]:
        return self._compile_select()

    def _compile_where(self) -> Tuple[str, List[Any]]:
        if not self._filters:
            return "", []
        sql, params = compile_filters(self._filters)
        return f" WHERE {sql}", params

    def _compile_select(
        self,
        columns: Optional[List[str]] = None,
        limit: Any = _MISSING,
        ordered: bool = True,
        joined: bool = True,
    ) -> Tuple[str, List[Any]]:
        selected = columns if columns is not None else (self._columns or ["*"])
        sql = f"SELECT {', '.join(selected)} FROM {self.table}"

        if joined:
            for join in self._joins:
                sql += f" {join.compile()}"

        where_sql, params = self._compile_where()
        sql += where_sql

        if self._group_by:
            sql += f" GROUP BY {', '.join(self._group_by)}"

        if self._having:
            clauses = []
            for column, operator, value in self._having:
                clauses.append(f"{column} {operator} ?")
                params.append(value)
            sql += f" HAVING {' AND '.join(clauses)}"

        if ordered and self._order_by:
            sql += " ORDER BY " + ", ".join(f"{column} {direction}" for column, direction in self._order_by)

        resolved_limit = self._limit if limit is _MISSING else limit
        if resolved_limit is not None:
            sql += f" LIMIT {int(resolved_limit)}"
            if self._offset is not None:
                sql += f" OFFSET {int(self._offset)}"

        if self._lock:
            sql += " FOR UPDATE"

        return sql, params

    # execution

    def _require_db(self) -> "Database":
        if self.db is None:
            raise RuntimeError("QueryPlan is not bound to a Database")
        return self.db

    def rows(self) -> List[Dict[str, Any]]:
        sql, params = self.compile()
        return self._require_db().fetch_all(sql, params)

    def first_row(self) -> Optional[Dict[str, Any]]:
        sql, params = self._compile_select(limit=1)
        return self._require_db().fetch_one(sql, params)

    def get(self) -> List["Record"]:
        db = self._require_db()
        return [self.model.from_row(db, row) for row in self.rows()]

    def iterate(self) -> Iterator["Record"]:
        """Stream records one at a time instead of materialising the result."""
        db = self._require_db()
        sql, params = self.compile()
        for row in db.execute(sql, params).mappings():
            yield self.model.from_row(db, dict(row))

    def first(self) -> Optional["Record"]:
        row = self.first_row()
        return self.model.from_row(self._require_db(), row) if row is not None else None

    def count(self) -> int:
        sql, params = self._compile_select(["COUNT(*) AS aggregate"], limit=None, ordered=False)
        row = self._require_db().fetch_one(sql, params)
        return int(row["aggregate"]) if row else 0

    def exists(self) -> bool:
        return self.count() > 0

    def _snapshot(self) -> List[Dict[str, Any]]:
        """Before-image of every row the current filters touch."""
        sql, params = self._compile_select(["*"], limit=None, ordered=False, joined=False)
        if self.db.supports_row_locks and not self._lock:
            sql += " FOR UPDATE"
        return self.db.fetch_all(sql, params)

    def update(self, values: Dict[str, Any]) -> int:
        """UPDATE every row matching the filters; one audit entry per changed row."""
        if not values:
            return 0
        db = self._require_db()
        assignments = {_identifier(column, "update column"): value for column, value in values.items()}
        table = self.table

        with db.transaction():
            should_audit = db.audit_context.should_audit(table)
            rows_before = self._snapshot() if should_audit else []

            set_sql = ", ".join(f"{column} = ?" for column in assignments)
            where_sql, where_params = self._compile_where()
            affected = db.execute(
                f"UPDATE {table} SET {set_sql}{where_sql}",
                [*assignments.values(), *where_params],
            ).rowcount

            if should_audit and affected > 0 and rows_before:
                from adminbase.services.audit import AuditTrail, diff_update

                trail = AuditTrail(db)
                bulk = {"bulk": True} if len(rows_before) > 1 else None
                for row in rows_before:
                    changes = diff_update(row, assignments)
                    if changes:
                        trail.record("update", table, _resource_id(row, self.primary_key), changes, bulk)

        return affected

    def delete(self) -> int:
        """DELETE every row matching the filters; one audit entry per removed row."""
        db = self._require_db()
        table = self.table

        with db.transaction():
            should_audit = db.audit_context.should_audit(table)
            rows_before = self._snapshot() if should_audit else []

            where_sql, where_params = self._compile_where()
            affected = db.execute(f"DELETE FROM {table}{where_sql}", where_params).rowcount

            if should_audit and affected > 0 and rows_before:
                from adminbase.services.audit import AuditTrail, diff_delete

                trail = AuditTrail(db)
                bulk = {"bulk": True} if len(rows_before) > 1 else None
                for row in rows_before:
                    changes = diff_delete(row, self.primary_key)
                    if changes:
                        trail.record("delete", table, _resource_id(row, self.primary_key), changes, bulk)

        return affected


def _flatten(columns: Sequence[Union[str, Sequence[str]]]) -> List[str]:
    flattened: List[str] = []
    for column in columns:
        if isinstance(column, (list, tuple)):
            flattened.extend(column)
        else:
            flattened.append(column)
    return flattened


def _non_negative(value: int, what: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise QueryValidationError(f"Invalid {what}: {value!r}")
    if number < 0:
        raise QueryValidationError(f"Invalid {what}: {value!r}")
    return number


def _resource_id(row: Dict[str, Any], primary_key: str) -> Optional[str]:
    value = row.get(primary_key)
    return str(value) if value is not None else None
