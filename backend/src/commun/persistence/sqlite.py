"""SQLite document store.

Each collection is a table of JSON documents keyed by identity. Queries
address document fields through ``json_extract`` and indexes are
expression indexes over the same paths.
"""

import json
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from commun.errors import BadRequestError, DuplicateKeyError
from commun.metadata.types import IndexDefinition
from commun.persistence.adapter import FindOptions, QueryResult, SortSpec
from commun.persistence.ids import is_valid_id, new_id

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_FIELD_NAME = re.compile(r"^[A-Za-z_]\w*(\.\w+)*$")

_COMPARISONS = {"$lt": "<", "$lte": "<=", "$gt": ">", "$gte": ">="}


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default, separators=(",", ":"))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sql_value(value: Any) -> Any:
    """Convert a filter value to what json_extract yields for it."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return _dumps(value)
    return value


def _like_pattern(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SQLiteDocumentStore:
    """Owns the SQLite connection and hands out one DAO per collection."""

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = str(db_path)
        self.conn: sqlite3.Connection | None = None
        self._collections: dict[str, SQLiteEntityDao] = {}

    def connect(self) -> None:
        """Establish database connection."""
        if self.conn is not None:
            return
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
        for dao in self._collections.values():
            dao._ready = False

    def collection(self, name: str) -> "SQLiteEntityDao":
        """Get the DAO of a collection. The table is created on first use."""
        if name not in self._collections:
            self._collections[name] = SQLiteEntityDao(self, name)
        return self._collections[name]


class SQLiteEntityDao:
    """EntityDao over one collection table."""

    def __init__(self, store: SQLiteDocumentStore, collection_name: str):
        if not _TABLE_NAME.match(collection_name):
            raise ValueError(f"Invalid collection name '{collection_name}'")
        self._store = store
        self.table = collection_name
        self.text_fields: list[str] = []
        self._ready = False

    @property
    def conn(self) -> sqlite3.Connection:
        conn = self._store.conn
        if conn is None:
            raise RuntimeError("Database not connected")
        if not self._ready:
            conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{self.table}" '
                "(id TEXT PRIMARY KEY, doc TEXT NOT NULL)"
            )
            conn.commit()
            self._ready = True
        return conn

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def find_one(self, filter: dict[str, Any]) -> dict[str, Any] | None:
        items = await self.find(filter, limit=1)
        return items[0] if items else None

    async def find_one_by_id(self, id: str) -> dict[str, Any] | None:
        if not is_valid_id(id):
            return None
        row = self.conn.execute(
            f'SELECT id, doc FROM "{self.table}" WHERE id = ?', [id.lower()]
        ).fetchone()
        return self._to_record(row) if row else None

    async def find(
        self,
        filter: dict[str, Any] | None = None,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        result = await self.find_and_return_cursor(
            filter or {}, FindOptions(sort=sort or [("id", 1)], limit=limit)
        )
        return result.items

    async def find_and_return_cursor(
        self,
        filter: dict[str, Any],
        options: FindOptions,
    ) -> QueryResult:
        """Query one page of records.

        Items are ordered by ``options.sort``; ``after``/``before`` cursors
        are applied as keyset conditions over the same sort keys.
        """
        where, params = self._compile(filter)
        clauses = [where]
        sort = options.sort or [("id", 1)]
        if options.after:
            clause, values = self._keyset(sort, options.after, forward=True)
            clauses.append(clause)
            params += values
        if options.before:
            clause, values = self._keyset(sort, options.before, forward=False)
            clauses.append(clause)
            params += values

        order = ", ".join(
            f"{self._field_expr(field)} {'DESC' if direction < 0 else 'ASC'}"
            for field, direction in sort
        )
        sql = (
            f'SELECT id, doc FROM "{self.table}" '
            f"WHERE {' AND '.join(f'({c})' for c in clauses)} "
            f"ORDER BY {order} LIMIT ? OFFSET ?"
        )
        limit = options.limit if options.limit is not None else -1
        rows = self.conn.execute(sql, [*params, limit, options.skip or 0]).fetchall()

        count = await self.count(filter) if options.count else None
        return QueryResult(items=[self._to_record(row) for row in rows], count=count)

    async def count(self, filter: dict[str, Any] | None = None) -> int:
        where, params = self._compile(filter or {})
        row = self.conn.execute(
            f'SELECT COUNT(*) FROM "{self.table}" WHERE {where}', params
        ).fetchone()
        return row[0]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert_one(self, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a record, generating its identity and timestamps.

        Raises:
            DuplicateKeyError: If a unique index rejects the record
        """
        doc = {k: v for k, v in data.items() if k != "id" and v is not None}
        now = _now()
        doc["createdAt"] = now
        doc["updatedAt"] = now
        record_id = new_id()

        self._write(
            f'INSERT INTO "{self.table}" (id, doc) VALUES (?, ?)',
            [record_id, _dumps(doc)],
        )
        return {"id": record_id, **json.loads(_dumps(doc))}

    async def update_one(self, id: str, data: dict[str, Any]) -> dict[str, Any] | None:
        """Set the given fields on a record; None values remove a field.

        Raises:
            DuplicateKeyError: If a unique index rejects the change
        """
        existing = await self.find_one_by_id(id)
        if existing is None:
            return None

        record_id = existing.pop("id")
        for key, value in data.items():
            if key in ("id", "createdAt"):
                continue
            if value is None:
                existing.pop(key, None)
            else:
                existing[key] = value
        existing["updatedAt"] = _now()

        self._write(
            f'UPDATE "{self.table}" SET doc = ? WHERE id = ?',
            [_dumps(existing), record_id],
        )
        return await self.find_one_by_id(record_id)

    async def delete_one(self, id: str) -> bool:
        if not is_valid_id(id):
            return False
        cursor = self.conn.execute(
            f'DELETE FROM "{self.table}" WHERE id = ?', [id.lower()]
        )
        self.conn.commit()
        return cursor.rowcount > 0

    async def create_indexes(self, indexes: list[IndexDefinition]) -> None:
        """Create expression indexes. Fields with direction "text" become
        the fields searched by ``$text``."""
        for index in indexes:
            columns = []
            for field, direction in index.keys.items():
                if direction == "text":
                    if field not in self.text_fields:
                        self.text_fields.append(field)
                    continue
                columns.append((field, direction))
            if not columns or [f for f, _ in columns] == ["id"]:
                continue

            name = index.name or "_".join(
                [self.table, *(f.replace(".", "_") for f, _ in columns)]
            )
            if not _TABLE_NAME.match(name):
                raise ValueError(f"Invalid index name '{name}'")
            exprs = ", ".join(
                f"{self._field_expr(f)}{' DESC' if d == -1 else ''}" for f, d in columns
            )
            sql = (
                f"CREATE {'UNIQUE ' if index.unique else ''}INDEX IF NOT EXISTS "
                f'"{name}" ON "{self.table}" ({exprs})'
            )
            if index.sparse:
                sql += " WHERE " + " AND ".join(
                    f"{self._field_expr(f)} IS NOT NULL" for f, _ in columns
                )
            self.conn.execute(sql)
        self.conn.commit()

    def _write(self, sql: str, params: list[Any]) -> None:
        try:
            self.conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            raise DuplicateKeyError(str(e)) from e
        self.conn.commit()

    # -------------------------------------------------------------------------
    # Query compilation
    # -------------------------------------------------------------------------

    def _field_expr(self, field: str) -> str:
        if field == "id":
            return "id"
        if not _FIELD_NAME.match(field):
            raise BadRequestError(f"Invalid field name '{field}'")
        path = "$"
        for segment in field.split("."):
            path += f"[{segment}]" if segment.isdigit() else f".{segment}"
        return f"json_extract(doc, '{path}')"

    def _compile(self, filter: dict[str, Any]) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for key, value in filter.items():
            if key in ("$and", "$or"):
                parts = [self._compile(sub) for sub in value or []]
                if not parts:
                    clauses.append("1" if key == "$and" else "0")
                    continue
                joiner = " AND " if key == "$and" else " OR "
                clauses.append(joiner.join(f"({sql})" for sql, _ in parts))
                for _, sub_params in parts:
                    params += sub_params
            elif key == "$text":
                clause, values = self._text_search(value)
                clauses.append(clause)
                params += values
            elif key.startswith("$"):
                raise BadRequestError(f"Unsupported query operator '{key}'")
            else:
                clause, values = self._field_condition(key, value)
                clauses.append(clause)
                params += values

        if not clauses:
            return "1", []
        return " AND ".join(f"({c})" for c in clauses), params

    def _field_condition(self, field: str, value: Any) -> tuple[str, list[Any]]:
        expr = self._field_expr(field)
        if not (isinstance(value, dict) and value and all(k.startswith("$") for k in value)):
            return self._equals(expr, value)

        clauses: list[str] = []
        params: list[Any] = []
        for op, operand in value.items():
            if op == "$eq":
                clause, values = self._equals(expr, operand)
            elif op == "$ne":
                if operand is None:
                    clause, values = f"{expr} IS NOT NULL", []
                else:
                    clause, values = f"({expr} IS NULL OR {expr} != ?)", [_sql_value(operand)]
            elif op in _COMPARISONS:
                clause, values = f"{expr} {_COMPARISONS[op]} ?", [_sql_value(operand)]
            elif op in ("$in", "$nin"):
                clause, values = self._membership(expr, list(operand or []), op == "$nin")
            elif op == "$exists":
                clause, values = f"{expr} IS {'NOT ' if operand else ''}NULL", []
            else:
                raise BadRequestError(f"Unsupported query operator '{op}'")
            clauses.append(clause)
            params += values
        return " AND ".join(f"({c})" for c in clauses), params

    def _equals(self, expr: str, value: Any) -> tuple[str, list[Any]]:
        if value is None:
            return f"{expr} IS NULL", []
        return f"{expr} = ?", [_sql_value(value)]

    def _membership(
        self, expr: str, values: list[Any], negate: bool
    ) -> tuple[str, list[Any]]:
        with_null = any(v is None for v in values)
        values = [_sql_value(v) for v in values if v is not None]
        placeholders = ", ".join("?" for _ in values)
        if negate:
            if not values:
                return (f"{expr} IS NOT NULL" if with_null else "1"), []
            clause = f"{expr} NOT IN ({placeholders})"
            if not with_null:
                clause = f"({expr} IS NULL OR {clause})"
            return clause, values
        if not values:
            return (f"{expr} IS NULL" if with_null else "0"), []
        clause = f"{expr} IN ({placeholders})"
        if with_null:
            clause = f"({clause} OR {expr} IS NULL)"
        return clause, values

    def _text_search(self, value: Any) -> tuple[str, list[Any]]:
        """Match any search term against the searched fields.

        ``$fields`` narrows the search to the given fields; otherwise the
        text-indexed fields are searched. With neither nothing matches.
        """
        if isinstance(value, dict):
            search = value.get("$search")
            fields = value.get("$fields")
        else:
            search, fields = value, None
        if fields is None:
            fields = self.text_fields
        terms = str(search or "").split()
        if not terms:
            return "1", []
        if not fields:
            return "0", []

        clauses: list[str] = []
        params: list[Any] = []
        for term in terms:
            pattern = _like_pattern(term)
            for field in fields:
                clauses.append(f"LOWER({self._field_expr(field)}) LIKE ? ESCAPE '\\'")
                params.append(pattern)
        return " OR ".join(clauses), params

    def _keyset(
        self,
        sort: SortSpec,
        values: dict[str, Any],
        forward: bool,
    ) -> tuple[str, list[Any]]:
        """Condition matching items strictly after (or before) a position."""
        alternatives: list[str] = []
        params: list[Any] = []
        for i, (field, direction) in enumerate(sort):
            parts: list[str] = []
            for prev_field, _ in sort[:i]:
                parts.append(f"{self._field_expr(prev_field)} IS ?")
                params.append(_sql_value(values.get(prev_field)))

            expr = self._field_expr(field)
            value = _sql_value(values.get(field))
            greater = (direction >= 0) == forward
            if greater:
                if value is None:
                    parts.append(f"{expr} IS NOT NULL")
                else:
                    parts.append(f"{expr} > ?")
                    params.append(value)
            else:
                if value is None:
                    parts.append("0")
                else:
                    parts.append(f"({expr} < ? OR {expr} IS NULL)")
                    params.append(value)
            alternatives.append(" AND ".join(parts))
        return " OR ".join(f"({a})" for a in alternatives), params

    @staticmethod
    def _to_record(row: sqlite3.Row) -> dict[str, Any]:
        return {"id": row["id"], **json.loads(row["doc"])}
