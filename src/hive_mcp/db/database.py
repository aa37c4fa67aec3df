from __future__ import annotations

import asyncio
import base64
import json
import logging
import uuid
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Awaitable, TypeVar

import aiosqlite

from hive_mcp.db.predicates import (
    All,
    AnyOf,
    Exists,
    FieldPath,
    Missing,
    NoneOf,
    Predicate,
    Term,
)
from hive_mcp.errors import NotFound, StoreUnavailable, ValidationError

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/hive.db")

RECORD_KINDS = frozenset({"projects", "tasks", "assets", "assignments", "users"})

T = TypeVar("T")


@dataclass
class QueryResult:
    records: list[dict[str, Any]]
    total: int


@dataclass
class AggregateBucket:
    """Documents sharing one ``group_by`` value, with optional nested tallies."""

    key: Any
    count: int = 0
    groups: dict[Any, int] = field(default_factory=dict)


def generate_id() -> str:
    """Return a 22 character url-safe identifier."""
    return base64.urlsafe_b64encode(uuid.uuid4().bytes).rstrip(b"=").decode("ascii")


def _json_path(path: FieldPath) -> str:
    for part in path:
        if not part or '"' in part:
            raise ValidationError(f"Invalid field name {part!r} in {'.'.join(path)!r}")
    return "$" + "".join(f'."{part}"' for part in path)


def _sql_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        raise ValidationError(f"Only scalar values can be matched, got {type(value).__name__}")
    return value


def compile_predicate(predicate: Predicate) -> tuple[str, list[Any]]:
    """Translate a predicate into a SQL condition over the ``body`` column."""
    if isinstance(predicate, Term):
        if predicate.value is None:
            return compile_predicate(Missing(predicate.path))
        return "json_extract(body, ?) = ?", [
            _json_path(predicate.path),
            _sql_value(predicate.value),
        ]
    if isinstance(predicate, Missing):
        return "json_extract(body, ?) IS NULL", [_json_path(predicate.path)]
    if isinstance(predicate, Exists):
        return "json_extract(body, ?) IS NOT NULL", [_json_path(predicate.path)]
    if isinstance(predicate, AnyOf):
        if not predicate.values:
            return "0", []
        placeholders = ", ".join("?" for _ in predicate.values)
        return f"json_extract(body, ?) IN ({placeholders})", [
            _json_path(predicate.path),
            *(_sql_value(v) for v in predicate.values),
        ]
    if isinstance(predicate, NoneOf):
        if not predicate.values:
            return "1", []
        path = _json_path(predicate.path)
        placeholders = ", ".join("?" for _ in predicate.values)
        return (
            f"(json_extract(body, ?) IS NULL OR json_extract(body, ?) NOT IN ({placeholders}))",
            [path, path, *(_sql_value(v) for v in predicate.values)],
        )
    if isinstance(predicate, All):
        if not predicate.conditions:
            return "1", []
        clauses: list[str] = []
        params: list[Any] = []
        for condition in predicate.conditions:
            sql, condition_params = compile_predicate(condition)
            clauses.append(f"({sql})")
            params.extend(condition_params)
        return " AND ".join(clauses), params
    raise TypeError(f"Unsupported predicate: {predicate!r}")


class Database:
    """Async SQLite document store backing every Hive record kind.

    Records are JSON documents keyed by ``(kind, id)``. Queries take typed
    predicates from :mod:`hive_mcp.db.predicates`. A single persistent
    connection in WAL mode serves all requests; every call is bounded by
    ``timeout`` and driver failures surface as ``StoreUnavailable``.
    """

    def __init__(self, db_path: str | Path | None = None, timeout: float = 10.0):
        self.db_path = Path(db_path) if db_path else _DEFAULT_DB_PATH
        self.timeout = timeout
        self._conn: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the database file, apply the schema, and open the persistent connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        schema_sql = resources.files("hive_mcp.db").joinpath("schema.sql").read_text()

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

        logger.info("Record store initialized at %s", self.db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        assert self._conn is not None, "Database not initialized; call initialize() first"
        return self._conn

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    async def put(self, kind: str, record_id: str | None, record: dict[str, Any]) -> str:
        """Insert or replace a record; an empty id asks the store for a new one."""
        _check_kind(kind)
        record_id = record_id or generate_id()
        body = json.dumps(record)

        async def _write() -> None:
            await self.conn.execute(
                """
                INSERT INTO records (kind, id, body)
                VALUES (?, ?, ?)
                ON CONFLICT(kind, id) DO UPDATE SET
                    body = excluded.body,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (kind, record_id, body),
            )
            await self.conn.commit()

        await self._guard(_write())
        return record_id

    async def get(self, kind: str, record_id: str) -> dict[str, Any]:
        _check_kind(kind)

        async def _read() -> aiosqlite.Row | None:
            cursor = await self.conn.execute(
                "SELECT body FROM records WHERE kind = ? AND id = ?",
                (kind, record_id),
            )
            return await cursor.fetchone()

        row = await self._guard(_read())
        if row is None:
            raise NotFound(kind.rstrip("s"), record_id)
        return json.loads(row["body"])

    async def delete(self, kind: str, record_id: str) -> bool:
        _check_kind(kind)

        async def _delete() -> int:
            cursor = await self.conn.execute(
                "DELETE FROM records WHERE kind = ? AND id = ?",
                (kind, record_id),
            )
            await self.conn.commit()
            return cursor.rowcount

        return await self._guard(_delete()) > 0

    async def query(
        self,
        kind: str,
        predicate: Predicate | None = None,
        sort: tuple[FieldPath, str] | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> QueryResult:
        """Return matching records (insertion order unless ``sort`` is given) and the total."""
        _check_kind(kind)
        where, params = compile_predicate(predicate or All())

        order_sql = "rowid ASC"
        order_params: list[Any] = []
        if sort is not None:
            sort_path, direction = sort
            if direction.lower() not in ("asc", "desc"):
                raise ValidationError(f"Invalid sort direction {direction!r}")
            order_sql = f"json_extract(body, ?) {direction.upper()}, rowid ASC"
            order_params = [_json_path(sort_path)]

        async def _read() -> tuple[list[aiosqlite.Row], int]:
            cursor = await self.conn.execute(
                f"SELECT COUNT(*) AS n FROM records WHERE kind = ? AND {where}",
                (kind, *params),
            )
            total = (await cursor.fetchone())["n"]
            cursor = await self.conn.execute(
                f"""
                SELECT body FROM records
                WHERE kind = ? AND {where}
                ORDER BY {order_sql}
                LIMIT ? OFFSET ?
                """,
                (kind, *params, *order_params, -1 if limit is None else limit, offset),
            )
            return await cursor.fetchall(), total

        rows, total = await self._guard(_read())
        return QueryResult(records=[json.loads(row["body"]) for row in rows], total=total)

    async def count(self, kind: str, predicate: Predicate | None = None) -> int:
        result = await self.query(kind, predicate, limit=0)
        return result.total

    async def aggregate(
        self,
        kind: str,
        predicate: Predicate | None,
        group_by: FieldPath,
        nested_group_by: FieldPath | None = None,
        min_count: int = 1,
    ) -> dict[Any, AggregateBucket]:
        """Tally matching records by ``group_by`` (and optionally a nested field).

        Buckets with fewer than ``min_count`` documents are dropped.
        """
        _check_kind(kind)
        where, params = compile_predicate(predicate or All())
        outer = _json_path(group_by)
        inner = _json_path(nested_group_by) if nested_group_by else None

        if inner is None:
            sql = f"""
                SELECT json_extract(body, ?) AS outer_key, NULL AS inner_key, COUNT(*) AS n
                FROM records WHERE kind = ? AND {where}
                GROUP BY outer_key
            """
            sql_params = (outer, kind, *params)
        else:
            sql = f"""
                SELECT json_extract(body, ?) AS outer_key,
                       json_extract(body, ?) AS inner_key,
                       COUNT(*) AS n
                FROM records WHERE kind = ? AND {where}
                GROUP BY outer_key, inner_key
            """
            sql_params = (outer, inner, kind, *params)

        async def _read() -> list[aiosqlite.Row]:
            cursor = await self.conn.execute(sql, sql_params)
            return await cursor.fetchall()

        buckets: dict[Any, AggregateBucket] = {}
        for row in await self._guard(_read()):
            bucket = buckets.setdefault(row["outer_key"], AggregateBucket(key=row["outer_key"]))
            bucket.count += row["n"]
            if inner is not None:
                bucket.groups[row["inner_key"]] = row["n"]
        return {key: b for key, b in buckets.items() if b.count >= min_count}

    async def refresh(self) -> None:
        """Make every write issued so far durable and visible to other readers."""

        async def _commit() -> None:
            await self.conn.commit()

        await self._guard(_commit())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _guard(self, operation: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Record store call timed out after %.1fs", self.timeout)
            raise StoreUnavailable(f"Record store timed out after {self.timeout}s") from exc
        except aiosqlite.Error as exc:
            logger.error("Record store failure: %s", exc)
            raise StoreUnavailable(str(exc)) from exc


def _check_kind(kind: str) -> None:
    if kind not in RECORD_KINDS:
        raise ValueError(f"Unknown record kind {kind!r}")
