"""Persistence collaborator: protocol and SQLite-backed record history."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlparse

from polyadmin.errors import (
    ConflictError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from polyadmin.filters import (
    ComparisonExpression,
    FilterExpression,
    LogicalExpression,
    validate_field_name,
)
from polyadmin.handlers import HandlerContext, HandlerMeta, handler_meta
from polyadmin.registry import TypeDescriptor, TypeRegistry

logger = logging.getLogger(__name__)


def _compile_filter(expr: FilterExpression, params: list[Any], *, table_alias: str = "") -> str:
    """Compile a FilterExpression tree into a SQL WHERE clause fragment."""
    if isinstance(expr, ComparisonExpression):
        return _compile_comparison(expr, params, table_alias=table_alias)
    elif isinstance(expr, LogicalExpression):
        if expr.op == "NOT":
            child_sql = _compile_filter(expr.children[0], params, table_alias=table_alias)
            return f"NOT ({child_sql})"
        elif expr.op in ("AND", "OR"):
            parts = [_compile_filter(c, params, table_alias=table_alias) for c in expr.children]
            joiner = f" {expr.op} "
            return f"({joiner.join(parts)})"
    raise ValueError(f"Unknown filter expression type: {type(expr)}")


def _json_col(field_name: str, table_alias: str) -> str:
    validate_field_name(field_name)
    prefix = f"{table_alias}." if table_alias else ""
    return f"json_extract({prefix}fields_json, '$.{field_name}')"


def _compile_comparison(
    expr: ComparisonExpression, params: list[Any], *, table_alias: str = ""
) -> str:
    """Compile a single comparison expression to SQL."""
    if not expr.field_path.startswith("$."):
        raise ValueError(f"Invalid field path: {expr.field_path}")
    json_col = _json_col(expr.field_path[2:], table_alias)

    op = expr.op
    if op == "IS_NULL":
        return f"{json_col} IS NULL"
    elif op == "IS_NOT_NULL":
        return f"{json_col} IS NOT NULL"
    elif op == "IN":
        if not expr.value:
            return "0"
        placeholders = ", ".join("?" for _ in expr.value)
        params.extend(expr.value)
        return f"{json_col} IN ({placeholders})"
    elif op == "LIKE":
        params.append(expr.value)
        return f"{json_col} LIKE ?"
    else:
        sql_op = {"==": "=", "!=": "!=", ">": ">", ">=": ">=", "<": "<", "<=": "<="}[op]
        params.append(expr.value)
        return f"{json_col} {sql_op} ?"


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from db_path and URI forms."""

    backend: str
    uri: str
    db_path: str


def parse_storage_target(
    db_path: str | None = None,
    storage_uri: str | None = None,
) -> StorageTarget:
    """Resolve backend target from a bare db_path or a sqlite:// URI."""
    if storage_uri is None and db_path is None:
        db_path = "admin.db"

    if storage_uri is None and db_path is not None:
        return StorageTarget(backend="sqlite", uri=f"sqlite:///{db_path}", db_path=db_path)

    assert storage_uri is not None
    parsed = urlparse(storage_uri)

    if parsed.scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("//"):
            # sqlite:////abs/path -> /abs/path
            sqlite_path = sqlite_path[1:]
        elif sqlite_path.startswith("/") and not sqlite_path.startswith("//"):
            # sqlite:///relative.db -> relative.db
            sqlite_path = sqlite_path[1:]
        if not sqlite_path:
            raise ServiceError(f"Invalid sqlite URI: {storage_uri}")
        if db_path is not None and os.path.abspath(db_path) != os.path.abspath(sqlite_path):
            raise ServiceError(f"Conflicting db_path '{db_path}' and storage_uri '{storage_uri}'")
        return StorageTarget(backend="sqlite", uri=storage_uri, db_path=sqlite_path)

    raise ServiceError(f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'")


@runtime_checkable
class PersistenceProtocol(Protocol):
    """Contract the admin service needs from a storage engine.

    Record rows are dicts with ``id``, ``type``, ``fields`` and ``version``.
    """

    @property
    def registry(self) -> TypeRegistry: ...

    def describe(self, type_name: str) -> TypeDescriptor | None: ...

    def query_records(
        self,
        type_name: str,
        *,
        filter_expr: FilterExpression | None = None,
        order_by: list[tuple[str, bool]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        custom_criteria: tuple[str, ...] = (),
    ) -> list[dict[str, Any]]: ...

    def count_records(
        self,
        type_name: str,
        *,
        filter_expr: FilterExpression | None = None,
        custom_criteria: tuple[str, ...] = (),
    ) -> int: ...

    def get_record(self, type_name: str, record_id: str) -> dict[str, Any] | None: ...

    def find_previously_keyed(
        self,
        type_name: str,
        key_field: str,
        key_value: Any,
        *,
        filter_expr: FilterExpression | None = None,
    ) -> list[dict[str, Any]]: ...

    def insert_record(
        self,
        type_name: str,
        record_id: str,
        fields: dict[str, Any],
        *,
        custom_criteria: tuple[str, ...] = (),
    ) -> dict[str, Any]: ...

    def update_record(
        self,
        type_name: str,
        record_id: str,
        fields: dict[str, Any],
        *,
        expected_version: int | None = None,
        custom_criteria: tuple[str, ...] = (),
    ) -> dict[str, Any]: ...

    def delete_record(
        self,
        type_name: str,
        record_id: str,
        *,
        expected_version: int | None = None,
        custom_criteria: tuple[str, ...] = (),
    ) -> None: ...

    def transaction(self, *, readonly: bool = False) -> Any: ...

    def register_handler(self, func: Callable[[HandlerContext], Any]) -> None: ...

    def close(self) -> None: ...


_LATEST_JOIN = (
    "FROM record_history rh "
    "INNER JOIN ("
    "  SELECT record_id, MAX(commit_id) AS max_cid, MIN(commit_id) AS first_cid "
    "  FROM record_history WHERE root_type = ? GROUP BY record_id"
    ") latest ON rh.record_id = latest.record_id AND rh.commit_id = latest.max_cid "
    "WHERE rh.root_type = ? AND rh.deleted = 0"
)


class SqliteRepository:
    """SQLite-backed, append-only record history for registered types.

    Every write appends a row under a new commit; the row's commit id is the
    record's version. Removal appends a tombstone.
    """

    def __init__(self, db_path: str, registry: TypeRegistry, *, timeout_s: float = 5.0) -> None:
        self.db_path = db_path
        self._registry = registry
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._handlers: dict[str, list[tuple[HandlerMeta, Callable[[HandlerContext], Any]]]] = {}
        self._conn = sqlite3.connect(
            db_path, timeout=timeout_s, isolation_level=None, check_same_thread=False
        )
        self._conn.execute("PRAGMA foreign_keys=ON")
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS commits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                metadata_json TEXT
            );

            CREATE TABLE IF NOT EXISTS record_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                root_type TEXT NOT NULL,
                record_type TEXT NOT NULL,
                record_id TEXT NOT NULL,
                fields_json TEXT NOT NULL,
                deleted INTEGER NOT NULL DEFAULT 0,
                commit_id INTEGER NOT NULL,
                FOREIGN KEY (commit_id) REFERENCES commits(id)
            );

            CREATE INDEX IF NOT EXISTS idx_record_history_lookup
                ON record_history(root_type, record_id, commit_id DESC);
        """)

    @property
    def registry(self) -> TypeRegistry:
        return self._registry

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def describe(self, type_name: str) -> TypeDescriptor | None:
        return self._registry.descriptor(type_name)

    def _family(self, type_name: str) -> tuple[str, tuple[str, ...]]:
        if type_name not in self._registry:
            raise NotFoundError("Type", type_name)
        return self._registry.root(type_name), self._registry.family(type_name)

    # --- Errors and transactions ---

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.OperationalError as e:
            msg = str(e).lower()
            if "locked" in msg or "busy" in msg:
                raise ConflictError(f"Storage contention during {operation}: {e}") from e
            raise ServiceError(f"Storage backend error during {operation}: {e}") from e
        except sqlite3.Error as e:
            raise ServiceError(f"Storage backend error during {operation}: {e}") from e

    @contextmanager
    def transaction(self, *, readonly: bool = False) -> Iterator[None]:
        """Run the enclosed calls atomically; nested calls join the outer one."""
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield
                finally:
                    self._tx_depth -= 1
                return
            with self._guard("begin"):
                self._conn.execute("BEGIN" if readonly else "BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                self._tx_depth = 0
                self._conn.execute("ROLLBACK")
                raise
            self._tx_depth = 0
            with self._guard("commit"):
                self._conn.execute("COMMIT")

    # --- Custom criteria handlers ---

    def register_handler(self, func: Callable[[HandlerContext], Any]) -> None:
        meta = handler_meta(func)
        entries = self._handlers.setdefault(meta.token, [])
        entries.append((meta, func))
        entries.sort(key=lambda e: e[0].priority)

    def _run_handlers(self, ctx: HandlerContext) -> None:
        for token in ctx.custom_criteria:
            entries = self._handlers.get(token)
            if not entries:
                logger.debug("ignoring custom criteria %r: no handler registered", token)
                continue
            for meta, func in entries:
                if ctx.operation not in meta.operations:
                    continue
                if meta.type_names and ctx.type_name not in meta.type_names:
                    continue
                func(ctx)

    # --- Reads ---

    @staticmethod
    def _row(r: tuple[Any, ...]) -> dict[str, Any]:
        return {"id": r[0], "type": r[1], "fields": json.loads(r[2]), "version": r[3]}

    def _select(
        self,
        type_name: str,
        filter_expr: FilterExpression | None,
        params: list[Any],
    ) -> str:
        root, family = self._family(type_name)
        params.extend([root, root])
        sql = _LATEST_JOIN
        placeholders = ", ".join("?" for _ in family)
        sql += f" AND rh.record_type IN ({placeholders})"
        params.extend(family)
        if filter_expr is not None:
            sql += f" AND {_compile_filter(filter_expr, params, table_alias='rh')}"
        return sql

    def _fetch_filters(
        self,
        type_name: str,
        filter_expr: FilterExpression | None,
        custom_criteria: tuple[str, ...],
    ) -> FilterExpression | None:
        if not custom_criteria:
            return filter_expr
        ctx = HandlerContext(
            operation="fetch",
            type_name=type_name,
            record_id=None,
            values={},
            custom_criteria=custom_criteria,
        )
        self._run_handlers(ctx)
        exprs = [e for e in [filter_expr, *ctx.filters] if e is not None]
        if not exprs:
            return None
        if len(exprs) == 1:
            return exprs[0]
        return LogicalExpression(op="AND", children=exprs)

    def query_records(
        self,
        type_name: str,
        *,
        filter_expr: FilterExpression | None = None,
        order_by: list[tuple[str, bool]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        custom_criteria: tuple[str, ...] = (),
    ) -> list[dict[str, Any]]:
        """Latest live version of every matching record in the type's family."""
        filter_expr = self._fetch_filters(type_name, filter_expr, custom_criteria)
        params: list[Any] = []
        sql = "SELECT rh.record_id, rh.record_type, rh.fields_json, rh.commit_id " + self._select(
            type_name, filter_expr, params
        )
        order_parts = [
            f"{_json_col(name, 'rh')} {'DESC' if desc else 'ASC'}" for name, desc in order_by or []
        ]
        order_parts.append("latest.first_cid ASC")
        sql += " ORDER BY " + ", ".join(order_parts)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
            if offset:
                sql += " OFFSET ?"
                params.append(offset)
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(offset)
        with self._lock, self._guard("query_records"):
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row(r) for r in rows]

    def count_records(
        self,
        type_name: str,
        *,
        filter_expr: FilterExpression | None = None,
        custom_criteria: tuple[str, ...] = (),
    ) -> int:
        filter_expr = self._fetch_filters(type_name, filter_expr, custom_criteria)
        params: list[Any] = []
        sql = "SELECT COUNT(*) " + self._select(type_name, filter_expr, params)
        with self._lock, self._guard("count_records"):
            row = self._conn.execute(sql, params).fetchone()
        return row[0] if row else 0

    def _latest(self, root: str, record_id: str) -> tuple[Any, ...] | None:
        return self._conn.execute(
            "SELECT record_id, record_type, fields_json, commit_id, deleted "
            "FROM record_history WHERE root_type = ? AND record_id = ? "
            "ORDER BY commit_id DESC LIMIT 1",
            (root, record_id),
        ).fetchone()

    def get_record(self, type_name: str, record_id: str) -> dict[str, Any] | None:
        root, family = self._family(type_name)
        with self._lock, self._guard("get_record"):
            row = self._latest(root, record_id)
        if row is None or row[4] or row[1] not in family:
            return None
        return self._row(row)

    def find_previously_keyed(
        self,
        type_name: str,
        key_field: str,
        key_value: Any,
        *,
        filter_expr: FilterExpression | None = None,
    ) -> list[dict[str, Any]]:
        """Live records whose history ever held ``key_field == key_value``.

        Most recently changed first.
        """
        params: list[Any] = []
        sql = "SELECT rh.record_id, rh.record_type, rh.fields_json, rh.commit_id " + self._select(
            type_name, filter_expr, params
        )
        sql += (
            " AND EXISTS (SELECT 1 FROM record_history past "
            "WHERE past.root_type = rh.root_type AND past.record_id = rh.record_id "
            f"AND {_json_col(key_field, 'past')} = ?)"
            " ORDER BY rh.commit_id DESC"
        )
        params.append(key_value)
        with self._lock, self._guard("find_previously_keyed"):
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row(r) for r in rows]

    # --- Writes ---

    def _append(
        self,
        root: str,
        record_type: str,
        record_id: str,
        fields: dict[str, Any],
        *,
        deleted: bool,
        operation: str,
    ) -> int:
        now = datetime.now(timezone.utc).isoformat()
        cursor = self._conn.execute(
            "INSERT INTO commits (created_at, metadata_json) VALUES (?, ?)",
            (now, json.dumps({"operation": operation, "type": record_type, "id": record_id})),
        )
        commit_id: int = cursor.lastrowid  # type: ignore[assignment]
        self._conn.execute(
            "INSERT INTO record_history "
            "(root_type, record_type, record_id, fields_json, deleted, commit_id) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (root, record_type, record_id, json.dumps(fields), int(deleted), commit_id),
        )
        return commit_id

    def _write_handlers(
        self,
        operation: str,
        type_name: str,
        record_id: str,
        fields: dict[str, Any],
        custom_criteria: tuple[str, ...],
    ) -> dict[str, Any]:
        if not custom_criteria:
            return fields
        ctx = HandlerContext(
            operation=operation,
            type_name=type_name,
            record_id=record_id,
            values=dict(fields),
            custom_criteria=custom_criteria,
        )
        self._run_handlers(ctx)
        return ctx.values

    def insert_record(
        self,
        type_name: str,
        record_id: str,
        fields: dict[str, Any],
        *,
        custom_criteria: tuple[str, ...] = (),
    ) -> dict[str, Any]:
        root, _ = self._family(type_name)
        fields = self._write_handlers("add", type_name, record_id, fields, custom_criteria)
        with self.transaction(), self._guard("insert_record"):
            existing = self._latest(root, record_id)
            if existing is not None:
                if existing[4]:
                    raise ValidationError(
                        f"{root} '{record_id}' was removed and cannot be added again"
                    )
                raise ValidationError(f"{root} '{record_id}' already exists")
            version = self._append(
                root, type_name, record_id, fields, deleted=False, operation="add"
            )
        logger.debug("inserted %s %s at version %d", type_name, record_id, version)
        return {"id": record_id, "type": type_name, "fields": fields, "version": version}

    def _require_live(
        self, type_name: str, record_id: str, expected_version: int | None
    ) -> tuple[str, tuple[Any, ...]]:
        root, family = self._family(type_name)
        existing = self._latest(root, record_id)
        if existing is None or existing[4] or existing[1] not in family:
            raise NotFoundError(type_name, record_id)
        if expected_version is not None and existing[3] != expected_version:
            raise ConflictError(
                f"{type_name} '{record_id}' changed since version {expected_version}",
                expected_version=expected_version,
                actual_version=existing[3],
            )
        return root, existing

    def update_record(
        self,
        type_name: str,
        record_id: str,
        fields: dict[str, Any],
        *,
        expected_version: int | None = None,
        custom_criteria: tuple[str, ...] = (),
    ) -> dict[str, Any]:
        fields = self._write_handlers("update", type_name, record_id, fields, custom_criteria)
        with self.transaction(), self._guard("update_record"):
            root, existing = self._require_live(type_name, record_id, expected_version)
            record_type = existing[1]
            version = self._append(
                root, record_type, record_id, fields, deleted=False, operation="update"
            )
        logger.debug("updated %s %s to version %d", record_type, record_id, version)
        return {"id": record_id, "type": record_type, "fields": fields, "version": version}

    def delete_record(
        self,
        type_name: str,
        record_id: str,
        *,
        expected_version: int | None = None,
        custom_criteria: tuple[str, ...] = (),
    ) -> None:
        with self.transaction(), self._guard("delete_record"):
            root, existing = self._require_live(type_name, record_id, expected_version)
            fields = json.loads(existing[2])
            self._write_handlers("remove", existing[1], record_id, fields, custom_criteria)
            self._append(root, existing[1], record_id, fields, deleted=True, operation="remove")
        logger.debug("removed %s %s", existing[1], record_id)


def open_repository(
    registry: TypeRegistry,
    db_path: str | None = None,
    *,
    storage_uri: str | None = None,
    timeout_s: float = 5.0,
) -> SqliteRepository:
    """Open a repository for a db_path or sqlite:// storage URI."""
    target = parse_storage_target(db_path=db_path, storage_uri=storage_uri)
    return SqliteRepository(target.db_path, registry, timeout_s=timeout_s)
