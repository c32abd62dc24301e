"""
SQLite document backend for smartrepo.

Stores each collection as one SQLite table of JSON documents:

    <collection>:
        - doc_id TEXT PRIMARY KEY (the record id)
        - body TEXT (JSON document, id included)

Filters are compiled to ``json_extract`` predicates, so equality, ``$in``,
``$gt`` and ``$ne`` on dotted paths run inside SQLite. Streaming reads come
back in ascending id order. Updates are read-modify-write inside a
``BEGIN IMMEDIATE`` transaction, which makes each single-record write
atomic.

Invariants:
    - One row per record, keyed by the record id
    - All single-record writes run in one transaction
    - Streaming reads hold their connection until drained or closed

How to change safely:
    - Keep filter semantics identical to InMemoryBackend
    - Test with WAL mode both on and off
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import AsyncIterator, Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import DuplicateIdError, ValidationError
from ..managed_fields import FieldMutations
from ..paths import split_path
from .base import GT, IN, NE, OPERATORS, InsertManyResult, apply_mutations

logger = logging.getLogger(__name__)

_SCALARS = (str, int, float, bool)


def _json_path(path: str) -> str:
    try:
        parts = split_path(path)
    except ValueError as exc:
        raise ValidationError(str(exc), field_name=path)
    if any('"' in part for part in parts):
        raise ValidationError(f"Unsupported field path: {path!r}", field_name=path)
    return "$" + "".join(f'."{part}"' for part in parts)


def _check_scalar(path: str, value: Any) -> Any:
    if not isinstance(value, _SCALARS):
        raise ValidationError(
            f"Unsupported filter value for '{path}': {type(value).__name__}",
            field_name=path,
        )
    return value


def _encode(document: Mapping[str, Any]) -> str:
    """Serialize a document body.

    Raises:
        ValidationError: If a field holds a value JSON cannot represent.
    """
    try:
        return json.dumps(dict(document))
    except (TypeError, ValueError) as exc:
        bad_field = None
        for key, value in document.items():
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                bad_field = str(key)
                break
        raise ValidationError(
            f"Document is not JSON serializable: {exc}", field_name=bad_field
        )


class SqliteBackend:
    """SQLite implementation of DocumentBackend.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> backend = SqliteBackend("/var/lib/app/tasks.db", collection="tasks")
        >>> await backend.insert_one({"id": "t1", "title": "My Task"})
        't1'
    """

    def __init__(
        self,
        db_path: str,
        collection: str = "documents",
        id_key: str = "id",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        fetch_size: int = 100,
    ) -> None:
        """Initialize the SQLite backend.

        Args:
            db_path: SQLite database file
            collection: Table name (letters, digits and underscores only)
            id_key: Field holding the record id
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            fetch_size: Rows fetched per round trip while streaming
        """
        if not collection or not all(c.isalnum() or c == "_" for c in collection):
            raise ValueError(f"Invalid collection name: {collection!r}")
        self.db_path = Path(db_path)
        self.collection = collection
        self.id_key = id_key
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.fetch_size = fetch_size
        self._schema_ready = False

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, creating the table on first use."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            if not self._schema_ready:
                self._create_schema(conn)
                self._schema_ready = True

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS "{self.collection}" (
                doc_id TEXT PRIMARY KEY,
                body TEXT NOT NULL
            )
            """
        )

    def _operand(self, path: str) -> tuple[str, list[Any]]:
        if path == self.id_key:
            return "doc_id", []
        return "json_extract(body, ?)", [_json_path(path)]

    def _compile_filter(self, filter: Mapping[str, Any]) -> tuple[str, list[Any]]:
        """Translate an equality/$in/$gt/$ne filter into a WHERE clause.

        Raises:
            ValidationError: If the filter uses values or operators SQLite
                cannot compare.
        """
        clauses: list[str] = []
        params: list[Any] = []
        for path, condition in filter.items():
            expr, expr_params = self._operand(path)
            if isinstance(condition, Mapping):
                if not condition or not set(condition) <= OPERATORS:
                    raise ValidationError(
                        f"Unsupported filter operator for '{path}': {sorted(condition)}",
                        field_name=path,
                    )
                if IN in condition:
                    values = [_check_scalar(path, v) for v in condition[IN]]
                    if not values:
                        clauses.append("0")
                    else:
                        clauses.append(f"{expr} IN ({', '.join('?' for _ in values)})")
                        params += expr_params + values
                if GT in condition:
                    clauses.append(f"{expr} > ?")
                    params += expr_params + [_check_scalar(path, condition[GT])]
                if NE in condition:
                    if condition[NE] is None:
                        clauses.append(f"{expr} IS NOT NULL")
                        params += expr_params
                    else:
                        clauses.append(f"({expr} IS NULL OR {expr} != ?)")
                        params += expr_params + expr_params + [_check_scalar(path, condition[NE])]
            elif condition is None:
                clauses.append(f"{expr} IS NULL")
                params += expr_params
            else:
                clauses.append(f"{expr} = ?")
                params += expr_params + [_check_scalar(path, condition)]
        return " AND ".join(clauses) or "1", params

    def _record_id(self, document: Mapping[str, Any]) -> str:
        record_id = document.get(self.id_key)
        if not isinstance(record_id, str) or not record_id:
            raise ValidationError(
                f"Document requires a string '{self.id_key}'", field_name=self.id_key
            )
        return record_id

    def _insert(self, conn: sqlite3.Connection, document: Mapping[str, Any]) -> str:
        record_id = self._record_id(document)
        try:
            conn.execute(
                f'INSERT INTO "{self.collection}" (doc_id, body) VALUES (?, ?)',
                (record_id, _encode(document)),
            )
        except sqlite3.IntegrityError:
            raise DuplicateIdError(record_id)
        return record_id

    async def insert_one(self, document: Mapping[str, Any]) -> str:
        with self._get_connection() as conn:
            record_id = self._insert(conn, document)

        logger.debug(
            "Document inserted",
            extra={"collection": self.collection, "record_id": record_id},
        )
        return record_id

    async def insert_many(self, documents: Sequence[Mapping[str, Any]]) -> InsertManyResult:
        result = InsertManyResult()
        with self._get_connection() as conn:
            for document in documents:
                try:
                    result.inserted_ids.append(self._insert(conn, document))
                except ValidationError as exc:
                    failed_id = str(document.get(self.id_key))
                    result.failed_ids.append(failed_id)
                    result.errors[failed_id] = exc.message

        logger.debug(
            "Documents inserted",
            extra={
                "collection": self.collection,
                "inserted": len(result.inserted_ids),
                "failed": len(result.failed_ids),
            },
        )
        return result

    async def find_one(self, filter: Mapping[str, Any]) -> dict[str, Any] | None:
        where, params = self._compile_filter(filter)
        with self._get_connection() as conn:
            row = conn.execute(
                f'SELECT body FROM "{self.collection}" WHERE {where} ORDER BY rowid LIMIT 1',
                params,
            ).fetchone()
        return json.loads(row["body"]) if row else None

    async def find_many(self, filter: Mapping[str, Any]) -> AsyncIterator[dict[str, Any]]:
        where, params = self._compile_filter(filter)
        with self._get_connection() as conn:
            cursor = conn.execute(
                f'SELECT body FROM "{self.collection}" WHERE {where} ORDER BY doc_id',
                params,
            )
            while True:
                rows = cursor.fetchmany(self.fetch_size)
                if not rows:
                    break
                for row in rows:
                    yield json.loads(row["body"])

    async def update_one(self, filter: Mapping[str, Any], mutations: FieldMutations) -> bool:
        where, params = self._compile_filter(filter)
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    f'SELECT doc_id, body FROM "{self.collection}" '
                    f"WHERE {where} ORDER BY rowid LIMIT 1",
                    params,
                ).fetchone()
                if not row:
                    conn.execute("ROLLBACK")
                    return False

                document = apply_mutations(json.loads(row["body"]), mutations)
                conn.execute(
                    f'UPDATE "{self.collection}" SET body = ? WHERE doc_id = ?',
                    (_encode(document), row["doc_id"]),
                )

                conn.execute("COMMIT")

            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Document updated",
            extra={"collection": self.collection, "record_id": row["doc_id"]},
        )
        return True

    async def delete_one(self, filter: Mapping[str, Any]) -> bool:
        where, params = self._compile_filter(filter)
        with self._get_connection() as conn:
            cursor = conn.execute(
                f'DELETE FROM "{self.collection}" WHERE doc_id = ('
                f'SELECT doc_id FROM "{self.collection}" WHERE {where} ORDER BY rowid LIMIT 1)',
                params,
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug("Document deleted", extra={"collection": self.collection})
        return deleted

    async def count(self, filter: Mapping[str, Any]) -> int:
        where, params = self._compile_filter(filter)
        with self._get_connection() as conn:
            row = conn.execute(
                f'SELECT COUNT(*) AS n FROM "{self.collection}" WHERE {where}', params
            ).fetchone()
        return int(row["n"])
