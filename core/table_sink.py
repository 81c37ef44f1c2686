#!/usr/bin/env python3
"""
PostgreSQL storage sink for inferred tables.

provision() creates the target table from a TableSchema, always adding an
auto-incrementing ``id`` and a write-time ``created_at`` column. A table that
already has exactly that layout is reused with its rows; one with a different
layout is dropped and recreated. write_batch() inserts a batch of typed rows
in a single transaction.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import psycopg
from psycopg import sql
from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool

from .config import DatabaseConfig
from .errors import StorageError
from .schema import (
    DEFAULT_VARCHAR_LENGTH,
    MAX_IDENTIFIER_LENGTH,
    ColumnSchema,
    InferredType,
    TableSchema,
    TypedRow,
)

logger = logging.getLogger(__name__)

SQL_TYPES = {
    InferredType.INT: "INTEGER",
    InferredType.BIGINT: "BIGINT",
    InferredType.FLOAT: "FLOAT",
    InferredType.DATE: "DATE",
    InferredType.TIMESTAMP: "TIMESTAMP",
    InferredType.BOOLEAN: "BOOLEAN",
    InferredType.TEXT: "TEXT",
}

# data_type as reported by information_schema.columns
CATALOG_TYPES = {
    InferredType.INT: "integer",
    InferredType.BIGINT: "bigint",
    InferredType.FLOAT: "double precision",
    InferredType.DATE: "date",
    InferredType.TIMESTAMP: "timestamp without time zone",
    InferredType.BOOLEAN: "boolean",
    InferredType.TEXT: "text",
}

ColumnLayout = Tuple[str, str, Optional[int]]


def column_type_sql(column: ColumnSchema) -> str:
    """Storage column type for an inferred column"""
    if column.type is InferredType.VARCHAR:
        return f"VARCHAR({column.max_length or DEFAULT_VARCHAR_LENGTH})"
    return SQL_TYPES[column.type]


def expected_layout(schema: TableSchema) -> List[ColumnLayout]:
    """(name, data_type, length) rows information_schema reports for a table built from ``schema``"""
    layout = [("id", "bigint", None)]
    for column in schema.columns:
        if column.type is InferredType.VARCHAR:
            layout.append((column.name, "character varying", column.max_length or DEFAULT_VARCHAR_LENGTH))
        else:
            layout.append((column.name, CATALOG_TYPES[column.type], None))
    layout.append(("created_at", "timestamp without time zone", None))
    return layout


@dataclass(frozen=True)
class SinkHandle:
    """A provisioned table and the schema it was created from"""
    table_name: str
    schema: TableSchema
    namespace: Optional[str] = None

    @property
    def identifier(self) -> sql.Identifier:
        if self.namespace:
            return sql.Identifier(self.namespace, self.table_name)
        return sql.Identifier(self.table_name)


def layout_query(handle: SinkHandle) -> sql.Composed:
    return sql.SQL(
        "SELECT column_name, data_type, character_maximum_length "
        "FROM information_schema.columns "
        "WHERE table_schema = {} AND table_name = {} "
        "ORDER BY ordinal_position"
    ).format(
        sql.Literal(handle.namespace) if handle.namespace else sql.SQL("current_schema()"),
        sql.Literal(handle.table_name),
    )


def create_table_statements(handle: SinkHandle, replace: bool = False) -> List[sql.Composed]:
    """CREATE TABLE + created_at index for ``handle``, preceded by a DROP when ``replace``"""
    columns = [
        sql.SQL("{} {}").format(sql.Identifier(column.name), sql.SQL(column_type_sql(column)))
        for column in handle.schema.columns
    ]
    index_name = f"idx_{handle.table_name}_created_at"[:MAX_IDENTIFIER_LENGTH]

    statements = []
    if replace:
        statements.append(sql.SQL("DROP TABLE IF EXISTS {}").format(handle.identifier))
    statements.extend([
        sql.SQL(
            "CREATE TABLE IF NOT EXISTS {} ("
            "id BIGSERIAL PRIMARY KEY, "
            "{}"
            "created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP)"
        ).format(
            handle.identifier,
            sql.SQL("").join(sql.SQL("{}, ").format(column) for column in columns),
        ),
        sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} (created_at)").format(
            sql.Identifier(index_name), handle.identifier
        ),
    ])
    return statements


def batch_columns(handle: SinkHandle, rows: Sequence[TypedRow]) -> List[str]:
    """
    Columns written for a batch: every key present in any row, first-seen order.

    Rows missing one of those keys are written with NULL there.
    """
    columns: List[str] = []
    seen = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                columns.append(key)

    unknown = [c for c in columns if c not in handle.schema.column_names]
    if unknown:
        raise StorageError(f"Columns not in table {handle.table_name}: {', '.join(unknown)}")
    return columns


def insert_statement(handle: SinkHandle, columns: Sequence[str]) -> sql.Composed:
    return sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
        handle.identifier,
        sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        sql.SQL(", ").join([sql.Placeholder()] * len(columns)),
    )


class PostgresTableSink:
    """
    Storage sink writing typed rows into PostgreSQL through a connection pool.

    Args:
        config: Database coordinates and target table name
        pool: Pre-built pool (mainly for tests); created in start() otherwise
    """

    name = "PostgresTableSink"

    def __init__(self, config: DatabaseConfig, pool: Optional[ConnectionPool] = None):
        self.config = config
        self.pool = pool
        self._owns_pool = pool is None
        self._started = False

    @property
    def is_ready(self) -> bool:
        return self._started

    def start(self) -> None:
        """Open the pool and make sure the target schema exists"""
        if self._started:
            logger.warning(f"{self.name} already started")
            return

        logger.info(f"Connecting to PostgreSQL: {self.config.get_connection_string()}")
        if self.pool is None:
            self.pool = ConnectionPool(
                conninfo=make_conninfo(**self.config.to_dict()),
                min_size=1,
                max_size=self.config.pool_size,
                timeout=self.config.timeout,
                name="table_sink_pool",
                # No prepared statements; the pool may sit behind pgbouncer
                kwargs={"prepare_threshold": None},
                open=False,
            )
        try:
            if self._owns_pool:
                self.pool.open(wait=True, timeout=self.config.timeout)
            if self.config.schema:
                with self._connection() as conn:
                    conn.execute(
                        sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(self.config.schema))
                    )
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Cannot connect to PostgreSQL: {exc}") from exc

        self._started = True
        logger.info(f"{self.name} started")

    def stop(self) -> None:
        if not self._started:
            return
        if self._owns_pool and self.pool is not None:
            self.pool.close()
        self._started = False
        logger.info(f"{self.name} stopped")

    def _ensure_started(self):
        if not self._started:
            raise StorageError(f"{self.name} is not started. Call start() first.")

    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection]:
        """Pooled connection; commits on success, rolls back and raises StorageError on failure"""
        try:
            with self.pool.connection() as conn:
                yield conn
        except psycopg.Error as exc:
            raise StorageError(str(exc)) from exc

    def provision(self, schema: TableSchema) -> SinkHandle:
        """
        Make the target table match ``schema``.

        Rows already written under the same layout (by another group member or
        before a restart) are kept. Provisioning is serialized across
        processes with a transaction-level advisory lock on the table name.
        """
        self._ensure_started()
        handle = SinkHandle(
            table_name=self.config.table_name,
            schema=schema,
            namespace=self.config.schema or None,
        )

        with self._connection() as conn:
            conn.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (f"{handle.namespace}.{handle.table_name}",))
            existing = [tuple(row) for row in conn.execute(layout_query(handle)).fetchall()]
            if existing == expected_layout(schema):
                logger.info(f"Reusing existing table {handle.table_name}")
                return handle

            if existing:
                logger.warning(f"Table {handle.table_name} has a different layout, recreating it")
            else:
                logger.info(f"Creating table: {handle.table_name}")
            for statement in create_table_statements(handle, replace=bool(existing)):
                conn.execute(statement)
        logger.info(f"Table {handle.table_name} created with {len(schema.columns)} data columns")
        return handle

    def write_batch(self, handle: SinkHandle, rows: Sequence[TypedRow]) -> int:
        """Insert ``rows`` in one transaction; returns the number of rows written"""
        self._ensure_started()
        if not rows:
            return 0

        columns = batch_columns(handle, rows)
        query = insert_statement(handle, columns)
        params = [tuple(row.get(column) for column in columns) for row in rows]

        logger.info(f"Inserting batch of {len(rows)} rows into {handle.table_name}")
        with self._connection() as conn:
            with conn.cursor() as cursor:
                cursor.executemany(query, params)
        logger.info(f"Successfully inserted {len(rows)} rows")
        return len(rows)

    def row_count(self, handle: SinkHandle) -> int:
        self._ensure_started()
        with self._connection() as conn:
            row = conn.execute(sql.SQL("SELECT COUNT(*) FROM {}").format(handle.identifier)).fetchone()
        return row[0]
