"""Abstract DatabaseService interface."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator

from fesync.types import Params, ParamsList, Row


class DatabaseService(ABC):
    """Database-agnostic interface for all DB operations.

    Every statement runs inside ``transaction()``. SQL is written with the
    backend's ``placeholder`` so the same query runs on SQLite and Postgres.
    """

    placeholder: str = "?"

    @abstractmethod
    def connect(self) -> None:
        """Initialize the connection pool."""

    @abstractmethod
    def close(self) -> None:
        """Close all connections and release resources."""

    @abstractmethod
    def execute(self, sql: str, params: Params | None = None) -> list[Row]:
        """Execute a single SQL statement and return rows as dicts."""

    @abstractmethod
    def execute_rowcount(self, sql: str, params: Params | None = None) -> int:
        """Execute a single SQL statement and return the number of affected rows."""

    @abstractmethod
    def execute_many(self, sql: str, params_list: ParamsList) -> None:
        """Execute a SQL statement for each parameter set."""

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Context manager: acquires a connection, commits on success, rolls back on error."""

    @abstractmethod
    def in_transaction(self) -> bool:
        """Whether the calling thread is inside ``transaction()``."""

    @contextmanager
    def ensure_transaction(self) -> Iterator[None]:
        """Join the caller's transaction if there is one, otherwise open a new one."""
        if self.in_transaction():
            yield
        else:
            with self.transaction():
                yield

    @abstractmethod
    def lock(self, key: str) -> None:
        """Serialize concurrent transactions on ``key`` until the current one ends."""

    @abstractmethod
    def execute_ddl(self, sql: str) -> None:
        """Execute DDL statements (CREATE TABLE, CREATE INDEX, etc.)."""

    def batch_insert(self, table: str, columns: list[str], rows: list[tuple]) -> None:
        """Insert multiple rows into a table."""
        if not rows:
            return
        cols = ", ".join(columns)
        placeholders = ", ".join(self.placeholder for _ in columns)
        sql = f"INSERT INTO {table} ({cols}) VALUES ({placeholders})"
        self.execute_many(sql, rows)

    def insert_ignore(
        self,
        table: str,
        columns: list[str],
        row: tuple,
        conflict_columns: list[str],
    ) -> bool:
        """Insert one row unless it violates ``conflict_columns``.

        Returns True if the row was written, False if it already existed.
        """
        cols = ", ".join(columns)
        placeholders = ", ".join(self.placeholder for _ in columns)
        conflict_cols = ", ".join(conflict_columns)
        sql = (
            f"INSERT INTO {table} ({cols}) VALUES ({placeholders}) "
            f"ON CONFLICT ({conflict_cols}) DO NOTHING"
        )
        return self.execute_rowcount(sql, row) == 1

    def upsert(
        self,
        table: str,
        columns: list[str],
        rows: list[tuple],
        conflict_columns: list[str],
    ) -> None:
        """Insert rows, updating on conflict with the specified columns."""
        if not rows:
            return
        cols = ", ".join(columns)
        placeholders = ", ".join(self.placeholder for _ in columns)
        conflict_cols = ", ".join(conflict_columns)
        update_cols = [c for c in columns if c not in conflict_columns]
        update_clause = ", ".join(f"{c} = excluded.{c}" for c in update_cols)

        if update_cols:
            sql = (
                f"INSERT INTO {table} ({cols}) VALUES ({placeholders}) "
                f"ON CONFLICT ({conflict_cols}) DO UPDATE SET {update_clause}"
            )
        else:
            sql = (
                f"INSERT INTO {table} ({cols}) VALUES ({placeholders}) "
                f"ON CONFLICT ({conflict_cols}) DO NOTHING"
            )
        self.execute_many(sql, rows)
