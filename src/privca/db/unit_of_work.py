"""Unit of Work: several statements on one connection and one transaction.

Each PyPGKit :class:`BaseRepository` call checks out its own pooled
connection, so a revocation (insert record + flip certificate status)
or a CRL generation (increment counter + insert CRL) done through
repositories would not be atomic.  :class:`UnitOfWork` pins one
connection for the duration of a ``with`` block.

Usage::

    from privca.db import UnitOfWork

    with UnitOfWork(db) as uow:
        number = uow.fetch_one(
            "UPDATE ca_identities SET crl_number = crl_number + 1 "
            "WHERE id = %s RETURNING crl_number",
            (ca_id,),
        )["crl_number"]
        uow.insert("crl_issuances", {...})
        # COMMIT on clean exit, ROLLBACK on exception
"""

from __future__ import annotations

from typing import Any, Self

from psycopg.rows import dict_row
from pypgkit import Database


class UnitOfWork:
    """Transaction-scoped SQL helpers.

    The row lock taken by an ``UPDATE`` inside the block is held until
    commit, which is what serialises concurrent CRL generations for one
    CA.  SQL is built by the caller; table and column names are never
    taken from user input.
    """

    def __init__(self, database: Database | None = None) -> None:
        self._db = database or Database.get_instance()
        self._tx: Any = None
        self._conn: Any = None

    def __enter__(self) -> Self:
        self._tx = self._db.transaction()
        self._conn = self._tx.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            self._tx.__exit__(exc_type, exc_val, exc_tb)
        finally:
            self._tx = None
            self._conn = None

    def _connection(self) -> Any:  # noqa: ANN401
        if self._conn is None:
            msg = "UnitOfWork must be used as a context manager"
            raise RuntimeError(msg)
        return self._conn

    # -- helpers -------------------------------------------------------------

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """INSERT one row and return it via ``RETURNING *``."""
        columns = ", ".join(row)
        placeholders = ", ".join(["%s"] * len(row))
        sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) RETURNING *"  # noqa: S608
        with self._connection().cursor(row_factory=dict_row) as cur:
            cur.execute(sql, list(row.values()))
            return cur.fetchone()

    def update_where(
        self,
        table: str,
        set_values: dict[str, Any],
        where: dict[str, Any],
    ) -> dict[str, Any] | None:
        """UPDATE rows matching *where* (AND-joined equality).

        Returns
        -------
        dict or None
            The first updated row, or ``None`` if nothing matched.

        """
        assignments = ", ".join(f"{col} = %s" for col in set_values)
        conditions = " AND ".join(f"{col} = %s" for col in where)
        sql = f"UPDATE {table} SET {assignments} WHERE {conditions} RETURNING *"  # noqa: S608
        with self._connection().cursor(row_factory=dict_row) as cur:
            cur.execute(sql, [*set_values.values(), *where.values()])
            return cur.fetchone()

    def execute(self, sql: str, params: tuple | list | None = None) -> int:
        """Execute a statement and return the affected row count."""
        with self._connection().cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount

    def fetch_one(
        self,
        sql: str,
        params: tuple | list | None = None,
    ) -> dict[str, Any] | None:
        """Return the first row of *sql* as a dict, or ``None``."""
        with self._connection().cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    def fetch_all(
        self,
        sql: str,
        params: tuple | list | None = None,
    ) -> list[dict[str, Any]]:
        """Return every row of *sql* as dicts."""
        with self._connection().cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return cur.fetchall()
