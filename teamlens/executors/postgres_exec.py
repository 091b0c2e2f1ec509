# teamlens/executors/postgres_exec.py

import logging
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

import psycopg2

from teamlens.errors import ExecutionError

logger = logging.getLogger(__name__)


class PostgresRunner:
    """Runner for a PostgreSQL store; every read runs in a read-only transaction."""

    placeholder = "%s"
    dialect = "postgres"

    def __init__(
        self,
        host: Optional[str],
        port: int = 5432,
        dbname: str = "postgres",
        user: Optional[str] = None,
        password: Optional[str] = None,
        sslmode: str = "prefer",
        statement_timeout_ms: int = 15000,
        connect: Callable = psycopg2.connect,
    ):
        self.conn_kwargs = dict(
            host=host,
            port=port,
            dbname=dbname,
            user=user,
            password=password,
            sslmode=sslmode,
        )
        self.statement_timeout_ms = int(statement_timeout_ms)
        self._connect = connect

    @classmethod
    def from_settings(cls, settings):
        return cls(
            host=settings.pg_host,
            port=settings.pg_port,
            dbname=settings.pg_db,
            user=settings.pg_user,
            password=settings.pg_password,
            sslmode=settings.pg_sslmode,
            statement_timeout_ms=settings.statement_timeout_ms,
        )

    def get_conn(self):
        return self._connect(**self.conn_kwargs)

    def query(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        max_rows: Optional[int] = None,
    ) -> Tuple[List[str], List[tuple]]:
        try:
            conn = self.get_conn()
        except psycopg2.Error as e:
            raise ExecutionError(f"could not connect: {e}")
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute("SET TRANSACTION READ ONLY;")
                    cur.execute(f"SET LOCAL statement_timeout = {self.statement_timeout_ms};")
                    if params is None:
                        cur.execute(sql)
                    else:
                        cur.execute(sql, tuple(params))
                    cols = [d[0] for d in cur.description] if cur.description else []
                    rows = cur.fetchmany(max_rows) if max_rows else cur.fetchall()
                    return cols, rows
        except psycopg2.Error as e:
            raise ExecutionError(str(e).strip())
        finally:
            conn.close()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        try:
            conn = self.get_conn()
        except psycopg2.Error as e:
            raise ExecutionError(f"could not connect: {e}")
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(sql, tuple(params) if params is not None else None)
        except psycopg2.Error as e:
            raise ExecutionError(str(e).strip())
        finally:
            conn.close()

    def execute_many(self, sql: str, rows: Iterable[Sequence[Any]]) -> int:
        batch = [tuple(r) for r in rows]
        if not batch:
            return 0
        try:
            conn = self.get_conn()
        except psycopg2.Error as e:
            raise ExecutionError(f"could not connect: {e}")
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.executemany(sql, batch)
        except psycopg2.Error as e:
            raise ExecutionError(str(e).strip())
        finally:
            conn.close()
        return len(batch)

    def ping(self) -> bool:
        try:
            self.query("SELECT 1")
            return True
        except ExecutionError:
            return False

    def close(self) -> None:
        pass
