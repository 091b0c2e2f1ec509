# teamlens/executors/duckdb_exec.py

import logging
import os
import threading
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import duckdb

from teamlens.errors import ExecutionError

logger = logging.getLogger(__name__)


class DuckRunner:
    placeholder = "?"
    dialect = "duckdb"

    def __init__(self, db_path: str = "data/teamlens.duckdb", statement_timeout_ms: int = 15000):
        # Persistent DB on disk unless an in-memory store is requested
        if db_path != ":memory:" and os.path.dirname(db_path):
            os.makedirs(os.path.dirname(db_path), exist_ok=True)
        self.db_path = db_path
        # No file, network or extension access from SQL; the store only reads its own tables
        self.con = duckdb.connect(database=db_path, config={"enable_external_access": False})
        self.statement_timeout_ms = statement_timeout_ms

    @classmethod
    def from_settings(cls, settings):
        return cls(db_path=settings.duckdb_path, statement_timeout_ms=settings.statement_timeout_ms)

    # ---------------------------
    # Reads
    # ---------------------------
    def query(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        max_rows: Optional[int] = None,
    ) -> Tuple[List[str], List[tuple]]:
        """
        Run one read statement on its own cursor inside a transaction that is
        always rolled back, so nothing a read does can persist. A timer
        interrupts the cursor once the statement timeout elapses, which
        surfaces as ExecutionError.
        """
        cur = self.con.cursor()
        timer = threading.Timer(self.statement_timeout_ms / 1000.0, cur.interrupt)
        try:
            cur.begin()
            timer.start()
            if params:
                cur.execute(sql, list(params))
            else:
                cur.execute(sql)
            cols = [d[0] for d in cur.description] if cur.description else []
            rows = cur.fetchmany(max_rows) if max_rows else cur.fetchall()
            return cols, rows
        except duckdb.InterruptException as e:
            raise ExecutionError(f"statement timeout ({self.statement_timeout_ms} ms) exceeded: {e}")
        except duckdb.Error as e:
            raise ExecutionError(str(e))
        finally:
            timer.cancel()
            try:
                cur.rollback()
            except duckdb.Error as e:
                logger.debug("Rollback after read failed: %s", e)
            cur.close()

    # ---------------------------
    # Internal writes (schema, audit log, ingestion)
    # ---------------------------
    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        cur = self.con.cursor()
        try:
            if params:
                cur.execute(sql, list(params))
            else:
                cur.execute(sql)
        except duckdb.Error as e:
            raise ExecutionError(str(e))
        finally:
            cur.close()

    def execute_many(self, sql: str, rows: Iterable[Sequence[Any]]) -> int:
        """Run one parameterized write for every row; returns the number of rows sent."""
        batch = [list(r) for r in rows]
        if not batch:
            return 0
        cur = self.con.cursor()
        try:
            cur.executemany(sql, batch)
        except duckdb.Error as e:
            raise ExecutionError(str(e))
        finally:
            cur.close()
        return len(batch)

    # ---------------------------
    # Utilities
    # ---------------------------
    def ping(self) -> bool:
        try:
            self.query("SELECT 1")
            return True
        except ExecutionError:
            return False

    def close(self) -> None:
        self.con.close()
