# core/database.py
import shutil
import tempfile
import threading
import uuid
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import duckdb

from core.logging import get_logger

logger = get_logger(__name__)


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class AnalyticsEngine:
    """
    In-process DuckDB instance exposing uploaded files as named tables.

    Every statement runs on its own cursor, which is closed once the statement
    finishes, whether it succeeded or not. Registration is last-write-wins.
    """

    def __init__(self, scratch_dir: Optional[str] = None):
        self._db = duckdb.connect(database=":memory:")
        self._owns_scratch = scratch_dir is None
        self._scratch = Path(scratch_dir or tempfile.mkdtemp(prefix="kpi-engine-"))
        self._scratch.mkdir(parents=True, exist_ok=True)
        self._files: Dict[str, Path] = {}
        self._lock = threading.Lock()

    @contextmanager
    def connection(self) -> Iterator[duckdb.DuckDBPyConnection]:
        conn = self._db.cursor()
        try:
            yield conn
        finally:
            conn.close()

    def register(self, name: str, data: bytes, suffix: str = ".csv") -> None:
        """Bind `name` to the uploaded file so queries can select from it."""
        path = self._scratch / f"{uuid.uuid4().hex}{suffix}"
        path.write_bytes(data)

        ddl = (
            f"CREATE OR REPLACE VIEW {_quote_identifier(name)} AS "
            f"SELECT * FROM read_csv_auto({_quote_literal(str(path))}, header = true)"
        )
        with self._lock:
            try:
                with self.connection() as conn:
                    conn.execute(ddl)
            except duckdb.Error:
                path.unlink(missing_ok=True)
                raise
            previous = self._files.get(name)
            self._files[name] = path

        if previous is not None:
            previous.unlink(missing_ok=True)
        logger.info("file_registered", table=name, bytes=len(data))

    def unregister(self, name: str) -> None:
        with self._lock:
            with self.connection() as conn:
                conn.execute(f"DROP VIEW IF EXISTS {_quote_identifier(name)}")
            path = self._files.pop(name, None)
        if path is not None:
            path.unlink(missing_ok=True)

    def query(self, sql: str) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            cursor = conn.execute(sql)
            columns = [col[0] for col in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def close(self) -> None:
        self._db.close()
        if self._owns_scratch:
            shutil.rmtree(self._scratch, ignore_errors=True)
        self._files.clear()


@lru_cache
def get_engine() -> AnalyticsEngine:
    return AnalyticsEngine()
