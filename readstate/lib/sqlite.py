import logging
import sqlite3
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def connect(db_path: Path | str) -> sqlite3.Connection:
    """Open a WAL-mode connection, retrying briefly while the file is locked."""
    start = time.perf_counter()

    for attempt in range(5):
        conn = sqlite3.connect(str(db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.isolation_level = None

        try:
            conn.execute("PRAGMA busy_timeout = 5000")
            if str(db_path) != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")
            break
        except sqlite3.OperationalError as err:
            conn.close()
            if "locked" in str(err).lower() and attempt < 4:
                time.sleep(0.05 * (attempt + 1))
                continue
            raise

    elapsed = time.perf_counter() - start
    if elapsed > 0.1:
        logger.warning(f"SQLite connection took {elapsed:.3f}s (possible lock contention)")

    return conn
