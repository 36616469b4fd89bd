"""
SQLite access for snapshot blobs and vector rows.
"""

import re
import sqlite3
from contextlib import contextmanager
from typing import Generator

import numpy as np

from .codec import parse_vector
from .config import ensure_db_directory, get_db_path

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

MEMORY_PATH = ":memory:"


def open_connection(db_path: str = None) -> sqlite3.Connection:
    """Open a connection with the l2_distance SQL function registered."""
    path = db_path or get_db_path()
    if path != MEMORY_PATH:
        ensure_db_directory(path)
    conn = sqlite3.connect(path)
    conn.create_function("l2_distance", 2, _l2_distance, deterministic=True)
    return conn


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection.

    Each call opens a fresh connection, so a ":memory:" path yields a new,
    empty database every time.
    """
    conn = open_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with the snapshot table."""
    with get_db(db_path) as conn:
        create_snapshot_table(conn)


def create_snapshot_table(conn: sqlite3.Connection):
    cursor = conn.cursor()

    # One row per key, replaced on every save
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS faiss_index (
            key TEXT PRIMARY KEY,
            index_data BLOB NOT NULL,
            size_bytes INTEGER NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    conn.commit()


def create_vector_table(table_name: str, dimension: int, db_path: str = None):
    """Create a vector table with an integer id and a text embedding column."""
    table = quote_identifier(table_name)
    with get_db(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS {table} (
                id INTEGER PRIMARY KEY,
                embedding TEXT NOT NULL,
                dimension INTEGER NOT NULL CHECK (dimension = {int(dimension)})
            )
        ''')
        conn.commit()


def quote_identifier(name: str) -> str:
    """Validate a table name and return it quoted for interpolation."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"invalid table name: {name!r}")
    return f'"{name}"'


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return 'faiss_index' in table_names
    except sqlite3.Error:
        return False


def _l2_distance(left: str, right: str):
    # Euclidean distance between two text-encoded vectors, NULL on malformed input
    try:
        a = parse_vector(left)
        b = parse_vector(right)
    except ValueError:
        return None
    if a.shape != b.shape:
        return None
    return float(np.linalg.norm(a.astype(np.float64) - b.astype(np.float64)))
