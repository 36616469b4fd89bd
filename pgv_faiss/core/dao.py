"""
Data access for the external relational store.
Snapshot blobs are key-addressed and replaced on every put; vector rows carry
a text-encoded embedding and are ranked by distance inside SQL.
"""

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .codec import encode_vector, parse_vector
from .db import (
    MEMORY_PATH,
    create_snapshot_table,
    create_vector_table,
    get_db,
    init_db,
    open_connection,
    quote_identifier,
)
from .errors import StorageError
from ..util.logging import logger


class BlobStore(ABC):
    """Key-addressed byte store. put replaces, get returns the latest bytes or None."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Store `data` under `key`, replacing any previous value."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the latest bytes stored under `key`, or None when not found."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove `key` if present."""
        pass


class InMemoryBlobStore(BlobStore):
    """Process-local blob store."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    def put(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)

    def get(self, key: str) -> Optional[bytes]:
        return self._blobs.get(key)

    def delete(self, key: str) -> None:
        self._blobs.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._blobs)


class SqliteBlobStore(BlobStore):
    """Blob store backed by the `faiss_index` table of a SQLite file.

    A ":memory:" database lives only as long as its connection, so the store
    holds one open until close().
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path
        self._initialized = False
        self._memory_conn: Optional[sqlite3.Connection] = None

    @property
    def in_memory(self) -> bool:
        return self.db_path == MEMORY_PATH

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if self.in_memory:
            if self._memory_conn is None:
                self._memory_conn = open_connection(MEMORY_PATH)
                create_snapshot_table(self._memory_conn)
            yield self._memory_conn
            return

        if not self._initialized:
            init_db(self.db_path)
            self._initialized = True
        with get_db(self.db_path) as conn:
            yield conn

    def close(self) -> None:
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None

    def put(self, key: str, data: bytes) -> None:
        _require_key(key)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "INSERT OR REPLACE INTO faiss_index (key, index_data, size_bytes, updated_at) "
                    "VALUES (?, ?, ?, CURRENT_TIMESTAMP)",
                    (key, sqlite3.Binary(data), len(data))
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.log_storage("put", key, len(data), status="failed")
            raise StorageError(f"failed to store index blob under '{key}'", key, cause=e) from e

        logger.log_storage("put", key, len(data))

    def get(self, key: str) -> Optional[bytes]:
        _require_key(key)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT index_data FROM faiss_index WHERE key = ?", (key,))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.log_storage("get", key, status="failed")
            raise StorageError(f"failed to read index blob under '{key}'", key, cause=e) from e

        if row is None:
            logger.log_storage("get", key, status="not_found")
            return None

        data = bytes(row[0])
        logger.log_storage("get", key, len(data))
        return data

    def delete(self, key: str) -> None:
        _require_key(key)
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM faiss_index WHERE key = ?", (key,))
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"failed to delete index blob under '{key}'", key, cause=e) from e

    def keys(self) -> List[str]:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT key FROM faiss_index ORDER BY key")
                return [row[0] for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise StorageError("failed to list index blobs", cause=e) from e


def _require_key(key: str):
    if not isinstance(key, str) or not key.strip():
        raise StorageError("blob store key cannot be empty", key)


# Vector rows

def ensure_vector_table(table_name: str, dimension: int, db_path: str = None) -> None:
    """Create the vector table if it does not exist."""
    try:
        create_vector_table(table_name, dimension, db_path)
    except ValueError as e:
        raise StorageError(str(e), table_name, cause=e) from e
    except sqlite3.Error as e:
        raise StorageError(f"failed to create vector table '{table_name}'", table_name, cause=e) from e


def insert_vector(table_name: str, vector_id: int, vector: Sequence[float], db_path: str = None) -> None:
    """Insert or replace a single vector row."""
    insert_vectors(table_name, [vector_id], np.asarray([vector], dtype=np.float32), db_path)


def insert_vectors(table_name: str, ids: Sequence[int], vectors: np.ndarray, db_path: str = None) -> int:
    """Insert or replace a batch of vector rows in one transaction. Returns the row count."""
    vectors = np.atleast_2d(np.asarray(vectors, dtype=np.float32))
    if len(ids) != len(vectors):
        raise StorageError(f"vector and id count mismatch: {len(vectors)} vs {len(ids)}", table_name)

    rows = [(int(i), encode_vector(v), int(v.shape[0])) for i, v in zip(ids, vectors)]
    try:
        table = quote_identifier(table_name)
        with get_db(db_path) as conn:
            try:
                conn.executemany(
                    f"INSERT OR REPLACE INTO {table} (id, embedding, dimension) VALUES (?, ?, ?)",
                    rows
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
    except ValueError as e:
        raise StorageError(str(e), table_name, cause=e) from e
    except sqlite3.Error as e:
        logger.log_storage("insert_vectors", table_name, status="failed")
        raise StorageError(f"failed to insert vectors into '{table_name}'", table_name, cause=e) from e

    logger.log_storage("insert_vectors", table_name)
    return len(rows)


def fetch_vectors(table_name: str, limit: int = 0, db_path: str = None) -> Tuple[np.ndarray, np.ndarray]:
    """Fetch (ids, vectors) ordered by id. A limit of 0 fetches every row."""
    try:
        table = quote_identifier(table_name)
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            query = f"SELECT id, embedding FROM {table} ORDER BY id"
            if limit > 0:
                cursor.execute(query + " LIMIT ?", (int(limit),))
            else:
                cursor.execute(query)
            rows = cursor.fetchall()
    except ValueError as e:
        raise StorageError(str(e), table_name, cause=e) from e
    except sqlite3.Error as e:
        raise StorageError(f"failed to fetch vectors from '{table_name}'", table_name, cause=e) from e

    if not rows:
        return np.empty(0, dtype=np.int64), np.empty((0, 0), dtype=np.float32)

    try:
        vectors = np.vstack([parse_vector(embedding) for _, embedding in rows])
    except ValueError as e:
        raise StorageError(f"malformed embedding in '{table_name}'", table_name, cause=e) from e
    ids = np.asarray([row[0] for row in rows], dtype=np.int64)
    return ids, vectors


def similarity_search(table_name: str, query: Sequence[float], k: int,
                      db_path: str = None) -> List[Tuple[int, float]]:
    """Rank rows by Euclidean distance to `query`, ascending, limited to k rows."""
    literal = encode_vector(query)
    try:
        table = quote_identifier(table_name)
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT id, l2_distance(embedding, ?) AS distance FROM {table} "
                f"WHERE distance IS NOT NULL ORDER BY distance ASC, id ASC LIMIT ?",
                (literal, int(k))
            )
            rows = cursor.fetchall()
    except ValueError as e:
        raise StorageError(str(e), table_name, cause=e) from e
    except sqlite3.Error as e:
        raise StorageError(f"similarity search failed on '{table_name}'", table_name, cause=e) from e

    return [(int(row_id), float(distance)) for row_id, distance in rows]
