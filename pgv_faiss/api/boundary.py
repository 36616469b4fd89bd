"""
Status-returning boundary operations for bindings and command-line callers.

No exception crosses these functions: every call returns a status code (0 on
success, a negative code naming the failure kind otherwise) and, where the
operation produces something, the value alongside it.
"""

from typing import Optional, Tuple

from ..core.errors import (
    CONFIG_ERROR,
    INDEX_ERROR,
    OK,
    SERIALIZATION_ERROR,
    PgvFaissError,
)
from ..util.logging import logger
from ..vector.factory import IndexFactory, get_default_factory
from ..vector.handle import IndexHandle
from ..vector.types import SearchResult


def _status_for(operation: str, error: Exception, fallback: int) -> int:
    if isinstance(error, PgvFaissError):
        logger.log_operation(operation, "failed", {"error": str(error)[:200], "status": error.status})
        return error.status
    logger.error(f"Unexpected error in {operation}: {error}")
    return fallback


def init(config, factory: Optional[IndexFactory] = None,
         blob_store=None) -> Tuple[int, Optional[IndexHandle]]:
    """Create a handle. Returns (status, handle); handle is None on failure."""
    try:
        handle = (factory or get_default_factory()).create(config, blob_store=blob_store)
    except Exception as e:
        return _status_for("init", e, CONFIG_ERROR), None
    return OK, handle


def add(handle: IndexHandle, vectors, ids, count: Optional[int] = None) -> int:
    if handle is None:
        return INDEX_ERROR
    try:
        handle.add(vectors, ids, count)
    except Exception as e:
        return _status_for("add", e, INDEX_ERROR)
    return OK


def train(handle: IndexHandle, vectors, count: Optional[int] = None) -> int:
    if handle is None:
        return INDEX_ERROR
    try:
        handle.train(vectors, count)
    except Exception as e:
        return _status_for("train", e, INDEX_ERROR)
    return OK


def search(handle: IndexHandle, query, k: int) -> Tuple[int, Optional[SearchResult]]:
    """Returns (status, result); result is None on failure."""
    if handle is None:
        return INDEX_ERROR, None
    try:
        result = handle.search(query, k)
    except Exception as e:
        return _status_for("search", e, INDEX_ERROR), None
    return OK, result


def save(handle: IndexHandle, key: str) -> int:
    if handle is None:
        return INDEX_ERROR
    try:
        handle.save(key)
    except Exception as e:
        return _status_for("save", e, SERIALIZATION_ERROR)
    return OK


def load(handle: IndexHandle, key: str) -> int:
    """Restore the latest snapshot under `key`; the handle is unchanged on failure."""
    if handle is None:
        return INDEX_ERROR
    try:
        handle.load(key)
    except Exception as e:
        return _status_for("load", e, SERIALIZATION_ERROR)
    return OK


def free_result(result: Optional[SearchResult]) -> None:
    """Release a search result. A None or already cleared result is a no-op."""
    if result is None:
        return
    result.clear()


def destroy(handle: Optional[IndexHandle]) -> None:
    """Destroy a handle. A None or already destroyed handle is a no-op."""
    if handle is None:
        return
    try:
        handle.destroy()
    except Exception as e:
        _status_for("destroy", e, INDEX_ERROR)
