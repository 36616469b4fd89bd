"""
IndexHandle: the single owner of one index structure, its training gate and
its GPU context. Every method raises taxonomy errors only; foreign exceptions
from faiss, numpy or a blob store are translated here.
"""

from typing import Any, Dict, List, Optional

import numpy as np

from ..core.config import get_db_path
from ..core.dao import BlobStore, SqliteBlobStore
from ..core.errors import (
    PgvFaissError,
    SerializationError,
    StorageError,
    VectorIndexError,
)
from ..core.schema import IndexConfig
from ..util.logging import logger
from .index import IVectorIndex
from .resources import GpuContext, ResourceManager, default_resource_manager
from .search import SearchEngine
from .training import TrainingStateMachine
from .types import SearchResult, TrainingState, VectorBatch


class IndexHandle:
    """Façade over one logical index.

    Handles are created by IndexFactory.create (or Serializer.deserialize) and
    destroyed explicitly with destroy(), or by leaving a ``with`` block. They
    own native and GPU resources and cannot be copied.
    """

    def __init__(self, config: IndexConfig, index: IVectorIndex,
                 gpu_context: Optional[GpuContext] = None,
                 resource_manager: Optional[ResourceManager] = None,
                 blob_store: Optional[BlobStore] = None,
                 training: Optional[TrainingStateMachine] = None,
                 serializer=None):
        self.config = config
        self._index = index
        self._gpu_context = gpu_context
        self._resource_manager = resource_manager or default_resource_manager
        self._blob_store = blob_store
        self._owns_blob_store = False
        self._serializer = serializer
        self._training = training or TrainingStateMachine(index)
        self._engine = SearchEngine(index, self._training)
        self._search_breadth = config.search_breadth
        self._destroyed = False

        logger.log_index_operation("create", index.family.value, {
            "dimension": index.dimension,
            "backend": index.backend,
            "on_gpu": index.on_gpu,
        })

    # Properties

    @property
    def family(self) -> str:
        return self._require_index().family.value

    @property
    def dimension(self) -> int:
        return self.config.dimension

    @property
    def training_state(self) -> TrainingState:
        self._require_index()
        return self._training.state

    @property
    def train_count(self) -> int:
        return self._training.train_count

    @property
    def ntotal(self) -> int:
        return self._require_index().ntotal

    @property
    def on_gpu(self) -> bool:
        return self._require_index().on_gpu

    @property
    def search_breadth(self) -> int:
        return self._search_breadth

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def serializer(self):
        if self._serializer is None:
            from .serializer import Serializer
            self._serializer = Serializer()
        return self._serializer

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = SqliteBlobStore(self.config.connection_string or get_db_path())
            self._owns_blob_store = True
        return self._blob_store

    # Content

    def train(self, vectors, count: Optional[int] = None) -> bool:
        """Pre-train on representative data without adding it. Returns True if training ran."""
        index = self._require_index()
        if vectors is None:
            raise VectorIndexError("training vectors are required")
        try:
            matrix = np.asarray(vectors, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise VectorIndexError("training vectors must be numeric", cause=e) from e

        rows = matrix.size // index.dimension if matrix.ndim == 1 else (matrix.shape[0] if matrix.ndim else 0)
        batch = VectorBatch.build(matrix, np.arange(rows), index.dimension, count)
        if len(batch) == 0:
            raise VectorIndexError("cannot train on an empty sample")
        return self._training.train(batch.vectors)

    def add(self, vectors, ids, count: Optional[int] = None) -> int:
        """Add vectors with caller-assigned ids. Returns the number added.

        Ids must be unique within the index; the caller owns that invariant and
        it is not checked. Re-adding an existing id stores a second entry, and
        both show up in search results, ordered by distance then id.

        The first add to an untrained inverted-file index trains on this batch.
        """
        index = self._require_index()
        batch = VectorBatch.build(vectors, ids, index.dimension, count)
        if len(batch) == 0:
            return 0

        self._training.before_add(batch)
        try:
            index.add(batch)
        except PgvFaissError:
            raise
        except Exception as e:
            raise VectorIndexError(f"Failed to add {len(batch)} vectors", cause=e) from e

        logger.log_index_operation("add", index.family.value, {"count": len(batch), "ntotal": index.ntotal})
        return len(batch)

    def search(self, query, k: int) -> SearchResult:
        self._require_index()
        try:
            return self._engine.search(query, k)
        except PgvFaissError:
            raise
        except Exception as e:
            raise VectorIndexError("Search failed", cause=e) from e

    def search_batch(self, queries, k: int) -> List[SearchResult]:
        self._require_index()
        try:
            return self._engine.search_batch(queries, k)
        except PgvFaissError:
            raise
        except Exception as e:
            raise VectorIndexError("Batch search failed", cause=e) from e

    # Snapshots

    def serialize(self) -> bytes:
        return self.serializer.serialize(self)

    def restore(self, blob: bytes) -> None:
        """Replace the structure with the one encoded in `blob`.

        On any failure the current structure, vector count and training state
        are left untouched.
        """
        current = self._require_index()
        header, index, training = self.serializer.restore_parts(blob, self._gpu_context)
        if index.dimension != self.config.dimension:
            index.release()
            raise SerializationError(
                f"snapshot dimension {index.dimension} does not match handle dimension {self.config.dimension}"
            )

        self._index = index
        self._training = training
        self._engine = SearchEngine(index, training)
        self._search_breadth = int(header.get("search_breadth") or self._search_breadth)
        current.release()
        logger.log_index_operation("restore", index.family.value, {
            "ntotal": index.ntotal,
            "training_state": training.state.value,
        })

    def save(self, key: str) -> int:
        """Serialize and store under `key`, replacing any previous snapshot. Returns the blob size."""
        blob = self.serialize()
        try:
            self.blob_store.put(key, blob)
        except PgvFaissError:
            raise
        except Exception as e:
            raise StorageError("Blob store put failed", key, cause=e) from e

        logger.log_index_operation("save", self.family, {"key": key, "size_bytes": len(blob)})
        return len(blob)

    def load(self, key: str) -> None:
        """Restore from the latest snapshot stored under `key`."""
        self._require_index()
        try:
            blob = self.blob_store.get(key)
        except PgvFaissError:
            raise
        except Exception as e:
            raise StorageError("Blob store get failed", key, cause=e) from e

        if blob is None:
            raise SerializationError(f"No snapshot stored under key {key!r}")
        self.restore(blob)
        logger.log_index_operation("load", self.family, {"key": key, "size_bytes": len(blob)})

    # Introspection

    def stats(self) -> Dict[str, Any]:
        index = self._require_index()
        stats = index.describe()
        stats.update({
            "training_state": self._training.state.value,
            "train_count": self._training.train_count,
            "search_breadth": self._search_breadth,
            "gpu_device": self._gpu_context.device if self._gpu_context is not None else None,
        })
        return stats

    # Lifecycle

    def destroy(self) -> None:
        """Release the structure and any GPU context. Safe to call more than once."""
        if self._destroyed:
            return
        family = self._index.family.value if self._index is not None else None
        if self._index is not None:
            self._index.release()
            self._index = None
        self._resource_manager.release(self._gpu_context)
        self._gpu_context = None
        if self._owns_blob_store:
            self._blob_store.close()
        self._destroyed = True
        logger.log_index_operation("destroy", family)

    close = destroy

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()

    def __copy__(self):
        raise TypeError("IndexHandle owns native resources and cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("IndexHandle owns native resources and cannot be copied")

    def __repr__(self):
        if self._destroyed:
            return "IndexHandle(destroyed)"
        return (f"IndexHandle(family={self._index.family.value!r}, dimension={self.config.dimension}, "
                f"ntotal={self._index.ntotal}, state={self._training.state.value!r})")

    def _require_index(self) -> IVectorIndex:
        if self._destroyed or self._index is None:
            raise VectorIndexError("index handle has been destroyed")
        return self._index
