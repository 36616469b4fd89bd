"""
pgv_faiss - a single handle over flat, inverted-file and graph ANN indexes,
persisted as snapshot blobs in a relational store.
"""

from .core.config import VERSION
from .core.errors import (
    ConfigError,
    PgvFaissError,
    ResourceError,
    SerializationError,
    StorageError,
    VectorIndexError,
)
from .core.schema import IndexConfig, IndexFamily, parse_config
from .vector import IndexFactory, IndexHandle, SearchResult, Serializer, TrainingState

__version__ = VERSION

__all__ = [
    'ConfigError',
    'PgvFaissError',
    'ResourceError',
    'SerializationError',
    'StorageError',
    'VectorIndexError',
    'IndexConfig',
    'IndexFamily',
    'parse_config',
    'IndexFactory',
    'IndexHandle',
    'SearchResult',
    'Serializer',
    'TrainingState'
]
