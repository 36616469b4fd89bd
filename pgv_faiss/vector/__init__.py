"""
Index core: structures, training gate, search, snapshots and GPU resources.
"""

# Package initialization for vector module
from .factory import IndexFactory, get_default_factory, resolve_family
from .handle import IndexHandle
from .index import IVectorIndex, NumpyBruteForceIndex
from .faiss_store import FaissVectorIndex
from .resources import GpuContext, ResourceManager
from .search import SearchEngine
from .serializer import Serializer
from .training import TrainingStateMachine
from .types import SearchHit, SearchResult, TrainingState, VectorBatch

__all__ = [
    'IndexFactory',
    'get_default_factory',
    'resolve_family',
    'IndexHandle',
    'IVectorIndex',
    'NumpyBruteForceIndex',
    'FaissVectorIndex',
    'GpuContext',
    'ResourceManager',
    'SearchEngine',
    'Serializer',
    'TrainingStateMachine',
    'SearchHit',
    'SearchResult',
    'TrainingState',
    'VectorBatch'
]
