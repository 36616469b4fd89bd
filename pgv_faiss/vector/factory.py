"""
Index construction: config -> concrete structure, with CPU/GPU placement.
"""

from typing import Optional, Tuple

from ..core.config import get_index_backend, strict_family_enabled
from ..core.errors import ConfigError, ResourceError
from ..core.schema import IndexConfig, IndexFamily, parse_config
from ..util.logging import logger
from .faiss_store import FaissVectorIndex
from .index import IVectorIndex, NumpyBruteForceIndex
from .resources import GpuContext, ResourceManager, default_resource_manager


def resolve_family(name: str, strict: Optional[bool] = None) -> IndexFamily:
    """Map a family name to IndexFamily.

    Unknown names fall back to Flat unless strict mode is on, in which case they
    are a ConfigError.
    """
    family = IndexFamily.lookup(name)
    if family is not None:
        return family

    if strict if strict is not None else strict_family_enabled():
        raise ConfigError(f"Unknown index family: {name!r}")

    logger.warning(f"Unknown index family {name!r}, using {IndexFamily.FLAT.value}")
    return IndexFamily.FLAT


class IndexFactory:
    """Builds index structures and the handles that own them.

    Args:
        resource_manager: source of GPU contexts (defaults to the shared manager).
        backend: "faiss" or "numpy"; defaults to PGVF_INDEX_BACKEND.
        strict_family: reject unknown families instead of falling back to Flat.
    """

    def __init__(self, resource_manager: ResourceManager = None, backend: str = None,
                 strict_family: Optional[bool] = None):
        self.resource_manager = resource_manager or default_resource_manager
        self.backend = (backend or get_index_backend()).lower()
        self.strict_family = strict_family
        if self.backend not in ("faiss", "numpy"):
            raise ConfigError(f"Unknown index backend: {self.backend!r}")

    def create(self, config, blob_store=None):
        """Create a new, untrained IndexHandle for `config`."""
        from .handle import IndexHandle
        from .serializer import Serializer

        config = parse_config(config)
        index, gpu_context = self.build_index(config)
        return IndexHandle(config, index, gpu_context=gpu_context,
                           resource_manager=self.resource_manager, blob_store=blob_store,
                           serializer=Serializer(self))

    def build_index(self, config: IndexConfig) -> Tuple[IVectorIndex, Optional[GpuContext]]:
        """Construct the structure for `config`. GPU failures degrade to CPU."""
        family = resolve_family(config.family, self.strict_family)

        if self.backend == "numpy":
            return NumpyBruteForceIndex(family, config.dimension), None

        gpu_context = None
        if config.use_gpu and family.supports_gpu:
            gpu_context = self.resource_manager.try_acquire_gpu(config.gpu_device)

        try:
            index = FaissVectorIndex.create(family, config.dimension, config.search_breadth,
                                            config.expected_size, gpu_context)
        except ResourceError:
            self.resource_manager.release(gpu_context)
            gpu_context = None
            index = FaissVectorIndex.create(family, config.dimension, config.search_breadth,
                                            config.expected_size)
        return index, gpu_context

    def restore_index(self, payload: bytes, header: dict,
                      gpu_context: Optional[GpuContext] = None) -> IVectorIndex:
        """Rebuild a structure from a snapshot payload, placing it on `gpu_context` when given."""
        if header.get("backend") == NumpyBruteForceIndex.backend:
            return NumpyBruteForceIndex.from_bytes(payload, header)

        family = IndexFamily.lookup(header.get("family"))
        if gpu_context is not None and family is not None and family.supports_gpu:
            try:
                return FaissVectorIndex.from_bytes(payload, header, gpu_context)
            except ResourceError as e:
                logger.debug(f"Restoring snapshot on CPU: {e}")
        return FaissVectorIndex.from_bytes(payload, header)


default_factory = None


def get_default_factory() -> IndexFactory:
    """Lazily build the process-wide factory from environment settings."""
    global default_factory
    if default_factory is None:
        default_factory = IndexFactory()
    return default_factory
