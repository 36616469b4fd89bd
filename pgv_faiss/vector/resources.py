"""
GPU resource management.

A GpuContext owns one ``faiss.StandardGpuResources`` instance bound to a device,
with a temporary-memory budget carved from the memory that is free on that
device at acquisition time. Contexts are released explicitly by the handle
that owns them. A CPU-only faiss build simply reports zero devices, so every
acquisition fails with ResourceError and callers continue on CPU.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import faiss

from ..core.config import GPU_TEMP_MEMORY_CAP_BYTES, GPU_TEMP_MEMORY_FRACTION
from ..core.errors import ResourceError
from ..util.logging import logger


def temp_memory_budget(free_bytes: int) -> int:
    """Quarter of the free device memory, capped at 1.5 GiB."""
    if free_bytes <= 0:
        return 0
    return int(min(free_bytes * GPU_TEMP_MEMORY_FRACTION, GPU_TEMP_MEMORY_CAP_BYTES))


def faiss_device_count() -> int:
    """Number of accelerators visible to faiss (0 on CPU-only builds)."""
    if not hasattr(faiss, "get_num_gpus"):
        return 0
    return int(faiss.get_num_gpus())


def cupy_free_memory(device: int) -> int:
    """Free bytes on `device`, queried through the CUDA runtime via cupy."""
    try:
        import cupy
    except ImportError as e:
        raise ResourceError("cupy is required to size GPU temporary memory", device, cause=e) from e

    with cupy.cuda.Device(device):
        free_bytes, _total = cupy.cuda.runtime.memGetInfo()
    return int(free_bytes)


@dataclass(eq=False)
class GpuContext:
    """GPU resources for one handle on one device."""

    device: int
    resources: Any
    temp_memory_bytes: int
    released: bool = field(default=False)

    def clone_to_gpu(self, index: "faiss.Index") -> "faiss.Index":
        """Clone a CPU index onto this context's device."""
        if self.released:
            raise ResourceError("GPU context already released", self.device)
        if not hasattr(faiss, "index_cpu_to_gpu"):
            raise ResourceError("faiss build lacks index_cpu_to_gpu", self.device)

        try:
            if hasattr(faiss, "GpuClonerOptions"):
                co = faiss.GpuClonerOptions()
                co.device = int(self.device)
                return faiss.index_cpu_to_gpu(self.resources, int(self.device), index, co)
            return faiss.index_cpu_to_gpu(self.resources, int(self.device), index)
        except RuntimeError as e:
            raise ResourceError(
                f"Failed to promote {type(index).__name__} to GPU device {self.device}", self.device, cause=e
            ) from e

    def release(self) -> None:
        if self.released:
            return
        self.resources = None
        self.released = True


class ResourceManager:
    """Acquires and releases GPU contexts.

    Args:
        device_count_fn: returns the number of visible accelerators.
        free_memory_fn: returns the free bytes on a given device.
        resources_factory: builds the per-context faiss GPU resources object.
    """

    def __init__(self,
                 device_count_fn: Callable[[], int] = None,
                 free_memory_fn: Callable[[int], int] = None,
                 resources_factory: Callable[[], Any] = None):
        self._device_count_fn = device_count_fn or faiss_device_count
        self._free_memory_fn = free_memory_fn or cupy_free_memory
        self._resources_factory = resources_factory
        self._active: List[GpuContext] = []

    def device_count(self) -> int:
        try:
            return int(self._device_count_fn())
        except Exception as e:
            raise ResourceError("Unable to query GPU device count", cause=e) from e

    def acquire_gpu(self, device_id: int) -> GpuContext:
        """Acquire a GPU context on `device_id`.

        Raises:
            ResourceError: device out of range, free memory unknown or resource
                allocation failed.
        """
        available = self.device_count()
        if available <= 0:
            raise ResourceError("No GPU devices available", device_id)
        if device_id < 0 or device_id >= available:
            raise ResourceError(
                f"GPU device {device_id} not available ({available} device(s) visible)", device_id
            )

        try:
            free_bytes = int(self._free_memory_fn(device_id))
        except ResourceError:
            raise
        except Exception as e:
            raise ResourceError(f"Unable to query free memory on GPU device {device_id}", device_id, cause=e) from e

        budget = temp_memory_budget(free_bytes)

        try:
            resources = self._new_resources()
            if hasattr(resources, "setTempMemory"):
                resources.setTempMemory(budget)
        except ResourceError:
            raise
        except Exception as e:
            raise ResourceError(f"Failed to initialise GPU resources on device {device_id}", device_id, cause=e) from e

        context = GpuContext(device=device_id, resources=resources, temp_memory_bytes=budget)
        self._active.append(context)
        logger.log_gpu_acquired(device_id, budget)
        return context

    def try_acquire_gpu(self, device_id: int) -> Optional[GpuContext]:
        """Acquire a GPU context, or return None after logging why it was not possible."""
        try:
            return self.acquire_gpu(device_id)
        except ResourceError as e:
            logger.log_gpu_fallback(device_id, str(e))
            return None

    def release(self, context: Optional[GpuContext]) -> None:
        """Release a context. Safe to call with None or an already released context."""
        if context is None or context.released:
            return
        context.release()
        if context in self._active:
            self._active.remove(context)
        logger.log_gpu_released(context.device)

    @property
    def active_contexts(self) -> List[GpuContext]:
        return list(self._active)

    def _new_resources(self):
        if self._resources_factory is not None:
            return self._resources_factory()
        if not hasattr(faiss, "StandardGpuResources"):
            raise ResourceError("faiss build has no GPU support (StandardGpuResources missing)")
        return faiss.StandardGpuResources()


# Shared default manager; handles may be given their own
default_resource_manager = ResourceManager()
