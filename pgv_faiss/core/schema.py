"""
Validated configuration models for index construction.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import get_default_search_breadth
from .errors import ConfigError


class IndexFamily(str, Enum):
    """Index structure families a handle can be backed by."""

    FLAT = "Flat"
    INVERTED_FILE = "IVFFlat"
    GRAPH = "HNSW"

    @property
    def requires_training(self) -> bool:
        return self is IndexFamily.INVERTED_FILE

    @property
    def supports_gpu(self) -> bool:
        # faiss has no GPU graph index
        return self is not IndexFamily.GRAPH

    @classmethod
    def lookup(cls, name: str) -> Optional["IndexFamily"]:
        """Resolve a family name or alias, case-insensitively. Returns None when unknown."""
        if isinstance(name, IndexFamily):
            return name
        if not isinstance(name, str):
            return None
        return _FAMILY_ALIASES.get(name.strip().lower())


_FAMILY_ALIASES = {
    "flat": IndexFamily.FLAT,
    "ivfflat": IndexFamily.INVERTED_FILE,
    "ivf": IndexFamily.INVERTED_FILE,
    "invertedfile": IndexFamily.INVERTED_FILE,
    "inverted_file": IndexFamily.INVERTED_FILE,
    "hnsw": IndexFamily.GRAPH,
    "graph": IndexFamily.GRAPH,
}


class IndexConfig(BaseModel):
    """Immutable construction parameters for one logical index."""

    model_config = ConfigDict(frozen=True)

    dimension: int
    family: str = IndexFamily.INVERTED_FILE.value
    use_gpu: bool = False
    gpu_device: int = 0
    search_breadth: int = Field(default_factory=get_default_search_breadth)
    expected_size: Optional[int] = None
    connection_string: Optional[str] = None

    @field_validator('dimension')
    @classmethod
    def dimension_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('dimension must be a positive integer')
        return v

    @field_validator('family')
    @classmethod
    def family_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('family cannot be empty')
        return v.strip()

    @field_validator('gpu_device')
    @classmethod
    def gpu_device_must_be_non_negative(cls, v):
        if v < 0:
            raise ValueError('gpu_device must be >= 0')
        return v

    @field_validator('search_breadth')
    @classmethod
    def search_breadth_must_be_positive(cls, v):
        if v < 1:
            raise ValueError('search_breadth must be >= 1')
        return v

    @field_validator('expected_size')
    @classmethod
    def expected_size_must_be_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('expected_size must be >= 1 when set')
        return v


def parse_config(values: Optional[Dict[str, Any]] = None, **kwargs) -> IndexConfig:
    """Build an IndexConfig, converting validation failures into ConfigError."""
    if isinstance(values, IndexConfig) and not kwargs:
        return values
    if values is None and not kwargs:
        raise ConfigError("index config is required")

    data = dict(values or {})
    data.update(kwargs)
    try:
        return IndexConfig(**data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ConfigError(f"invalid index config: {fields}", cause=e) from e
