"""
Runtime configuration for the index core.
Environment-driven settings plus the fixed construction constants.
"""

import os
from pathlib import Path

# Database path configuration
DB_PATH = os.getenv("PGVF_DB_PATH", "./data/pgv_faiss.db")

# Debug-level logging, read at import; debug_enabled() re-reads the environment
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Index backend selection - faiss|numpy
INDEX_BACKEND = os.getenv("PGVF_INDEX_BACKEND", "faiss")
SEARCH_BREADTH = int(os.getenv("PGVF_SEARCH_BREADTH", "10"))
STRICT_FAMILY = os.getenv("PGVF_STRICT_FAMILY", "false").lower() == "true"

# Inverted-file construction
DEFAULT_EXPECTED_SIZE = 100_000
MAX_CENTROIDS = 65536
MAX_TRAINING_VECTORS = 100_000

# Graph construction
GRAPH_OUT_DEGREE = 16
GRAPH_EF_CONSTRUCTION = 40

# GPU temporary memory budget: a quarter of free device memory, capped at 1.5 GiB
GPU_TEMP_MEMORY_FRACTION = 0.25
GPU_TEMP_MEMORY_CAP_BYTES = 1536 * 1024 * 1024

# Row storage text encoding
VECTOR_TEXT_PRECISION = 6

VALID_BACKENDS = ["faiss", "numpy"]

# Version string
VERSION = "1.0.0"


def get_index_backend():
    """Get the configured capability implementation (faiss|numpy)."""
    return os.getenv("PGVF_INDEX_BACKEND", INDEX_BACKEND).lower()


def get_default_search_breadth():
    """Get the search breadth used when a config does not set one."""
    return int(os.getenv("PGVF_SEARCH_BREADTH", str(SEARCH_BREADTH)))


def strict_family_enabled():
    """Check if an unknown index family should be rejected instead of falling back to Flat."""
    return os.getenv("PGVF_STRICT_FAMILY", "false").lower() == "true"


def get_db_path():
    """Get the SQLite path backing the default blob store."""
    return os.getenv("PGVF_DB_PATH", DB_PATH)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate environment configuration and return any issues."""
    issues = []

    if get_index_backend() not in VALID_BACKENDS:
        issues.append(f"Invalid PGVF_INDEX_BACKEND: {get_index_backend()}")

    try:
        if get_default_search_breadth() < 1:
            issues.append("PGVF_SEARCH_BREADTH must be >= 1")
    except ValueError:
        issues.append(f"PGVF_SEARCH_BREADTH must be an integer: {os.getenv('PGVF_SEARCH_BREADTH')}")

    if not get_db_path():
        issues.append("PGVF_DB_PATH must not be empty")

    return issues
