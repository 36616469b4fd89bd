"""
Error taxonomy for the index core.
Each kind carries the status code returned by the boundary functions.
"""

OK = 0
CONFIG_ERROR = -1
STORAGE_ERROR = -2
INDEX_ERROR = -3
SERIALIZATION_ERROR = -4
RESOURCE_ERROR = -5


class PgvFaissError(Exception):
    """Base class for every error the core raises."""

    status = INDEX_ERROR

    def __init__(self, message: str, *, cause: Exception = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self):
        if self.cause is not None:
            return f"{self.message} ({type(self.cause).__name__}: {self.cause})"
        return self.message


class ConfigError(PgvFaissError):
    """Invalid dimension, missing required field or rejected family."""

    status = CONFIG_ERROR


class ResourceError(PgvFaissError):
    """GPU unavailable, device id out of range or device memory unknown."""

    status = RESOURCE_ERROR

    def __init__(self, message: str, device: int = None, *, cause: Exception = None):
        super().__init__(message, cause=cause)
        self.device = device


class VectorIndexError(PgvFaissError):
    """Search before training, dimension mismatch or malformed batch."""

    status = INDEX_ERROR


class SerializationError(PgvFaissError):
    """Empty, truncated or corrupt snapshot blob."""

    status = SERIALIZATION_ERROR


class StorageError(PgvFaissError):
    """External blob store or vector table unreachable or rejected the call."""

    status = STORAGE_ERROR

    def __init__(self, message: str, key: str = None, *, cause: Exception = None):
        super().__init__(message, cause=cause)
        self.key = key
