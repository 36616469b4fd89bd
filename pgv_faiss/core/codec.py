"""
Text encoding of vectors for row storage: "[x1,x2,...]" with fixed fractional precision.
"""

from typing import Iterable, List, Union

import numpy as np

from .config import VECTOR_TEXT_PRECISION


def encode_vector(vector: Union[np.ndarray, Iterable[float]], precision: int = VECTOR_TEXT_PRECISION) -> str:
    """Encode a vector as a delimited literal with `precision` fractional digits."""
    arr = np.asarray(vector, dtype=np.float32).ravel()
    return "[" + ",".join(f"{float(x):.{precision}f}" for x in arr) + "]"


def parse_vector(text: str) -> np.ndarray:
    """Parse a delimited vector literal back into a float32 array.

    Raises:
        ValueError: if the literal is not bracketed or an element is not a number.
    """
    if not isinstance(text, str):
        raise ValueError(f"vector literal must be a string, got {type(text).__name__}")

    body = text.strip()
    if len(body) < 2 or body[0] != "[" or body[-1] != "]":
        raise ValueError(f"malformed vector literal: {text[:40]!r}")

    body = body[1:-1].strip()
    if not body:
        return np.empty(0, dtype=np.float32)

    try:
        values = [float(item) for item in body.split(",")]
    except ValueError as e:
        raise ValueError(f"malformed vector element in literal: {text[:40]!r}") from e
    return np.asarray(values, dtype=np.float32)


def encode_vectors(vectors: np.ndarray, precision: int = VECTOR_TEXT_PRECISION) -> List[str]:
    """Encode each row of a 2-D array."""
    return [encode_vector(row, precision) for row in np.atleast_2d(vectors)]
