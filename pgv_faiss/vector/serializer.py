"""
Snapshot encoding for index handles.

Blob layout (big-endian):

    magic        8 bytes   b"PGVFAISS"
    version      uint16
    header_len   uint32    length of the JSON metadata header
    payload_len  uint64    length of the backend payload
    crc32        uint32    CRC-32 over header + payload
    header       JSON      backend, family, dimension, training state, ...
    payload      bytes     backend-specific state (faiss serialize_index or npz)
"""

import json
import struct
import zlib
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ..core.errors import PgvFaissError, SerializationError
from ..core.schema import IndexFamily, parse_config
from ..util.logging import logger
from .index import IVectorIndex
from .training import TrainingStateMachine
from .types import TrainingState

MAGIC = b"PGVFAISS"
FORMAT_VERSION = 1
_PREAMBLE = struct.Struct(">8sHIQI")

_REQUIRED_FIELDS = ("backend", "family", "dimension", "training_state", "train_count", "ntotal")


class Serializer:
    """Converts an index handle's full state to and from an opaque blob.

    Args:
        factory: IndexFactory used to rebuild structures (defaults to the shared factory).
    """

    def __init__(self, factory=None):
        self._factory = factory

    @property
    def factory(self):
        if self._factory is None:
            from .factory import get_default_factory
            self._factory = get_default_factory()
        return self._factory

    def serialize(self, handle) -> bytes:
        """Encode `handle` as a snapshot blob."""
        index = handle._require_index()
        try:
            payload = index.to_bytes()
        except PgvFaissError:
            raise
        except Exception as e:
            raise SerializationError(f"Failed to encode {index.backend} index state", cause=e) from e

        header = {
            "backend": index.backend,
            "family": index.family.value,
            "dimension": index.dimension,
            "training_state": handle.training_state.value,
            "train_count": handle.train_count,
            "ntotal": index.ntotal,
            "search_breadth": handle.search_breadth,
            "cluster_count": index.cluster_count,
            "created_at": datetime.now().isoformat(),
        }
        blob = encode_envelope(header, payload)
        logger.log_snapshot("encode", len(blob), {"family": header["family"], "ntotal": header["ntotal"]})
        return blob

    def decode(self, blob: bytes) -> Tuple[Dict[str, Any], bytes]:
        """Validate the envelope and return (header, payload)."""
        return decode_envelope(blob)

    def restore_parts(self, blob: bytes, gpu_context=None) -> Tuple[Dict[str, Any], IVectorIndex, TrainingStateMachine]:
        """Rebuild the structure and its training gate without touching any handle."""
        header, payload = self.decode(blob)
        try:
            index = self.factory.restore_index(payload, header, gpu_context)
        except PgvFaissError as e:
            if isinstance(e, SerializationError):
                raise
            raise SerializationError(f"Failed to restore index: {e.message}", cause=e) from e
        except Exception as e:
            raise SerializationError("Failed to restore index state", cause=e) from e

        if index.ntotal != header["ntotal"]:
            index.release()
            raise SerializationError(
                f"snapshot vector count mismatch: header {header['ntotal']}, payload {index.ntotal}"
            )

        try:
            training = TrainingStateMachine.restore(
                index, TrainingState(header["training_state"]), header["train_count"]
            )
        except (ValueError, PgvFaissError) as e:
            index.release()
            raise SerializationError("snapshot training state is inconsistent", cause=e) from e

        logger.log_snapshot("decode", len(blob), {"family": header["family"], "ntotal": header["ntotal"]})
        return header, index, training

    def deserialize(self, blob: bytes, blob_store=None):
        """Build a new IndexHandle from a snapshot blob."""
        from .handle import IndexHandle

        header, index, training = self.restore_parts(blob)
        config = parse_config(
            dimension=header["dimension"],
            family=header["family"],
            search_breadth=header.get("search_breadth") or 1,
        )
        return IndexHandle(config, index, training=training,
                           resource_manager=self.factory.resource_manager,
                           blob_store=blob_store, serializer=self)


def encode_envelope(header: Dict[str, Any], payload: bytes) -> bytes:
    header_bytes = json.dumps(header, sort_keys=True).encode("utf-8")
    crc = zlib.crc32(header_bytes + payload) & 0xFFFFFFFF
    preamble = _PREAMBLE.pack(MAGIC, FORMAT_VERSION, len(header_bytes), len(payload), crc)
    return preamble + header_bytes + payload


def decode_envelope(blob: Optional[bytes]) -> Tuple[Dict[str, Any], bytes]:
    """Parse and verify a snapshot blob.

    Raises:
        SerializationError: empty, truncated, unknown version, checksum mismatch
            or malformed metadata.
    """
    if not blob:
        raise SerializationError("snapshot blob is empty")

    blob = bytes(blob)
    if len(blob) < _PREAMBLE.size:
        raise SerializationError(f"snapshot blob truncated ({len(blob)} bytes)")

    magic, version, header_len, payload_len, crc = _PREAMBLE.unpack_from(blob)
    if magic != MAGIC:
        raise SerializationError("snapshot blob has an unknown format")
    if version != FORMAT_VERSION:
        raise SerializationError(f"unsupported snapshot version {version}")

    body = blob[_PREAMBLE.size:]
    if len(body) != header_len + payload_len:
        raise SerializationError(
            f"snapshot blob length mismatch: expected {header_len + payload_len} body bytes, got {len(body)}"
        )
    if zlib.crc32(body) & 0xFFFFFFFF != crc:
        raise SerializationError("snapshot checksum mismatch")

    try:
        header = json.loads(body[:header_len].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError("snapshot metadata is not valid JSON", cause=e) from e

    if not isinstance(header, dict):
        raise SerializationError("snapshot metadata must be an object")
    missing = [name for name in _REQUIRED_FIELDS if name not in header]
    if missing:
        raise SerializationError(f"snapshot metadata missing fields: {', '.join(missing)}")
    if IndexFamily.lookup(header["family"]) is None:
        raise SerializationError(f"snapshot has unknown index family {header['family']!r}")

    return header, body[header_len:]
