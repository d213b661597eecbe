"""Embedding vector codec and similarity.

Vectors are opaque fixed-length float sequences produced by an external
embedding callable. They are stored as raw little-endian float32 bytes
in ``contexts.embedding``.
"""

from __future__ import annotations

import base64
from collections.abc import Callable, Sequence

import numpy as np

EmbedFn = Callable[[str], Sequence[float]]
"""External embedding generator: text -> vector."""


def encode_vector(vector: Sequence[float] | np.ndarray) -> bytes:
    """Serialize a vector to float32 bytes."""
    return np.asarray(vector, dtype="<f4").tobytes()


def decode_vector(blob: bytes | None) -> np.ndarray | None:
    """Deserialize float32 bytes; None for a missing or empty blob."""
    if not blob:
        return None
    return np.frombuffer(blob, dtype="<f4").astype(np.float32)


def blob_to_base64(blob: bytes | None) -> str | None:
    return base64.b64encode(blob).decode("ascii") if blob else None


def base64_to_blob(encoded: str | None) -> bytes | None:
    return base64.b64decode(encoded) if encoded else None


def cosine_similarity(a: np.ndarray | Sequence[float], b: np.ndarray | Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector is zero or lengths differ."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalize each row; zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms = np.where(norms > 0, norms, 1.0)
    return matrix / norms
