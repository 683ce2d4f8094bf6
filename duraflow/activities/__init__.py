from .base import Activity
from .buffers import BinaryPayload, classify_buffer, normalize_buffer
from .hashing import (
    SUPPORTED_ALGORITHMS,
    ComputeHashActivity,
    HashAlgorithm,
    HashResult,
    compute,
    digest_hex,
)

__all__ = [
    "Activity",
    "BinaryPayload",
    "classify_buffer",
    "normalize_buffer",
    "ComputeHashActivity",
    "HashAlgorithm",
    "HashResult",
    "SUPPORTED_ALGORITHMS",
    "compute",
    "digest_hex",
]
