"""Digest computation activity."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Literal, get_args

from blake3 import blake3
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .base import Activity
from .buffers import normalize_buffer

logger = logging.getLogger(__name__)

HashAlgorithm = Literal["md5", "sha1", "sha256", "sha512", "blake3"]

SUPPORTED_ALGORITHMS: tuple[str, ...] = get_args(HashAlgorithm)


class HashResult(BaseModel):
    """Digest of one buffer for one algorithm."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    algorithm: HashAlgorithm
    digest: str
    computed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def digest_hex(data: bytes, algorithm: str) -> str:
    """Lowercase hex digest of ``data``."""
    if algorithm == "blake3":
        return blake3(data).hexdigest()
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")
    return hashlib.new(algorithm, data).hexdigest()


def compute(buffer: Any, algorithm: str) -> HashResult:
    """Normalize ``buffer`` and hash it with ``algorithm``."""
    data = normalize_buffer(buffer)
    return HashResult(algorithm=algorithm, digest=digest_hex(data, algorithm))


class ComputeHashActivity(Activity):
    """Compute the digest of an uploaded file for a single algorithm."""

    name = "ComputeHashActivity"
    tries = 3
    timeout = 30

    def execute(self, buffer: Any, algorithm: str) -> HashResult:
        result = compute(buffer, algorithm)
        logger.debug(f"Computed {algorithm} digest {result.digest}")
        return result
