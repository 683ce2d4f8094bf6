"""Canonical byte payloads built from heterogeneous buffer representations."""

from __future__ import annotations

import base64
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Literal, Tuple

from pydantic import BaseModel, field_serializer, field_validator

logger = logging.getLogger(__name__)

BufferSource = Literal["bytes", "ints", "tagged", "view", "reinterpreted", "empty"]


def _from_ints(values: Sequence[Any]) -> bytes:
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in values):
        raise TypeError("sequence must contain only integers")
    # bytes() rejects values outside 0-255 with ValueError
    return bytes(values)


def _tagged_data(value: Any) -> Any:
    if isinstance(value, Mapping):
        return value.get("data", _MISSING)
    return getattr(value, "data", _MISSING)


_MISSING = object()


def classify_buffer(value: Any) -> Tuple[BufferSource, bytes]:
    """Return the representation of ``value`` and its canonical bytes.

    Representations are tried in order: byte string, sequence of ints,
    wrapper exposing ``data``, binary view. Anything else gets a best-effort
    ``bytes()`` conversion and finally degrades to empty input. Never raises.
    """

    if isinstance(value, BinaryPayload):
        return value.source, value.data

    if isinstance(value, bytes):
        return "bytes", bytes(value)

    if isinstance(value, (list, tuple)):
        try:
            return "ints", _from_ints(value)
        except (TypeError, ValueError):
            logger.debug("Integer sequence is not a valid byte sequence")
            return "empty", b""

    if not isinstance(value, (str, bytearray, memoryview)):
        data = _tagged_data(value)
        if data is not _MISSING:
            if isinstance(data, str):
                try:
                    return "tagged", base64.b64decode(data, validate=True)
                except ValueError:
                    return "empty", b""
            source, raw = classify_buffer(data)
            return ("tagged", raw) if source != "empty" else ("empty", b"")
        if isinstance(value, Mapping):
            return "empty", b""

    try:
        with memoryview(value) as view:
            return "view", view.tobytes()
    except TypeError:
        pass

    if isinstance(value, (str, int, float)) or value is None:
        return "empty", b""

    try:
        return "reinterpreted", bytes(value)
    except (TypeError, ValueError):
        logger.debug(f"Cannot interpret {type(value).__name__} as bytes")
        return "empty", b""


def normalize_buffer(value: Any) -> bytes:
    """Canonical bytes for any accepted buffer representation."""
    return classify_buffer(value)[1]


class BinaryPayload(BaseModel):
    """Byte content tagged with the representation it was built from.

    Build one with the constructor matching the input, or ``coerce`` when the
    representation is not known in advance. JSON encoding uses base64.
    """

    data: bytes = b""
    source: BufferSource = "bytes"

    @field_validator("data", mode="before")
    @classmethod
    def _decode_base64(cls, v: Any) -> Any:
        if isinstance(v, str):
            return base64.b64decode(v)
        return v

    @field_serializer("data", when_used="json")
    def _encode_base64(self, v: bytes) -> str:
        return base64.b64encode(v).decode("ascii")

    def __len__(self) -> int:
        return len(self.data)

    @classmethod
    def from_bytes(cls, value: bytes) -> "BinaryPayload":
        return cls(data=bytes(value), source="bytes")

    @classmethod
    def from_ints(cls, values: Sequence[int]) -> "BinaryPayload":
        return cls(data=_from_ints(values), source="ints")

    @classmethod
    def from_tagged(cls, wrapper: Any) -> "BinaryPayload":
        data = _tagged_data(wrapper)
        if data is _MISSING:
            raise ValueError("wrapper has no 'data' field")
        return cls(data=_from_ints(data), source="tagged")

    @classmethod
    def from_view(cls, view: Any) -> "BinaryPayload":
        with memoryview(view) as mv:
            return cls(data=mv.tobytes(), source="view")

    @classmethod
    def coerce(cls, value: Any) -> "BinaryPayload":
        if isinstance(value, cls):
            return value
        source, data = classify_buffer(value)
        return cls(data=data, source=source)
