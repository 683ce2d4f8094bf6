"""Value serialization tests."""

from datetime import datetime, timezone

import pytest
from pydantic import BaseModel

from duraflow.activities import BinaryPayload, HashResult
from duraflow.codec import SerializedValue, ValueDeserializer, ValueSerializer


class MockInput(BaseModel):
    name: str = "test"
    size: int = 30


def test_pydantic_model_serialization():
    """Models keep their type so workers can rebuild them."""
    value = MockInput(name="secret", size=60)

    serialized = ValueSerializer.serialize(value)
    assert serialized.data == {"name": "secret", "size": 60}
    assert serialized.type == "MockInput"

    restored = ValueDeserializer.deserialize(serialized)
    assert isinstance(restored, MockInput)
    assert restored == value


def test_none_serialization():
    serialized = ValueSerializer.serialize(None)
    assert serialized == SerializedValue()
    assert ValueDeserializer.deserialize(serialized) is None


def test_plain_values_are_json_compatible():
    moment = datetime(2024, 5, 1, tzinfo=timezone.utc)
    serialized = ValueSerializer.serialize({"when": moment, "items": (1, 2)})
    assert serialized.type is None
    assert serialized.data == {"when": "2024-05-01T00:00:00Z", "items": [1, 2]}


def test_bytes_round_trip_through_binary_payload():
    serialized = ValueSerializer.serialize(BinaryPayload.from_bytes(b"\x00\x01"))
    assert serialized.data["data"] == "AAE="

    restored = ValueDeserializer.deserialize(
        SerializedValue.model_validate_json(serialized.model_dump_json())
    )
    assert restored.data == b"\x00\x01"


def test_camel_case_model_restored():
    result = HashResult(algorithm="md5", digest="00")
    restored = ValueDeserializer.deserialize(ValueSerializer.serialize(result))
    assert restored == result


def test_unserializable_value_raises():
    with pytest.raises(ValueError):
        ValueSerializer.serialize(object())


def test_unknown_module_raises():
    with pytest.raises(ValueError):
        ValueDeserializer.deserialize(
            SerializedValue(data={}, type="Missing", module="duraflow.nope")
        )
