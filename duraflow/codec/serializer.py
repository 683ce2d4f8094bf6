from typing import Any

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from .models import SerializedValue


class ValueSerializer:
    """
    Serialize an activity argument, result or workflow input for the queue.

    Pydantic models keep their class name and module so the receiving worker
    can rebuild them; everything else must already be JSON compatible.
    """

    @staticmethod
    def serialize(value: Any) -> SerializedValue:
        if value is None:
            return SerializedValue()

        if isinstance(value, BaseModel):
            value_type = type(value).__name__
            value_module = type(value).__module__
            try:
                return SerializedValue(
                    data=value.model_dump(mode="json"),
                    type=value_type,
                    module=value_module,
                )
            except Exception as e:
                raise ValueError(f"Failed to serialize Pydantic model {value_type}: {e}")

        try:
            return SerializedValue(data=to_jsonable_python(value))
        except Exception as e:
            raise ValueError(
                f"Cannot serialize value of type '{type(value).__name__}': {e}"
            )

    @classmethod
    def serialize_all(cls, values: Any) -> list[SerializedValue]:
        return [cls.serialize(v) for v in values]
