import importlib
from typing import Any, Iterable

from pydantic import BaseModel

from .models import SerializedValue


class ValueDeserializer:
    """
    Reconstruct a value from its serialized form.

    Supports:
    - Pydantic models (rebuilt from type and module metadata)
    - Plain JSON values
    """

    @staticmethod
    def deserialize(value: SerializedValue) -> Any:
        if value.type is None:
            return value.data

        if not value.module:
            raise ValueError(f"Missing module metadata for '{value.type}'")

        try:
            module = importlib.import_module(value.module)
            value_class = getattr(module, value.type)

            if issubclass(value_class, BaseModel):
                return value_class.model_validate(value.data)

            return value_class(**value.data)

        except Exception as e:
            raise ValueError(
                f"Failed to reconstruct '{value.type}' from module '{value.module}': {e}"
            )

    @classmethod
    def deserialize_all(cls, values: Iterable[SerializedValue]) -> list[Any]:
        return [cls.deserialize(v) for v in values]
