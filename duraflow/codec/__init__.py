from .deserializer import ValueDeserializer
from .models import SerializedValue
from .serializer import ValueSerializer

__all__ = ["SerializedValue", "ValueSerializer", "ValueDeserializer"]
