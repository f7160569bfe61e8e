"""
Message data models for HubProbe

Defines the test message composed for a round trip and the message shape
device clients hand back.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional

PROPERTY_KEY = "property1"


@dataclass(frozen=True)
class TestMessage:
    """Outgoing test message. Immutable once composed."""
    __test__ = False  # not a pytest test class

    payload: bytes
    properties: Mapping[str, str] = field(default_factory=dict)
    message_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.payload, bytes):
            raise TypeError(f"payload must be bytes, got {type(self.payload).__name__}")
        # Freeze the property map so callers cannot mutate a composed message
        object.__setattr__(self, 'properties', MappingProxyType(dict(self.properties)))


@dataclass
class ReceivedMessage:
    """A message as observed by a device client"""
    data: bytes
    properties: Dict[str, str] = field(default_factory=dict)
    message_id: Optional[str] = None
    lock_token: Optional[str] = None

    def get_bytes(self) -> bytes:
        return self.data

    def text(self) -> str:
        """Decode the body the way the round-trip comparison expects"""
        return self.data.decode('ascii', errors='replace')
