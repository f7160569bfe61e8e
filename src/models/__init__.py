"""
Data models for HubProbe
"""

from .message import TestMessage, ReceivedMessage, PROPERTY_KEY
from .transport import (
    Direction,
    TransportBinding,
    enumerate_bindings,
    exclusion_reason,
    scenario_matrix,
)
from .device import DeviceIdentity, X509Credential, VerificationState, VerificationOutcome

__all__ = [
    'TestMessage',
    'ReceivedMessage',
    'PROPERTY_KEY',
    'Direction',
    'TransportBinding',
    'enumerate_bindings',
    'exclusion_reason',
    'scenario_matrix',
    'DeviceIdentity',
    'X509Credential',
    'VerificationState',
    'VerificationOutcome',
]
