"""
Core module for HubProbe

Contains configuration, logging, errors, the execution gate and the
collaborator interfaces.
"""

from .errors import (
    HubProbeError,
    FixtureInitializationError,
    RegistryError,
    DeviceNotFoundError,
    CertificateError,
    ProvisioningFailure,
    TransportOpenFailure,
    MessagingError,
    ValidationMismatch,
    DeliveryTimeout,
    CleanupFailure,
)
from .gate import ExecutionGate

__all__ = [
    'HubProbeError',
    'FixtureInitializationError',
    'RegistryError',
    'DeviceNotFoundError',
    'CertificateError',
    'ProvisioningFailure',
    'TransportOpenFailure',
    'MessagingError',
    'ValidationMismatch',
    'DeliveryTimeout',
    'CleanupFailure',
    'ExecutionGate',
]
