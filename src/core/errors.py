"""
Error types for HubProbe

Every fault a round-trip scenario can raise. Faults abort the current test
only; the execution gate keeps them from leaking into other tests.
"""

from typing import Optional


class HubProbeError(Exception):
    """Base class for HubProbe errors"""
    pass


class FixtureInitializationError(HubProbeError):
    """Suite-level setup failed; the whole session is aborted"""
    pass


class RegistryError(HubProbeError):
    """A registry service call failed"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class DeviceNotFoundError(RegistryError):
    """The registry has no identity with the requested device id"""

    def __init__(self, device_id: str):
        super().__init__(f"Device not found: {device_id}", status=404)
        self.device_id = device_id


class CertificateError(HubProbeError):
    """The X.509 credential could not be loaded"""
    pass


class ProvisioningFailure(HubProbeError):
    """Creating a device identity failed"""

    def __init__(self, message: str, device_id: Optional[str] = None):
        super().__init__(message)
        self.device_id = device_id


class TransportOpenFailure(HubProbeError):
    """A messaging client could not be opened"""

    def __init__(self, message: str, transport: Optional[str] = None):
        super().__init__(message)
        self.transport = transport


class MessagingError(HubProbeError):
    """A send, receive or complete call on an opened client failed"""

    def __init__(self, message: str, transport: Optional[str] = None):
        super().__init__(message)
        self.transport = transport


class ValidationMismatch(HubProbeError, AssertionError):
    """A received message does not match what was sent"""

    def __init__(self, field: str, expected, actual):
        super().__init__(f"Mismatch in {field}: expected {expected!r}, got {actual!r}")
        self.field = field
        self.expected = expected
        self.actual = actual


class DeliveryTimeout(HubProbeError, TimeoutError):
    """No matching message was observed within the bounded window"""

    def __init__(self, ceiling: float, elapsed: float, attempts: int):
        super().__init__(
            f"Test is running longer than expected: no message after "
            f"{elapsed:.2f}s ({attempts} poll attempts, ceiling={ceiling}s)"
        )
        self.ceiling = ceiling
        self.elapsed = elapsed
        self.attempts = attempts


class CleanupFailure(HubProbeError):
    """Device deletion or connection close failed during teardown"""

    def __init__(self, message: str, resource: Optional[str] = None):
        super().__init__(message)
        self.resource = resource
