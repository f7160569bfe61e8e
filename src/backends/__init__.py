"""
Backends for HubProbe

Implementations of the collaborator interfaces: an in-memory loopback hub
and clients for a real hub.
"""

from .factory import Backend, LoopbackBackend, IoTHubBackend, create_backend
from .loopback import LoopbackHub

__all__ = [
    'Backend',
    'LoopbackBackend',
    'IoTHubBackend',
    'create_backend',
    'LoopbackHub',
]
