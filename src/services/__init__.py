"""
Round-trip verification services for HubProbe
"""

from .composer import compose_inbound, compose_outbound
from .fixture import FixtureManager, HubEnvironment
from .provisioner import DeviceProvisioner, remove_stale_devices
from .scenarios import RoundTripRunner, ScenarioReport
from .verifier import DeliveryVerifier

__all__ = [
    'compose_inbound',
    'compose_outbound',
    'FixtureManager',
    'HubEnvironment',
    'DeviceProvisioner',
    'remove_stale_devices',
    'RoundTripRunner',
    'ScenarioReport',
    'DeliveryVerifier',
]
