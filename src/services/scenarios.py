"""
Round-trip scenarios

Drives one message round trip per call over a given transport binding.

Receive (cloud to device): provision, open device, prime the subscription
where the binding needs it, open service, send, verify, then close both
clients and remove the device.

Send (device to cloud): provision, open device, send, close, remove. No
receive loop runs for this direction; delivery is inferred from the absence
of a send fault, a narrower guarantee than the receive scenarios give.

Every acquired resource is released on every exit path. A release failure
is raised only when no other fault is already propagating.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.errors import (
    CleanupFailure,
    MessagingError,
    TransportOpenFailure,
)
from ..core.logging import LogContext, get_logger, get_structured_logger
from ..models.device import VerificationOutcome
from ..models.transport import Direction, TransportBinding
from .composer import compose_inbound, compose_outbound
from .fixture import HubEnvironment
from .provisioner import DeviceProvisioner
from .verifier import DeliveryVerifier


@dataclass
class ScenarioReport:
    """What a scenario did, for assertions and logs"""
    direction: Direction
    binding: TransportBinding
    device_id: str
    payload: str
    property_value: str
    message_id: Optional[str] = None
    outcome: Optional[VerificationOutcome] = None


class RoundTripRunner:
    """Runs send and receive scenarios against a shared hub environment."""

    def __init__(self, environment: HubEnvironment, config: Dict[str, Any],
                 provisioner: Optional[DeviceProvisioner] = None):
        self.environment = environment
        self.backend = environment.backend
        self.prefix = config.get('device', {}).get('prefix', 'E2E_X509_Python_')

        verification = config.get('verification', {})
        self.ceiling = verification.get('ceiling_seconds', 5.0)
        self.poll_wait = verification.get('poll_wait_seconds', 1.0)
        self.priming_wait = verification.get('priming_wait_seconds', 2.0)

        self.provisioner = provisioner or DeviceProvisioner(self.backend.certificate_provider())
        self.logger = get_logger('scenarios')
        self.events = get_structured_logger('scenarios')

    async def receive_single_message(self, binding: TransportBinding) -> ScenarioReport:
        """Send from the service and verify arrival on a device using `binding`."""
        env = self.environment
        credential = self.backend.certificate_provider().get_certificate_with_private_key()

        async with self.provisioner.provisioned(self.prefix, env.host_name, env.registry) as identity:
            service_client = self.backend.service_client()
            device_client = self.backend.device_client(identity, credential, binding)
            try:
                await self._open(device_client, str(binding))

                if binding.requires_subscription_priming:
                    # Registers the device-bound subscription before the service sends
                    await device_client.receive(timeout=self.priming_wait)

                message, payload, message_id, p1_value = compose_inbound()
                await self._open(service_client, "service")
                await service_client.send(identity.device_id, message)
                self.logger.info(
                    f"Sent cloud-to-device message - device={identity.device_id}, "
                    f"transport={binding}, message_id={message_id}"
                )

                verifier = DeliveryVerifier(binding, ceiling=self.ceiling, poll_wait=self.poll_wait)
                outcome = await verifier.verify(device_client, payload, p1_value)

            except BaseException:
                await self._close_all([device_client, service_client], propagating=True)
                raise
            await self._close_all([device_client, service_client], propagating=False)

        report = ScenarioReport(
            direction=Direction.CLOUD_TO_DEVICE,
            binding=binding,
            device_id=identity.device_id,
            payload=payload,
            property_value=p1_value,
            message_id=message_id,
            outcome=outcome,
        )
        self._record(report)
        return report

    async def send_single_message(self, binding: TransportBinding) -> ScenarioReport:
        """Send one device-to-cloud message over `binding`."""
        env = self.environment
        credential = self.backend.certificate_provider().get_certificate_with_private_key()

        async with self.provisioner.provisioned(self.prefix, env.host_name, env.registry) as identity:
            device_client = self.backend.device_client(identity, credential, binding)
            try:
                await self._open(device_client, str(binding))
                message, payload, p1_value = compose_outbound()
                await device_client.send(message)
                self.logger.info(
                    f"Sent device-to-cloud message - device={identity.device_id}, transport={binding}"
                )
            except BaseException:
                await self._close_all([device_client], propagating=True)
                raise
            await self._close_all([device_client], propagating=False)

        report = ScenarioReport(
            direction=Direction.DEVICE_TO_CLOUD,
            binding=binding,
            device_id=identity.device_id,
            payload=payload,
            property_value=p1_value,
        )
        self._record(report)
        return report

    async def _open(self, client, transport: str) -> None:
        try:
            await client.open()
        except TransportOpenFailure:
            raise
        except (MessagingError, OSError, asyncio.TimeoutError) as e:
            raise TransportOpenFailure(f"Could not open {transport} client: {e}",
                                       transport=transport) from e

    async def _close_all(self, clients: List[Any], propagating: bool) -> None:
        """Close every client; report failures without masking an earlier fault."""
        first_failure: Optional[CleanupFailure] = None
        for client in clients:
            try:
                await client.close()
            except (MessagingError, OSError, asyncio.TimeoutError) as e:
                failure = CleanupFailure(f"Could not close {type(client).__name__}: {e}",
                                         resource=type(client).__name__)
                self.logger.error(str(failure), exc_info=True)
                if first_failure is None:
                    first_failure = failure

        if first_failure is not None and not propagating:
            raise first_failure

    def _record(self, report: ScenarioReport) -> None:
        with LogContext(self.events, direction=report.direction.value,
                        transport=str(report.binding), device_id=report.device_id) as log:
            if report.outcome is not None:
                log.info("round_trip_verified", attempts=report.outcome.attempts,
                         elapsed=round(report.outcome.elapsed, 3))
            else:
                log.info("message_sent", payload_size=len(report.payload))
