"""
Delivery Verifier

Transport-aware bounded polling loop that receives, validates and completes
exactly one message.

States: IDLE -> POLLING -> {MATCHED, TIMED_OUT}

- Every unmatched poll attempt checks the wall-clock time spent polling
  against a fixed ceiling; exceeding it raises DeliveryTimeout.
- The first non-empty receive is validated immediately. A mismatch raises
  ValidationMismatch and polling stops; a wrong message is never waited past.
- A match is completed once, then polling stops.

Bindings with bounded-wait receive poll with a short wait per attempt.
HTTP polling only supports an immediate receive, so it loops with no delay
beyond the round trip of each request.
"""

import time
from typing import Callable, Optional

from ..core.errors import DeliveryTimeout, ValidationMismatch
from ..core.interfaces import DeviceMessagingClient
from ..core.logging import get_logger
from ..models.device import VerificationOutcome, VerificationState
from ..models.message import PROPERTY_KEY, ReceivedMessage
from ..models.transport import TransportBinding

DEFAULT_CEILING_SECONDS = 5.0
DEFAULT_POLL_WAIT_SECONDS = 1.0


class DeliveryVerifier:
    """One-shot verifier; create a new instance per test."""

    def __init__(self, binding: TransportBinding,
                 ceiling: float = DEFAULT_CEILING_SECONDS,
                 poll_wait: float = DEFAULT_POLL_WAIT_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.binding = binding
        self.ceiling = ceiling
        self.poll_wait = poll_wait
        self.clock = clock
        self.state = VerificationState.IDLE
        self.attempts = 0
        self.completions = 0
        self.logger = get_logger('verifier')

    @property
    def minimum_attempts(self) -> int:
        """Poll attempts guaranteed before a timeout on a bounded-wait binding"""
        if not self.binding.supports_bounded_wait:
            return 1
        return max(1, int(self.ceiling // self.poll_wait))

    async def verify(self, client: DeviceMessagingClient, payload: str,
                     p1_value: str) -> VerificationOutcome:
        """
        Poll the device client until the expected message arrives.

        Args:
            client: Opened device messaging client
            payload: Expected payload text
            p1_value: Expected value of the single property

        Returns:
            VerificationOutcome in the MATCHED state

        Raises:
            ValidationMismatch: If the first received message differs
            DeliveryTimeout: If nothing arrives before the ceiling
            RuntimeError: If this verifier was already used
        """
        if self.state != VerificationState.IDLE:
            raise RuntimeError(f"Verifier already used (state={self.state.value})")

        self.state = VerificationState.POLLING
        started = self.clock()
        self.logger.debug(
            f"Polling for message - transport={self.binding}, "
            f"ceiling={self.ceiling}s, bounded_wait={self.binding.supports_bounded_wait}"
        )

        while True:
            received = await self._poll(client)
            self.attempts += 1

            if received is not None:
                self._validate(received, payload, p1_value)
                await client.complete(received)
                self.completions += 1
                self.state = VerificationState.MATCHED
                elapsed = self.clock() - started
                self.logger.info(
                    f"Message matched - transport={self.binding}, "
                    f"attempts={self.attempts}, elapsed={elapsed:.2f}s"
                )
                return VerificationOutcome(
                    state=self.state,
                    payload=received.text(),
                    properties=dict(received.properties),
                    attempts=self.attempts,
                    elapsed=elapsed,
                )

            elapsed = self.clock() - started
            self.logger.debug(f"No message yet - attempt={self.attempts}, elapsed={elapsed:.2f}s")
            if elapsed > self.ceiling:
                self.state = VerificationState.TIMED_OUT
                self.logger.error(
                    f"Delivery timeout - transport={self.binding}, "
                    f"attempts={self.attempts}, elapsed={elapsed:.2f}s"
                )
                raise DeliveryTimeout(self.ceiling, elapsed, self.attempts)

    async def _poll(self, client: DeviceMessagingClient) -> Optional[ReceivedMessage]:
        if self.binding.supports_bounded_wait:
            return await client.receive(timeout=self.poll_wait)
        return await client.receive()

    def _validate(self, received: ReceivedMessage, payload: str, p1_value: str) -> None:
        message_data = received.text()
        if message_data != payload:
            raise ValidationMismatch('payload', payload, message_data)

        if len(received.properties) != 1:
            raise ValidationMismatch('property count', 1, len(received.properties))

        key, value = next(iter(received.properties.items()))
        if key != PROPERTY_KEY:
            raise ValidationMismatch('property key', PROPERTY_KEY, key)
        if value != p1_value:
            raise ValidationMismatch('property value', p1_value, value)
