"""
Device identity, credential and verification outcome models.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class X509Credential:
    """Certificate handle: PEM paths plus the upper-case SHA1 thumbprint"""
    cert_path: str
    key_path: str
    thumbprint: str
    ca_path: Optional[str] = None


@dataclass(frozen=True)
class DeviceIdentity:
    """A registry-managed device authenticated by an X.509 thumbprint"""
    device_id: str
    host_name: str
    thumbprint: str

    def as_host_tuple(self) -> Tuple[str, str]:
        return self.device_id, self.host_name


class VerificationState(Enum):
    """Delivery verifier states"""
    IDLE = "idle"
    POLLING = "polling"
    MATCHED = "matched"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in (VerificationState.MATCHED, VerificationState.TIMED_OUT)


@dataclass
class VerificationOutcome:
    """Terminal result of one verification run"""
    state: VerificationState
    payload: Optional[str] = None
    properties: Dict[str, str] = field(default_factory=dict)
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def matched(self) -> bool:
        return self.state == VerificationState.MATCHED
