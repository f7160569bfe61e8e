"""
Hub connection string parsing and SAS token generation.
"""

import base64
import hashlib
import hmac
import time
import urllib.parse
from dataclasses import dataclass
from typing import Dict, Optional

from .config import ConfigurationError

DEFAULT_TOKEN_TTL = 3600


@dataclass(frozen=True)
class ConnectionString:
    """Parsed service connection string (HostName=...;SharedAccessKeyName=...;SharedAccessKey=...)"""
    host_name: str
    shared_access_key_name: Optional[str] = None
    shared_access_key: Optional[str] = None

    @classmethod
    def parse(cls, connection_string: str) -> 'ConnectionString':
        """
        Parse a connection string.

        Raises:
            ConfigurationError: If the string is malformed or has no HostName
        """
        fields: Dict[str, str] = {}
        for segment in connection_string.strip().split(';'):
            if not segment:
                continue
            key, sep, value = segment.partition('=')
            if not sep:
                raise ConfigurationError(f"Malformed connection string segment: {key!r}")
            # Keys end at the first '='; base64 values may contain more of them
            fields[key.strip()] = value.strip()

        host_name = fields.get('HostName')
        if not host_name:
            raise ConfigurationError("Connection string has no HostName")

        return cls(
            host_name=host_name,
            shared_access_key_name=fields.get('SharedAccessKeyName'),
            shared_access_key=fields.get('SharedAccessKey'),
        )

    def generate_sas_token(self, ttl: int = DEFAULT_TOKEN_TTL, now: Optional[float] = None) -> str:
        """Build a SharedAccessSignature token scoped to the hub host."""
        if not self.shared_access_key:
            raise ConfigurationError("Connection string has no SharedAccessKey")

        expiry = int((now if now is not None else time.time()) + ttl)
        resource = urllib.parse.quote(self.host_name, safe='').lower()
        to_sign = f"{resource}\n{expiry}".encode('utf-8')
        key = base64.b64decode(self.shared_access_key)
        signature = base64.b64encode(hmac.new(key, to_sign, hashlib.sha256).digest())

        token = (
            f"SharedAccessSignature sr={resource}"
            f"&sig={urllib.parse.quote(signature, safe='')}"
            f"&se={expiry}"
        )
        if self.shared_access_key_name:
            token += f"&skn={self.shared_access_key_name}"
        return token


def get_host_name(connection_string: str) -> str:
    """Extract the hub host name from a connection string"""
    return ConnectionString.parse(connection_string).host_name
