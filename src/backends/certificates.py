"""
Certificate providers for HubProbe

Certificates are generated elsewhere; these providers read them and compute
the thumbprint the registry binds the device identity to.
"""

from pathlib import Path
from typing import Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes

from ..core.errors import CertificateError
from ..models.device import X509Credential


def compute_thumbprint(cert_pem: Union[str, bytes]) -> str:
    """
    Upper-case hex SHA1 of the first certificate in a PEM file.

    Text outside the PEM blocks (openssl "Bag Attributes" headers) is ignored,
    and in a chain file the leaf comes first.
    """
    if isinstance(cert_pem, str):
        cert_pem = cert_pem.encode("utf-8")
    try:
        certificates = x509.load_pem_x509_certificates(cert_pem)
    except ValueError as e:
        raise CertificateError(f"Invalid PEM certificate: {e}") from e
    if not certificates:
        raise CertificateError("No certificate found in PEM data")
    return certificates[0].fingerprint(hashes.SHA1()).hex().upper()


class FileCertificateProvider:
    """Loads the device certificate and private key from PEM files."""

    def __init__(self, cert_path: str, key_path: str, ca_path: Optional[str] = None):
        self.cert_path = cert_path
        self.key_path = key_path
        self.ca_path = ca_path or None
        self._credential: Optional[X509Credential] = None

    def get_certificate_with_private_key(self) -> X509Credential:
        if self._credential is None:
            cert_file = Path(self.cert_path)
            key_file = Path(self.key_path)
            for path in (cert_file, key_file):
                if not path.is_file():
                    raise CertificateError(f"Certificate file not found: {path}")

            thumbprint = compute_thumbprint(cert_file.read_bytes())
            self._credential = X509Credential(
                cert_path=str(cert_file),
                key_path=str(key_file),
                thumbprint=thumbprint,
                ca_path=self.ca_path,
            )
        return self._credential


class StaticCertificateProvider:
    """Fixed credential for the loopback backend"""

    def __init__(self, thumbprint: str = "0" * 40):
        self._credential = X509Credential(
            cert_path="loopback.pem",
            key_path="loopback.key",
            thumbprint=thumbprint.upper(),
        )

    def get_certificate_with_private_key(self) -> X509Credential:
        return self._credential
