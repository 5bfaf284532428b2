"""
Security models describing the contents of a trust bundle.
"""
from dataclasses import dataclass, field
from typing import List, Optional
from datetime import datetime


@dataclass
class CertificateInfo:
    """Information about a certificate."""
    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    is_valid: bool
    fingerprint: str
    common_name: Optional[str] = None


@dataclass
class BundleInspection:
    """What a PKCS#12 trust bundle holds."""
    has_private_key: bool
    certificate: Optional[CertificateInfo]
    ca_certificates: List[CertificateInfo] = field(default_factory=list)
    signed_by_bundled_ca: bool = False

    @property
    def is_usable(self) -> bool:
        """Key, a currently valid certificate and the CA that signed it."""
        return (self.has_private_key
                and self.certificate is not None
                and self.certificate.is_valid
                and self.signed_by_bundled_ca)
