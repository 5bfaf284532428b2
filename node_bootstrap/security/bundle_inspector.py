"""
Inspection of PKCS#12 trust bundles.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from ..models.trust import TrustBundle
from .models import BundleInspection, CertificateInfo


class BundleInspector:
    """Reads a trust bundle and reports the certificates it carries."""

    def __init__(self, password: str = ""):
        self.password = password
        self.logger = logging.getLogger(__name__)

    def inspect(self, bundle: TrustBundle) -> BundleInspection:
        """
        Parse ``bundle`` as a PKCS#12 keystore.

        Raises:
            ValueError: If the bundle is not a PKCS#12 store or the password is wrong
        """
        key, cert, additional = pkcs12.load_key_and_certificates(
            bundle.content, self.password.encode() if self.password else None
        )

        ca_certs = list(additional or [])
        inspection = BundleInspection(
            has_private_key=key is not None,
            certificate=self.get_certificate_info(cert) if cert is not None else None,
            ca_certificates=[self.get_certificate_info(c) for c in ca_certs],
            signed_by_bundled_ca=cert is not None and any(
                self._is_signed_by(cert, ca) for ca in ca_certs
            )
        )

        if inspection.certificate:
            self.logger.info(
                f"Bundle certificate {inspection.certificate.subject} issued by "
                f"{inspection.certificate.issuer}, valid until {inspection.certificate.not_after:%Y-%m-%d}"
            )
        return inspection

    def get_certificate_info(self, cert: x509.Certificate) -> CertificateInfo:
        """Extract information from a certificate."""
        now = datetime.now(timezone.utc)
        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc

        return CertificateInfo(
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            serial_number=str(cert.serial_number),
            not_before=not_before,
            not_after=not_after,
            is_valid=not_before <= now <= not_after,
            fingerprint=cert.fingerprint(cert.signature_hash_algorithm).hex(),
            common_name=self._common_name(cert)
        )

    def _is_signed_by(self, cert: x509.Certificate, ca_cert: x509.Certificate) -> bool:
        """Check issuer name and signature against a CA certificate."""
        if cert.issuer != ca_cert.subject:
            return False

        public_key = ca_cert.public_key()
        try:
            if isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(
                    cert.signature,
                    cert.tbs_certificate_bytes,
                    padding.PKCS1v15(),
                    cert.signature_hash_algorithm
                )
            elif isinstance(public_key, ec.EllipticCurvePublicKey):
                public_key.verify(
                    cert.signature,
                    cert.tbs_certificate_bytes,
                    ec.ECDSA(cert.signature_hash_algorithm)
                )
            else:
                self.logger.debug(f"Unsupported CA key type: {type(public_key).__name__}")
                return False
        except InvalidSignature:
            return False
        return True

    def _common_name(self, cert: x509.Certificate) -> Optional[str]:
        for attribute in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME):
            return attribute.value
        return None
