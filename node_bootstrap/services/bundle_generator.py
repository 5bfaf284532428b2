"""
Certificate authority and trust bundle generation for the authority node.
"""
import logging
import os
import shutil
import subprocess
import tempfile
from datetime import datetime, timedelta, timezone
from typing import List

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..models.errors import GenerationError
from ..models.trust import DEFAULT_BUNDLE_FILE_NAME, TrustBundle


CA_FILE_NAME = "elastic-stack-ca.p12"
CERTUTIL_TIMEOUT_SECONDS = 300


class GeneratorBackend:
    """Interface for the external certificate tooling."""

    name = "abstract"

    def create_ca(self, ca_path: str) -> None:
        raise NotImplementedError

    def create_bundle(self, ca_path: str, bundle_path: str) -> None:
        raise NotImplementedError


class CertutilBackend(GeneratorBackend):
    """Drives the search engine's own elasticsearch-certutil tool."""

    name = "certutil"

    def __init__(self, install_dir: str, password: str = "",
                 timeout: int = CERTUTIL_TIMEOUT_SECONDS):
        self.certutil_path = os.path.join(install_dir, "bin", "elasticsearch-certutil")
        self.password = password
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def create_ca(self, ca_path: str) -> None:
        self._run(["ca", "--silent", "--pass", self.password, "--out", ca_path])

    def create_bundle(self, ca_path: str, bundle_path: str) -> None:
        self._run([
            "cert", "--silent",
            "--ca", ca_path,
            "--ca-pass", self.password,
            "--pass", self.password,
            "--out", bundle_path
        ])

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        cmd = [self.certutil_path] + args
        # Never log passwords
        printable = " ".join(cmd[:2])
        self.logger.info(f"Running {printable}")
        try:
            result = subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise GenerationError(f"Certificate tool not found: {self.certutil_path}") from e
        except subprocess.TimeoutExpired as e:
            raise GenerationError(f"{printable} timed out after {self.timeout} seconds") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise GenerationError(
                f"{printable} failed with exit code {e.returncode}: {stderr}"
            ) from e

        if result.stdout.strip():
            self.logger.debug(result.stdout.strip())
        return result


class CryptographyBackend(GeneratorBackend):
    """Builds the CA and the PKCS#12 keystore in-process."""

    name = "cryptography"

    def __init__(self, password: str = "", key_size: int = 2048, validity_days: int = 1095,
                 common_name: str = "instance"):
        self.password = password
        self.key_size = key_size
        self.validity_days = validity_days
        self.common_name = common_name

    def _encryption(self):
        if self.password:
            return serialization.BestAvailableEncryption(self.password.encode())
        return serialization.NoEncryption()

    def _new_key(self):
        return rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)

    def create_ca(self, ca_path: str) -> None:
        key = self._new_key()
        name = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, "Elastic Certificate Tool Autogenerated CA"),
        ])
        now = datetime.now(timezone.utc)
        cert = x509.CertificateBuilder().subject_name(
            name
        ).issuer_name(
            name
        ).public_key(
            key.public_key()
        ).serial_number(
            x509.random_serial_number()
        ).not_valid_before(
            now
        ).not_valid_after(
            now + timedelta(days=self.validity_days)
        ).add_extension(
            x509.BasicConstraints(ca=True, path_length=None),
            critical=True,
        ).sign(key, hashes.SHA256())

        data = pkcs12.serialize_key_and_certificates(
            b"ca", key, cert, None, self._encryption()
        )
        with open(ca_path, 'wb') as f:
            f.write(data)

    def create_bundle(self, ca_path: str, bundle_path: str) -> None:
        with open(ca_path, 'rb') as f:
            ca_key, ca_cert, _ = pkcs12.load_key_and_certificates(
                f.read(), self.password.encode() if self.password else None
            )
        if ca_key is None or ca_cert is None:
            raise GenerationError(f"CA keystore has no key or certificate: {ca_path}")

        key = self._new_key()
        now = datetime.now(timezone.utc)
        cert = x509.CertificateBuilder().subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, self.common_name)])
        ).issuer_name(
            ca_cert.subject
        ).public_key(
            key.public_key()
        ).serial_number(
            x509.random_serial_number()
        ).not_valid_before(
            now
        ).not_valid_after(
            now + timedelta(days=self.validity_days)
        ).add_extension(
            x509.BasicConstraints(ca=False, path_length=None),
            critical=True,
        ).add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        ).sign(ca_key, hashes.SHA256())

        data = pkcs12.serialize_key_and_certificates(
            self.common_name.encode(), key, cert, [ca_cert], self._encryption()
        )
        with open(bundle_path, 'wb') as f:
            f.write(data)


def create_backend(config) -> GeneratorBackend:
    """Pick the generator backend named in the configuration."""
    if config.generator_backend == "cryptography":
        return CryptographyBackend(password=config.bundle_password)
    return CertutilBackend(config.install_dir, password=config.bundle_password)


class BundleGenerator:
    """Produces a CA and a CA-signed trust bundle in one output directory."""

    def __init__(self, backend: GeneratorBackend,
                 bundle_file_name: str = DEFAULT_BUNDLE_FILE_NAME,
                 ca_file_name: str = CA_FILE_NAME):
        self.backend = backend
        self.bundle_file_name = bundle_file_name
        self.ca_file_name = ca_file_name
        self.logger = logging.getLogger(__name__)

    def generate_bundle(self, output_dir: str) -> TrustBundle:
        """
        Generate a fresh CA and trust bundle under ``output_dir``.

        Both files are produced in a private scratch directory and renamed
        into place only once complete, so the bundle path never holds a
        partially written file.

        Raises:
            GenerationError: If the tooling fails or produces an empty bundle
        """
        try:
            os.makedirs(output_dir, exist_ok=True)
        except OSError as e:
            raise GenerationError(f"Cannot create output directory {output_dir}: {e}") from e

        scratch_dir = tempfile.mkdtemp(prefix=".generate-", dir=output_dir)
        try:
            scratch_ca = os.path.join(scratch_dir, self.ca_file_name)
            scratch_bundle = os.path.join(scratch_dir, self.bundle_file_name)

            self.logger.info(f"Generating certificate authority with {self.backend.name}")
            self.backend.create_ca(scratch_ca)

            self.logger.info(f"Generating {self.bundle_file_name} signed by the new CA")
            self.backend.create_bundle(scratch_ca, scratch_bundle)

            if not os.path.exists(scratch_bundle) or os.path.getsize(scratch_bundle) == 0:
                raise GenerationError(f"{self.backend.name} produced an empty bundle")

            # Both hold private keys; keep them private to the authority
            os.chmod(scratch_ca, 0o600)
            os.chmod(scratch_bundle, 0o600)

            ca_path = os.path.join(output_dir, self.ca_file_name)
            bundle_path = os.path.join(output_dir, self.bundle_file_name)
            os.replace(scratch_ca, ca_path)
            os.replace(scratch_bundle, bundle_path)
        except GenerationError:
            raise
        except (OSError, ValueError) as e:
            raise GenerationError(f"Bundle generation failed: {e}") from e
        finally:
            shutil.rmtree(scratch_dir, ignore_errors=True)

        bundle = TrustBundle.from_file(bundle_path)
        self.logger.info(f"Generated {bundle_path} ({bundle.size} bytes, sha256 {bundle.sha256[:16]})")
        return bundle
