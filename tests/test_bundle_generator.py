"""
Tests for trust bundle generation.
"""
import os
import stat
import subprocess
import tempfile
import unittest
from unittest.mock import Mock, patch

from cryptography.hazmat.primitives.serialization import pkcs12

from node_bootstrap.models.config import Config
from node_bootstrap.models.errors import GenerationError
from node_bootstrap.services.bundle_generator import (
    BundleGenerator, CertutilBackend, CryptographyBackend, GeneratorBackend, create_backend
)


class EmptyBundleBackend(GeneratorBackend):
    name = "empty"

    def create_ca(self, ca_path):
        with open(ca_path, 'wb') as f:
            f.write(b"ca")

    def create_bundle(self, ca_path, bundle_path):
        open(bundle_path, 'wb').close()


class TestBundleGenerator(unittest.TestCase):
    """Test cases for BundleGenerator."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        import shutil
        shutil.rmtree(self.temp_dir)

    def test_generate_with_cryptography_backend(self):
        generator = BundleGenerator(CryptographyBackend())

        bundle = generator.generate_bundle(self.temp_dir)

        self.assertEqual(bundle.file_name, "elastic-certificates.p12")
        self.assertEqual(bundle.path, os.path.join(self.temp_dir, "elastic-certificates.p12"))
        self.assertGreater(bundle.size, 0)

        key, cert, cas = pkcs12.load_key_and_certificates(bundle.content, None)
        self.assertIsNotNone(key)
        self.assertIsNotNone(cert)
        self.assertEqual(len(cas), 1)
        self.assertEqual(cert.issuer, cas[0].subject)

    def test_ca_is_private_and_scratch_removed(self):
        generator = BundleGenerator(CryptographyBackend())
        generator.generate_bundle(self.temp_dir)

        ca_path = os.path.join(self.temp_dir, "elastic-stack-ca.p12")
        self.assertTrue(os.path.exists(ca_path))
        self.assertEqual(stat.S_IMODE(os.stat(ca_path).st_mode), 0o600)
        self.assertEqual(
            sorted(os.listdir(self.temp_dir)),
            ["elastic-certificates.p12", "elastic-stack-ca.p12"]
        )

    def test_bundle_is_not_world_accessible(self):
        previous_umask = os.umask(0o022)
        try:
            bundle = BundleGenerator(CryptographyBackend()).generate_bundle(self.temp_dir)
        finally:
            os.umask(previous_umask)

        mode = stat.S_IMODE(os.stat(bundle.path).st_mode)
        self.assertEqual(mode & 0o077, 0)

    def test_password_protected_bundle(self):
        generator = BundleGenerator(CryptographyBackend(password="changeme"))
        bundle = generator.generate_bundle(self.temp_dir)

        key, cert, _ = pkcs12.load_key_and_certificates(bundle.content, b"changeme")
        self.assertIsNotNone(key)
        with self.assertRaises(ValueError):
            pkcs12.load_key_and_certificates(bundle.content, None)

    def test_custom_bundle_name(self):
        generator = BundleGenerator(CryptographyBackend(), bundle_file_name="transport.p12")
        bundle = generator.generate_bundle(os.path.join(self.temp_dir, "out"))
        self.assertEqual(bundle.file_name, "transport.p12")

    def test_empty_bundle_is_an_error(self):
        generator = BundleGenerator(EmptyBundleBackend())

        with self.assertRaises(GenerationError) as cm:
            generator.generate_bundle(self.temp_dir)

        self.assertIn("empty", str(cm.exception))
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_backend_failure_leaves_no_bundle(self):
        backend = Mock(spec=GeneratorBackend)
        backend.name = "mock"
        backend.create_bundle.side_effect = GenerationError("cert step failed")
        generator = BundleGenerator(backend)

        with self.assertRaises(GenerationError):
            generator.generate_bundle(self.temp_dir)

        self.assertEqual(os.listdir(self.temp_dir), [])


class TestCertutilBackend(unittest.TestCase):
    """Test cases for the certutil wrapper."""

    def setUp(self):
        self.backend = CertutilBackend("/opt/elasticsearch", password="")

    def test_certutil_path(self):
        self.assertEqual(self.backend.certutil_path, "/opt/elasticsearch/bin/elasticsearch-certutil")

    @patch('node_bootstrap.services.bundle_generator.subprocess.run')
    def test_create_ca_command(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="", stderr="")

        self.backend.create_ca("/tmp/work/elastic-stack-ca.p12")

        cmd = mock_run.call_args[0][0]
        self.assertEqual(cmd[:2], ["/opt/elasticsearch/bin/elasticsearch-certutil", "ca"])
        self.assertIn("--silent", cmd)
        self.assertEqual(cmd[cmd.index("--out") + 1], "/tmp/work/elastic-stack-ca.p12")
        self.assertTrue(mock_run.call_args[1]["check"])

    @patch('node_bootstrap.services.bundle_generator.subprocess.run')
    def test_create_bundle_command(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="done", stderr="")

        self.backend.create_bundle("/w/ca.p12", "/w/bundle.p12")

        cmd = mock_run.call_args[0][0]
        self.assertEqual(cmd[1], "cert")
        self.assertEqual(cmd[cmd.index("--ca") + 1], "/w/ca.p12")
        self.assertEqual(cmd[cmd.index("--out") + 1], "/w/bundle.p12")

    @patch('node_bootstrap.services.bundle_generator.subprocess.run')
    def test_non_zero_exit_raises_generation_error(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(
            65, ["certutil"], output="", stderr="ERROR: keystore is locked"
        )

        with self.assertRaises(GenerationError) as cm:
            self.backend.create_ca("/tmp/ca.p12")

        self.assertIn("exit code 65", str(cm.exception))
        self.assertIn("keystore is locked", str(cm.exception))

    @patch('node_bootstrap.services.bundle_generator.subprocess.run')
    def test_timeout_raises_generation_error(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["certutil"], 300)

        with self.assertRaises(GenerationError):
            self.backend.create_ca("/tmp/ca.p12")

    def test_missing_tool_raises_generation_error(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            backend = CertutilBackend(temp_dir)
            with self.assertRaises(GenerationError) as cm:
                BundleGenerator(backend).generate_bundle(temp_dir)
            self.assertIn("not found", str(cm.exception))


class TestCreateBackend(unittest.TestCase):

    def test_backend_selection(self):
        self.assertIsInstance(
            create_backend(Config(generator_backend="cryptography")), CryptographyBackend
        )
        backend = create_backend(Config(install_dir="/opt/es"))
        self.assertIsInstance(backend, CertutilBackend)
        self.assertEqual(backend.certutil_path, "/opt/es/bin/elasticsearch-certutil")


if __name__ == '__main__':
    unittest.main()
