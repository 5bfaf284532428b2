"""
Services package for the node bootstrap.
"""

from .bundle_generator import BundleGenerator, CertutilBackend, CryptographyBackend
from .bundle_installer import BundleInstaller
from .config_service import ConfigService
from .distribution_server import DistributionServer, DistributionSession
from .retrieval_client import BackoffPolicy, RetrievalClient
from .trust_bootstrap_service import TrustBootstrapService

__all__ = [
    'BundleGenerator',
    'CertutilBackend',
    'CryptographyBackend',
    'BundleInstaller',
    'ConfigService',
    'DistributionServer',
    'DistributionSession',
    'BackoffPolicy',
    'RetrievalClient',
    'TrustBootstrapService'
]
