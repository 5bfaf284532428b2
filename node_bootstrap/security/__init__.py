"""
Security package for trust bundle inspection.
"""
from .models import BundleInspection, CertificateInfo
from .bundle_inspector import BundleInspector

__all__ = [
    'BundleInspection',
    'CertificateInfo',
    'BundleInspector'
]
