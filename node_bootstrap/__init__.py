"""
Trust material bootstrap for search cluster nodes.
"""

__version__ = "0.1.0"
