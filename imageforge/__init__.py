"""
ImageForge: incremental image optimization with a durable change-detection cache.

Skips unchanged sources using stat fingerprints and content hashes recorded in a manifest.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
