"""Compression, fragments, packets, sender and receiver for roaming terminal sessions, with server helpers."""

__version__ = "0.1.0"
__all__ = ["__version__"]