"""Ephemeral, end-to-end-encrypted file drop."""

__version__ = "0.1.0"
