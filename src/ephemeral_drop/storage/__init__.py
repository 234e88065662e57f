"""Metadata store and blob directory."""

from ephemeral_drop.storage.blobs import BlobStore, is_valid_id, iter_file
from ephemeral_drop.storage.store import ObjectStore

__all__ = [
    "BlobStore",
    "ObjectStore",
    "is_valid_id",
    "iter_file",
]
