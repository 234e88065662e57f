"""Database models for ephemeral-drop."""

from ephemeral_drop.models.base import Base
from ephemeral_drop.models.drop_object import DropObject, Record

__all__ = [
    "Base",
    "DropObject",
    "Record",
]
