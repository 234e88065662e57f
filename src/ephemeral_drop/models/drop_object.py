"""Metadata row for an uploaded ciphertext blob."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import BigInteger, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from ephemeral_drop.models.base import Base


class DropObject(Base):
    """One uploaded blob.

    The row and the blob file share the same ``id``. ``expires_at``,
    ``burn_after_read`` and ``delete_token`` are immutable after insert;
    the only transitions are insert and delete.
    """

    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    expires_at: Mapped[int] = mapped_column(BigInteger, index=True)  # Unix seconds
    burn_after_read: Mapped[bool] = mapped_column(Boolean, default=False)
    delete_token: Mapped[str] = mapped_column(String(64))


@dataclass(frozen=True)
class Record:
    """Detached snapshot of a ``DropObject`` row."""

    id: str
    expires_at: int
    burn_after_read: bool
    delete_token: str

    def is_expired(self, now: int) -> bool:
        return self.expires_at <= now
