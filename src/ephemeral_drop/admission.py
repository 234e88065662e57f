"""Upload admission: size ceiling, TTL grammar and TTL ceiling.

All checks run before anything is written, so a rejected upload has no
side effects.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from ephemeral_drop.errors import PayloadTooLarge, ValidationError

DURATION_UNITS: dict[str, int] = {"s": 1, "m": 60, "h": 3600, "d": 86400}

# Positive integer (no sign, no leading zero) followed by a single unit
_DURATION_PATTERN = re.compile(r"([1-9][0-9]*)([smhd])")


def parse_duration(text: str) -> int:
    """Parse a duration like ``30m``, ``24h`` or ``7d`` into seconds.

    Examples:
        "30s" -> 30
        "30m" -> 1800
        "7d"  -> 604800
        "0m", "-5h", "abc", "15" -> ValidationError
    """
    match = _DURATION_PATTERN.fullmatch(text.strip()) if text else None
    if match is None:
        raise ValidationError("Invalid expiresIn. Use a duration like 30m, 24h, 7d")
    amount, unit = match.groups()
    return int(amount) * DURATION_UNITS[unit]


def parse_flag(text: str | None) -> bool:
    """Form booleans: only the exact string ``"true"`` is true."""
    return text == "true"


@dataclass(frozen=True)
class UploadTicket:
    """An admitted upload, ready to be persisted."""

    id: str
    delete_token: str
    expires_at: int
    burn_after_read: bool


class AdmissionController:
    """Validates uploads against the configured size and TTL ceilings."""

    def __init__(self, max_file_size: int, max_ttl_seconds: int) -> None:
        self.max_file_size = max_file_size
        self.max_ttl_seconds = max_ttl_seconds

    def check_size(self, size: int) -> None:
        if size > self.max_file_size:
            raise PayloadTooLarge()

    def check_ttl(self, expires_in: str | None) -> int:
        ttl = parse_duration(expires_in or "")
        if ttl > self.max_ttl_seconds:
            raise ValidationError("expiresIn exceeds maximum allowed TTL")
        return ttl

    def admit(
        self,
        size: int,
        expires_in: str | None,
        burn_after_read: bool,
        now: int,
    ) -> UploadTicket:
        """Run every check and mint a fresh id and delete token."""
        self.check_size(size)
        ttl = self.check_ttl(expires_in)
        return UploadTicket(
            id=str(uuid.uuid4()),
            delete_token=uuid.uuid4().hex,
            expires_at=now + ttl,
            burn_after_read=burn_after_read,
        )
