"""Share links of the form ``{base}/p/{id}#{key}``.

The key lives in the URL fragment, which HTTP clients never send to the
server.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

from ephemeral_drop.errors import ValidationError

VIEW_PREFIX = "/p/"


@dataclass(frozen=True)
class ShareLink:
    base_url: str
    id: str
    key: str

    def __str__(self) -> str:
        return build_share_link(self.base_url, self.id, self.key)


def build_share_link(base_url: str, object_id: str, encoded_key: str) -> str:
    return f"{base_url.rstrip('/')}{VIEW_PREFIX}{object_id}#{encoded_key}"


def parse_share_link(url: str) -> ShareLink:
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        raise ValidationError("Share link must be an absolute URL")
    prefix, sep, object_id = parts.path.rpartition(VIEW_PREFIX)
    if not sep or not object_id or "/" in object_id:
        raise ValidationError("Share link has no object id")
    if not parts.fragment:
        raise ValidationError("Share link has no key")
    base_url = urlunsplit((parts.scheme, parts.netloc, prefix, "", ""))
    return ShareLink(base_url=base_url, id=object_id, key=parts.fragment)
