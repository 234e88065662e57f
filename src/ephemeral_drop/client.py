"""Async HTTP client for ephemeral-drop.

Encryption and decryption happen here, on the client. The server receives
only ciphertext, and the key only ever appears in the link fragment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import TracebackType

import httpx

from ephemeral_drop import envelope
from ephemeral_drop.config import settings
from ephemeral_drop.errors import DropError, error_for
from ephemeral_drop.links import ShareLink, build_share_link, parse_share_link
from ephemeral_drop.schemas import FileInfo, UploadResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    id: str
    delete_token: str
    key: str  # base64url, share-link fragment
    link: str


@dataclass(frozen=True)
class DecryptedFile:
    filename: str
    content: bytes


class DropClient:
    """Client for uploading, fetching and deleting drops.

    Usage:
        async with DropClient("https://drop.example") as client:
            result = await client.upload("a.txt", b"hello", expires_in="1h")
            file = await client.download(result.link)
    """

    DEFAULT_TIMEOUT = 60.0

    def __init__(
        self,
        base_url: str | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = (base_url or settings.public_url).rstrip("/")
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def __aenter__(self) -> DropClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def upload(
        self,
        filename: str,
        content: bytes,
        expires_in: str = "24h",
        burn_after_read: bool = False,
    ) -> UploadResult:
        """Encrypt under a fresh key and upload. Returns the share link."""
        key = envelope.generate_key()
        blob = envelope.encrypt(filename, content, key)
        response = await self._http.post(
            "/api/file",
            files={"file": ("blob", blob, "application/octet-stream")},
            data={
                "expiresIn": expires_in,
                "burnAfterRead": "true" if burn_after_read else "false",
            },
        )
        _raise_for_error(response)
        created = UploadResponse.model_validate(response.json())
        encoded_key = envelope.encode_key(key)
        logger.debug("Uploaded %d ciphertext bytes as %s", len(blob), created.id)
        return UploadResult(
            id=created.id,
            delete_token=created.delete_token,
            key=encoded_key,
            link=build_share_link(self.base_url, created.id, encoded_key),
        )

    async def info(self, object_id: str) -> FileInfo:
        """Non-consuming metadata lookup."""
        response = await self._http.get(f"/api/file/{object_id}/info")
        _raise_for_error(response)
        return FileInfo.model_validate(response.json())

    async def fetch(self, object_id: str, base_url: str | None = None) -> bytes:
        """Raw ciphertext. Consumes burn-after-read objects."""
        root = (base_url or self.base_url).rstrip("/")
        response = await self._http.get(f"{root}/api/file/{object_id}")
        _raise_for_error(response)
        return response.content

    async def download(self, link: str | ShareLink) -> DecryptedFile:
        """Fetch and decrypt the object a share link points to."""
        share = parse_share_link(link) if isinstance(link, str) else link
        key = envelope.decode_key(share.key)
        blob = await self.fetch(share.id, base_url=share.base_url)
        filename, content = envelope.decrypt(blob, key)
        return DecryptedFile(filename=filename, content=content)

    async def delete(self, object_id: str, token: str) -> None:
        response = await self._http.get(f"/delete/{object_id}", params={"token": token})
        _raise_for_error(response)


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        payload = response.json()
    except ValueError:
        raise DropError(f"HTTP {response.status_code}") from None
    if not isinstance(payload, dict):
        raise DropError(f"HTTP {response.status_code}")
    raise error_for(payload.get("code"), payload.get("error"))
