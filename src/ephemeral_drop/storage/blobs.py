"""Flat on-disk directory of ciphertext blobs, one file per object id."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

from ephemeral_drop.errors import DuplicateId, StorageFault

logger = logging.getLogger(__name__)

# Ids are uuid4 strings; anything else could escape the blob directory
_ID_PATTERN = re.compile(r"[A-Za-z0-9-]{1,64}")

CHUNK_SIZE = 64 * 1024

# Prefix of in-flight temp files, ignored by ids()
_TEMP_PREFIX = ".upload-"


def is_valid_id(object_id: str) -> bool:
    return _ID_PATTERN.fullmatch(object_id) is not None


class BlobStore:
    """Stores opaque blobs as files named by object id.

    Deletes are best effort: a file that is already gone counts as deleted,
    since the reaper and request handlers may race to remove the same blob.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, object_id: str) -> Path:
        if not is_valid_id(object_id):
            raise ValueError(f"Invalid object id: {object_id!r}")
        return self.root / object_id

    def write(self, object_id: str, data: bytes) -> None:
        """Write a new blob atomically (temp file + rename). Never overwrites."""
        target = self.path_for(object_id)
        if target.exists():
            raise DuplicateId(f"Blob {object_id} already exists")
        fd, tmp_name = tempfile.mkstemp(prefix=_TEMP_PREFIX, dir=self.root)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, target)
        except OSError as e:
            self._remove_quietly(Path(tmp_name))
            raise StorageFault(f"Failed to write blob {object_id}") from e

    def open(self, object_id: str) -> BinaryIO | None:
        """Open a blob for reading, or None if it does not exist.

        An open handle keeps working after the file is unlinked, so a
        concurrent sweep cannot truncate a response mid-stream.
        """
        try:
            return self.path_for(object_id).open("rb")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageFault(f"Failed to open blob {object_id}") from e

    def size(self, object_id: str) -> int | None:
        try:
            return self.path_for(object_id).stat().st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageFault(f"Failed to stat blob {object_id}") from e

    def unlink(self, object_id: str) -> bool:
        """Delete a blob. Returns False if it was already gone."""
        try:
            self.path_for(object_id).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageFault(f"Failed to delete blob {object_id}") from e
        return True

    def ids(self) -> list[str]:
        """List ids of all blobs currently on disk."""
        if not self.root.is_dir():
            return []
        return [
            entry.name
            for entry in self.root.iterdir()
            if entry.is_file() and not entry.name.startswith(_TEMP_PREFIX)
        ]

    @staticmethod
    def _remove_quietly(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Could not remove temp file %s", path)


def iter_file(fh: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield chunks from an open blob, closing it when exhausted."""
    with fh:
        while chunk := fh.read(chunk_size):
            yield chunk
