"""Transactional metadata store plus blob directory.

The store owns every lifecycle transition of an object: create, peek,
consume, owner delete and expiry sweep. Each transition that removes a row
is a single ``DELETE ... RETURNING`` statement, so whichever caller's
delete commits first wins and every other caller observes zero rows.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import BinaryIO

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ephemeral_drop.errors import DuplicateId, StorageFault
from ephemeral_drop.models import DropObject, Record
from ephemeral_drop.storage.blobs import BlobStore, is_valid_id

logger = logging.getLogger(__name__)

_COLUMNS = (
    DropObject.id,
    DropObject.expires_at,
    DropObject.burn_after_read,
    DropObject.delete_token,
)

# Blobs younger than this are never treated as orphans (their row may not
# be committed yet)
ORPHAN_GRACE_S = 300


def _to_record(row) -> Record:
    return Record(
        id=row.id,
        expires_at=int(row.expires_at),
        burn_after_read=bool(row.burn_after_read),
        delete_token=row.delete_token,
    )


class ObjectStore:
    """Metadata table and blob directory for ephemeral objects.

    Usage:
        store = ObjectStore(session_factory, BlobStore(files_dir))
        await store.put(object_id, ciphertext, expires_at, True, token)
        record = await store.consume(object_id)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blobs: BlobStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self.blobs = blobs
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    @asynccontextmanager
    async def _transaction(
        self, operation: str, object_id: str | None = None
    ) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except IntegrityError as e:
            if operation == "create":
                raise DuplicateId(f"Object id {object_id} already exists") from e
            logger.exception("Integrity error during %s (id=%s)", operation, object_id)
            raise StorageFault(f"{operation} failed") from e
        except SQLAlchemyError as e:
            logger.exception("Storage fault during %s (id=%s)", operation, object_id)
            raise StorageFault(f"{operation} failed") from e

    # ── Row transitions ──────────────────────────────────────────────────────

    async def create(
        self,
        object_id: str,
        expires_at: int,
        burn_after_read: bool,
        delete_token: str,
    ) -> None:
        """Insert a new record. Raises DuplicateId if ``object_id`` exists."""
        async with self._transaction("create", object_id) as session:
            session.add(
                DropObject(
                    id=object_id,
                    expires_at=expires_at,
                    burn_after_read=burn_after_read,
                    delete_token=delete_token,
                )
            )
        logger.info("Created object %s (expires_at=%d, burn=%s)", object_id, expires_at, burn_after_read)

    async def peek(self, object_id: str, now: int | None = None) -> Record | None:
        """Read-only lookup. Never consumes a burn-after-read object."""
        if not is_valid_id(object_id):
            return None
        now = self.now() if now is None else now
        record = await self._select(object_id)
        if record is None or record.is_expired(now):
            return None
        return record

    async def consume(self, object_id: str, now: int | None = None) -> Record | None:
        """Atomic read-and-maybe-delete.

        For a burn-after-read object exactly one concurrent caller gets the
        record back; that caller owns the blob and must ``discard_blob`` it
        (``open_for_read`` does both). Non-burn objects are returned without deletion
        until they expire.
        """
        if not is_valid_id(object_id):
            return None
        now = self.now() if now is None else now

        burn_stmt = (
            delete(DropObject)
            .where(DropObject.id == object_id, DropObject.burn_after_read.is_(True))
            .returning(*_COLUMNS)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("consume", object_id) as session:
            row = (await session.execute(burn_stmt)).one_or_none()

        if row is not None:
            record = _to_record(row)
            if record.is_expired(now):
                await self.discard_blob(object_id)
                return None
            logger.info("Consumed burn-after-read object %s", object_id)
            return record

        record = await self._select(object_id)
        if record is None:
            return None
        if record.is_expired(now):
            await self._delete_expired(object_id, now)
            return None
        return record

    async def delete_with_token(self, object_id: str, token: str) -> bool:
        """Owner delete. Wrong token and unknown id both return False."""
        if not is_valid_id(object_id):
            return False
        stmt = (
            delete(DropObject)
            .where(DropObject.id == object_id, DropObject.delete_token == token)
            .returning(DropObject.id)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("delete", object_id) as session:
            deleted = (await session.execute(stmt)).one_or_none()

        if deleted is None:
            return False
        await self.remove_blob(object_id)
        logger.info("Deleted object %s by owner", object_id)
        return True

    async def sweep_expired(self, now: int | None = None) -> list[str]:
        """Delete every row with ``expires_at <= now`` and return their ids.

        Blob removal is left to the caller.
        """
        now = self.now() if now is None else now
        stmt = (
            delete(DropObject)
            .where(DropObject.expires_at <= now)
            .returning(DropObject.id)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("sweep") as session:
            ids = list((await session.execute(stmt)).scalars())
        return ids

    async def _select(self, object_id: str) -> Record | None:
        stmt = select(*_COLUMNS).where(DropObject.id == object_id)
        async with self._transaction("select", object_id) as session:
            row = (await session.execute(stmt)).one_or_none()
        return _to_record(row) if row is not None else None

    async def _delete_expired(self, object_id: str, now: int) -> None:
        stmt = (
            delete(DropObject)
            .where(DropObject.id == object_id, DropObject.expires_at <= now)
            .returning(DropObject.id)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("expire", object_id) as session:
            deleted = (await session.execute(stmt)).one_or_none()
        if deleted is not None:
            logger.info("Expired object %s removed on read", object_id)
        await self.remove_blob(object_id)

    # ── Blob + row together ──────────────────────────────────────────────────

    async def put(
        self,
        object_id: str,
        data: bytes,
        expires_at: int,
        burn_after_read: bool,
        delete_token: str,
    ) -> None:
        """Persist the blob, then its record. A failed insert removes the blob.

        The write and insert run shielded from cancellation, so a cancelled
        caller still leaves either both blob and row or neither.
        """
        await asyncio.shield(
            self._put(object_id, data, expires_at, burn_after_read, delete_token)
        )

    async def _put(
        self,
        object_id: str,
        data: bytes,
        expires_at: int,
        burn_after_read: bool,
        delete_token: str,
    ) -> None:
        await asyncio.to_thread(self.blobs.write, object_id, data)
        try:
            await self.create(object_id, expires_at, burn_after_read, delete_token)
        except BaseException:
            await self.discard_blob(object_id)
            raise

    async def open_for_read(
        self, object_id: str, now: int | None = None
    ) -> tuple[Record, BinaryIO] | None:
        """Consume an object and return its record with an open blob handle.

        The blob is opened before the row is consumed, so a concurrent
        unlink cannot leave the winning reader without content. For a
        burn-after-read object the file is unlinked before returning; the
        caller streams from the handle, which stays readable.
        """
        if not is_valid_id(object_id):
            return None
        fh = await self.open_blob(object_id)
        if fh is None:
            return None
        try:
            record = await self.consume(object_id, now)
        except BaseException:
            fh.close()
            raise
        if record is None:
            fh.close()
            return None
        if record.burn_after_read:
            await self.discard_blob(object_id)
        return record, fh

    async def open_blob(self, object_id: str) -> BinaryIO | None:
        """Open handle on the blob, or None if the file is missing (served as not found)."""
        return await asyncio.to_thread(self.blobs.open, object_id)

    async def blob_size(self, object_id: str) -> int | None:
        return await asyncio.to_thread(self.blobs.size, object_id)

    async def discard_blob(self, object_id: str) -> bool:
        """Best-effort blob removal. Failures are logged, never raised."""
        try:
            return await self.remove_blob(object_id)
        except StorageFault:
            logger.warning("Could not remove blob %s", object_id, exc_info=True)
            return False

    async def remove_blob(self, object_id: str) -> bool:
        """Delete a blob; a missing file returns False, other failures raise StorageFault."""
        return await asyncio.to_thread(self.blobs.unlink, object_id)

    async def reconcile_orphans(self, grace_s: int = ORPHAN_GRACE_S) -> list[str]:
        """Remove blob files that have no metadata row.

        Files modified within ``grace_s`` seconds are skipped, since an
        upload writes its blob before inserting the row.
        """
        cutoff = self._clock() - grace_s
        candidates = []
        for object_id in await asyncio.to_thread(self.blobs.ids):
            if not is_valid_id(object_id):
                continue
            try:
                mtime = self.blobs.path_for(object_id).stat().st_mtime
            except FileNotFoundError:
                continue
            if mtime <= cutoff:
                candidates.append(object_id)
        if not candidates:
            return []

        stmt = select(DropObject.id).where(DropObject.id.in_(candidates))
        async with self._transaction("reconcile") as session:
            known = set((await session.execute(stmt)).scalars())

        removed = []
        for object_id in candidates:
            if object_id in known:
                continue
            if await self.discard_blob(object_id):
                removed.append(object_id)
        if removed:
            logger.info("Removed %d orphan blob(s)", len(removed))
        return removed
