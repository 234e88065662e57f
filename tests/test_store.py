"""Tests for ObjectStore lifecycle transitions."""

from __future__ import annotations

import asyncio
import threading
import uuid

import pytest

from ephemeral_drop.errors import DuplicateId, StorageFault
from ephemeral_drop.storage import BlobStore, ObjectStore

from .conftest import FakeClock


def new_id() -> str:
    return str(uuid.uuid4())


async def put(
    store: ObjectStore,
    *,
    ttl: int = 60,
    burn: bool = False,
    data: bytes = b"ciphertext",
    token: str = "owner-token",
) -> str:
    object_id = new_id()
    await store.put(object_id, data, store.now() + ttl, burn, token)
    return object_id


class TestCreate:
    async def test_create_and_peek(self, store: ObjectStore) -> None:
        object_id = new_id()
        await store.create(object_id, store.now() + 60, True, "tok")
        record = await store.peek(object_id)
        assert record is not None
        assert record.id == object_id
        assert record.burn_after_read is True
        assert record.delete_token == "tok"

    async def test_duplicate_id(self, store: ObjectStore) -> None:
        object_id = new_id()
        await store.create(object_id, store.now() + 60, False, "a")
        with pytest.raises(DuplicateId):
            await store.create(object_id, store.now() + 60, False, "b")

    async def test_put_writes_blob(self, store: ObjectStore) -> None:
        object_id = await put(store, data=b"hello")
        assert store.blobs.path_for(object_id).read_bytes() == b"hello"

    async def test_failed_insert_removes_blob(self, store: ObjectStore) -> None:
        object_id = new_id()
        await store.create(object_id, store.now() + 60, False, "a")
        with pytest.raises(DuplicateId):
            await store.put(object_id, b"new bytes", store.now() + 60, False, "b")
        assert not store.blobs.path_for(object_id).exists()

    async def test_cancelled_put_keeps_blob_and_row_together(
        self, store: ObjectStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        started = threading.Event()
        release = threading.Event()
        write = store.blobs.write

        def slow_write(object_id: str, data: bytes) -> None:
            started.set()
            release.wait(5)
            write(object_id, data)

        monkeypatch.setattr(store.blobs, "write", slow_write)
        object_id = new_id()
        task = asyncio.create_task(store.put(object_id, b"late", store.now() + 60, False, "tok"))
        await asyncio.to_thread(started.wait, 5)
        task.cancel()
        release.set()
        with pytest.raises(asyncio.CancelledError):
            await task

        # The shielded write and insert still complete
        for _ in range(200):
            if await store.peek(object_id) is not None:
                break
            await asyncio.sleep(0.01)
        assert await store.peek(object_id) is not None
        assert store.blobs.path_for(object_id).read_bytes() == b"late"


class TestPeek:
    async def test_peek_never_consumes(self, store: ObjectStore) -> None:
        object_id = await put(store, burn=True)
        for _ in range(3):
            assert await store.peek(object_id) is not None
        assert await store.consume(object_id) is not None

    async def test_peek_expired(self, store: ObjectStore, clock: FakeClock) -> None:
        object_id = await put(store, ttl=60)
        clock.advance(60)
        assert await store.peek(object_id) is None
        # Peek does not clean up
        assert store.blobs.path_for(object_id).exists()

    async def test_peek_missing_and_invalid(self, store: ObjectStore) -> None:
        assert await store.peek(new_id()) is None
        assert await store.peek("../../etc/passwd") is None


class TestConsume:
    async def test_burn_consumed_once(self, store: ObjectStore) -> None:
        object_id = await put(store, burn=True)
        record = await store.consume(object_id)
        assert record is not None and record.burn_after_read
        assert await store.consume(object_id) is None
        assert await store.peek(object_id) is None

    async def test_concurrent_burn_reads_single_winner(self, store: ObjectStore) -> None:
        object_id = await put(store, burn=True)
        results = await asyncio.gather(*(store.consume(object_id) for _ in range(8)))
        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert results.count(None) == 7

    async def test_non_burn_repeatable(self, store: ObjectStore) -> None:
        object_id = await put(store, burn=False)
        for _ in range(5):
            record = await store.consume(object_id)
            assert record is not None
        assert store.blobs.path_for(object_id).exists()

    async def test_expired_non_burn_cleaned_on_read(self, store: ObjectStore, clock: FakeClock) -> None:
        object_id = await put(store, ttl=30)
        clock.advance(30)
        assert await store.consume(object_id) is None
        assert not store.blobs.path_for(object_id).exists()
        assert await store.sweep_expired(now=store.now() + 10_000) == []

    async def test_expired_burn_not_served(self, store: ObjectStore, clock: FakeClock) -> None:
        object_id = await put(store, ttl=30, burn=True)
        clock.advance(31)
        assert await store.consume(object_id) is None
        assert not store.blobs.path_for(object_id).exists()

    async def test_missing(self, store: ObjectStore) -> None:
        assert await store.consume(new_id()) is None


class TestOpenForRead:
    async def test_burn_blob_removed_before_streaming(self, store: ObjectStore) -> None:
        object_id = await put(store, burn=True, data=b"burn me")
        opened = await store.open_for_read(object_id)
        assert opened is not None
        record, fh = opened
        assert not store.blobs.path_for(object_id).exists()
        with fh:
            assert fh.read() == b"burn me"
        assert record.burn_after_read
        assert await store.open_for_read(object_id) is None

    async def test_non_burn_blob_kept(self, store: ObjectStore) -> None:
        object_id = await put(store, data=b"keep")
        for _ in range(2):
            opened = await store.open_for_read(object_id)
            assert opened is not None
            with opened[1] as fh:
                assert fh.read() == b"keep"
        assert store.blobs.path_for(object_id).exists()

    async def test_unlink_during_consume_still_served(
        self, store: ObjectStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        object_id = await put(store, burn=True, data=b"x" * 10_000)
        consume = store.consume

        async def consume_after_orphan_sweep(oid: str, now: int | None = None):
            store.blobs.path_for(oid).unlink()
            return await consume(oid, now)

        monkeypatch.setattr(store, "consume", consume_after_orphan_sweep)
        opened = await store.open_for_read(object_id)
        assert opened is not None
        with opened[1] as fh:
            assert fh.read() == b"x" * 10_000

    async def test_missing_blob_does_not_consume(self, store: ObjectStore) -> None:
        object_id = await put(store, burn=True)
        store.blobs.path_for(object_id).unlink()
        assert await store.open_for_read(object_id) is None
        assert await store.peek(object_id) is not None

    async def test_invalid_id(self, store: ObjectStore) -> None:
        assert await store.open_for_read("../escape") is None


class TestDeleteWithToken:
    async def test_valid_token(self, store: ObjectStore) -> None:
        object_id = await put(store, token="secret")
        assert await store.delete_with_token(object_id, "secret") is True
        assert await store.peek(object_id) is None
        assert not store.blobs.path_for(object_id).exists()

    async def test_wrong_token_same_shape_as_missing(self, store: ObjectStore) -> None:
        object_id = await put(store, token="secret")
        wrong = await store.delete_with_token(object_id, "guess")
        missing = await store.delete_with_token(new_id(), "guess")
        assert wrong is missing is False
        assert await store.peek(object_id) is not None
        assert store.blobs.path_for(object_id).exists()

    async def test_second_delete_fails(self, store: ObjectStore) -> None:
        object_id = await put(store, token="secret")
        assert await store.delete_with_token(object_id, "secret") is True
        assert await store.delete_with_token(object_id, "secret") is False


class TestSweep:
    async def test_sweep_returns_expired_only(self, store: ObjectStore, clock: FakeClock) -> None:
        short = await put(store, ttl=10)
        long = await put(store, ttl=1000)
        clock.advance(10)
        assert await store.sweep_expired() == [short]
        assert await store.peek(long) is not None

    async def test_sweep_races_consume(self, store: ObjectStore, clock: FakeClock) -> None:
        object_id = await put(store, ttl=10, burn=True)
        clock.advance(10)
        swept, consumed = await asyncio.gather(
            store.sweep_expired(), store.consume(object_id)
        )
        assert consumed is None
        assert swept in ([object_id], [])


class TestBlobs:
    async def test_record_without_blob(self, store: ObjectStore) -> None:
        object_id = await put(store)
        store.blobs.path_for(object_id).unlink()
        assert await store.consume(object_id) is not None
        assert await store.open_blob(object_id) is None

    async def test_blob_size(self, store: ObjectStore) -> None:
        object_id = await put(store, data=b"12345")
        assert await store.blob_size(object_id) == 5
        assert await store.blob_size(new_id()) is None

    async def test_discard_missing_blob_is_not_an_error(self, store: ObjectStore) -> None:
        assert await store.discard_blob(new_id()) is False

    async def test_remove_blob_fault(self, store: ObjectStore, monkeypatch: pytest.MonkeyPatch) -> None:
        object_id = await put(store)

        def broken(_object_id: str) -> bool:
            raise StorageFault("disk gone")

        monkeypatch.setattr(store.blobs, "unlink", broken)
        with pytest.raises(StorageFault):
            await store.remove_blob(object_id)
        assert await store.discard_blob(object_id) is False

    async def test_reconcile_orphans(self, store: ObjectStore, clock: FakeClock) -> None:
        kept = await put(store)
        orphan = new_id()
        store.blobs.write(orphan, b"leftover")

        # Fresh files are inside the grace period
        assert await store.reconcile_orphans() == []

        clock.advance(3600)
        assert await store.reconcile_orphans() == [orphan]
        assert store.blobs.path_for(kept).exists()
        assert not store.blobs.path_for(orphan).exists()

    async def test_blob_write_never_overwrites(self, store: ObjectStore) -> None:
        object_id = await put(store, data=b"original")
        with pytest.raises(DuplicateId):
            store.blobs.write(object_id, b"replacement")
        assert store.blobs.path_for(object_id).read_bytes() == b"original"

    def test_invalid_ids_rejected(self, blobs: BlobStore) -> None:
        for bad in ("../x", "a/b", "", "abc\n", "x" * 65):
            with pytest.raises(ValueError):
                blobs.path_for(bad)
