import asyncio
import time

from app.upload.models import FailedListing, UploadProgress
from app.upload.progress_store import hash_file, progress_key


def test_hash_is_short_and_content_based():
    assert hash_file(b"abc") == hash_file(b"abc")
    assert hash_file(b"abc") != hash_file(b"abd")
    assert len(hash_file(b"abc")) == 16
    assert progress_key("deadbeef") == "upload_progress_deadbeef"


def test_save_load_clear(store):
    progress = UploadProgress(
        file_hash="f00d",
        file_name="listings.csv",
        total_listings=3,
        processed_listing_ids=[1, 2],
        failed_listings=[FailedListing(listing_id=3, error="boom", change_id="change_3")],
        accepted_change_ids=["change_1", "change_2", "change_3"],
    )
    asyncio.run(store.save(progress))
    loaded = asyncio.run(store.load("f00d"))
    assert loaded.processed_listing_ids == [1, 2]
    assert loaded.failed_listings[0].error == "boom"
    assert loaded.timestamp > 0

    progress.processed_listing_ids.append(3)
    asyncio.run(store.save(progress))
    assert asyncio.run(store.load("f00d")).processed_listing_ids == [1, 2, 3]
    assert len(asyncio.run(store.list_all())) == 1

    assert asyncio.run(store.clear("f00d")) is True
    assert asyncio.run(store.load("f00d")) is None
    assert asyncio.run(store.clear("f00d")) is False


def test_cleanup_removes_only_stale_checkpoints(store):
    ten_days_ago = int((time.time() - 10 * 86400) * 1000)
    asyncio.run(store.save(UploadProgress(file_hash="old", timestamp=ten_days_ago)))
    asyncio.run(store.save(UploadProgress(file_hash="new")))

    assert asyncio.run(store.cleanup_older_than(7)) == 1
    assert [p.file_hash for p in asyncio.run(store.list_all())] == ["new"]
