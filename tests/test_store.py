"""Tests for the SQLite bookmark store."""
import asyncio
import sqlite3

import pytest

from video_bookmarks.errors import StorageUnavailable, ValidationError
from video_bookmarks.store import SCHEMA_VERSION, BookmarkStore


@pytest.mark.asyncio
class TestOpen:
    async def test_open_creates_db(self, db_path):
        s = BookmarkStore(db_path)
        await s.open()
        assert db_path.exists()
        assert s.is_open
        await s.close()
        assert not s.is_open

    async def test_open_is_idempotent(self, store):
        await store.open()
        await store.open()
        assert await store.get_all() == []

    async def test_schema_version_and_indexes(self, db_path, store):
        conn = sqlite3.connect(db_path)
        try:
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            indexes = {
                row[0]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'bookmarks'"
                )
            }
        finally:
            conn.close()
        assert version == SCHEMA_VERSION
        assert {"idx_bookmarks_subject_id", "idx_bookmarks_time", "idx_bookmarks_added_at"} <= indexes

    async def test_reopen_keeps_existing_data(self, db_path, sample_records):
        first = BookmarkStore(db_path)
        bookmark_id = await first.add(sample_records[0])
        await first.close()

        second = BookmarkStore(db_path)
        await second.open()
        record = await second.get(bookmark_id)
        await second.close()
        assert record["note"] == sample_records[0]["note"]

    async def test_operations_open_lazily(self, db_path, sample_records):
        s = BookmarkStore(db_path)
        assert not s.is_open
        await s.add(sample_records[0])
        assert s.is_open
        await s.close()

    async def test_concurrent_open_calls(self, db_path):
        s = BookmarkStore(db_path)
        await asyncio.gather(s.open(), s.open(), s.open())
        assert s.is_open
        await s.close()

    async def test_close_waits_for_running_work(self, db_path):
        s = BookmarkStore(db_path)
        async with s._unit_of_work() as connection:
            closing = asyncio.create_task(s.close())
            await asyncio.sleep(0.05)
            assert not closing.done()
            await connection.execute("SELECT 1")
        await closing
        assert not s.is_open

    async def test_locked_database_reports_unavailable(self, tmp_path):
        path = tmp_path / "locked.db"
        blocker = sqlite3.connect(path, isolation_level=None)
        blocker.execute("CREATE TABLE other (x INTEGER)")
        blocker.execute("BEGIN EXCLUSIVE")
        try:
            s = BookmarkStore(path, lock_timeout=0.1)
            with pytest.raises(StorageUnavailable, match="locked"):
                await s.open()
            assert not s.is_open
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()

    async def test_unwritable_location_reports_unavailable(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file in the way")
        s = BookmarkStore(blocker / "bookmarks.db")
        with pytest.raises(StorageUnavailable):
            await s.open()

    async def test_unknown_import_policy_rejected(self, db_path):
        with pytest.raises(ValueError):
            BookmarkStore(db_path, import_policy="maybe")


@pytest.mark.asyncio
class TestAddAndRead:
    async def test_add_returns_fresh_ids(self, store, sample_records):
        ids = [await store.add(record) for record in sample_records]
        assert len(set(ids)) == len(ids)

    async def test_add_then_get_by_subject(self, store, sample_records):
        bookmark_id = await store.add(sample_records[0])
        records = await store.get_by_subject("dQw4w9WgXcQ")
        assert [r["id"] for r in records] == [bookmark_id]
        assert records[0]["tags"] == ["music", "rickroll"]

    async def test_get_by_subject_only_returns_that_subject(self, store, sample_records):
        for record in sample_records:
            await store.add(record)
        records = await store.get_by_subject("dQw4w9WgXcQ")
        assert len(records) == 2
        assert all(r["subjectId"] == "dQw4w9WgXcQ" for r in records)
        assert await store.get_by_subject("missing") == []

    async def test_get_by_subject_uses_index(self, store):
        cursor = await store._connection.execute(
            "EXPLAIN QUERY PLAN SELECT * FROM bookmarks INDEXED BY idx_bookmarks_subject_id "
            "WHERE subject_id = ? ORDER BY id",
            ("x",),
        )
        plan = " ".join(str(row[-1]) for row in await cursor.fetchall())
        assert "idx_bookmarks_subject_id" in plan

    async def test_caller_id_ignored_on_add(self, store, sample_records):
        record = dict(sample_records[0], id=999)
        bookmark_id = await store.add(record)
        assert bookmark_id != 999
        assert await store.get(999) is None

    async def test_ids_not_reused_after_delete(self, store, sample_records):
        first = await store.add(sample_records[0])
        await store.delete(first)
        second = await store.add(sample_records[0])
        assert second != first

    async def test_missing_subject_id_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.add({"time": 3, "note": "orphan"})
        with pytest.raises(ValidationError):
            await store.add({"subjectId": "  "})
        assert await store.get_all() == []

    async def test_legacy_keys_normalized_on_add(self, store):
        bookmark_id = await store.add({"videoId": "abc", "videoTitle": "Old capture", "time": 3})
        record = await store.get(bookmark_id)
        assert record["subjectId"] == "abc"
        assert record["subjectTitle"] == "Old capture"
        assert "videoId" not in record

    async def test_tags_must_be_list_on_add(self, store):
        with pytest.raises(ValidationError, match="tags"):
            await store.add({"subjectId": "abc", "tags": "music"})
        assert await store.get_all() == []

    async def test_oversized_integer_rejected(self, store):
        with pytest.raises(ValidationError, match="out of range"):
            await store.add({"subjectId": "abc", "time": 10 ** 30})
        with pytest.raises(ValidationError, match="out of range"):
            await store.delete(10 ** 30)
        assert await store.get_all() == []

    async def test_store_does_not_invent_fields(self, store):
        bookmark_id = await store.add({"subjectId": "abc"})
        assert await store.get(bookmark_id) == {"id": bookmark_id, "subjectId": "abc"}

    async def test_unknown_fields_preserved(self, store):
        bookmark_id = await store.add({"subjectId": "abc", "playlist": "favs"})
        record = await store.get(bookmark_id)
        assert record["playlist"] == "favs"

    async def test_image_data_round_trips(self, store, sample_records):
        bookmark_id = await store.add(sample_records[2])
        record = await store.get(bookmark_id)
        assert record["imageData"] == sample_records[2]["imageData"]


@pytest.mark.asyncio
class TestUpdate:
    async def test_update_changes_only_patched_field(self, store, sample_records):
        bookmark_id = await store.add(sample_records[0])
        before = await store.get(bookmark_id)

        updated = await store.update(bookmark_id, {"note": "x"})
        after = await store.get(bookmark_id)

        assert updated is True
        assert after["note"] == "x"
        assert {k: v for k, v in after.items() if k != "note"} == {
            k: v for k, v in before.items() if k != "note"
        }

    async def test_update_missing_returns_false(self, store):
        assert await store.update(12345, {"note": "x"}) is False
        assert await store.get_all() == []

    async def test_update_rejects_immutable_fields(self, store, sample_records):
        bookmark_id = await store.add(sample_records[0])
        with pytest.raises(ValidationError):
            await store.update(bookmark_id, {"addedAt": 1})
        with pytest.raises(ValidationError):
            await store.update(bookmark_id, {"id": 7})
        with pytest.raises(ValidationError):
            await store.update(bookmark_id, {"imageData": "data:,"})

    async def test_update_can_move_subject_and_index_follows(self, store, sample_records):
        bookmark_id = await store.add(sample_records[0])
        await store.update(bookmark_id, {"subjectId": "other"})
        assert await store.get_by_subject("dQw4w9WgXcQ") == []
        assert [r["id"] for r in await store.get_by_subject("other")] == [bookmark_id]

    async def test_update_rejects_string_tags(self, store, sample_records):
        bookmark_id = await store.add(sample_records[0])
        with pytest.raises(ValidationError, match="tags"):
            await store.update(bookmark_id, {"tags": "music"})
        assert (await store.get(bookmark_id))["tags"] == sample_records[0]["tags"]

    async def test_concurrent_updates_do_not_lose_writes(self, store, sample_records):
        bookmark_id = await store.add(sample_records[0])
        await asyncio.gather(
            store.update(bookmark_id, {"note": "new note"}),
            store.update(bookmark_id, {"subtitle": "new subtitle"}),
            store.update(bookmark_id, {"color": "blue"}),
        )
        record = await store.get(bookmark_id)
        assert record["note"] == "new note"
        assert record["subtitle"] == "new subtitle"
        assert record["color"] == "blue"


@pytest.mark.asyncio
class TestDeleteAndClear:
    async def test_delete_is_idempotent(self, store, sample_records):
        bookmark_id = await store.add(sample_records[0])
        assert await store.delete(bookmark_id) is True
        assert await store.delete(bookmark_id) is False
        assert await store.get(bookmark_id) is None

    async def test_delete_removes_from_subject_index(self, store, sample_records):
        bookmark_id = await store.add(sample_records[0])
        await store.delete(bookmark_id)
        assert await store.get_by_subject("dQw4w9WgXcQ") == []

    async def test_clear(self, store, sample_records):
        for record in sample_records:
            await store.add(record)
        assert await store.clear() == len(sample_records)
        assert await store.get_all() == []
        assert await store.clear() == 0


@pytest.mark.asyncio
class TestBulkImport:
    async def test_ids_are_reassigned(self, store):
        count = await store.bulk_import([{"subjectId": "a", "note": "n", "id": 999}])
        records = await store.get_all()
        assert count == 1
        assert records[0]["id"] != 999
        assert records[0]["note"] == "n"

    async def test_does_not_mutate_input(self, store):
        items = [{"subjectId": "a", "id": 5}]
        await store.bulk_import(items)
        assert items == [{"subjectId": "a", "id": 5}]

    async def test_legacy_keys_normalized(self, store):
        await store.bulk_import([{"videoId": "abc", "videoTitle": "Old export", "time": 3}])
        records = await store.get_by_subject("abc")
        assert records[0]["subjectTitle"] == "Old export"
        assert "videoId" not in records[0]

    async def test_reject_policy_writes_nothing(self, store):
        items = [{"subjectId": "a"}, {"note": "no subject"}, {"subjectId": "b"}]
        with pytest.raises(ValidationError, match="Item 1"):
            await store.bulk_import(items)
        assert await store.get_all() == []

    async def test_skip_policy_imports_valid_items(self, store, capsys):
        items = [{"subjectId": "a"}, {"note": "no subject"}, "junk", {"subjectId": "b"}]
        count = await store.bulk_import(items, policy="skip")
        assert count == 2
        assert sorted(r["subjectId"] for r in await store.get_all()) == ["a", "b"]
        assert "Skipping import item 1" in capsys.readouterr().err

    async def test_string_tags_rejected_in_import(self, store, capsys):
        items = [{"subjectId": "a", "tags": ["ok"]}, {"subjectId": "b", "tags": "music"}]
        with pytest.raises(ValidationError, match="Item 1"):
            await store.bulk_import(items)
        assert await store.get_all() == []

        assert await store.bulk_import(items, policy="skip") == 1
        assert [r["subjectId"] for r in await store.get_all()] == ["a"]
        assert "Skipping import item 1" in capsys.readouterr().err

    async def test_empty_import(self, store):
        assert await store.bulk_import([]) == 0

    async def test_earlier_batches_survive_failed_batch(self, store):
        await store.bulk_import([{"subjectId": "a"}])
        with pytest.raises(ValidationError):
            await store.bulk_import([{"subjectId": "b"}, {}])
        assert [r["subjectId"] for r in await store.get_all()] == ["a"]


@pytest.mark.asyncio
class TestSubjectTags:
    async def test_sets_tags_on_every_record_of_subject(self, store, sample_records):
        for record in sample_records:
            await store.add(record)
        updated = await store.set_subject_tags("dQw4w9WgXcQ", ["pop", "80s"])
        assert updated == 2
        for record in await store.get_by_subject("dQw4w9WgXcQ"):
            assert record["tags"] == ["pop", "80s"]
        other = await store.get_by_subject("9bZkp7q19f0")
        assert other[0]["tags"] == ["history", "dance"]

    async def test_rejects_non_list(self, store):
        with pytest.raises(ValidationError):
            await store.set_subject_tags("abc", "pop")
        with pytest.raises(ValidationError):
            await store.set_subject_tags("abc", ["pop", 1])
