"""
Integration tests for SmartRepo over the SQLite backend.

Tests cover:
- Filter compilation (equality, $in, $gt, $ne, nested paths, booleans)
- Rejection of values JSON cannot encode
- Full repository lifecycle against a real database file
- Streaming reads, views and cursor release
- Bulk insert partial failure
- Keyset pagination
"""

import os
import tempfile
from datetime import datetime

import pytest

from smartrepo import (
    CreateManyPartialFailure,
    DuplicateIdError,
    RepositoryConfig,
    SmartRepo,
    SqliteBackend,
    UpdateOperation,
    ValidationError,
)
from smartrepo.managed_fields import FieldMutations


class TestSqliteBackend:
    """Adapter-level tests for SqliteBackend."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture(params=[True, False], ids=["wal", "no-wal"])
    def backend(self, data_dir, request):
        return SqliteBackend(
            os.path.join(data_dir, "docs.db"),
            collection="tasks",
            wal_mode=request.param,
            fetch_size=2,
        )

    @pytest.mark.asyncio
    async def test_insert_and_find_one(self, backend):
        await backend.insert_one({"id": "a", "meta": {"owner": "u1"}, "done": False})
        assert await backend.find_one({"id": "a"}) == {
            "id": "a",
            "meta": {"owner": "u1"},
            "done": False,
        }
        assert await backend.find_one({"meta.owner": "u1"}) is not None
        assert await backend.find_one({"meta.owner": "u2"}) is None

    @pytest.mark.asyncio
    async def test_duplicate_id(self, backend):
        await backend.insert_one({"id": "a"})
        with pytest.raises(DuplicateIdError):
            await backend.insert_one({"id": "a"})

    @pytest.mark.asyncio
    async def test_operators(self, backend):
        await backend.insert_many(
            [
                {"id": "a", "s": "open", "_deleted": False},
                {"id": "b", "s": "done", "_deleted": True},
                {"id": "c", "s": "open"},
            ]
        )

        assert await backend.count({"s": {"$in": ["open", "done"]}}) == 3
        assert await backend.count({"s": {"$in": []}}) == 0
        assert await backend.count({"_deleted": {"$ne": True}}) == 2
        assert await backend.count({"_deleted": None}) == 1
        assert await backend.count({"_deleted": False}) == 1
        assert await backend.count({"id": {"$in": ["a", "c", "z"]}}) == 2
        assert await backend.count({"id": {"$gt": "a"}}) == 2
        assert await backend.count({"id": {"$in": ["a", "b"], "$gt": "a"}}) == 1
        assert await backend.count({"s": {"$gt": "done"}}) == 2

    @pytest.mark.asyncio
    async def test_unsupported_filter_value(self, backend):
        with pytest.raises(ValidationError):
            await backend.count({"meta": {"owner": "u1"}})
        with pytest.raises(ValidationError):
            await backend.count({"tags": ["x"]})

    @pytest.mark.asyncio
    async def test_unencodable_document_rejected(self, backend):
        with pytest.raises(ValidationError) as exc_info:
            await backend.insert_one({"id": "a", "when": datetime(2024, 1, 1)})
        assert exc_info.value.field_name == "when"
        assert await backend.count({}) == 0

        result = await backend.insert_many(
            [{"id": "b"}, {"id": "c", "when": datetime(2024, 1, 1)}, {"id": "d"}]
        )
        assert result.inserted_ids == ["b", "d"]
        assert result.failed_ids == ["c"]
        assert "not JSON serializable" in result.errors["c"]

    @pytest.mark.asyncio
    async def test_unencodable_update_leaves_record(self, backend):
        await backend.insert_one({"id": "a", "v": 1})
        with pytest.raises(ValidationError):
            await backend.update_one(
                {"id": "a"}, FieldMutations(set={"when": datetime(2024, 1, 1)})
            )
        assert await backend.find_one({"id": "a"}) == {"id": "a", "v": 1}

    @pytest.mark.asyncio
    async def test_find_many_streams_in_id_order(self, backend):
        await backend.insert_many([{"id": f"d{i}", "n": i} for i in range(5)])
        found = [doc["n"] async for doc in backend.find_many({})]
        assert found == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_update_one_applies_mutations(self, backend):
        await backend.insert_one({"id": "a", "v": 1, "old": True})
        updated = await backend.update_one(
            {"id": "a", "v": 1},
            FieldMutations(set={"meta.x": 1}, unset=["old"], increment={"v": 1}),
        )
        assert updated
        assert await backend.find_one({"id": "a"}) == {"id": "a", "v": 2, "meta": {"x": 1}}
        assert not await backend.update_one({"id": "a", "v": 1}, FieldMutations(set={"y": 1}))

    @pytest.mark.asyncio
    async def test_delete_one(self, backend):
        await backend.insert_many([{"id": "a", "s": 1}, {"id": "b", "s": 1}])
        assert await backend.delete_one({"s": 1})
        assert await backend.count({}) == 1
        assert not await backend.delete_one({"id": "a"})

    def test_invalid_collection_name(self, data_dir):
        with pytest.raises(ValueError):
            SqliteBackend(os.path.join(data_dir, "x.db"), collection="tasks; DROP")


class TestSqliteRepository:
    """SmartRepo lifecycle tests against SQLite."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def backend(self, data_dir):
        return SqliteBackend(os.path.join(data_dir, "repo.db"), collection="tasks", fetch_size=3)

    @pytest.fixture
    def repo(self, backend, clock, id_factory):
        config = RepositoryConfig(
            scope={"tenantId": "t1"},
            timestamps=True,
            versioning=True,
            soft_delete=True,
            trace_strategy="bounded",
            trace_limit=2,
            trace_context={"actor": "svc"},
            clock=clock,
            id_factory=id_factory,
        )
        return SmartRepo(backend, config)

    @pytest.fixture
    def foreign_repo(self, backend, clock, id_factory):
        return SmartRepo(
            backend,
            RepositoryConfig(
                scope={"tenantId": "t2"},
                soft_delete=True,
                clock=clock,
                id_factory=id_factory,
            ),
        )

    @pytest.mark.asyncio
    async def test_lifecycle(self, repo, backend):
        record_id = await repo.create({"title": "Draft"})

        assert await repo.update(record_id, UpdateOperation(set={"title": "Final"}))
        assert await repo.update(record_id, {"set": {"title": "Published"}}, expected_version=2)
        assert not await repo.update(record_id, {"set": {"title": "Stale"}}, expected_version=2)

        record = await repo.get_by_id(record_id)
        assert record["title"] == "Published"
        assert record["version"] == 3
        assert [entry["_op"] for entry in record["_trace"]] == ["update", "update"]

        assert await repo.delete(record_id)
        assert await repo.get_by_id(record_id) is None
        stored = await backend.find_one({"id": record_id})
        assert stored["_deleted"] is True
        assert stored["version"] == 4

    @pytest.mark.asyncio
    async def test_scope_isolation(self, repo, foreign_repo):
        mine = await repo.create({"status": "open"})
        theirs = await foreign_repo.create({"status": "open"})

        assert await repo.count({"status": "open"}) == 1
        assert await repo.get_by_id(theirs) is None
        assert not await repo.update(theirs, {"set": {"status": "done"}})
        assert not await repo.delete(theirs)
        found, missing = await repo.get_by_ids([mine, theirs])
        assert [r["id"] for r in found] == [mine]
        assert missing == [theirs]

    @pytest.mark.asyncio
    async def test_find_views(self, repo):
        await repo.create_many([{"n": i, "even": i % 2 == 0} for i in range(10)])

        evens = await repo.find({"even": True}, projection=["n"]).to_list()
        assert evens == [{"n": 0}, {"n": 2}, {"n": 4}, {"n": 6}, {"n": 8}]

        pages = await repo.find({}).skip(1).take(7).paged(3).to_list()
        assert [[r["n"] for r in page] for page in pages] == [[1, 2, 3], [4, 5, 6], [7]]

    @pytest.mark.asyncio
    async def test_create_many_partial_failure(self, repo):
        await repo.create({"id": "dup"})
        with pytest.raises(CreateManyPartialFailure) as exc_info:
            await repo.create_many([{"id": "dup"}, {"id": "fresh"}])

        assert exc_info.value.inserted_ids == ["fresh"]
        assert exc_info.value.failed_ids == ["dup"]
        assert await repo.count() == 2

    @pytest.mark.asyncio
    async def test_create_many_unencodable_value(self, repo):
        with pytest.raises(CreateManyPartialFailure) as exc_info:
            await repo.create_many([{"id": "a"}, {"id": "b", "when": datetime(2024, 1, 1)}])

        assert exc_info.value.inserted_ids == ["a"]
        assert exc_info.value.failed_ids == ["b"]
        assert await repo.get_by_id("a") is not None
        assert await repo.get_by_id("b") is None

    @pytest.mark.asyncio
    async def test_find_page(self, repo, foreign_repo):
        ids = await repo.create_many([{"n": i} for i in range(7)])
        await foreign_repo.create({"n": 99})
        await repo.delete(ids[3])

        pages, cursor = [], None
        while True:
            page = await repo.find_page({}, limit=3, cursor=cursor, projection=["n"])
            pages.append([r["n"] for r in page.items])
            cursor = page.next_cursor
            if cursor is None:
                break

        assert pages == [[0, 1, 2], [4, 5, 6]]

    @pytest.mark.asyncio
    async def test_update_many_and_delete_many(self, repo):
        ids = await repo.create_many([{"s": "open"} for _ in range(3)])

        assert await repo.update_many(ids[:2], {"set": {"s": "done"}}) == ids[:2]
        assert await repo.count({"s": "done"}) == 2
        assert await repo.delete_many([ids[0], "ghost"]) == [ids[0]]
        assert await repo.count() == 2
