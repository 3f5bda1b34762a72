"""Tests for the query engine over the in-memory backend."""

import asyncio

import pytest

from metacrud.core.types import SortDirection
from metacrud.params.types import ListParameters
from metacrud.persistence.memory import MemoryBackend
from metacrud.query import engine

from conftest import seed_blog


class CountingBackend(MemoryBackend):
    """Memory backend recording batched lookups and failing on demand."""

    def __init__(self, fail_lookups=False, fail_deletes=()):
        super().__init__()
        self.lookups = []
        self.fail_lookups = fail_lookups
        self.fail_deletes = set(fail_deletes)

    async def get_many(self, table, values, index=None):
        self.lookups.append((table, list(values), index))
        if self.fail_lookups:
            raise ConnectionError("lookup backend unavailable")
        return await super().get_many(table, values, index)

    async def delete(self, table, id):
        if id in self.fail_deletes:
            raise ConnectionError("delete backend unavailable")
        return await super().delete(table, id)


def _ids(result):
    return [r["id"] for r in result.records]


# =============================================================================
# Get
# =============================================================================


class TestGet:
    @pytest.mark.asyncio
    async def test_by_primary_key(self, backend):
        record = await engine.get(backend, "articles", "a2")
        assert record["title"] == "Bravo"

    @pytest.mark.asyncio
    async def test_by_index(self, backend):
        record = await engine.get(backend, "users", "grace@example.com", "email")
        assert record["id"] == "u2"

    @pytest.mark.asyncio
    async def test_not_found_is_none(self, backend):
        assert await engine.get(backend, "articles", "zzz") is None


# =============================================================================
# List
# =============================================================================


class TestList:
    @pytest.mark.asyncio
    async def test_limit_clamped_to_max_page(self, article_meta, backend):
        params = ListParameters(limit=500)
        result = await engine.list_records(article_meta, backend, params, default_max_page=2)
        assert len(result.records) == 2
        assert result.limit == 2
        assert result.total == 5

    @pytest.mark.asyncio
    async def test_no_limit_means_max_page(self, article_meta, backend):
        result = await engine.list_records(article_meta, backend, ListParameters(), 3)
        assert result.limit == 3
        assert len(result.records) == 3

    @pytest.mark.asyncio
    async def test_offset_beyond_total(self, article_meta, backend):
        result = await engine.list_records(article_meta, backend, ListParameters(offset=50))
        assert result.records == []
        assert result.total == 5
        assert result.offset == 50

    @pytest.mark.asyncio
    async def test_negative_limit_returns_nothing(self, article_meta, backend):
        result = await engine.list_records(article_meta, backend, ListParameters(limit=-3))
        assert result.records == []
        assert result.total == 5

    @pytest.mark.asyncio
    async def test_filter_gt(self, article_meta, backend):
        params = ListParameters(filters={"views": [("9", "gt")]})
        result = await engine.list_records(article_meta, backend, params)
        assert sorted(_ids(result)) == ["a1", "a2", "a4"]
        assert result.total == 3

    @pytest.mark.asyncio
    async def test_filter_sort_and_limit(self, article_meta, backend):
        params = ListParameters(
            filters={"status": [("active", "eq")]},
            sort_key="createdAt",
            sort_direction=SortDirection.DESC,
            limit=5,
        )
        result = await engine.list_records(article_meta, backend, params)
        assert _ids(result) == ["a4", "a3", "a1"]

    @pytest.mark.asyncio
    async def test_total_ignores_pagination(self, article_meta, backend):
        params = ListParameters(filters={"status": [("active", "eq")]}, offset=1, limit=1)
        result = await engine.list_records(article_meta, backend, params)
        assert len(result.records) == 1
        assert result.total == 3

    @pytest.mark.asyncio
    async def test_unsortable_key_is_ignored(self, article_meta, backend):
        params = ListParameters(sort_key="body", sort_direction=SortDirection.DESC)
        result = await engine.list_records(article_meta, backend, params)
        assert _ids(result) == ["a1", "a2", "a3", "a4", "a5"]

    @pytest.mark.asyncio
    async def test_undeclared_sort_key_is_ignored(self, article_meta, backend):
        params = ListParameters(sort_key="nonexistent")
        result = await engine.list_records(article_meta, backend, params)
        assert len(result.records) == 5

    @pytest.mark.asyncio
    async def test_sort_ascending(self, article_meta, backend):
        params = ListParameters(sort_key="views")
        result = await engine.list_records(article_meta, backend, params)
        assert _ids(result) == ["a5", "a3", "a1", "a2", "a4"]


class TestEffectiveMaxPage:
    def test_route_option_first(self, registry):
        registry.define("small", table="t", max_page=10)
        meta = registry.resolve("small")
        assert engine.effective_max_page(meta, ListParameters(max_page=3), 100) == 3

    def test_controller_before_default(self, registry):
        registry.define("small", table="t", max_page=10)
        meta = registry.resolve("small")
        assert engine.effective_max_page(meta, ListParameters(), 100) == 10

    def test_default(self, article_meta):
        assert engine.effective_max_page(article_meta, ListParameters(), 42) == 42


# =============================================================================
# Delete
# =============================================================================


class TestDelete:
    @pytest.mark.asyncio
    async def test_single_id_returns_bool(self, backend):
        assert await engine.delete(backend, "articles", "a1") is True
        assert await engine.delete(backend, "articles", "a1") is False

    @pytest.mark.asyncio
    async def test_one_element_list_returns_bool(self, backend):
        assert await engine.delete(backend, "articles", ["a1"]) is True

    @pytest.mark.asyncio
    async def test_partial_failure_is_counted(self, backend):
        summary = await engine.delete(backend, "articles", ["a1", "nope"])
        assert summary.succeeded == 1
        assert summary.failed == 1
        assert summary.to_dict() == {
            "succeeded": 1,
            "failed": 1,
            "results": {"a1": True, "nope": False},
        }
        assert await backend.get_by_key("articles", "a1") is None

    @pytest.mark.asyncio
    async def test_repeated_ids_are_reported_once(self, backend):
        summary = await engine.delete(backend, "articles", ["a1", "a1", "a2"])
        assert summary.to_dict() == {
            "succeeded": 2,
            "failed": 0,
            "results": {"a1": True, "a2": True},
        }

    @pytest.mark.asyncio
    async def test_only_repeated_id(self, backend):
        summary = await engine.delete(backend, "articles", ["a1", "a1"])
        assert summary.to_dict() == {"succeeded": 1, "failed": 0, "results": {"a1": True}}
        assert await backend.get_by_key("articles", "a1") is None

    @pytest.mark.asyncio
    async def test_storage_error_does_not_undo_others(self):
        backend = seed_blog(CountingBackend(fail_deletes={"a2"}))
        summary = await engine.delete(backend, "articles", ["a1", "a2", "a3"])
        assert summary.succeeded == 2
        assert summary.results["a2"] is False
        assert await backend.get_by_key("articles", "a2") is not None


# =============================================================================
# Foreign resolution
# =============================================================================


class TestForeign:
    @pytest.mark.asyncio
    async def test_single_record(self, article_meta, backend):
        record = await engine.get(backend, "articles", "a1")
        await engine.foreign(backend, article_meta, record)
        assert record["author"]["name"] == "Ada"
        assert [t["label"] for t in record["tags"]] == ["python", "databases"]

    @pytest.mark.asyncio
    async def test_dangling_reference_becomes_none(self, article_meta, backend):
        record = await engine.get(backend, "articles", "a4")
        await engine.foreign(backend, article_meta, record)
        assert record["author"] is None
        assert record["tags"][0]["id"] == "t1"
        assert record["tags"][1] is None

    @pytest.mark.asyncio
    async def test_null_and_empty_values_untouched(self, article_meta, backend):
        records = [
            await engine.get(backend, "articles", "a5"),
            await engine.get(backend, "articles", "a2"),
        ]
        await engine.foreign(backend, article_meta, records)
        assert records[0]["author"] is None
        assert records[0]["tags"] is None
        assert records[1]["tags"] == []

    @pytest.mark.asyncio
    async def test_lookups_batched_per_field(self, article_meta):
        backend = seed_blog(CountingBackend())
        records = (await engine.list_records(article_meta, backend, ListParameters())).records
        await engine.foreign(backend, article_meta, records)

        assert len(backend.lookups) == 2
        by_table = {table: values for table, values, _ in backend.lookups}
        assert sorted(by_table["users"]) == ["ghost", "u1", "u2"]
        assert sorted(by_table["tags"]) == ["missing", "t1", "t2"]

    @pytest.mark.asyncio
    async def test_resolution_is_depth_one(self, registry, backend):
        registry.define("profile", table="profiles").field(
            "owner", access="read", foreign="articles"
        )
        meta = registry.resolve("profile")
        backend.seed("profiles", [{"id": "p1", "owner": "a1"}])
        record = await engine.get(backend, "profiles", "p1")
        await engine.foreign(backend, meta, record)
        assert record["owner"]["author"] == "u1"

    @pytest.mark.asyncio
    async def test_index_lookup(self, registry, backend):
        registry.define("invite", table="invites").field(
            "user", access="read", foreign={"table": "users", "index": "email"}
        )
        meta = registry.resolve("invite")
        record = {"id": "i1", "user": "grace@example.com"}
        await engine.foreign(backend, meta, record)
        assert record["user"]["id"] == "u2"

    @pytest.mark.asyncio
    async def test_lookup_failure_degrades(self, article_meta, caplog):
        backend = seed_blog(CountingBackend(fail_lookups=True))
        record = await engine.get(backend, "articles", "a1")
        await engine.foreign(backend, article_meta, record)
        assert record["author"] is None
        assert record["tags"] == [None, None]
        assert "Foreign lookup" in caplog.text

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, article_meta):
        class SlowBackend(MemoryBackend):
            async def get_many(self, table, values, index=None):
                await asyncio.sleep(10)

        backend = seed_blog(SlowBackend())
        record = await engine.get(backend, "articles", "a1")
        task = asyncio.ensure_future(engine.foreign(backend, article_meta, record))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
