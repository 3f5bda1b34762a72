"""Tests for the in-memory storage backend."""

import pytest

from metacrud.core.types import SortDirection
from metacrud.persistence.adapter import Cursor, StorageBackend
from metacrud.persistence.memory import MemoryBackend
from metacrud.query.predicates import Condition, Match


@pytest.fixture
def store():
    backend = MemoryBackend(primary_keys={"books": "isbn"})
    backend.seed("books", [
        {"isbn": "1", "title": "Dune", "year": 1965},
        {"isbn": "2", "title": "Neuromancer", "year": 1984},
        {"isbn": "3", "title": "Hyperion", "year": None},
        {"isbn": "4", "title": "Foundation", "year": 1951},
    ])
    return backend


class TestProtocol:
    def test_satisfies_storage_protocol(self, store):
        assert isinstance(store, StorageBackend)
        assert isinstance(store.cursor("books"), Cursor)


class TestMemoryCursor:
    @pytest.mark.asyncio
    async def test_chain_is_immutable(self, store):
        base = store.cursor("books")
        filtered = base.filter(Condition("year", "gt", 1960))
        assert await base.count() == 4
        assert await filtered.count() == 2

    @pytest.mark.asyncio
    async def test_filters_accumulate(self, store):
        cursor = store.cursor("books").filter(Condition("year", "gt", 1950))
        cursor = cursor.filter(Condition("year", "lt", 1970))
        assert [r["title"] for r in await cursor.fetch()] == ["Dune", "Foundation"]

    @pytest.mark.asyncio
    async def test_none_sorts_last_both_directions(self, store):
        asc = await store.cursor("books").order_by("year", SortDirection.ASC).fetch()
        desc = await store.cursor("books").order_by("year", SortDirection.DESC).fetch()
        assert [r["isbn"] for r in asc] == ["4", "1", "2", "3"]
        assert [r["isbn"] for r in desc] == ["2", "1", "4", "3"]

    @pytest.mark.asyncio
    async def test_skip_and_limit(self, store):
        rows = await store.cursor("books").order_by("isbn", SortDirection.ASC).skip(1).limit(2).fetch()
        assert [r["isbn"] for r in rows] == ["2", "3"]

    @pytest.mark.asyncio
    async def test_match(self, store):
        rows = await store.cursor("books").filter(Match(("title",), "ON")).fetch()
        assert {r["title"] for r in rows} == {"Hyperion", "Foundation"}

    @pytest.mark.asyncio
    async def test_fetch_returns_copies(self, store):
        rows = await store.cursor("books").fetch()
        rows[0]["title"] = "changed"
        assert (await store.get_by_key("books", "1"))["title"] == "Dune"

    @pytest.mark.asyncio
    async def test_unknown_table_is_empty(self, store):
        assert await store.cursor("films").count() == 0


class TestMemoryBackend:
    @pytest.mark.asyncio
    async def test_insert_generates_key(self):
        backend = MemoryBackend()
        key = await backend.insert("notes", {"text": "hi"})
        assert isinstance(key, str) and len(key) == 32
        assert (await backend.get_by_key("notes", key))["text"] == "hi"

    @pytest.mark.asyncio
    async def test_insert_keeps_given_key(self, store):
        assert await store.insert("books", {"isbn": "9", "title": "Ubik"}) == "9"

    @pytest.mark.asyncio
    async def test_duplicate_key(self, store):
        with pytest.raises(KeyError):
            await store.insert("books", {"isbn": "1"})

    @pytest.mark.asyncio
    async def test_get_by_index(self, store):
        assert (await store.get_by_index("books", "title", "Dune"))["isbn"] == "1"
        assert await store.get_by_index("books", "title", "Emma") is None

    @pytest.mark.asyncio
    async def test_get_many(self, store):
        found = await store.get_many("books", ["1", "4", "99"])
        assert set(found) == {"1", "4"}
        by_title = await store.get_many("books", ["Dune"], index="title")
        assert by_title["Dune"]["isbn"] == "1"

    @pytest.mark.asyncio
    async def test_update_ignores_primary_key(self, store):
        assert await store.update("books", "1", {"isbn": "100", "year": 1966}) is True
        record = await store.get_by_key("books", "1")
        assert record == {"isbn": "1", "title": "Dune", "year": 1966}

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        assert await store.update("books", "nope", {"year": 1}) is False

    @pytest.mark.asyncio
    async def test_delete(self, store):
        assert await store.delete("books", "2") is True
        assert await store.delete("books", "2") is False
        assert len(store.rows("books")) == 3
