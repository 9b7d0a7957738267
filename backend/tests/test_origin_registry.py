"""Tests for the origin registry (in-memory store)."""

import asyncio

import pytest

from app.services.origin_registry import (
    DuplicateOriginError,
    OriginEnvironment,
    OriginNotFoundError,
    OriginRegistry,
    RegistryPersistenceError,
)
from app.services.origin_url import InvalidOriginURLError
from tests.conftest import InMemoryOriginStore


@pytest.fixture
def store():
    return InMemoryOriginStore()


@pytest.fixture
def registry(store):
    return OriginRegistry(store, io_timeout=0.1)


class TestAddOrigin:
    """Tests for OriginRegistry.add."""

    @pytest.mark.asyncio
    async def test_add_persists_then_serves(self, registry, store):
        entry = await registry.add(
            "https://app.example.com/", OriginEnvironment.PROD, "Frontend", "admin@example.com"
        )

        assert entry.url == "https://app.example.com"
        assert store.rows[entry.id] == entry
        assert registry.active_origins() == ["https://app.example.com"]
        assert registry.is_allowed("https://app.example.com")

    @pytest.mark.asyncio
    async def test_duplicate_url_rejected(self, registry):
        await registry.add("https://app.example.com", OriginEnvironment.PROD, "Frontend")

        with pytest.raises(DuplicateOriginError):
            await registry.add("https://app.example.com:443", OriginEnvironment.DEV, "Again")

    @pytest.mark.asyncio
    async def test_prod_requires_https(self, registry):
        with pytest.raises(InvalidOriginURLError):
            await registry.add("http://app.example.com", OriginEnvironment.PROD, "Insecure")

    @pytest.mark.asyncio
    async def test_dev_allows_http(self, registry):
        entry = await registry.add("http://localhost:3000", OriginEnvironment.DEV, "Local")

        assert entry.environment is OriginEnvironment.DEV

    @pytest.mark.asyncio
    async def test_invalid_url_rejected(self, registry, store):
        with pytest.raises(InvalidOriginURLError):
            await registry.add("https://app.example.com/admin", OriginEnvironment.DEV, "Path")
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_store_failure_leaves_memory_unchanged(self, registry, store):
        store.fail = True

        with pytest.raises(RegistryPersistenceError):
            await registry.add("https://app.example.com", OriginEnvironment.PROD, "Frontend")

        assert registry.list_all() == []
        assert registry.stale is True

    @pytest.mark.asyncio
    async def test_store_timeout_leaves_memory_unchanged(self, registry, store):
        store.delay = 0.5

        with pytest.raises(RegistryPersistenceError):
            await registry.add("https://app.example.com", OriginEnvironment.PROD, "Frontend")

        assert not registry.is_allowed("https://app.example.com")
        assert registry.stale is True

    @pytest.mark.asyncio
    async def test_concurrent_adds_of_same_url(self, registry, store):
        results = await asyncio.gather(
            registry.add("https://app.example.com", OriginEnvironment.PROD, "A"),
            registry.add("https://app.example.com", OriginEnvironment.PROD, "B"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, DuplicateOriginError) for r in results) == 1
        assert len(store.rows) == 1


class TestUpdateAndRemove:
    """Tests for OriginRegistry.update and remove."""

    @pytest.mark.asyncio
    async def test_update_fields(self, registry, store):
        entry = await registry.add("https://app.example.com", OriginEnvironment.PROD, "Old")

        updated = await registry.update(
            entry.id, {"description": "New", "tags": ["blog"], "is_active": False}
        )

        assert updated.description == "New"
        assert updated.tags == ("blog",)
        assert updated.is_active is False
        assert store.rows[entry.id] == updated
        assert registry.active_origins() == []

    @pytest.mark.asyncio
    async def test_update_unknown_id(self, registry):
        with pytest.raises(OriginNotFoundError):
            await registry.update("missing", {"description": "x"})

    @pytest.mark.asyncio
    async def test_update_to_prod_requires_https(self, registry):
        entry = await registry.add("http://staging.example.com", OriginEnvironment.STAGING, "S")

        with pytest.raises(InvalidOriginURLError):
            await registry.update(entry.id, {"environment": "prod"})

    @pytest.mark.asyncio
    async def test_update_url_collision(self, registry):
        await registry.add("https://a.example.com", OriginEnvironment.PROD, "A")
        b = await registry.add("https://b.example.com", OriginEnvironment.PROD, "B")

        with pytest.raises(DuplicateOriginError):
            await registry.update(b.id, {"url": "https://a.example.com"})

    @pytest.mark.asyncio
    async def test_failed_update_keeps_old_entry(self, registry, store):
        entry = await registry.add("https://app.example.com", OriginEnvironment.PROD, "Old")
        store.fail = True

        with pytest.raises(RegistryPersistenceError):
            await registry.update(entry.id, {"description": "New"})

        assert registry.get(entry.id).description == "Old"

    @pytest.mark.asyncio
    async def test_remove(self, registry, store):
        entry = await registry.add("https://app.example.com", OriginEnvironment.PROD, "A")

        assert await registry.remove(entry.id) is True
        assert await registry.remove(entry.id) is False
        assert store.rows == {}
        assert not registry.is_allowed("https://app.example.com")


class TestActiveOrigins:
    """Tests for allow-list reads and statistics."""

    @pytest.mark.asyncio
    async def test_filter_by_environment(self, registry):
        await registry.add("https://app.example.com", OriginEnvironment.PROD, "P")
        await registry.add("http://localhost:3000", OriginEnvironment.DEV, "D")
        await registry.add("https://old.example.com", OriginEnvironment.PROD, "X", is_active=False)

        assert sorted(registry.active_origins()) == [
            "http://localhost:3000",
            "https://app.example.com",
        ]
        assert registry.active_origins(OriginEnvironment.PROD) == ["https://app.example.com"]
        assert registry.active_origins("dev") == ["http://localhost:3000"]

    @pytest.mark.asyncio
    async def test_record_usage(self, registry, store):
        entry = await registry.add("https://app.example.com", OriginEnvironment.PROD, "P")

        await registry.record_usage("https://app.example.com")
        await registry.record_usage("https://app.example.com")
        await registry.record_usage("https://unknown.example.com")

        current = registry.get(entry.id)
        assert current.usage_count == 2
        assert current.last_used_at is not None
        assert store.rows[entry.id].usage_count == 2

    @pytest.mark.asyncio
    async def test_record_usage_failure_is_swallowed(self, registry, store):
        entry = await registry.add("https://app.example.com", OriginEnvironment.PROD, "P")
        store.fail = True

        await registry.record_usage("https://app.example.com")

        assert registry.get(entry.id).usage_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_usage_for_same_origin_is_collapsed(self, registry, store):
        entry = await registry.add("https://app.example.com", OriginEnvironment.PROD, "P")
        store.delay = 0.05

        await asyncio.gather(*(registry.record_usage(entry.url) for _ in range(10)))

        assert store.calls.count("record_usage") == 1
        assert registry.get(entry.id).usage_count == 1

    @pytest.mark.asyncio
    async def test_update_does_not_wait_for_usage_write(self, registry, store):
        entry = await registry.add("https://app.example.com", OriginEnvironment.PROD, "P")
        store.delay = 0.05

        usage = asyncio.create_task(registry.record_usage(entry.url))
        await asyncio.sleep(0)
        updated = await registry.update(entry.id, {"description": "Renamed"})
        await usage

        assert updated.description == "Renamed"
        current = registry.get(entry.id)
        assert current.description == "Renamed"
        assert current.usage_count == 1

    @pytest.mark.asyncio
    async def test_stats(self, registry):
        entry = await registry.add("https://app.example.com", OriginEnvironment.PROD, "P")
        await registry.add("http://localhost:3000", OriginEnvironment.DEV, "D", is_active=False)
        await registry.record_usage(entry.url)

        stats = registry.stats()

        assert stats["total"] == 2
        assert stats["active"] == 1
        assert stats["inactive"] == 1
        assert stats["by_environment"] == {"dev": 1, "staging": 0, "prod": 1}
        assert stats["most_used"][0] == {"url": "https://app.example.com", "usage_count": 1}
        assert stats["stale"] is False


class TestLoadAndSeed:
    """Tests for startup loading and seeding."""

    @pytest.mark.asyncio
    async def test_load_reads_store(self, store):
        first = OriginRegistry(store)
        entry = await first.add("https://app.example.com", OriginEnvironment.PROD, "P")

        second = OriginRegistry(store)
        await second.load()

        assert second.get(entry.id) == entry

    @pytest.mark.asyncio
    async def test_load_failure_starts_empty(self, registry, store):
        store.fail = True

        await registry.load()

        assert registry.list_all() == []

    @pytest.mark.asyncio
    async def test_seed_adds_missing_only(self, registry):
        await registry.add("https://app.example.com", OriginEnvironment.PROD, "Existing")

        added = await registry.seed(
            {
                "dev": ["http://localhost:3000", "not a url"],
                "staging": [],
                "prod": ["https://app.example.com/", "http://insecure.example.com"],
            }
        )

        assert added == 1
        assert sorted(registry.active_origins()) == [
            "http://localhost:3000",
            "https://app.example.com",
        ]

    @pytest.mark.asyncio
    async def test_seed_falls_back_to_memory(self, registry, store):
        store.fail = True

        added = await registry.seed({"prod": ["https://app.example.com"]})

        assert added == 1
        assert registry.is_allowed("https://app.example.com")
        assert registry.stale is True
        assert store.rows == {}
