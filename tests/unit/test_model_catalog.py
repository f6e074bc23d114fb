"""Unit tests for model discovery and its cache."""

import asyncio

import pytest
import pytest_asyncio

from arenabridge.adapters.base import ModelOption
from arenabridge.services.model_catalog import ModelCatalogService


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def catalog(page_pool, navigator, adapter, clock):
    return ModelCatalogService(
        page_pool,
        navigator,
        adapter,
        target_url="https://beta.lmarena.ai/",
        default_models=["gpt-4o", "qwq-32b"],
        ttl_seconds=60.0,
        acquire_timeout=0.5,
        clock=clock,
    )


def _ids(payload: dict) -> list[str]:
    return [m["id"] for m in payload["models"]]


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_lists_picker_models_then_defaults(self, catalog, adapter, page_pool):
        payload = await catalog.get_models()

        assert _ids(payload) == ["gpt-4o", "claude-3-opus", "qwq-32b"]
        assert payload["models"][0] == {"id": "gpt-4o", "name": "GPT-4o", "available": True, "source": "ui"}
        assert payload["models"][2]["source"] == "default"
        assert payload["metadata"]["count"] == 3
        assert payload["metadata"]["sources"] == ["default", "ui"]
        assert payload["metadata"]["cached"] is False
        assert payload["metadata"]["stale"] is False
        assert payload["metadata"]["fetched_at"].startswith("2023-11-14")
        assert page_pool.get_stats()["in_use"] == 0

    @pytest.mark.asyncio
    async def test_unavailable_models_listed_last(self, catalog, adapter):
        adapter.models = [ModelOption("old-model", "Old", available=False), ModelOption("new-model", "New")]
        payload = await catalog.get_models()
        assert _ids(payload)[-1] == "old-model"
        assert payload["metadata"]["available_count"] == 3


class TestCaching:
    @pytest.mark.asyncio
    async def test_served_from_cache_within_ttl(self, catalog, adapter, clock):
        await catalog.get_models()
        clock.now += 30
        payload = await catalog.get_models()

        assert adapter.listings == 1
        assert payload["metadata"]["cached"] is True

    @pytest.mark.asyncio
    async def test_refreshes_after_ttl(self, catalog, adapter, clock):
        await catalog.get_models()
        clock.now += 61
        await catalog.get_models()
        assert adapter.listings == 2

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, catalog, adapter):
        await catalog.get_models()
        adapter.models = [ModelOption("fresh-model", "Fresh")]

        payload = await catalog.get_models(force_refresh=True)

        assert adapter.listings == 2
        assert "fresh-model" in _ids(payload)
        assert "claude-3-opus" not in _ids(payload)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, catalog, adapter):
        results = await asyncio.gather(*(catalog.get_models() for _ in range(4)))
        assert adapter.listings == 1
        assert all(_ids(r) == _ids(results[0]) for r in results)


class TestFailures:
    @pytest.mark.asyncio
    async def test_defaults_when_first_fetch_fails(self, catalog, adapter, page_pool):
        adapter.list_error = RuntimeError("Target closed")

        payload = await catalog.get_models()

        assert _ids(payload) == ["gpt-4o", "qwq-32b"]
        assert payload["metadata"]["sources"] == ["default"]
        assert payload["metadata"]["stale"] is True
        assert payload["metadata"]["fetched_at"] is None
        assert page_pool.get_stats()["in_use"] == 0

    @pytest.mark.asyncio
    async def test_previous_list_kept_and_retried_after_failure(self, catalog, adapter):
        await catalog.get_models()
        adapter.list_error = RuntimeError("Target closed")

        failed = await catalog.get_models(force_refresh=True)
        assert "claude-3-opus" in _ids(failed)
        assert failed["metadata"]["stale"] is True

        adapter.list_error = None
        recovered = await catalog.get_models()
        assert adapter.listings == 3
        assert recovered["metadata"]["stale"] is False

    @pytest.mark.asyncio
    async def test_unusable_page_is_not_listed(self, catalog, adapter):
        adapter.usable = lambda page: False
        payload = await catalog.get_models()
        assert adapter.listings == 0
        assert payload["metadata"]["stale"] is True
