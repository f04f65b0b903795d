"""
Tests for delegate catalog sync.

The OpenRouter fetches are patched at the catalog module; the clock is a
plain counter so cache expiry is deterministic.
"""

from unittest.mock import AsyncMock, patch

import pytest

from icracy.adapters.catalog import CatalogService, TimedCache, build_catalog_rows
from icracy.engine.parsers import extract_ranked_model_rows
from icracy.errors import CatalogLookupFailure
from tests.conftest import (
    SAMPLE_DELEGATES,
    SAMPLE_MODEL_CATALOG,
    SAMPLE_RANKINGS_HTML,
    SAMPLE_TIMESTAMP,
    make_catalog_rows,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_fetches():
    """Patch both OpenRouter fetches used by the catalog service."""
    with patch(
        "icracy.adapters.catalog.fetch_model_catalog", new_callable=AsyncMock
    ) as models, patch("icracy.adapters.catalog.fetch_rankings_page", new_callable=AsyncMock) as page:
        models.return_value = SAMPLE_MODEL_CATALOG
        page.return_value = SAMPLE_RANKINGS_HTML
        yield models, page


class TestTimedCache:
    def test_expiry(self):
        cache = TimedCache()
        assert not cache.fresh(0)

        cache.set(["x"], ttl=10, now=100)

        assert cache.fresh(109.9)
        assert not cache.fresh(110)


class TestBuildCatalogRows:
    """Tests for joining rankings with the model catalog."""

    def test_matches_free_variant(self):
        ranked = extract_ranked_model_rows(SAMPLE_RANKINGS_HTML, 10)

        rows = {row["slug"]: row for row in build_catalog_rows(SAMPLE_MODEL_CATALOG, ranked, SAMPLE_TIMESTAMP)}

        deepseek = rows["deepseek/deepseek-chat"]
        assert deepseek["id"] == "deepseek/deepseek-chat:free"
        assert deepseek["display_name"] == "DeepSeek: V3 (free)"
        assert deepseek["provider"] == "deepseek"
        assert deepseek["context_length"] == 64000
        assert deepseek["weekly_tokens"] == 850_000_000

    def test_catalog_metadata_and_pricing(self):
        ranked = extract_ranked_model_rows(SAMPLE_RANKINGS_HTML, 10)

        rows = build_catalog_rows(SAMPLE_MODEL_CATALOG, ranked, SAMPLE_TIMESTAMP)

        gpt = rows[0]
        assert gpt["id"] == "openai/gpt-4o-mini"
        assert gpt["display_name"] == "OpenAI: GPT-4o-mini"
        assert gpt["prompt_price"] == pytest.approx(0.00000015)
        assert gpt["rank_position"] == 1

    def test_unknown_slug_keeps_ranking_data(self):
        ranked = extract_ranked_model_rows(SAMPLE_RANKINGS_HTML, 10)

        gemini = build_catalog_rows([], ranked, SAMPLE_TIMESTAMP)[2]

        assert gemini["id"] == "google/gemini-2.0-flash"
        assert gemini["display_name"] == "Gemini 2.0 Flash"
        assert gemini["context_length"] is None
        assert gemini["prompt_price"] is None


class TestCatalogService:
    """Tests for CatalogService.eligible."""

    @pytest.mark.asyncio
    async def test_sync_upserts_and_caches(self, store, clock, mock_fetches):
        models, page = mock_fetches
        service = CatalogService(store, clock=clock)

        delegates = await service.eligible(10)

        assert [d["id"] for d in delegates] == [
            "openai/gpt-4o-mini",
            "deepseek/deepseek-chat:free",
            "google/gemini-2.0-flash",
        ]
        assert delegates[0]["weeklyTokensText"] == "1.2B"

        await service.eligible(10)
        assert page.await_count == 1

        clock.now += 601
        await service.eligible(10)
        assert page.await_count == 2
        # The model catalog has its own cache with the same lifetime
        assert models.await_count == 2

    @pytest.mark.asyncio
    async def test_force_resyncs(self, store, clock, mock_fetches):
        _, page = mock_fetches
        service = CatalogService(store, clock=clock)

        await service.eligible(10)
        await service.eligible(10, force=True)

        assert page.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_serves_stored_rows(self, store, clock, mock_fetches):
        _, page = mock_fetches
        page.side_effect = CatalogLookupFailure("rankings down")
        store.upsert_delegate_models(make_catalog_rows(SAMPLE_DELEGATES[:3]))
        service = CatalogService(store, clock=clock)

        delegates = await service.eligible(10)

        assert [d["id"] for d in delegates] == [m for m, _, _ in SAMPLE_DELEGATES[:3]]

        # Retried after the short retry window, not the full TTL
        clock.now += 30
        await service.eligible(10)
        assert page.await_count == 1
        clock.now += 31
        await service.eligible(10)
        assert page.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_with_empty_store_seeds_fallbacks(self, store, clock, mock_fetches):
        models, _ = mock_fetches
        models.side_effect = CatalogLookupFailure("models down")
        service = CatalogService(store, clock=clock)

        delegates = await service.eligible(10)

        assert [d["id"] for d in delegates] == [
            "openai/gpt-4o-mini",
            "anthropic/claude-3.5-sonnet",
            "google/gemini-2.0-flash",
            "meta-llama/llama-3.1-70b-instruct",
        ]
        assert delegates[0]["weeklyTokensText"] == "n/a"
        assert [d["rank"] for d in delegates] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_empty_rankings_page_is_a_failure(self, store, clock, mock_fetches):
        _, page = mock_fetches
        page.return_value = "<html>redesigned</html>"
        service = CatalogService(store, clock=clock)

        delegates = await service.eligible(10)

        assert len(delegates) == 4
