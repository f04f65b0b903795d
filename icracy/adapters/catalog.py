"""
Delegate catalog sync.

Merges the OpenRouter model catalog with the public rankings page into the
``delegate_models`` table. Sync results are cached for ``CATALOG_TTL``; when
OpenRouter is unreachable the stored catalog is served instead, and an empty
store is seeded with the built-in fallback delegates.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..engine.models import now_iso
from ..engine.parsers import extract_ranked_model_rows
from ..errors import CatalogLookupFailure
from ..settings import (
    CATALOG_RETRY_TTL,
    CATALOG_SYNC_LIMIT,
    CATALOG_TTL,
    FALLBACK_DELEGATES,
)
from ..storage.store import Store
from .openrouter_client import fetch_model_catalog, fetch_rankings_page

logger = logging.getLogger(__name__)

FREE_SUFFIX = ":free"


@dataclass
class TimedCache:
    """A value with an expiry on a monotonic clock."""

    value: Any = None
    expires_at: float = 0.0

    def fresh(self, now: float) -> bool:
        return self.expires_at > now

    def set(self, value: Any, ttl: float, now: float) -> None:
        self.value = value
        self.expires_at = now + ttl


def _strip_free(model_id: str) -> str:
    return model_id[: -len(FREE_SUFFIX)] if model_id.endswith(FREE_SUFFIX) else model_id


def _price(pricing: Any, key: str) -> float | None:
    if not isinstance(pricing, dict) or not pricing.get(key):
        return None
    try:
        return float(pricing[key])
    except (TypeError, ValueError):
        return None


def build_catalog_rows(
    catalog: list[dict[str, Any]], ranked_rows: list[dict[str, Any]], timestamp: str
) -> list[dict[str, Any]]:
    """
    Join ranked rows from the rankings page with catalog entries.

    A ranked slug matches a catalog id directly or through its ``:free`` variant.

    Returns:
        Rows keyed by DelegateModel column names
    """
    model_map: dict[str, dict[str, Any]] = {}
    for model in catalog:
        model_id = model.get("id")
        if not isinstance(model_id, str):
            continue
        model_map[model_id] = model
        if model_id.endswith(FREE_SUFFIX):
            model_map[_strip_free(model_id)] = model

    agents = []
    for row in ranked_rows:
        slug = row["slug"]
        model = model_map.get(slug) or model_map.get(_strip_free(slug)) or {}
        model_id = model.get("id") or slug
        agents.append(
            {
                "id": model_id,
                "slug": slug,
                "display_name": model.get("name") or row["display_name"],
                "provider": (model_id.split("/")[0] or "unknown").strip(),
                "weekly_tokens": row["token_value"],
                "weekly_tokens_text": row["token_text"],
                "context_length": model.get("context_length") or None,
                "prompt_price": _price(model.get("pricing"), "prompt"),
                "completion_price": _price(model.get("pricing"), "completion"),
                "rank_position": row["rank"],
                "source_updated_at": timestamp,
            }
        )
    return agents


def fallback_rows(timestamp: str) -> list[dict[str, Any]]:
    """Catalog rows for the built-in delegates, ranked in list order."""
    return [
        {
            "id": agent["id"],
            "slug": agent["id"],
            "display_name": agent["display_name"],
            "provider": agent["provider"],
            "weekly_tokens": None,
            "weekly_tokens_text": "n/a",
            "context_length": None,
            "prompt_price": None,
            "completion_price": None,
            "rank_position": index,
            "source_updated_at": timestamp,
        }
        for index, agent in enumerate(FALLBACK_DELEGATES, start=1)
    ]


class CatalogService:
    """
    Keeps the stored delegate catalog fresh.

    Both caches are instance state, so each service (and each test) has its own.
    """

    def __init__(
        self,
        store: Store,
        model_cache: TimedCache | None = None,
        sync_cache: TimedCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.model_cache = model_cache or TimedCache()
        self.sync_cache = sync_cache or TimedCache()
        self.clock = clock

    async def fetch_models(self) -> list[dict[str, Any]]:
        """OpenRouter model catalog, cached for ``CATALOG_TTL``."""
        now = self.clock()
        if self.model_cache.fresh(now) and self.model_cache.value:
            return self.model_cache.value

        models = await fetch_model_catalog()
        self.model_cache.set(models, CATALOG_TTL, now)
        return models

    async def eligible(self, limit: int = CATALOG_SYNC_LIMIT, force: bool = False) -> list[dict[str, Any]]:
        """
        Return the catalog ordered by rank, syncing from OpenRouter when stale.

        Never raises CatalogLookupFailure: a failed sync serves the stored
        catalog, or seeds the built-in delegates when nothing is stored.

        Args:
            limit: Maximum number of delegates to return (and ranked rows to sync)
            force: Sync even if the previous result is still fresh
        """
        now = self.clock()
        if not force and self.sync_cache.fresh(now):
            cached = self.store.list_delegates(limit)
            if cached:
                return cached

        timestamp = now_iso()
        try:
            catalog, html = await asyncio.gather(self.fetch_models(), fetch_rankings_page())
            ranked_rows = extract_ranked_model_rows(html, limit)
            if not ranked_rows:
                raise CatalogLookupFailure("No model rows parsed from OpenRouter rankings")

            self.store.upsert_delegate_models(build_catalog_rows(catalog, ranked_rows, timestamp))
            self.sync_cache.set(timestamp, CATALOG_TTL, now)
            logger.info("Synced %d delegates from OpenRouter", len(ranked_rows))
            return self.store.list_delegates(limit)
        except CatalogLookupFailure as e:
            self.sync_cache.set(timestamp, CATALOG_RETRY_TTL, now)
            existing = self.store.list_delegates(limit)
            if existing:
                logger.warning("Catalog sync failed, serving stored catalog: %s", e)
                return existing

            logger.warning("Catalog sync failed, seeding built-in delegates: %s", e)
            self.store.upsert_delegate_models(fallback_rows(timestamp))
            return self.store.list_delegates(limit)
