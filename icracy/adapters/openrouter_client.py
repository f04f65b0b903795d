"""OpenRouter API client for delegate completions and the model catalog."""

import logging
from typing import Any

import httpx

from ..errors import CatalogLookupFailure, DelegateCallFailed
from ..settings import (
    DELEGATE_MAX_TOKENS,
    DELEGATE_TEMPERATURE,
    DELEGATE_TIMEOUT,
    OPENROUTER_API_URL,
    OPENROUTER_MODELS_URL,
    OPENROUTER_RANKINGS_URL,
    OPENROUTER_SITE_NAME,
    OPENROUTER_SITE_URL,
)

logger = logging.getLogger(__name__)


async def query_model(
    model: str,
    messages: list[dict[str, str]],
    api_key: str,
    timeout: float = DELEGATE_TIMEOUT,
) -> dict[str, Any]:
    """
    Query a single model via OpenRouter API.

    A single attempt is made; there is no retry.

    Args:
        model: OpenRouter model identifier (e.g., "openai/gpt-4o")
        messages: List of message dicts with 'role' and 'content'
        api_key: OpenRouter API key
        timeout: Request timeout in seconds

    Returns:
        Dict with 'content' (raw message content) and 'usage' (token counts, if reported)

    Raises:
        DelegateCallFailed: On transport error, timeout, non-2xx status or invalid JSON
    """
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "HTTP-Referer": OPENROUTER_SITE_URL,
        "X-Title": OPENROUTER_SITE_NAME,
    }

    payload = {
        "model": model,
        "temperature": DELEGATE_TEMPERATURE,
        "max_tokens": DELEGATE_MAX_TOKENS,
        "messages": messages,
    }

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(OPENROUTER_API_URL, headers=headers, json=payload)
    except httpx.TimeoutException as e:
        raise DelegateCallFailed(model, f"Timeout after {timeout}s") from e
    except httpx.HTTPError as e:
        raise DelegateCallFailed(model, f"OpenRouter request failed: {e}") from e

    body_text = response.text
    logger.debug("OpenRouter response for %s: HTTP %s %s", model, response.status_code, body_text)

    if not 200 <= response.status_code < 300:
        raise DelegateCallFailed(
            model,
            f"OpenRouter request failed for {model}: HTTP {response.status_code} {body_text[:200]}",
        )

    try:
        data = response.json()
    except ValueError as e:
        raise DelegateCallFailed(model, f"OpenRouter returned invalid JSON for {model}") from e

    choices = data.get("choices") if isinstance(data, dict) else None
    message = (choices or [{}])[0].get("message") or {}

    return {
        "content": message.get("content"),
        "usage": data.get("usage") if isinstance(data, dict) else None,
    }


async def fetch_model_catalog(timeout: float = 30.0) -> list[dict[str, Any]]:
    """
    Fetch the OpenRouter model catalog.

    Returns:
        List of model dicts as published by OpenRouter ('id', 'name', 'pricing', ...)

    Raises:
        CatalogLookupFailure: If the catalog cannot be loaded
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(OPENROUTER_MODELS_URL)
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise CatalogLookupFailure(f"Failed to load OpenRouter models: {e}") from e

    models = payload.get("data") if isinstance(payload, dict) else None
    return models if isinstance(models, list) else []


async def fetch_rankings_page(timeout: float = 30.0) -> str:
    """
    Fetch the OpenRouter rankings page HTML.

    Raises:
        CatalogLookupFailure: If the page cannot be loaded
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(OPENROUTER_RANKINGS_URL)
            response.raise_for_status()
            return response.text
    except httpx.HTTPError as e:
        raise CatalogLookupFailure(f"Failed to load rankings page: {e}") from e
