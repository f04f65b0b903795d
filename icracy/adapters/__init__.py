"""Adapters for external services (OpenRouter completions, model catalog, rankings)."""
