"""Configuration for icracy.

Loads settings from config.yaml if present, falls back to defaults.
API keys and deployment-specific values are loaded from environment variables.
"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

# Find project root (where config.yaml lives)
_PROJECT_ROOT = Path(__file__).parent.parent
_CONFIG_PATH = _PROJECT_ROOT / "config.yaml"

# Defaults (used if config.yaml is missing)
_DEFAULTS = {
    "openrouter_api_base": "https://openrouter.ai/api/v1",
    "openrouter_rankings_url": "https://openrouter.ai/rankings",
    "delegate_timeout": 60.0,
    "delegate_temperature": 0.4,
    "delegate_max_tokens": 450,
    "max_delegates": 6,
    "default_delegates": 4,
    "catalog_ttl": 600,
    "catalog_retry_ttl": 60,
    "catalog_sync_limit": 20,
    "keepalive_interval": 15.0,
    "snapshot_interval": 600,
    "fallback_delegates": [
        {"id": "openai/gpt-4o-mini", "display_name": "GPT-4o Mini", "provider": "openai"},
        {
            "id": "anthropic/claude-3.5-sonnet",
            "display_name": "Claude Sonnet",
            "provider": "anthropic",
        },
        {"id": "google/gemini-2.0-flash", "display_name": "Gemini Flash", "provider": "google"},
        {
            "id": "meta-llama/llama-3.1-70b-instruct",
            "display_name": "Llama 3.1 70B",
            "provider": "meta-llama",
        },
    ],
}


def _load_config() -> dict:
    """Load configuration from YAML file or return defaults."""
    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            config = yaml.safe_load(f) or {}
        # Merge with defaults (config values override defaults)
        return {**_DEFAULTS, **config}
    return _DEFAULTS


_config = _load_config()

# API key from environment (never in config file)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")

# OpenRouter endpoints
OPENROUTER_API_BASE: str = _config["openrouter_api_base"]
OPENROUTER_API_URL: str = f"{OPENROUTER_API_BASE}/chat/completions"
OPENROUTER_MODELS_URL: str = f"{OPENROUTER_API_BASE}/models"
OPENROUTER_RANKINGS_URL: str = _config["openrouter_rankings_url"]
OPENROUTER_SITE_URL: str = os.getenv("OPENROUTER_SITE_URL", "http://localhost:8787")
OPENROUTER_SITE_NAME: str = os.getenv("OPENROUTER_SITE_NAME", "icracy.com")

# Delegate requests
DELEGATE_TIMEOUT: float = float(_config["delegate_timeout"])
DELEGATE_TEMPERATURE: float = float(_config["delegate_temperature"])
DELEGATE_MAX_TOKENS: int = int(_config["delegate_max_tokens"])

# Delegate selection
MAX_DELEGATES: int = int(_config["max_delegates"])
DEFAULT_DELEGATES: int = int(_config["default_delegates"])
FALLBACK_DELEGATES: list[dict] = _config["fallback_delegates"]

# Catalog cache lifetimes, in seconds
CATALOG_TTL: int = int(_config["catalog_ttl"])
CATALOG_RETRY_TTL: int = int(_config["catalog_retry_ttl"])
CATALOG_SYNC_LIMIT: int = int(_config["catalog_sync_limit"])

# Event stream keep-alive, in seconds
KEEPALIVE_INTERVAL: float = float(_config["keepalive_interval"])

# Leaderboard snapshot job, in seconds (0 disables it)
SNAPSHOT_INTERVAL: float = float(_config["snapshot_interval"])

# Storage
DB_URL: str = os.getenv("ICRACY_DB_URL", f"sqlite:///{_PROJECT_ROOT / 'data' / 'icracy.db'}")

# Identity used when a request carries no user hint
DEFAULT_USER_ID: str = os.getenv("ICRACY_DEFAULT_USER_ID", "user-human-8821")
DEFAULT_USER_HANDLE: str = os.getenv("ICRACY_DEFAULT_USER_HANDLE", "human-8821")
DEFAULT_USER_NAME: str = os.getenv("ICRACY_DEFAULT_USER_NAME", "Human Delegate")
