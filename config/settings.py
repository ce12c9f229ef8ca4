"""
Application Settings & Configuration

Centralized configuration management using Pydantic.
All settings loaded from environment variables with type validation.

Features:
- Type-safe configuration with Pydantic
- Environment-based settings (12-factor app)
- Search/scrape provider settings (API key, round-robin endpoints, timeframes)
- Language model settings (OpenAI-compatible endpoint, Anthropic)
- Research defaults (breadth, depth, concurrency, timeouts)
- Security helpers (mask sensitive data)

Missing credentials never abort startup: the retrieval and extraction
layers degrade to empty/fallback results instead. validate_settings()
reports what is missing so callers can warn about it.

Usage:
    >>> from config.settings import settings
    >>> print(settings.DEFAULT_MODEL)
    'deepseek-r1-671b'
    >>> print(settings.mask_sensitive('SEARCH_API_KEY'))
    'sk-search-...9f2a'
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator
from typing import List, Optional
from functools import lru_cache


DEFAULT_SEARCH_ENDPOINT = "google-twitter-scraper.vercel.app"


class Settings(BaseSettings):
    """
    Main application settings loaded from environment variables.

    All settings can be overridden via environment variables or a .env file.
    """

    # ========================================================================
    # ENVIRONMENT
    # ========================================================================
    ENVIRONMENT: str = Field(default="development", description="Runtime environment")
    DEBUG: bool = Field(default=True, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # ========================================================================
    # SEARCH / SCRAPE PROVIDER
    # ========================================================================
    SEARCH_API_KEY: Optional[str] = Field(
        default=None,
        description="API key sent as x-api-key to the search/scrape provider"
    )

    # IMPORTANT: Load as string, parse in validator (Pydantic limitation)
    search_endpoints_raw: str = Field(
        default=DEFAULT_SEARCH_ENDPOINT,
        alias="SEARCH_SCRAPE_ENDPOINTS",
        description="Comma-separated provider hosts, used round-robin"
    )
    search_endpoints_list: List[str] = []

    SEARCH_PATH: str = Field(default="/google/search", description="Search route on the provider")
    SCRAPE_PATH: str = Field(default="/web/scrape", description="Scrape route on the provider")
    SEARCH_TIMEOUT: int = Field(default=30, ge=1, le=300, description="Search timeout in seconds")
    SCRAPE_TIMEOUT: int = Field(default=120, ge=1, le=600, description="Scrape timeout in seconds")
    SEARCH_MIN_RESULTS: int = Field(
        default=3,
        ge=0,
        description="Widen the timeframe while fewer results than this were found"
    )
    SEARCH_MAX_RESULTS: int = Field(default=10, ge=1, le=100)
    SEARCH_DEFAULT_TIMEFRAME: str = Field(default="week")
    SEARCH_RECENT_TIMEFRAME: str = Field(default="24h")
    SEARCH_RATE_LIMIT: int = Field(
        default=60,
        ge=1,
        description="Provider requests allowed per rate window"
    )
    SEARCH_RATE_WINDOW_SECONDS: float = Field(default=60.0, gt=0)
    HTTP_MAX_RETRIES: int = Field(
        default=2,
        ge=1,
        le=10,
        description="Attempts per provider request on connection errors"
    )

    # ========================================================================
    # OPENAI-COMPATIBLE MODELS (DeepSeek, GPT-4o, Llama via one endpoint)
    # ========================================================================
    OPENAI_API_KEY: Optional[str] = Field(default=None, description="Key for the OpenAI-compatible API")
    OPENAI_BASE_URL: Optional[str] = Field(
        default=None,
        description="Base URL of the OpenAI-compatible API (None = api.openai.com)"
    )
    OPENAI_RATE_LIMIT: int = Field(default=60, ge=1, description="Requests per minute")
    OPENAI_MAX_TOKENS: int = Field(default=4000, ge=1, le=128000)
    OPENAI_TEMPERATURE: float = Field(default=0.3, ge=0.0, le=2.0)
    OPENAI_TIMEOUT: int = Field(default=120, ge=5, le=600)

    # ========================================================================
    # CLAUDE (ANTHROPIC)
    # ========================================================================
    ANTHROPIC_API_KEY: Optional[str] = Field(default=None, description="Anthropic API key for Claude")
    CLAUDE_RATE_LIMIT: int = Field(default=50, ge=1, description="Requests per minute")
    CLAUDE_MAX_TOKENS: int = Field(default=4000, ge=1, le=100000)
    CLAUDE_TEMPERATURE: float = Field(default=0.3, ge=0.0, le=2.0)
    CLAUDE_TIMEOUT: int = Field(default=120, ge=5, le=600)

    # ========================================================================
    # RESEARCH DEFAULTS
    # ========================================================================
    DEFAULT_MODEL: str = Field(default="deepseek-r1-671b", description="Model used when none is selected")
    CONTEXT_SIZE: int = Field(
        default=120000,
        ge=500,
        description="Token ceiling applied when trimming single prompt fragments"
    )
    DEFAULT_BREADTH: int = Field(default=4, ge=1, le=20)
    DEFAULT_DEPTH: int = Field(default=2, ge=0, le=10)
    DEFAULT_CONCURRENCY: int = Field(default=1, ge=1, le=16)
    RESEARCH_TIMEOUT: int = Field(
        default=1800,
        ge=1,
        description="Seconds before a research run is abandoned with an empty result"
    )
    REPORT_TIMEOUT: int = Field(
        default=300,
        ge=1,
        description="Seconds before report writing falls back to the plain report"
    )

    # ========================================================================
    # PYDANTIC VALIDATORS
    # ========================================================================

    @model_validator(mode='after')
    def parse_search_endpoints(self):
        """
        Parse SEARCH_SCRAPE_ENDPOINTS from comma-separated string to list.

        Empty entries are dropped; an empty list falls back to the
        default provider host.
        """
        raw = self.search_endpoints_raw

        endpoints = [
            endpoint.strip()
            for endpoint in (raw or "").split(",")
            if endpoint.strip()
        ]
        self.search_endpoints_list = endpoints or [DEFAULT_SEARCH_ENDPOINT]

        return self

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    @property
    def SEARCH_SCRAPE_ENDPOINTS(self) -> List[str]:
        """Provider hosts as a list, in round-robin order."""
        return self.search_endpoints_list

    def mask_sensitive(self, key: str) -> str:
        """
        Mask sensitive values for safe logging.

        Shows first 10 and last 4 characters, masks the middle.

        Example:
            >>> settings.mask_sensitive('OPENAI_API_KEY')
            'sk-proj-ab...4xyz'
        """
        value = getattr(self, key, None)
        if value and isinstance(value, str) and len(value) > 14:
            return f"{value[:10]}...{value[-4:]}"
        return "***"

    def get_all_api_keys_masked(self) -> dict:
        """Get all configured API keys in masked format for logging."""
        return {
            field: self.mask_sensitive(field)
            for field in API_KEY_FIELDS
            if getattr(self, field, None)
        }

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
        populate_by_name=True,
    )


API_KEY_FIELDS = [
    "SEARCH_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance (singleton).

    Returns:
        Settings instance
    """
    return Settings()


def validate_settings(config: Optional[Settings] = None) -> List[str]:
    """
    Report which credentials are missing.

    Nothing here raises: without SEARCH_API_KEY every search returns no
    results, and without a model key the extraction layer answers with
    its deterministic fallbacks. Callers decide how loudly to warn.

    Returns:
        Names of missing credential settings (empty list when complete)

    Example:
        >>> validate_settings()
        ['ANTHROPIC_API_KEY']
    """
    config = config or settings

    missing = []
    for key in API_KEY_FIELDS:
        value = getattr(config, key, None)
        if not value or (isinstance(value, str) and value.strip() == ""):
            missing.append(key)

    return missing


# ============================================================================
# INITIALIZATION & EXPORTS
# ============================================================================

# Global singleton instance
settings = get_settings()


__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "validate_settings",
    "API_KEY_FIELDS",
    "DEFAULT_SEARCH_ENDPOINT",
]
