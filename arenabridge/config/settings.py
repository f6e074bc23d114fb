"""Pydantic Settings for the bridge service.

All environment variables use the BRIDGE_ prefix.
Example: BRIDGE_PORT=8080, BRIDGE_MAX_TABS=5
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class BridgeSettings(BaseSettings):
    """Bridge service configuration validated from environment variables."""

    # Service
    port: int = 8080
    log_level: str = "INFO"

    # Target site
    target_url: str = "https://beta.lmarena.ai/"
    api_url_pattern: str = "arena-api"
    api_method: str = "POST"

    # Browser / page pool
    headless: bool = True
    max_tabs: int = Field(default=3, ge=1, le=20)
    page_acquire_timeout_seconds: float = Field(default=60.0, gt=0)
    upstream_proxy_url: str | None = None  # Proxy for the shared browser
    navigation_timeout_ms: int = Field(default=30000, ge=1000)

    # Navigation search
    navigation_paths: list[str] = []  # Empty -> built-in path variants
    profile_names: list[str] = []  # Empty -> all built-in profiles
    rotation_cooldown_seconds: float = Field(default=2.0, ge=0)
    rotation_wait_seconds: float = Field(default=30.0, ge=0)
    navigation_pacing_seconds: float = Field(default=1.0, ge=0)

    # Retry
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_initial_delay_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)
    retry_factor: float = Field(default=2.0, ge=1)
    retry_jitter: float = Field(default=0.3, ge=0, le=1)

    # Captcha
    captcha_auto_solve: bool = True
    captcha_timeout_seconds: float = Field(default=60.0, gt=0)
    captcha_poll_interval_seconds: float = Field(default=1.0, gt=0)
    capsolver_api_key: str | None = None

    # Model discovery
    models_cache_ttl_seconds: float = Field(default=3600.0, ge=0)
    default_models: list[str] = [
        "chatgpt-4o-latest-20250326",
        "claude-3-7-sonnet-20250219",
        "gemini-2.5-flash-preview-05-20",
        "gpt-4.1-2025-04-14",
        "grok-3-preview-02-24",
    ]

    # Session
    response_timeout_seconds: float = Field(default=60.0, gt=0)
    session_timeout_seconds: float = Field(default=300.0, gt=0)

    # Proxy pool
    use_proxy_pool: bool = False
    require_proxy: bool = False
    proxy_fetch_on_start: bool = True
    proxy_cache_path: str = "cache/proxies.json"
    proxy_sources: list[str] = ["proxyscrape", "proxifly", "geonode"]
    proxy_endpoints: list[str] = []  # Static proxies loaded as a source
    proxy_probe_url: str = "https://api.ipify.org?format=json"
    proxy_test_timeout_ms: int = Field(default=5000, ge=100)
    proxy_test_concurrency: int = Field(default=5, ge=1)
    proxy_blacklist_threshold: int = Field(default=3, ge=1)
    proxy_restore_fresh_seconds: int = Field(default=0, ge=0)
    proxy_retest_interval_seconds: float = Field(default=300.0, ge=0)  # 0 disables

    model_config = {"env_prefix": "BRIDGE_"}
