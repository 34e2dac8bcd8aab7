"""
Configuration management for FPL League Stats.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from typing import List


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # FPL API Configuration
    fpl_api_base_url: str = os.getenv("FPL_API_BASE_URL", "https://fantasy.premierleague.com/api")
    # Candidate base URLs tried in order (e.g. own gateway first, then upstream).
    # Set FPL_GATEWAY_URLS (comma-separated); defaults to fpl_api_base_url.
    fpl_gateway_urls: List[str] = field(default_factory=list)
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "30.0"))

    # Rate Limiting
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "300"))
    min_request_interval: float = float(os.getenv("MIN_REQUEST_INTERVAL", "0.0"))

    # Retry Configuration (batch-level retries of failed paths)
    max_retries: int = int(os.getenv("MAX_RETRIES", "2"))
    retry_backoff_base: float = float(os.getenv("RETRY_BACKOFF_BASE", "1.0"))
    max_retry_delay: float = float(os.getenv("MAX_RETRY_DELAY", "8.0"))

    # Batching: requests in flight per chunk and pause between chunks (seconds)
    history_concurrency: int = int(os.getenv("HISTORY_CONCURRENCY", "5"))
    # Historical live data is safe to fetch in bulk
    live_concurrency: int = int(os.getenv("LIVE_CONCURRENCY", "10"))
    picks_concurrency: int = int(os.getenv("PICKS_CONCURRENCY", "5"))
    batch_pause_seconds: float = float(os.getenv("BATCH_PAUSE_SECONDS", "0.2"))

    # Cache Configuration
    fetch_cache_ttl: int = int(os.getenv("FETCH_CACHE_TTL", "300"))  # 5 minutes
    gateway_cache_max_age: int = int(os.getenv("GATEWAY_CACHE_MAX_AGE", "60"))

    # API server
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    def validate(self):
        """Validate configuration."""
        errors = []

        if not self.fpl_gateway_urls:
            errors.append("At least one FPL gateway URL is required")
        for name in ("history_concurrency", "live_concurrency", "picks_concurrency"):
            if getattr(self, name) < 1:
                errors.append(f"{name.upper()} must be >= 1")
        if self.max_retries < 0:
            errors.append("MAX_RETRIES must be >= 0")
        if self.fetch_cache_ttl <= 0:
            errors.append("FETCH_CACHE_TTL must be > 0")
        if self.batch_pause_seconds < 0:
            errors.append("BATCH_PAUSE_SECONDS must be >= 0")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True

    def __post_init__(self):
        """Resolve candidate gateways, then validate."""
        if not self.fpl_gateway_urls:
            urls: List[str] = []
            raw_list = os.getenv("FPL_GATEWAY_URLS")
            if raw_list:
                for s in raw_list.split(","):
                    s = s.strip().rstrip("/")
                    if s and s not in urls:
                        urls.append(s)
            if not urls and self.fpl_api_base_url:
                urls.append(self.fpl_api_base_url.rstrip("/"))
            self.fpl_gateway_urls = urls
        self.validate()
