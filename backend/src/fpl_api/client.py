"""
FPL API Client with rate limiting, response caching, and error handling.

Handles all communication with the Fantasy Premier League API, either
directly or through one of our own gateways. Retrying failed requests is
left to the batch scheduler; a single fetch never retries.
"""

import asyncio
import logging
import random
import re
import time
from typing import Any, Dict, List, Optional

import httpx
from asyncio_throttle import Throttler

from config import Config
from fpl_api.cache import FetchCache, is_permanent, normalize_path

logger = logging.getLogger(__name__)

REQUEST_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://fantasy.premierleague.com/"
}


class FPLAPIError(Exception):
    """Base exception for FPL API errors."""
    pass


class NetworkError(FPLAPIError):
    """Raised when the transport fails (connection refused, timeout, DNS...)."""
    pass


class UpstreamError(FPLAPIError):
    """Raised when the API or gateway answers with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(FPLAPIError):
    """Raised for malformed input such as a non-numeric league ID."""
    pass


_LEAGUE_ID = re.compile(r"[0-9]+")


def validate_league_id(league_id: Optional[str]) -> int:
    """
    Check a league ID supplied by a user.

    Returns:
        The league ID as an int

    Raises:
        ValidationError: If the value is missing or not all digits
    """
    if league_id is None or not _LEAGUE_ID.fullmatch(str(league_id)):
        raise ValidationError("Invalid league ID")
    return int(league_id)


class FPLAPIClient:
    """Client for interacting with the FPL API."""

    def __init__(
        self,
        config: Config,
        cache: Optional[FetchCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.base_urls: List[str] = [u.rstrip("/") for u in config.fpl_gateway_urls]
        self.cache = cache if cache is not None else FetchCache(ttl=config.fetch_cache_ttl)

        self.throttler = Throttler(
            rate_limit=config.max_requests_per_minute,
            period=60.0
        )
        self.min_interval = config.min_request_interval
        self.last_request_time = 0.0
        # Network calls made (cache hits excluded)
        self.request_count = 0

        self.client = httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
            headers=REQUEST_HEADERS,
            transport=transport
        )

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limiting."""
        await self.throttler.acquire()

        # Also enforce minimum interval between requests
        current_time = time.time()
        time_since_last = current_time - self.last_request_time
        if time_since_last < self.min_interval:
            wait_time = self.min_interval - time_since_last
            # Add jitter (±25%)
            jitter = wait_time * 0.25 * (random.random() * 2 - 1)
            await asyncio.sleep(wait_time + jitter)

        self.last_request_time = time.time()

    async def _get_json(self, base_url: str, path: str) -> Any:
        """
        GET {base_url}/{path}/ once and decode the JSON body.

        Raises:
            NetworkError: If the request could not be completed
            UpstreamError: If the status is not 2xx or the body is not JSON
        """
        url = f"{base_url}/{path}/"
        await self._wait_for_rate_limit()
        self.request_count += 1

        try:
            response = await self.client.get(url)
        except httpx.TransportError as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

        if not response.is_success:
            error_text = response.text[:500]
            raise UpstreamError(
                f"FPL API error {response.status_code}: {error_text}",
                status_code=response.status_code
            )

        content_type = response.headers.get("content-type", "").lower()
        if "text/html" in content_type:
            raise UpstreamError(
                "FPL API returned HTML instead of JSON - request may be blocked",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Failed to parse JSON: {e}",
                status_code=response.status_code
            ) from e

    async def fetch(self, path: str, current_gameweek: Optional[int] = None) -> Any:
        """
        Fetch one API path, serving it from the cache when possible.

        Candidate base URLs are tried in order; the first success wins.

        Args:
            path: API path without base, e.g. "entry/123/history"
            current_gameweek: Current gameweek, used to decide whether the
                response is historical and can be cached permanently

        Returns:
            Decoded JSON payload

        Raises:
            NetworkError / UpstreamError: From the last candidate tried
        """
        path = normalize_path(path)
        if not path:
            raise ValueError("path must not be empty")

        cached = self.cache.get(path)
        if cached is not None:
            logger.debug("Cache hit", extra={"path": path})
            return cached

        last_error: Optional[FPLAPIError] = None
        for base_url in self.base_urls:
            try:
                data = await self._get_json(base_url, path)
            except FPLAPIError as e:
                last_error = e
                logger.debug(
                    "Fetch from candidate failed",
                    extra={"path": path, "base_url": base_url, "error": str(e)}
                )
                continue

            self.cache.put(path, data, permanent=is_permanent(path, current_gameweek))
            return data

        if last_error is None:
            raise NetworkError("No FPL API base URLs configured")
        raise last_error

    async def get_bootstrap_static(self) -> Dict[str, Any]:
        """
        Get bootstrap-static data (players, teams, gameweeks).

        Returns:
            Bootstrap static data dictionary
        """
        data = await self.fetch("bootstrap-static")

        logger.info("Bootstrap-static fetched", extra={
            "players_count": len(data.get("elements", [])),
            "gameweeks_count": len(data.get("events", []))
        })

        return data

    async def get_league_standings(self, league_id: int) -> List[Dict[str, Any]]:
        """
        Get classic league standings.

        Args:
            league_id: FPL league ID

        Returns:
            Ordered list of standings entries
        """
        data = await self.fetch(f"leagues-classic/{league_id}/standings")
        results = (data.get("standings") or {}).get("results") or []

        logger.debug("Fetched league standings", extra={
            "league_id": league_id,
            "entries_count": len(results)
        })

        return results

    async def load_player_names(self) -> Dict[int, str]:
        """Map player element ID to web_name from bootstrap-static."""
        data = await self.get_bootstrap_static()
        return {p["id"]: p.get("web_name", "") for p in data.get("elements", [])}

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
