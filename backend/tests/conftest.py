"""Shared fixtures and sample FPL payloads for the test suite."""

import copy
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from config import Config
from fpl_api.client import UpstreamError

BASE_URL = "https://fpl.test/api"

BOOTSTRAP = {
    "elements": [
        {"id": 100, "web_name": "Salah"},
        {"id": 200, "web_name": "Haaland"},
        {"id": 300, "web_name": "Saka"},
        {"id": 400, "web_name": "Raya"},
        {"id": 500, "web_name": "Gabriel"},
    ],
    "events": [
        {"id": 1, "is_current": False},
        {"id": 2, "is_current": False},
        {"id": 3, "is_current": False},
        {"id": 4, "is_current": False},
        {"id": 5, "is_current": True},
    ],
}

STANDINGS = [
    {"entry": 1, "player_name": "Alice Smith", "entry_name": "Alice FC", "total": 233},
    {"entry": 2, "player_name": "Bob Jones", "entry_name": "Bob United", "total": 200},
]

HISTORY_1 = {
    "current": [
        {"event": 1, "points": 60, "total_points": 60, "points_on_bench": 8,
         "event_transfers": 0, "event_transfers_cost": 0},
        {"event": 2, "points": 55, "total_points": 115, "points_on_bench": 12,
         "event_transfers": 1, "event_transfers_cost": 0},
        {"event": 3, "points": 70, "total_points": 185, "points_on_bench": 3,
         "event_transfers": 2, "event_transfers_cost": 4},
        {"event": 4, "points": 48, "total_points": 233, "points_on_bench": 15,
         "event_transfers": 3, "event_transfers_cost": 8},
    ],
    "chips": [{"name": "wildcard", "event": 3}],
}

# Some fields missing or null on purpose
HISTORY_2 = {
    "current": [
        {"event": 1, "points": 50, "total_points": 50, "points_on_bench": 2},
        {"event": 2, "points": 50, "total_points": 100, "points_on_bench": 0,
         "event_transfers": 1, "event_transfers_cost": 4},
        {"event": 3, "points": 40, "total_points": 140, "event_transfers_cost": None},
        {"event": 4, "points": 60, "total_points": 200, "points_on_bench": 5},
    ],
    "chips": [],
}

LIVE_POINTS = {
    1: {100: 10, 200: 2, 300: 6, 400: 1, 500: 0},
    2: {100: 5, 200: 13, 300: 0, 400: 7, 500: 2},
    3: {100: 8, 200: 15, 300: 3, 400: 0, 500: 9},
    4: {100: 2, 200: 6, 300: 12, 400: 4, 500: 1},
}


def live_payload(gw: int) -> Dict[str, Any]:
    return {
        "elements": [
            {"id": element, "stats": {"total_points": points}}
            for element, points in LIVE_POINTS[gw].items()
        ]
    }


def pick(element: int, position: int, captain: bool = False, multiplier: int = 1) -> Dict[str, Any]:
    return {
        "element": element,
        "position": position,
        "is_captain": captain,
        "multiplier": multiplier,
    }


PICKS = {
    (1, 1): [pick(100, 1, True, 2), pick(200, 2), pick(400, 12), pick(500, 13, multiplier=0)],
    (1, 2): [pick(200, 1, True, 2), pick(100, 2), pick(400, 12, multiplier=0), pick(300, 13, multiplier=0)],
    (1, 3): [pick(200, 1, True, 2), pick(300, 2), pick(500, 12, multiplier=0), pick(100, 13, multiplier=0)],
    (1, 4): [pick(300, 1, True, 2), pick(200, 2), pick(100, 12, multiplier=0), pick(400, 13, multiplier=0)],
    (2, 1): [pick(300, 1, True, 2), pick(100, 2), pick(200, 12, multiplier=0)],
    # Captained player missing from live data
    (2, 2): [pick(999, 1, True, 2), pick(100, 2)],
    # No captain flagged
    (2, 4): [pick(200, 1), pick(100, 14, multiplier=0)],
}


def fpl_payloads(include_history_2: bool = True) -> Dict[str, Any]:
    """Path -> payload map for a two-manager league with four finished gameweeks."""
    payloads: Dict[str, Any] = {
        "bootstrap-static": BOOTSTRAP,
        "leagues-classic/12176/standings": {"standings": {"results": STANDINGS}},
        "entry/1/history": HISTORY_1,
    }
    if include_history_2:
        payloads["entry/2/history"] = HISTORY_2
    for gw in LIVE_POINTS:
        payloads[f"event/{gw}/live"] = live_payload(gw)
    for (entry, gw), picks in PICKS.items():
        payloads[f"entry/{entry}/event/{gw}/picks"] = {"picks": picks}
    return copy.deepcopy(payloads)


def make_config(**overrides) -> Config:
    values = dict(
        fpl_gateway_urls=[BASE_URL],
        fpl_api_base_url=BASE_URL,
        max_requests_per_minute=10000,
        min_request_interval=0.0,
        batch_pause_seconds=0.0,
        retry_backoff_base=0.0,
        max_retry_delay=0.0,
        max_retries=2,
        history_concurrency=5,
        live_concurrency=10,
        picks_concurrency=5,
        log_format="text",
    )
    values.update(overrides)
    return Config(**values)


class FakeFPLClient:
    """In-memory stand-in for FPLAPIClient.fetch."""

    def __init__(self, payloads: Dict[str, Any], failures: Optional[Dict[str, int]] = None):
        self.payloads = payloads
        # path -> number of calls that fail before the path succeeds
        self.failures = dict(failures or {})
        self.calls: List[str] = []

    async def fetch(self, path: str, current_gameweek: Optional[int] = None) -> Any:
        path = path.strip("/")
        self.calls.append(path)
        if self.failures.get(path, 0) > 0:
            self.failures[path] -= 1
            raise UpstreamError(f"FPL API error 503: {path}", status_code=503)
        if path not in self.payloads:
            raise UpstreamError(f"FPL API error 404: {path}", status_code=404)
        return copy.deepcopy(self.payloads[path])


def mock_fpl_transport(
    payloads: Dict[str, Any],
    requests: Optional[List[str]] = None
) -> httpx.MockTransport:
    """httpx transport answering FPL API paths under BASE_URL from a dict."""
    prefix = httpx.URL(BASE_URL).path.rstrip("/") + "/"

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith(prefix):
            path = path[len(prefix):]
        path = path.strip("/")
        if requests is not None:
            requests.append(path)
        if path not in payloads:
            return httpx.Response(404, json={"detail": "Not found."})
        return httpx.Response(200, json=payloads[path])

    return httpx.MockTransport(handler)


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def payloads() -> Dict[str, Any]:
    return fpl_payloads()


@pytest.fixture
def fake_client_factory() -> Callable[..., FakeFPLClient]:
    return FakeFPLClient
