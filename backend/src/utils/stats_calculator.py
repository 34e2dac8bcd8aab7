"""
League statistics calculation utilities.

Pure reductions over FPL API payloads: history totals, captain points,
bench points left unused, rankings and chart series.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Squad positions 12-15 are the bench
BENCH_START_POSITION = 12
BENCH_DETAIL_LIMIT = 3

CHART_COLORS = [
    "#e6194b", "#3cb44b", "#4363d8", "#f58231", "#911eb4",
    "#42d4f4", "#f032e6", "#bfef45", "#fabed4", "#469990",
    "#dcbeff", "#9A6324", "#800000", "#aaffc3", "#808000",
    "#000075", "#a9a9a9", "#e6beff", "#fffac8", "#ffd8b1",
]


@dataclass
class ManagerSummary:
    """One league manager with their season history and derived totals."""
    entry: int
    player_name: str
    entry_name: str
    total: int
    history: List[Dict[str, Any]] = field(default_factory=list)
    chips: List[Dict[str, Any]] = field(default_factory=list)
    total_bench_points: int = 0
    total_hits_cost: int = 0
    total_transfers: int = 0


@dataclass
class CaptainChoice:
    count: int = 0
    points: int = 0


@dataclass
class CaptainAccumulator:
    """Running captaincy totals for one manager."""
    total_captain_points: int = 0
    gw_count: int = 0
    captain_choices: Dict[int, CaptainChoice] = field(default_factory=dict)

    def add(self, element: int, points: int) -> None:
        self.total_captain_points += points
        self.gw_count += 1
        choice = self.captain_choices.setdefault(element, CaptainChoice())
        choice.count += 1
        choice.points += points


@dataclass
class BenchPick:
    element: int
    points: int
    gw: int


@dataclass
class CaptainRow:
    """Captain table row."""
    entry: int
    player_name: str
    total_captain_points: int
    avg_captain_points: float
    most_captained: str


def _sum_field(history: List[Dict[str, Any]], key: str) -> int:
    return sum(gw.get(key) or 0 for gw in history)


def summarize_history(
    standing: Dict[str, Any],
    history_payload: Optional[Dict[str, Any]]
) -> ManagerSummary:
    """
    Combine a standings entry with its history payload.

    A missing payload (fetch failed) gives an empty history and zero totals.
    """
    history = (history_payload or {}).get("current") or []
    chips = (history_payload or {}).get("chips") or []
    return ManagerSummary(
        entry=standing["entry"],
        player_name=standing.get("player_name", ""),
        entry_name=standing.get("entry_name", ""),
        total=standing.get("total") or 0,
        history=history,
        chips=chips,
        total_bench_points=_sum_field(history, "points_on_bench"),
        total_hits_cost=_sum_field(history, "event_transfers_cost"),
        total_transfers=_sum_field(history, "event_transfers"),
    )


def build_live_scores(live_payload: Optional[Dict[str, Any]]) -> Optional[Dict[int, int]]:
    """Map element ID -> total points from an event/{gw}/live payload."""
    if not live_payload or "elements" not in live_payload:
        return None
    scores: Dict[int, int] = {}
    for el in live_payload["elements"]:
        scores[el["id"]] = (el.get("stats") or {}).get("total_points") or 0
    return scores


def find_captain(picks: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for pick in picks:
        if pick.get("is_captain"):
            return pick
    return None


def captain_points(
    picks: List[Dict[str, Any]],
    live_scores: Optional[Dict[int, int]]
) -> int:
    """
    Points the captain earned for one gameweek, multiplier included.

    Returns 0 when there is no captain, no live data for the gameweek, or
    no live entry for the captained player.
    """
    captain = find_captain(picks)
    if captain is None or not live_scores:
        return 0
    return live_scores.get(captain["element"], 0) * captain.get("multiplier", 0)


def bench_picks(
    picks: List[Dict[str, Any]],
    live_scores: Optional[Dict[int, int]],
    gameweek: int
) -> List[BenchPick]:
    """Bench players who scored in this gameweek, in squad order."""
    if not live_scores:
        return []
    result = []
    for pick in picks:
        if pick.get("position", 0) < BENCH_START_POSITION:
            continue
        points = live_scores.get(pick["element"], 0)
        if points > 0:
            result.append(BenchPick(element=pick["element"], points=points, gw=gameweek))
    return result


def top_bench_picks(picks: List[BenchPick], limit: int = BENCH_DETAIL_LIMIT) -> List[BenchPick]:
    # sorted() is stable, so ties keep encounter order
    return sorted(picks, key=lambda p: p.points, reverse=True)[:limit]


def find_most_captained(
    captain_choices: Dict[int, Any],
    player_names: Dict[int, str]
) -> str:
    """
    Describe the manager's most frequent captain, e.g. "Haaland (15x)".

    captain_choices values may be CaptainChoice objects or plain counts.
    Ties go to the first player encountered. Returns "-" with no data.
    """
    most_captained = None
    max_count = 0
    for element, choice in captain_choices.items():
        count = choice.count if isinstance(choice, CaptainChoice) else choice
        if count > max_count:
            max_count = count
            most_captained = element
    if most_captained is None:
        return "-"
    name = player_names.get(most_captained) or "Unknown"
    return f"{name} ({max_count}x)"


def rank_by_bench_points(managers: List[ManagerSummary]) -> List[ManagerSummary]:
    return sorted(managers, key=lambda m: m.total_bench_points, reverse=True)


def rank_by_hits_cost(managers: List[ManagerSummary]) -> List[ManagerSummary]:
    return sorted(managers, key=lambda m: m.total_hits_cost, reverse=True)


def rank_captains(
    managers: List[ManagerSummary],
    accumulators: Dict[int, CaptainAccumulator],
    player_names: Dict[int, str]
) -> List[CaptainRow]:
    """Build the captain table, best captain points first."""
    rows = []
    for m in managers:
        acc = accumulators.get(m.entry) or CaptainAccumulator()
        avg = round(acc.total_captain_points / acc.gw_count, 1) if acc.gw_count > 0 else 0.0
        rows.append(CaptainRow(
            entry=m.entry,
            player_name=m.player_name,
            total_captain_points=acc.total_captain_points,
            avg_captain_points=avg,
            most_captained=find_most_captained(acc.captain_choices, player_names),
        ))
    return sorted(rows, key=lambda r: r.total_captain_points, reverse=True)


def completed_gameweeks(managers: List[ManagerSummary]) -> List[int]:
    """Gameweeks played so far, taken from the first manager with any history."""
    for m in managers:
        if m.history:
            return [gw["event"] for gw in m.history]
    return []


def build_points_chart(managers: List[ManagerSummary]) -> Dict[str, Any]:
    """Total points trajectory per manager, one series per manager with history."""
    with_history = [m for m in managers if m.history]
    if not with_history:
        return {"labels": [], "datasets": []}
    labels = [f"GW{gw['event']}" for gw in with_history[0].history]
    datasets = []
    for i, m in enumerate(with_history):
        datasets.append({
            "label": m.player_name,
            "data": [gw.get("total_points") or 0 for gw in m.history],
            "color": CHART_COLORS[i % len(CHART_COLORS)],
        })
    return {"labels": labels, "datasets": datasets}
