"""
League stats pipeline - turns standings into ranked tables.

Three phases, each driven through the batch scheduler:

1. Histories: bootstrap-static plus every manager's history. Gives the
   points chart, bench points and transfer hits tables.
2. Live scores: one event/{gw}/live payload per completed gameweek.
3. Picks: every manager x gameweek picks payload, folded into captaincy
   totals and the best bench performances.

Progress and results are published as PipelineState snapshots to
subscribers; the pipeline has no knowledge of how they are displayed.
"""

import logging
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import Config
from aggregation.scheduler import BatchScheduler
from fpl_api.client import FPLAPIClient, FPLAPIError
from utils.stats_calculator import (
    BenchPick,
    CaptainAccumulator,
    CaptainRow,
    ManagerSummary,
    bench_picks,
    build_live_scores,
    build_points_chart,
    captain_points,
    completed_gameweeks,
    find_captain,
    rank_by_bench_points,
    rank_by_hits_cost,
    rank_captains,
    summarize_history,
    top_bench_picks,
)

logger = logging.getLogger(__name__)

BOOTSTRAP_PATH = "bootstrap-static"

# Overall progress range (percent) covered by each phase
HISTORY_PROGRESS = (0.0, 30.0)
LIVE_PROGRESS = (30.0, 50.0)
PICKS_PROGRESS = (50.0, 100.0)


class NoDataError(FPLAPIError):
    """Raised when no manager history at all could be fetched."""
    pass


class PipelineStatus(Enum):
    """Pipeline state enumeration."""
    IDLE = "idle"
    PHASE1_LOADING = "phase1-loading"  # Histories
    PHASE1_READY = "phase1-ready"  # Chart, bench and hits tables available
    PHASE2_LOADING = "phase2-loading"  # Live scores and picks
    PHASE2_READY = "phase2-ready"  # Captain table and bench details available
    ERROR = "error"


@dataclass
class LeagueStats:
    """Everything the league stats view renders."""
    managers: List[ManagerSummary] = field(default_factory=list)
    bench_ranking: List[ManagerSummary] = field(default_factory=list)
    hits_ranking: List[ManagerSummary] = field(default_factory=list)
    points_chart: Dict[str, Any] = field(default_factory=dict)
    player_names: Dict[int, str] = field(default_factory=dict)
    current_gameweek: Optional[int] = None
    gameweeks: List[int] = field(default_factory=list)
    captain_ranking: List[CaptainRow] = field(default_factory=list)
    bench_details: Dict[int, List[BenchPick]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        # JSON object keys must be strings
        data["player_names"] = {str(k): v for k, v in self.player_names.items()}
        data["bench_details"] = {
            str(entry): [asdict(p) for p in picks]
            for entry, picks in self.bench_details.items()
        }
        return data


@dataclass(frozen=True)
class PipelineState:
    """Snapshot published to subscribers."""
    status: PipelineStatus
    percent: float = 0.0
    label: str = ""
    result: Optional[LeagueStats] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status.value}
        if self.status in (PipelineStatus.PHASE1_LOADING, PipelineStatus.PHASE2_LOADING):
            data["percent"] = self.percent
            data["label"] = self.label
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.message is not None:
            data["message"] = self.message
        return data


StateListener = Callable[[PipelineState], None]


def parse_bootstrap(
    bootstrap: Optional[Dict[str, Any]]
) -> Tuple[Dict[int, str], Optional[int]]:
    """Extract player names and the current gameweek from bootstrap-static."""
    if not bootstrap:
        return {}, None
    names = {p["id"]: p.get("web_name", "") for p in bootstrap.get("elements", [])}
    current_gameweek = None
    for event in bootstrap.get("events", []):
        if event.get("is_current"):
            current_gameweek = event["id"]
            break
    return names, current_gameweek


class LeagueStatsPipeline:
    """Orchestrates the three fetch phases for one league."""

    def __init__(
        self,
        fpl_client: FPLAPIClient,
        config: Config,
        scheduler: Optional[BatchScheduler] = None
    ):
        self.fpl_client = fpl_client
        self.config = config
        self.scheduler = scheduler or BatchScheduler.from_config(fpl_client, config)
        self.listeners: List[StateListener] = []
        self.state = PipelineState(PipelineStatus.IDLE)
        self._percent = 0.0

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self.listeners.append(listener)

        def unsubscribe():
            if listener in self.listeners:
                self.listeners.remove(listener)

        return unsubscribe

    def _emit(self, state: PipelineState) -> None:
        self.state = state
        for listener in list(self.listeners):
            listener(state)

    def _progress_callback(
        self,
        status: PipelineStatus,
        span: Tuple[float, float],
        label: str
    ) -> Callable[[int, int], None]:
        """Map one phase's (done, total) into its slice of overall progress."""
        start, end = span

        def on_progress(done: int, total: int) -> None:
            fraction = done / total if total else 1.0
            percent = round(start + (end - start) * fraction, 1)
            # Never move backwards within a run
            self._percent = max(self._percent, percent)
            self._emit(PipelineState(
                status,
                percent=self._percent,
                label=f"{label} ({done}/{total})"
            ))

        return on_progress

    async def run(
        self,
        standings: List[Dict[str, Any]],
        player_names: Optional[Dict[int, str]] = None
    ) -> LeagueStats:
        """
        Run all phases for a league's standings.

        Args:
            standings: Standings entries in league order
            player_names: Already known element ID -> name mapping

        Returns:
            Final LeagueStats

        Raises:
            NoDataError: If no manager history could be fetched
        """
        self._percent = 0.0
        try:
            stats = await self._load_histories(standings, player_names or {})
        except NoDataError as e:
            logger.error("League stats failed", extra={
                "error": str(e),
                "managers_count": len(standings)
            })
            self._emit(PipelineState(PipelineStatus.ERROR, message=str(e)))
            self.state = PipelineState(PipelineStatus.IDLE)
            raise

        # Copy so later phases do not alter the published snapshot
        self._emit(PipelineState(PipelineStatus.PHASE1_READY, percent=HISTORY_PROGRESS[1], result=replace(stats)))

        if not stats.gameweeks:
            logger.info("No gameweek history; skipping captain stats")
            self._emit(PipelineState(PipelineStatus.PHASE2_READY, percent=100.0, result=stats))
            return stats

        live_scores = await self._load_live_scores(stats)
        await self._load_picks(stats, live_scores)

        self._emit(PipelineState(PipelineStatus.PHASE2_READY, percent=100.0, result=stats))
        return stats

    async def _load_histories(
        self,
        standings: List[Dict[str, Any]],
        player_names: Dict[int, str]
    ) -> LeagueStats:
        """Phase 1: bootstrap metadata and manager histories."""
        self._emit(PipelineState(
            PipelineStatus.PHASE1_LOADING,
            percent=HISTORY_PROGRESS[0],
            label="Loading manager histories"
        ))

        paths = [BOOTSTRAP_PATH] + [f"entry/{s['entry']}/history" for s in standings]
        payloads = await self.scheduler.run(
            paths,
            self.config.history_concurrency,
            on_progress=self._progress_callback(
                PipelineStatus.PHASE1_LOADING, HISTORY_PROGRESS, "Loading manager histories"
            ),
            max_retries=self.config.max_retries
        )
        bootstrap, histories = payloads[0], payloads[1:]

        if bootstrap is None:
            try:
                bootstrap = await self.fpl_client.fetch(BOOTSTRAP_PATH)
            except FPLAPIError as e:
                logger.warning("Bootstrap-static unavailable", extra={"error": str(e)})

        names, current_gameweek = parse_bootstrap(bootstrap)
        merged_names = dict(player_names)
        merged_names.update(names)

        if standings and all(h is None for h in histories):
            raise NoDataError("could not fetch any manager data")

        missing = [s["entry"] for s, h in zip(standings, histories) if h is None]
        if missing:
            logger.warning("Some manager histories unavailable", extra={
                "missing_count": len(missing),
                "manager_ids": missing
            })

        managers = [summarize_history(s, h) for s, h in zip(standings, histories)]

        logger.info("Manager histories loaded", extra={
            "managers_count": len(managers),
            "current_gameweek": current_gameweek
        })

        return LeagueStats(
            managers=managers,
            bench_ranking=rank_by_bench_points(managers),
            hits_ranking=rank_by_hits_cost(managers),
            points_chart=build_points_chart(managers),
            player_names=merged_names,
            current_gameweek=current_gameweek,
            gameweeks=completed_gameweeks(managers),
        )

    async def _load_live_scores(self, stats: LeagueStats) -> Dict[int, Dict[int, int]]:
        """Phase 2: live points per player for every completed gameweek."""
        label = "Loading gameweek scores"
        self._emit(PipelineState(PipelineStatus.PHASE2_LOADING, percent=self._percent, label=label))

        payloads = await self.scheduler.run(
            [f"event/{gw}/live" for gw in stats.gameweeks],
            self.config.live_concurrency,
            on_progress=self._progress_callback(PipelineStatus.PHASE2_LOADING, LIVE_PROGRESS, label),
            max_retries=self.config.max_retries,
            current_gameweek=stats.current_gameweek
        )

        live_scores: Dict[int, Dict[int, int]] = {}
        for gw, payload in zip(stats.gameweeks, payloads):
            scores = build_live_scores(payload)
            if scores is not None:
                live_scores[gw] = scores

        logger.info("Live scores loaded", extra={
            "gameweeks_count": len(stats.gameweeks),
            "loaded_count": len(live_scores)
        })
        return live_scores

    async def _load_picks(
        self,
        stats: LeagueStats,
        live_scores: Dict[int, Dict[int, int]]
    ) -> None:
        """Phase 3: captaincy totals and bench details from every picks payload."""
        label = "Loading captain picks"
        pairs = [(m.entry, gw) for m in stats.managers for gw in stats.gameweeks]

        payloads = await self.scheduler.run(
            [f"entry/{entry}/event/{gw}/picks" for entry, gw in pairs],
            self.config.picks_concurrency,
            on_progress=self._progress_callback(PipelineStatus.PHASE2_LOADING, PICKS_PROGRESS, label),
            max_retries=self.config.max_retries,
            current_gameweek=stats.current_gameweek
        )

        accumulators: Dict[int, CaptainAccumulator] = {
            m.entry: CaptainAccumulator() for m in stats.managers
        }
        bench: Dict[int, List[BenchPick]] = {m.entry: [] for m in stats.managers}
        missing = 0

        for (entry, gw), payload in zip(pairs, payloads):
            if not payload or not payload.get("picks"):
                missing += 1
                continue
            picks = payload["picks"]
            gw_live = live_scores.get(gw)

            captain = find_captain(picks)
            if captain is not None and gw_live is not None:
                accumulators[entry].add(captain["element"], captain_points(picks, gw_live))

            bench[entry].extend(bench_picks(picks, gw_live, gw))

        if missing:
            logger.warning("Some picks unavailable", extra={"missing_count": missing})

        stats.captain_ranking = rank_captains(stats.managers, accumulators, stats.player_names)
        stats.bench_details = {entry: top_bench_picks(p) for entry, p in bench.items()}
