#!/usr/bin/env python3
"""
FPL League Stats - Command Line Entry Point

Loads a classic mini-league's standings, runs the stats pipeline, and prints
the standings, bench points, transfer hits and captaincy tables.

Usage (from backend directory):
    python src/main.py 12176
    python src/main.py 12176 --json > stats.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from aggregation.pipeline import LeagueStats, LeagueStatsPipeline, NoDataError, PipelineState, PipelineStatus
from config import Config
from fpl_api.client import FPLAPIClient, FPLAPIError, ValidationError, validate_league_id
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


def format_table(title: str, headers: Sequence[str], rows: List[Sequence[Any]]) -> str:
    """Render a ranked table with a leading # column."""
    headers = ["#"] + list(headers)
    body = [[str(i + 1)] + [str(v) for v in row] for i, row in enumerate(rows)]
    widths = [max(len(str(c)) for c in col) for col in zip(headers, *body)]
    lines = [title, "=" * len(title)]
    lines.append("  ".join(h.ljust(w) for h, w in zip(headers, widths)))
    lines.append("  ".join("-" * w for w in widths))
    for row in body:
        lines.append("  ".join(c.ljust(w) for c, w in zip(row, widths)))
    return "\n".join(lines)


def render_report(standings: List[Dict[str, Any]], stats: LeagueStats) -> str:
    sections = [
        format_table(
            "League Standings",
            ["Player", "Team", "Total Points"],
            [[s.get("player_name"), s.get("entry_name"), s.get("total")] for s in standings]
        ),
        format_table(
            "Bench Points Wasted",
            ["Manager", "Bench Points", "Total Points"],
            [[m.player_name, m.total_bench_points, m.total] for m in stats.bench_ranking]
        ),
        format_table(
            "Transfer Hits & Activity",
            ["Manager", "Transfers", "Hits Cost"],
            [[m.player_name, m.total_transfers, m.total_hits_cost] for m in stats.hits_ranking]
        ),
    ]
    if stats.gameweeks:
        sections.append(format_table(
            "Captain Performance",
            ["Manager", "Captain Points", "Avg/GW", "Most Captained"],
            [
                [r.player_name, r.total_captain_points, r.avg_captain_points, r.most_captained]
                for r in stats.captain_ranking
            ]
        ))
    return "\n\n".join(sections)


def log_progress(state: PipelineState) -> None:
    if state.status in (PipelineStatus.PHASE1_LOADING, PipelineStatus.PHASE2_LOADING):
        logger.info(state.label or "Loading", extra={"percent": state.percent})
    elif state.status == PipelineStatus.PHASE1_READY:
        logger.info("Histories ready", extra={"managers_count": len(state.result.managers)})


async def run(league_id: str, as_json: bool, config: Config) -> int:
    """Load one league and print its stats. Returns a process exit code."""
    try:
        lid = validate_league_id(league_id)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    async with FPLAPIClient(config) as fpl_client:
        try:
            standings = await fpl_client.get_league_standings(lid)
        except FPLAPIError as e:
            logger.error("Standings fetch failed", extra={"league_id": lid, "error": str(e)})
            print("Failed to load standings. Check the league ID and try again.", file=sys.stderr)
            return 1

        try:
            player_names = await fpl_client.load_player_names()
        except FPLAPIError as e:
            logger.warning("Player names unavailable", extra={"error": str(e)})
            player_names = {}

        pipeline = LeagueStatsPipeline(fpl_client, config)
        pipeline.subscribe(log_progress)
        try:
            stats = await pipeline.run(standings, player_names)
        except NoDataError as e:
            print(f"Failed to load league stats: {e}", file=sys.stderr)
            return 1

        logger.info("League stats complete", extra={
            "league_id": lid,
            "network_requests": fpl_client.request_count
        })

    if as_json:
        print(json.dumps({"league_id": lid, "standings": standings, **stats.to_dict()}, indent=2))
    else:
        print(render_report(standings, stats))
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="FPL mini-league stats")
    parser.add_argument("league_id", help="Classic league ID")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--log-file", default=None, help="Also append logs to this file")
    args = parser.parse_args(argv)

    config = Config()
    setup_logging(config, log_file=args.log_file)

    try:
        return asyncio.run(run(args.league_id, args.json, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
