"""Tests for BatchScheduler ordering, retries and progress reporting."""

import asyncio

import pytest

from aggregation.scheduler import BatchScheduler
from conftest import FakeFPLClient


def make_scheduler(fpl_client) -> BatchScheduler:
    return BatchScheduler(
        fpl_client,
        batch_pause_seconds=0,
        retry_backoff_base=0,
        max_retry_delay=0,
        jitter=False
    )


def numbered_payloads(count: int):
    return {f"item/{i}": {"i": i} for i in range(count)}


@pytest.mark.parametrize("concurrency", [1, 2, 3, 7, 50])
async def test_output_matches_input_order(concurrency):
    paths = [f"item/{i}" for i in range(11)]
    payloads = numbered_payloads(11)
    # Some paths never succeed, some succeed on retry
    for broken in ("item/2", "item/7"):
        del payloads[broken]
    client = FakeFPLClient(payloads, failures={"item/4": 1, "item/9": 2})

    results = await make_scheduler(client).run(paths, concurrency, max_retries=2)

    assert len(results) == len(paths)
    for i, result in enumerate(results):
        if i in (2, 7):
            assert result is None
        else:
            assert result == {"i": i}


async def test_always_failing_path_is_attempted_max_retries_plus_one_times():
    client = FakeFPLClient({"item/0": {"i": 0}})

    results = await make_scheduler(client).run(["item/0", "missing"], 2, max_retries=3)

    assert results == [{"i": 0}, None]
    assert client.calls.count("missing") == 4
    assert client.calls.count("item/0") == 1


async def test_zero_retries_gives_single_attempt():
    client = FakeFPLClient({}, failures={"item/0": 1})

    results = await make_scheduler(client).run(["item/0"], 1, max_retries=0)

    assert results == [None]
    assert client.calls == ["item/0"]


async def test_failures_do_not_abort_the_chunk():
    client = FakeFPLClient(numbered_payloads(3), failures={"item/0": 5})

    results = await make_scheduler(client).run(["item/0", "item/1", "item/2"], 3, max_retries=1)

    assert results == [None, {"i": 1}, {"i": 2}]


async def test_progress_reported_per_chunk_and_non_decreasing():
    progress = []
    paths = [f"item/{i}" for i in range(7)]
    payloads = numbered_payloads(7)
    del payloads["item/3"]
    client = FakeFPLClient(payloads, failures={"item/5": 1})

    await make_scheduler(client).run(
        paths,
        3,
        on_progress=lambda done, total: progress.append((done, total)),
        max_retries=2
    )

    assert all(total == 7 for _, total in progress)
    dones = [done for done, _ in progress]
    assert dones == sorted(dones)
    assert dones[-1] == 7
    # First pass: chunks of 3, 3, 1
    assert progress[:3] == [(3, 7), (4, 7), (5, 7)]
    # Retry passes: item/5 recovers, then item/3 is given up on
    assert progress[3:] == [(6, 7), (7, 7)]


async def test_empty_paths():
    client = FakeFPLClient({})
    assert await make_scheduler(client).run([], 5) == []
    assert client.calls == []


async def test_chunks_run_sequentially(monkeypatch):
    in_flight = []
    peak = []
    client = FakeFPLClient(numbered_payloads(10))
    wrapped_fetch = client.fetch

    async def tracking_fetch(path, current_gameweek=None):
        in_flight.append(path)
        await asyncio.sleep(0)
        peak.append(len(in_flight))
        try:
            return await wrapped_fetch(path, current_gameweek)
        finally:
            in_flight.remove(path)

    monkeypatch.setattr(client, "fetch", tracking_fetch)

    await make_scheduler(client).run([f"item/{i}" for i in range(10)], 4)

    assert max(peak) == 4


async def test_current_gameweek_is_passed_to_fetch():
    seen = []

    class RecordingClient:
        async def fetch(self, path, current_gameweek=None):
            seen.append(current_gameweek)
            return {}

    await make_scheduler(RecordingClient()).run(["event/1/live", "event/2/live"], 2, current_gameweek=5)

    assert seen == [5, 5]


@pytest.mark.parametrize("concurrency,max_retries", [(0, 1), (-1, 1), (1, -1)])
async def test_invalid_arguments(concurrency, max_retries):
    with pytest.raises(ValueError):
        await make_scheduler(FakeFPLClient({})).run(["a"], concurrency, max_retries=max_retries)


async def test_pause_between_chunks_and_capped_backoff(monkeypatch):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    client = FakeFPLClient(numbered_payloads(5))
    scheduler = BatchScheduler(
        client,
        batch_pause_seconds=0.2,
        retry_backoff_base=1.0,
        max_retry_delay=3.0,
        jitter=False
    )

    results = await scheduler.run([f"item/{i}" for i in range(6)], 2, max_retries=3)

    assert results == [{"i": 0}, {"i": 1}, {"i": 2}, {"i": 3}, {"i": 4}, None]
    # Two pauses between the three first-pass chunks, then 1s, 2s and the 3s cap
    assert sleeps == [0.2, 0.2, 1.0, 2.0, 3.0]
    assert client.calls.count("item/5") == 4


@pytest.mark.parametrize("random_value,expected", [(0.0, 1.5), (0.5, 2.0), (1.0, 2.5)])
def test_backoff_jitter_stays_within_a_quarter(monkeypatch, random_value, expected):
    monkeypatch.setattr("aggregation.scheduler.random.random", lambda: random_value)
    scheduler = BatchScheduler(FakeFPLClient({}), retry_backoff_base=1.0, max_retry_delay=8.0)

    assert scheduler._backoff(1) == pytest.approx(expected)
