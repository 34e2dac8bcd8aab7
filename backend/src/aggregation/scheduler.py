"""
Batch scheduler for FPL API requests.

Runs many paths through the client in fixed-size chunks with a pause between
chunks, then retries whatever failed with exponential backoff. Paths that
never succeed come back as None rather than failing the batch.
"""

import asyncio
import logging
import random
from typing import Any, Callable, Dict, List, Optional, Sequence

from config import Config
from fpl_api.client import FPLAPIClient, FPLAPIError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class BatchScheduler:
    """Drives batches of fetches under a concurrency cap."""

    def __init__(
        self,
        fpl_client: FPLAPIClient,
        batch_pause_seconds: float = 0.2,
        retry_backoff_base: float = 1.0,
        max_retry_delay: float = 8.0,
        jitter: bool = True
    ):
        self.fpl_client = fpl_client
        self.batch_pause_seconds = batch_pause_seconds
        self.retry_backoff_base = retry_backoff_base
        self.max_retry_delay = max_retry_delay
        self.jitter = jitter

    @classmethod
    def from_config(cls, fpl_client: FPLAPIClient, config: Config) -> "BatchScheduler":
        return cls(
            fpl_client,
            batch_pause_seconds=config.batch_pause_seconds,
            retry_backoff_base=config.retry_backoff_base,
            max_retry_delay=config.max_retry_delay
        )

    def _backoff(self, attempt: int) -> float:
        backoff = min(self.retry_backoff_base * (2 ** attempt), self.max_retry_delay)
        if self.jitter:
            # Add jitter (±25%)
            backoff += backoff * 0.25 * (random.random() * 2 - 1)
        return max(backoff, 0.0)

    async def _fetch_one(self, path: str, current_gameweek: Optional[int]) -> Any:
        return await self.fpl_client.fetch(path, current_gameweek)

    async def run(
        self,
        paths: Sequence[str],
        concurrency: int,
        on_progress: Optional[ProgressCallback] = None,
        max_retries: int = 2,
        current_gameweek: Optional[int] = None
    ) -> List[Optional[Any]]:
        """
        Fetch every path, preserving input order in the result.

        Args:
            paths: API paths to fetch
            concurrency: Requests issued together per chunk
            on_progress: Called after every chunk with (resolved, total)
            max_retries: Extra passes over failed paths
            current_gameweek: Passed through for cache permanence

        Returns:
            One payload per path; None where every attempt failed
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        total = len(paths)
        results: List[Optional[Any]] = [None] * total
        if total == 0:
            return results

        pending: List[int] = list(range(total))
        resolved = 0
        last_errors: Dict[int, str] = {}

        for attempt in range(max_retries + 1):
            if attempt > 0:
                wait_time = self._backoff(attempt - 1)
                logger.info(
                    "Retrying failed requests",
                    extra={
                        "attempt": attempt,
                        "failed_count": len(pending),
                        "wait_time": wait_time
                    }
                )
                await asyncio.sleep(wait_time)

            is_last_attempt = attempt == max_retries
            failed: List[int] = []

            for start in range(0, len(pending), concurrency):
                chunk = pending[start:start + concurrency]
                chunk_results = await asyncio.gather(
                    *(self._fetch_one(paths[i], current_gameweek) for i in chunk),
                    return_exceptions=True
                )

                for index, result in zip(chunk, chunk_results):
                    if isinstance(result, FPLAPIError):
                        failed.append(index)
                        last_errors[index] = str(result)
                        if is_last_attempt:
                            resolved += 1
                    elif isinstance(result, BaseException):
                        raise result
                    else:
                        results[index] = result
                        resolved += 1

                if on_progress is not None:
                    on_progress(resolved, total)

                if start + concurrency < len(pending) and self.batch_pause_seconds > 0:
                    await asyncio.sleep(self.batch_pause_seconds)

            if not failed:
                break
            pending = failed
        else:
            for index in pending:
                logger.warning(
                    "Fetch failed after retries",
                    extra={
                        "path": paths[index],
                        "attempts": max_retries + 1,
                        "error": last_errors.get(index)
                    }
                )

        return results
