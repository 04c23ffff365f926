"""Upload benchmark against a running block store.

Pushes ``total_chunks`` random chunks for each chunks-per-call setting, a
bounded number of uploads at a time, and reports timing per setting. The
chunk size must match the server's chunk quantum for range writes to land
one chunk per index.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import anyio
import httpx

if TYPE_CHECKING:
    from collections.abc import Sequence

LOG = logging.getLogger("blockstore.bench")

DEFAULT_STEPS = (1, 10, 20, 30, 40, 50)


@dataclass
class CallConfig:
    chunk_size_bytes: int
    chunks_per_call: int


@dataclass
class BenchResult:
    config_used: CallConfig | None = None
    avg_time_per_push: float = 0.0
    total_time_push: float = 0.0
    total_data_transferred_bytes: int = 0
    concurrent_jobs: int = 0
    error: str = ""


@dataclass
class _Step:
    config: CallConfig
    ops: int = 0
    call_time: float = 0.0
    errors: list[str] = field(default_factory=list)


def call_ranges(total_chunks: int, chunks_per_call: int) -> list[tuple[int, int]]:
    """Split ``0..total_chunks-1`` into inclusive ranges of ``chunks_per_call``."""
    ranges = []
    for start in range(0, total_chunks, chunks_per_call):
        end = min(start + chunks_per_call, total_chunks) - 1
        ranges.append((start, end))
    return ranges


async def _push(
    client: httpx.AsyncClient,
    base: str,
    start: int,
    end: int,
    step: _Step,
    location_hint: str,
    limiter: anyio.CapacityLimiter,
) -> None:
    async with limiter:
        payload = os.urandom(step.config.chunk_size_bytes * (end - start + 1))
        began = time.perf_counter()
        response = await client.put(
            f"{base}/{start},{end}",
            content=payload,
            headers={"X-Location-Hint": location_hint},
        )
        if response.status_code != 200:
            step.errors.append(
                f"status code is not 200: {response.status_code} {response.text}"
            )
            return
        elapsed = time.perf_counter() - began
        step.call_time += elapsed
        LOG.info("uploading chunks %d-%d took %.3fs", start, end, elapsed)


async def run_benchmark(
    url: str,
    *,
    total_chunks: int = 200,
    chunk_size: int = 128 * 1024,
    concurrency: int = 5,
    location_hint: str = "wnam",
    steps: Sequence[int] = DEFAULT_STEPS,
    client: httpx.AsyncClient | None = None,
) -> list[BenchResult]:
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(60.0, read=300.0))

    base = f"{url.rstrip('/')}/{location_hint}-location"
    limiter = anyio.CapacityLimiter(concurrency)
    results: list[BenchResult] = []
    try:
        for chunks_per_call in steps:
            step = _Step(CallConfig(chunk_size, chunks_per_call))
            began = time.perf_counter()
            async with anyio.create_task_group() as tg:
                for start, end in call_ranges(total_chunks, chunks_per_call):
                    step.ops += 1
                    tg.start_soon(
                        _push, client, base, start, end, step, location_hint, limiter
                    )
            total = time.perf_counter() - began

            results.extend(BenchResult(error=message) for message in step.errors)
            results.append(
                BenchResult(
                    config_used=step.config,
                    avg_time_per_push=step.call_time / step.ops if step.ops else 0.0,
                    total_time_push=total,
                    total_data_transferred_bytes=total_chunks * chunk_size,
                    concurrent_jobs=concurrency,
                )
            )
            LOG.info("entire operation took %.3fs", total)
            LOG.info(
                "sent %d bytes in %d bytes per call",
                chunk_size * total_chunks,
                chunks_per_call * chunk_size,
            )
    finally:
        if owns_client:
            await client.aclose()
    return results
