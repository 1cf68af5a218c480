"""
In-process latency samples for the billing entry points.

Samples are grouped by operation name. A call that raises is filed under
"<name>.error" so rejected requests stay out of the happy-path numbers. On
shutdown the per-operation summary is posted once to a collector, if one is
configured.
"""
from __future__ import annotations
import gzip
import json
import logging
import os
import socket
import statistics
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import DefaultDict, Dict, List

import httpx
from fastapi import FastAPI

from ..config import BENCH_FALLBACK_DUMP, BENCH_RUN_ID, BENCH_URL

logger = logging.getLogger(__name__)

# single event loop, no locking needed
_samples: DefaultDict[str, List[float]] = defaultdict(list)


def record_timing(operation: str, seconds: float) -> None:
    _samples[operation].append(float(seconds))


@asynccontextmanager
async def timeit(operation: str):
    started = time.perf_counter()
    filed_as = f"{operation}.error"
    try:
        yield
        filed_as = operation
    finally:
        record_timing(filed_as, time.perf_counter() - started)


def _p95(ordered: List[float]) -> float:
    return ordered[round(0.95 * (len(ordered) - 1))]


def summary() -> List[Dict[str, float]]:
    out = []
    for operation in sorted(_samples):
        ordered = sorted(_samples[operation])
        if not ordered:
            continue
        out.append({
            "kind": operation,
            "n": len(ordered),
            "mean": statistics.fmean(ordered),
            "std": statistics.stdev(ordered) if len(ordered) > 1 else 0.0,
            "p95": _p95(ordered),
            "max": ordered[-1],
        })
    return out


def reset() -> None:
    _samples.clear()


def _ndjson(records: List[dict]) -> bytes:
    return b"".join(
        json.dumps(rec, separators=(",", ":")).encode() + b"\n"
        for rec in records
    )


async def flush(collector_url: str, run_id: str,
                timeout: float = 10.0) -> int:
    """Post the summary as NDJSON; returns the count the collector accepted."""
    records = summary()
    if not records:
        return 0
    async with httpx.AsyncClient(timeout=timeout) as client:
        r = await client.post(
            f"{collector_url.rstrip('/')}/v1/metric/flush",
            content=_ndjson(records),
            headers={
                "content-type": "application/x-ndjson",
                "x-run-id": run_id,
                "x-worker-id": f"{os.getpid()}@{socket.gethostname()}",
            },
        )
        r.raise_for_status()
        accepted = int(r.json().get("accepted", 0))
    reset()
    return accepted


def install_shutdown_flush(app: FastAPI) -> None:
    @app.on_event("shutdown")
    async def _flush_timings():
        if not BENCH_URL or not BENCH_RUN_ID:
            return
        try:
            accepted = await flush(BENCH_URL, BENCH_RUN_ID)
            logger.info("posted %d timing records to %s", accepted, BENCH_URL)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("timing flush to %s failed: %s", BENCH_URL, e)
            if BENCH_FALLBACK_DUMP:
                with gzip.open(BENCH_FALLBACK_DUMP, "ab") as f:
                    f.write(_ndjson(summary()))
            reset()
