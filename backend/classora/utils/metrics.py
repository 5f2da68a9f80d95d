"""Structured request observability.

The request middleware calls `record_request` once per API request. A
bounded in-memory window feeds the admin performance view; when
`METRICS_DIR` is set every event is also appended to `requests.jsonl`.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Optional

_LOCK = Lock()
_LOGGER = logging.getLogger("classora.metrics")
_WINDOW = deque(maxlen=5000)
_STARTED = time.monotonic()
_TOTALS = {"requests": 0, "errors": 0}


def _events_path() -> Optional[Path]:
    raw = os.getenv("METRICS_DIR", "").strip()
    if not raw:
        return None
    root = Path(raw).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root / "requests.jsonl"


def record_request(path: str, method: str, status_code: int, duration_ms: float) -> None:
    """Store one request event and update running totals."""
    event = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": path,
        "method": method,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    with _LOCK:
        _WINDOW.append((datetime.now(timezone.utc), duration_ms, status_code))
        _TOTALS["requests"] += 1
        if status_code >= 500:
            _TOTALS["errors"] += 1
        target = _events_path()
        if target is not None:
            with target.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(event, ensure_ascii=True) + "\n")


def uptime_seconds() -> int:
    return int(time.monotonic() - _STARTED)


def format_uptime(seconds: int) -> str:
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    return f"{days} days, {hours} hours, {minutes} minutes"


def _percentile(values: list, pct: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    idx = min(len(ordered) - 1, max(0, int(round(pct / 100.0 * (len(ordered) - 1)))))
    return round(ordered[idx], 2)


def snapshot(history_minutes: int = 60) -> dict:
    """Return aggregate request stats and a per-minute history."""
    with _LOCK:
        window = list(_WINDOW)
        totals = dict(_TOTALS)
    durations = [d for _, d, _ in window]
    errors = sum(1 for _, _, s in window if s >= 500)
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=history_minutes)
    buckets: dict = {}
    for ts, duration, status in window:
        if ts < cutoff:
            continue
        key = ts.replace(second=0, microsecond=0)
        bucket = buckets.setdefault(key, {"requests": 0, "errors": 0, "total_ms": 0.0})
        bucket["requests"] += 1
        bucket["total_ms"] += duration
        if status >= 500:
            bucket["errors"] += 1
    history = [
        {
            "timestamp": key.isoformat(),
            "requests": b["requests"],
            "errors": b["errors"],
            "avg_response_ms": round(b["total_ms"] / b["requests"], 2),
        }
        for key, b in sorted(buckets.items())
    ]
    return {
        "total_requests": totals["requests"],
        "total_errors": totals["errors"],
        "window_requests": len(window),
        "avg_response_ms": round(sum(durations) / len(durations), 2) if durations else 0.0,
        "p95_response_ms": _percentile(durations, 95),
        "max_response_ms": round(max(durations), 2) if durations else 0.0,
        "error_rate": round(errors / len(window) * 100, 2) if window else 0.0,
        "uptime_seconds": uptime_seconds(),
        "history": history,
    }


def reset() -> None:
    with _LOCK:
        _WINDOW.clear()
        _TOTALS["requests"] = 0
        _TOTALS["errors"] = 0
