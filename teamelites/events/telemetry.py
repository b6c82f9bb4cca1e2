"""Swarm telemetry — structured events to a JSONL log and structlog.

Every routing decision, evolution step and provisioning outcome is
recorded here. Writing the log must never interfere with message
processing, so file errors are ignored.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import orjson
import structlog

from teamelites.config import settings

logger = structlog.get_logger("teamelites.swarm")

EVENTS_FILE = "swarm-events.jsonl"

_log_path: Path | None = None


def configure_telemetry(data_dir: Path | str | None) -> None:
    """Point the JSONL event log at ``data_dir`` (``None`` restores the default)."""
    global _log_path
    _log_path = Path(data_dir) / EVENTS_FILE if data_dir is not None else None


def telemetry_path() -> Path | None:
    if _log_path is not None:
        return _log_path
    if not settings.telemetry_enabled:
        return None
    return settings.data_dir / EVENTS_FILE


def log_swarm_event(event: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    """Record one swarm event and return the written entry."""
    data = data or {}
    entry = {"timestamp": datetime.utcnow().isoformat(), "event": event, **data}

    path = telemetry_path()
    if path is not None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("ab") as fh:
                fh.write(orjson.dumps(entry, default=str) + b"\n")
        except OSError:
            pass

    logger.info(event, **data)
    return entry


def read_swarm_events(limit: int = 100) -> list[dict[str, Any]]:
    """Most recent events from the JSONL log, oldest first."""
    path = telemetry_path()
    if path is None or not path.exists():
        return []
    entries: list[dict[str, Any]] = []
    for line in path.read_bytes().splitlines()[-limit:]:
        try:
            entries.append(orjson.loads(line))
        except orjson.JSONDecodeError:
            continue
    return entries
