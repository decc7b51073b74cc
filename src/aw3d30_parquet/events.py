from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional


def _utc_now_iso(now: Optional[datetime] = None) -> str:
    ts = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).isoformat()
    if ts.endswith("+00:00"):
        ts = ts[:-6] + "Z"
    return ts


class JsonlEventLog:
    """Append-only per-tile event log (one JSON object per line)."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def record(
        self,
        *,
        run_id: str,
        key: str,
        stage: str,
        outcome: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        event = {
            "ts": _utc_now_iso(),
            "run_id": run_id,
            "key": key,
            "stage": stage,
            "outcome": outcome,
            **dict(payload or {}),
        }
        encoded = json.dumps(event, ensure_ascii=False, default=str) + "\n"
        with self._lock:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(encoded)
        return event
