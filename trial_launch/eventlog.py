"""Append-only launch log.

Two sinks side by side: a human-readable text log (``[utc] message``) and an
optional JSONL stream of structured events next to it (``<log>.jsonl``).
Lines are never rewritten.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def append_line(path: Path, line: str) -> None:
    _ensure_dir(path.parent)
    with path.open("a", encoding="utf-8") as f:
        f.write(line.rstrip("\n") + "\n")


def jsonl_append(path: Path, payload: Dict[str, Any]) -> None:
    _ensure_dir(path.parent)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(payload, sort_keys=True, default=str) + "\n")


class EventLog:
    """Launch/kill/probe breadcrumbs. ``EventLog(None)`` discards everything."""

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path).expanduser() if path else None

    @property
    def enabled(self) -> bool:
        return self.path is not None

    @property
    def events_path(self) -> Optional[Path]:
        if self.path is None:
            return None
        return self.path.with_suffix(self.path.suffix + ".jsonl")

    def line(self, message: str) -> None:
        if self.path is None:
            return
        try:
            append_line(self.path, f"[{utc_iso()}] {message}")
        except OSError:
            # best-effort
            pass

    def event(self, name: str, **fields: Any) -> None:
        events_path = self.events_path
        if events_path is None:
            return
        payload: Dict[str, Any] = {"version": 1, "created_utc": utc_iso(), "event": str(name)}
        payload.update(fields)
        try:
            jsonl_append(events_path, payload)
        except OSError:
            pass
        self.line(f"{name} " + " ".join(f"{k}={v}" for k, v in sorted(fields.items())))


NULL_LOG = EventLog(None)
