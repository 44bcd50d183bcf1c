"""In-process record of what the machine did: log capture, audit trail, metrics.

ActivityLog is a logging.Handler, so attaching it to a logger captures every
record the components emit through the standard logging module.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(name: str) -> int:
    try:
        return _LEVELS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level '{name}'") from None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ActivityLog(logging.Handler):
    def __init__(
        self,
        level: str = "info",
        enable_audit: bool = True,
        enable_metrics: bool = True,
        max_entries: int = 10_000,
    ) -> None:
        super().__init__(level=parse_level(level))
        self.enable_audit = enable_audit
        self.enable_metrics = enable_metrics
        # oldest records drop off once max_entries is reached
        self._entries: deque[dict[str, Any]] = deque(maxlen=max_entries)
        self._audit: list[dict[str, Any]] = []
        self._metrics: dict[str, list[dict[str, Any]]] = {}
        self._store_lock = threading.Lock()

    # ── logging.Handler ───────────────────────────────────────────

    def emit(self, record: logging.LogRecord) -> None:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["error"] = repr(record.exc_info[1])
        with self._store_lock:
            self._entries.append(entry)

    # ── audit / metrics ───────────────────────────────────────────

    def audit(self, action: str, result: Any, context: dict[str, Any] | None = None) -> None:
        if not self.enable_audit:
            return
        with self._store_lock:
            self._audit.append({
                "timestamp": _now_iso(),
                "action": action,
                "result": result,
                "context": dict(context or {}),
            })

    def metric(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        if not self.enable_metrics:
            return
        with self._store_lock:
            self._metrics.setdefault(name, []).append({
                "timestamp": _now_iso(),
                "value": value,
                "tags": dict(tags or {}),
            })

    # ── queries ───────────────────────────────────────────────────

    def get_logs(self, level: str | None = None) -> list[dict[str, Any]]:
        with self._store_lock:
            entries = list(self._entries)
        if level is None:
            return entries
        wanted = logging.getLevelName(parse_level(level)).lower()
        return [e for e in entries if e["level"] == wanted]

    def get_audit_log(self) -> list[dict[str, Any]]:
        with self._store_lock:
            return list(self._audit)

    def get_metrics(self, name: str | None = None) -> Any:
        """All series as a dict, or one series as a list (empty if unknown)."""
        with self._store_lock:
            if name is not None:
                return list(self._metrics.get(name, []))
            return {k: list(v) for k, v in self._metrics.items()}

    def clear(self, kind: str = "all") -> None:
        """Clear 'all', 'logs', 'audit' or 'metrics'."""
        with self._store_lock:
            if kind in ("all", "logs"):
                self._entries.clear()
            if kind in ("all", "audit"):
                self._audit = []
            if kind in ("all", "metrics"):
                self._metrics = {}

    def get_stats(self) -> dict[str, Any]:
        with self._store_lock:
            by_level = Counter(e["level"] for e in self._entries)
            return {
                "total": len(self._entries),
                "by_level": dict(by_level),
                "audit_entries": len(self._audit),
                "metric_count": len(self._metrics),
            }
