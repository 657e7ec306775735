"""
CS2 Portfolio - History Store
Durable daily portfolio-value log (HISTORY_FILE, JSON).

One point per calendar day, sorted ascending, bounded to the most recent
HISTORY_MAX_POINTS. Writes replace the file atomically and are serialized
by a lock so concurrent snapshot builds can't interleave read-modify-write.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Iterable, List

from config import HISTORY_FILE, HISTORY_MAX_POINTS

logger = logging.getLogger(__name__)


class HistoryStoreError(Exception):
    """The history file could not be written."""


@dataclass
class HistoryPoint:
    date: date
    value: float
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "value": self.value,
            "timestamp": int(self.timestamp * 1000),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "HistoryPoint":
        return cls(
            date=date.fromisoformat(str(raw["date"])[:10]),
            value=float(raw["value"]),
            timestamp=float(raw.get("timestamp", 0)) / 1000,
        )


def normalize_points(points: Iterable[HistoryPoint],
                     max_points: int = HISTORY_MAX_POINTS) -> List[HistoryPoint]:
    """Dedupe by date (later wins), sort ascending, keep the newest max_points."""
    by_date = {}
    for point in points:
        by_date[point.date] = point
    ordered = [by_date[d] for d in sorted(by_date)]
    return ordered[-max_points:] if max_points > 0 else []


class HistoryStore:
    def __init__(self, path: Path = HISTORY_FILE, max_points: int = HISTORY_MAX_POINTS):
        self.path = Path(path)
        self.max_points = max_points
        self._lock = threading.Lock()

    def load(self) -> List[HistoryPoint]:
        """Read the log. Missing or corrupt file → empty list (logged)."""
        with self._lock:
            return self._read()

    def upsert(self, point: HistoryPoint) -> List[HistoryPoint]:
        """Insert or overwrite the point for point.date. Returns the new log."""
        with self._lock:
            points = [p for p in self._read() if p.date != point.date]
            points.append(point)
            points = normalize_points(points, self.max_points)
            self._write(points)
            return points

    def replace(self, points: Iterable[HistoryPoint]) -> List[HistoryPoint]:
        """Supersede the whole log with points."""
        with self._lock:
            normalized = normalize_points(points, self.max_points)
            self._write(normalized)
            return normalized

    def recent(self, limit: int) -> List[HistoryPoint]:
        points = self.load()
        return points[-limit:] if limit > 0 else []

    # ─── Internals ───────────────────────────────

    def _read(self) -> List[HistoryPoint]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"HistoryStore: failed to read {self.path}: {e}")
            return []

        entries = raw.get("entries", []) if isinstance(raw, dict) else raw
        if not isinstance(entries, list):
            return []

        points = []
        for entry in entries:
            try:
                points.append(HistoryPoint.from_dict(entry))
            except (KeyError, TypeError, ValueError):
                logger.debug(f"HistoryStore: skipping malformed entry {entry!r}")
        return normalize_points(points, self.max_points)

    def _write(self, points: List[HistoryPoint]):
        payload = {"entries": [p.to_dict() for p in points]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".", suffix=".history.tmp")
        except OSError as e:
            raise HistoryStoreError(f"cannot write {self.path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise HistoryStoreError(f"cannot write {self.path}: {e}") from e
