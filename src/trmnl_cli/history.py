"""Append-only JSON Lines log of webhook send attempts."""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Union

from trmnl_cli.utils import HistoryEntry, DEFAULT_HISTORY_MAX_SIZE_MB, expand_path

logger = logging.getLogger(__name__)

MB = 1024 * 1024


@dataclass
class HistoryFilter:
    last: Optional[int] = None
    today: bool = False
    failed: bool = False
    success: bool = False
    since: Optional[datetime] = None
    until: Optional[datetime] = None


@dataclass
class HistoryStats:
    entries: int
    success_count: int
    failure_count: int
    success_percent: Optional[float]
    failure_percent: Optional[float]
    avg_size_bytes: int
    avg_duration_ms: int
    size_bytes: int
    size_mb: float
    today: int
    this_week: int


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.astimezone()


def _local_midnight(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class HistoryLog:
    def __init__(self, path: Union[str, Path], max_size_mb: float = DEFAULT_HISTORY_MAX_SIZE_MB):
        self.path = expand_path(str(path))
        self.max_size_mb = max_size_mb

    def append(self, entry: HistoryEntry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

        size = self.path.stat().st_size
        if self.max_size_mb and size > self.max_size_mb * MB:
            logger.warning(
                "History file %s is %.2f MB (limit %s MB); run `trmnl history clear` to reset it",
                self.path, size / MB, self.max_size_mb,
            )

    def read_all(self) -> List[HistoryEntry]:
        """Entries in file order. Lines that don't parse (e.g. a torn last write) are skipped."""
        if not self.path.exists():
            return []

        entries = []
        with self.path.open("r", encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(HistoryEntry.from_dict(json.loads(line)))
                except (ValueError, TypeError) as e:
                    logger.debug("Skipping history line %d: %s", lineno, e)
        return entries

    def query(self, flt: Optional[HistoryFilter] = None, now: Optional[datetime] = None) -> List[HistoryEntry]:
        """Filter (all predicates ANDed), sort newest first, then cap at ``last``."""
        flt = flt or HistoryFilter()
        now = _aware(now) if now else datetime.now().astimezone()
        entries = self.read_all()

        if flt.failed:
            entries = [e for e in entries if not e.success]
        if flt.success:
            entries = [e for e in entries if e.success]

        if flt.today:
            midnight = _local_midnight(now)
            entries = [e for e in entries if midnight <= e.sent_at <= now]
        if flt.since is not None:
            since = _aware(flt.since)
            entries = [e for e in entries if e.sent_at >= since]
        if flt.until is not None:
            until = _aware(flt.until)
            entries = [e for e in entries if e.sent_at <= until]

        entries.sort(key=lambda e: e.sent_at, reverse=True)

        if flt.last:
            entries = entries[:flt.last]
        return entries

    def stats(self, now: Optional[datetime] = None) -> Optional[HistoryStats]:
        if not self.path.exists():
            return None

        now = _aware(now) if now else datetime.now().astimezone()
        size_bytes = self.path.stat().st_size
        entries = self.read_all()
        total = len(entries)
        successes = sum(1 for e in entries if e.success)
        failures = total - successes

        def pct(n: int) -> Optional[float]:
            return round(n / total * 100, 1) if total else None

        def avg(values: List[int]) -> int:
            return round(sum(values) / total) if total else 0

        midnight = _local_midnight(now)
        week_ago = now - timedelta(days=7)

        return HistoryStats(
            entries=total,
            success_count=successes,
            failure_count=failures,
            success_percent=pct(successes),
            failure_percent=pct(failures),
            avg_size_bytes=avg([e.size_bytes for e in entries]),
            avg_duration_ms=avg([e.duration_ms for e in entries]),
            size_bytes=size_bytes,
            size_mb=round(size_bytes / MB, 2),
            today=sum(1 for e in entries if midnight <= e.sent_at <= now),
            this_week=sum(1 for e in entries if e.sent_at >= week_ago),
        )

    def clear(self) -> bool:
        """Delete the log file; False when there was nothing to delete."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True
