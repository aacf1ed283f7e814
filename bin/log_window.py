#!/usr/bin/env python3
"""
GenTool log window planning.

GenTool publishes one upload log every 10 minutes, named after the GMT start
of its bucket:

    {logs_url}{YYYY_MM}/{DD}/uploads_{YYYYMMDD}_{HHMMSS}.yaml.txt

Given a time window, plan_log_files() lists every log that could hold
uploads inside it. Pure computation, no network access.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from replay_config import ReplayConfig


def _as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as GMT and drop sub-second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] window in UTC, whole seconds."""
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", _as_utc(self.start))
        object.__setattr__(self, "end", _as_utc(self.end))
        if self.start > self.end:
            raise ValueError(f"Window start {self.start} is after end {self.end}")

    @classmethod
    def hours_back(cls, hours: float, now: Optional[datetime] = None) -> "TimeWindow":
        """Window ending at `now` (default: current GMT time) and spanning `hours`."""
        if hours <= 0:
            raise ValueError(f"Hours must be a positive number, got {hours}")
        end = _as_utc(now or datetime.now(timezone.utc))
        return cls(start=end - timedelta(hours=hours), end=end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def __str__(self) -> str:
        fmt = "%Y-%m-%d %H:%M:%S"
        return f"{self.start.strftime(fmt)} to {self.end.strftime(fmt)} (GMT)"


@dataclass(frozen=True)
class LogResourceRef:
    """One remote upload log (one publication bucket)."""
    filename: str
    url: str
    date: str
    bucket_start: datetime


def floor_to_bucket(moment: datetime, bucket_minutes: int) -> datetime:
    """Floor minutes to a multiple of bucket_minutes and zero the seconds."""
    minute = (moment.minute // bucket_minutes) * bucket_minutes
    return moment.replace(minute=minute, second=0, microsecond=0)


def log_resource_for(bucket_start: datetime, logs_url: str) -> LogResourceRef:
    """Build the log reference for the bucket starting at bucket_start."""
    filename = f"uploads_{bucket_start.strftime('%Y%m%d')}_{bucket_start.strftime('%H%M%S')}.yaml.txt"
    url = f"{logs_url.rstrip('/')}/{bucket_start.strftime('%Y_%m')}/{bucket_start.strftime('%d')}/{filename}"
    return LogResourceRef(
        filename=filename,
        url=url,
        date=bucket_start.strftime("%Y-%m-%d"),
        bucket_start=bucket_start,
    )


def plan_log_files(window: TimeWindow, cfg: ReplayConfig) -> List[LogResourceRef]:
    """
    Enumerate the upload logs that may contain records inside the window.

    Backs up to the bucket at-or-before window.start, then walks forward one
    bucket at a time until the bucket start passes window.end. Of the buckets
    starting at or before window.start only the first one is kept; every
    later bucket up to window.end is kept.

    Args:
        window: Time window to cover
        cfg: Configuration (logs_url, bucket_minutes)

    Returns:
        Contiguous list of LogResourceRef, ascending by bucket_start
    """
    step = timedelta(minutes=cfg.bucket_minutes)

    current = floor_to_bucket(window.start, cfg.bucket_minutes)
    if current > window.start:
        current -= step

    log_files: List[LogResourceRef] = []
    while current <= window.end:
        log_files.append(log_resource_for(current, cfg.logs_url))
        current += step

    log_files.sort(key=lambda ref: ref.bucket_start)

    filtered: List[LogResourceRef] = []
    added_first_relevant = False
    for ref in log_files:
        if ref.bucket_start > window.end:
            continue
        if added_first_relevant:
            filtered.append(ref)
        elif ref.bucket_start <= window.start:
            filtered.append(ref)
            added_first_relevant = True

    return filtered
