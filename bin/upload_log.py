#!/usr/bin/env python3
"""
GenTool upload log parser.

An upload log is a sequence of YAML-ish records separated by `---`:

    uploadtime: 2024-05-01 12:03:44
    username: Player
    userid: 123456
    version: 8.1
    files:
      - data/zh/2024_05/01/Player_123456/12_03_44_replay.rep
      - data/zh/2024_05/01/Player_123456/12_03_44_replay_info.txt

This is a forgiving line scanner, not a YAML parser. Lines are classified
by prefix; unknown keys and blank lines are ignored. Once `files:` is seen,
every following `- ` line in the record is a file path. A record without
uploadtime, username, userid or at least one file is dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Iterable, List, Optional

from log_window import LogResourceRef, TimeWindow


RECORD_DELIMITER = "---"


class LineKind(Enum):
    """Classification of a single log line."""
    UPLOAD_TIME = auto()
    USERNAME = auto()
    USER_ID = auto()
    VERSION = auto()
    FILES = auto()
    LIST_ITEM = auto()
    BLANK = auto()
    UNKNOWN = auto()


# Order matters only for readability; the prefixes are disjoint.
_KEY_PREFIXES = (
    ("uploadtime:", LineKind.UPLOAD_TIME),
    ("username:", LineKind.USERNAME),
    ("userid:", LineKind.USER_ID),
    ("version:", LineKind.VERSION),
    ("files:", LineKind.FILES),
)


@dataclass(frozen=True)
class LogLine:
    kind: LineKind
    value: str = ""


@dataclass
class UploadRecord:
    """One replay submission parsed from an upload log."""
    upload_time: str
    username: str
    user_id: str
    files: List[str]
    source_log: LogResourceRef
    version: Optional[str] = None
    uploaded_at: Optional[datetime] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.uploaded_at is None:
            self.uploaded_at = parse_upload_time(self.upload_time)


def classify_line(line: str) -> LogLine:
    """
    Classify one line of a record.

    Args:
        line: Raw line (surrounding whitespace is ignored)

    Returns:
        LogLine with the kind and the trimmed value after the prefix.
        Unrecognised lines come back as UNKNOWN and are skipped by the parser.
    """
    line = line.strip()
    if not line:
        return LogLine(LineKind.BLANK)

    for prefix, kind in _KEY_PREFIXES:
        if line.startswith(prefix):
            return LogLine(kind, line[len(prefix):].strip())

    if line.startswith("- "):
        return LogLine(LineKind.LIST_ITEM, line[2:].strip())

    return LogLine(LineKind.UNKNOWN, line)


_TIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
)


def parse_upload_time(raw: Optional[str]) -> Optional[datetime]:
    """
    Parse an uploadtime value as a GMT instant.

    Naive timestamps are GMT. Returns None if the value can't be parsed.
    """
    if not raw:
        return None

    value = raw.strip().strip("'\"")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        for fmt in _TIME_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_upload_entry(entry: str, log_file: LogResourceRef) -> Optional[UploadRecord]:
    """Parse a single record block. Returns None when a required field is missing."""
    fields: dict[LineKind, str] = {}
    files: List[str] = []
    in_files_section = False

    for raw_line in entry.splitlines():
        line = classify_line(raw_line)
        if line.kind is LineKind.FILES:
            in_files_section = True
        elif line.kind is LineKind.LIST_ITEM:
            if in_files_section and line.value:
                files.append(line.value)
        elif line.kind in (LineKind.BLANK, LineKind.UNKNOWN):
            continue
        else:
            fields[line.kind] = line.value

    upload_time = fields.get(LineKind.UPLOAD_TIME)
    username = fields.get(LineKind.USERNAME)
    user_id = fields.get(LineKind.USER_ID)
    if not upload_time or not username or not user_id or not files:
        return None

    return UploadRecord(
        upload_time=upload_time,
        username=username,
        user_id=user_id,
        version=fields.get(LineKind.VERSION) or None,
        files=files,
        source_log=log_file,
    )


def parse_log_content(content: str | bytes, log_file: LogResourceRef) -> List[UploadRecord]:
    """
    Parse a whole upload log into records.

    Args:
        content: Log body (bytes are decoded as UTF-8, invalid bytes replaced)
        log_file: The log the body was fetched from

    Returns:
        Records in file order. Malformed records are skipped; they never
        stop the rest of the log from being parsed.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")

    uploads: List[UploadRecord] = []
    for entry in content.split(RECORD_DELIMITER):
        entry = entry.strip()
        if not entry:
            continue
        try:
            upload = parse_upload_entry(entry, log_file)
        except Exception as e:
            print(f"[Logs] Skipping malformed record in {log_file.filename}: {e}")
            continue
        if upload is not None:
            uploads.append(upload)

    return uploads


def filter_uploads_in_window(uploads: Iterable[UploadRecord], window: TimeWindow) -> List[UploadRecord]:
    """Keep uploads whose upload time falls inside the window (inclusive)."""
    return [
        u for u in uploads
        if u.uploaded_at is not None and window.contains(u.uploaded_at)
    ]
