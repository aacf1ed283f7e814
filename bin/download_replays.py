#!/usr/bin/env python3
"""
GenTool Replay Downloader

Downloads Zero Hour 1.04 replays uploaded to GenTool in the last N hours.

Pipeline (each stage runs only after the previous one fully drains):

    PLANNING_WINDOW → FETCHING_LOGS → FILTERING_UPLOADS → CHECKING_METADATA
        → FILTERING_BY_CONTENT → DOWNLOADING_REPLAYS → DONE

1. Plan the 10-minute upload logs covering the window
2. Fetch and parse the logs, keep uploads inside the window
3. Pair each .rep with its .txt metadata
4. Fetch every .txt and keep replays whose metadata matches the required
   game version / install type
5. Fetch the matching .rep files and write them with collision-free names

Any stage producing nothing ends the run early; that is a normal outcome.
Per-file failures are counted and reported, never fatal.

Usage:
    python download_replays.py -h 48
    python download_replays.py --hours 6 --output replays/ --concurrency 50
    python download_replays.py --hours 12 --config gentool.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import math
import os
import sys
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import aiohttp
import polars as pl

from fetch_pool import fetch_round_with_progress
from log_window import LogResourceRef, TimeWindow, plan_log_files
from replay_config import ReplayConfig, load_config_file
from replay_pairing import ReplayFilePair, pair_replay_files
from single_download import FetchTask, create_session, save_replay
from upload_log import UploadRecord, filter_uploads_in_window, parse_log_content


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def _monotonic() -> float:
    """Monotonic time for duration measurements."""
    return time.monotonic()


def metadata_matches(content: str | bytes, cfg: ReplayConfig) -> bool:
    """
    Check a replay's .txt metadata against the configured markers.

    The excluded version marker contains the required one, so a body with
    the excluded marker is rejected even though the required substring is
    present.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return (
        cfg.required_game_version in content
        and cfg.excluded_game_version not in content
        and cfg.required_install_type in content
    )


def count_duplicate_names(pairs: Sequence[ReplayFilePair]) -> int:
    """Number of pairs whose replay basename repeats an earlier one."""
    names = [p.rep_file for p in pairs]
    return len(names) - len(set(names))


# =============================================================================
# PIPELINE STATE
# =============================================================================

class PipelineStage(Enum):
    """Pipeline stages, in execution order."""
    PLANNING_WINDOW = auto()
    FETCHING_LOGS = auto()
    FILTERING_UPLOADS = auto()
    CHECKING_METADATA = auto()
    FILTERING_BY_CONTENT = auto()
    DOWNLOADING_REPLAYS = auto()
    DONE = auto()


@dataclass
class RunSummary:
    """Counts collected over one pipeline run."""
    stage: PipelineStage = PipelineStage.PLANNING_WINDOW
    stopped_at: Optional[PipelineStage] = None   # set when a stage came up empty
    message: str = ""

    log_files: int = 0
    log_failures: int = 0
    uploads: int = 0
    pairs: int = 0
    metadata_failures: int = 0
    candidates: int = 0
    duplicates: int = 0
    downloaded: int = 0
    download_failures: int = 0

    written_paths: List[str] = field(default_factory=list)
    manifest_rows: List[dict[str, Any]] = field(default_factory=list)
    download_errors: Counter = field(default_factory=Counter)
    elapsed_sec: float = 0.0

    def enter(self, stage: PipelineStage) -> None:
        self.stage = stage

    def finish(self, message: str = "") -> "RunSummary":
        """Move to DONE; a message marks an early (empty-result) finish."""
        if message:
            self.stopped_at = self.stage
            self.message = message
            print(message)
        self.stage = PipelineStage.DONE
        return self


# =============================================================================
# STAGES
# =============================================================================

async def fetch_uploads(
    session: aiohttp.ClientSession,
    log_files: Sequence[LogResourceRef],
    window: TimeWindow,
    cfg: ReplayConfig,
    summary: RunSummary,
) -> List[UploadRecord]:
    """Round 1: fetch every log, parse it and keep uploads inside the window."""
    tasks = [FetchTask(url=ref.url, payload=ref) for ref in log_files]
    outcomes = await fetch_round_with_progress(session, tasks, cfg, desc="Processing log files")

    uploads: List[UploadRecord] = []
    for out in outcomes:
        ref = out.task.payload
        if not out.success:
            summary.log_failures += 1
            print(f"[Logs] Failed {ref.filename}: {out.error}")
            continue
        uploads.extend(filter_uploads_in_window(parse_log_content(out.body, ref), window))

    return uploads


def collect_pairs(uploads: Sequence[UploadRecord], cfg: ReplayConfig) -> List[ReplayFilePair]:
    """Flatten every upload's .rep/.txt pairs into one list."""
    pairs: List[ReplayFilePair] = []
    for upload in uploads:
        pairs.extend(pair_replay_files(upload.files, cfg.base_url, upload=upload))
    return pairs


async def check_metadata(
    session: aiohttp.ClientSession,
    pairs: Sequence[ReplayFilePair],
    cfg: ReplayConfig,
    summary: RunSummary,
) -> List[ReplayFilePair]:
    """Round 2: fetch every .txt and keep pairs whose metadata matches."""
    tasks = [FetchTask(url=pair.txt_url, payload=pair) for pair in pairs]
    outcomes = await fetch_round_with_progress(session, tasks, cfg, desc="Checking replays")

    candidates: List[ReplayFilePair] = []
    for out in outcomes:
        if not out.success:
            summary.metadata_failures += 1
            continue
        if metadata_matches(out.body, cfg):
            candidates.append(out.task.payload)

    if summary.metadata_failures:
        print(f"[Check] {summary.metadata_failures} metadata files could not be fetched")
    return candidates


def _manifest_row(pair: ReplayFilePair, written: Path) -> dict[str, Any]:
    upload = pair.upload
    return {
        "file": written.name,
        "path": str(written),
        "rep_file": pair.rep_file,
        "rep_url": pair.rep_url,
        "txt_url": pair.txt_url,
        "username": upload.username if upload else None,
        "user_id": upload.user_id if upload else None,
        "version": upload.version if upload else None,
        "upload_time": upload.upload_time if upload else None,
        "log_file": upload.source_log.filename if upload else None,
    }


async def download_candidates(
    session: aiohttp.ClientSession,
    candidates: Sequence[ReplayFilePair],
    cfg: ReplayConfig,
    summary: RunSummary,
) -> None:
    """Round 3: fetch every candidate .rep, then write them one at a time."""
    summary.duplicates = count_duplicate_names(candidates)
    if summary.duplicates > 0:
        print(f"[Download] Found {summary.duplicates} duplicate filenames that will be renamed.")

    tasks = [FetchTask(url=pair.rep_url, payload=pair) for pair in candidates]
    outcomes = await fetch_round_with_progress(session, tasks, cfg, desc="Downloading replays")

    for out in outcomes:
        pair: ReplayFilePair = out.task.payload
        if not out.success:
            summary.download_failures += 1
            summary.download_errors[out.error] += 1
            continue

        written, error = save_replay(out.body, cfg.output_folder, pair.rep_file)
        if written is None:
            summary.download_failures += 1
            summary.download_errors[f"Write Error: {error}"] += 1
            print(f"[Download] Could not write {pair.rep_file}: {error}")
            continue

        summary.downloaded += 1
        summary.written_paths.append(str(written))
        summary.manifest_rows.append(_manifest_row(pair, written))

    if summary.download_failures > 0:
        print(f"[Download] Failed to download {summary.download_failures} replays.")


async def run_pipeline(
    cfg: ReplayConfig,
    window: TimeWindow,
    session: Optional[aiohttp.ClientSession] = None,
) -> RunSummary:
    """
    Run every stage for the given window.

    Args:
        cfg: Configuration
        window: Upload time window
        session: Optional session to use; one is created (and closed) if None

    Returns:
        RunSummary with the counts of every stage
    """
    if session is None:
        async with create_session(cfg) as own_session:
            return await run_pipeline(cfg, window, own_session)

    summary = RunSummary()
    start = _monotonic()
    try:
        summary.enter(PipelineStage.PLANNING_WINDOW)
        log_files = plan_log_files(window, cfg)
        summary.log_files = len(log_files)
        print(f"[Window] Found {len(log_files)} log files to process.")
        if not log_files:
            return summary.finish("No log files found for the specified period. Exiting.")

        summary.enter(PipelineStage.FETCHING_LOGS)
        uploads = await fetch_uploads(session, log_files, window, cfg, summary)
        summary.uploads = len(uploads)
        print(f"[Logs] Found {len(uploads)} total uploads across all log files.")
        if not uploads:
            return summary.finish("No uploads found in the logs. Exiting.")

        summary.enter(PipelineStage.FILTERING_UPLOADS)
        pairs = collect_pairs(uploads, cfg)
        summary.pairs = len(pairs)
        print(f"[Pairs] {len(pairs)} replays have a metadata file.")
        if not pairs:
            return summary.finish("No replays with metadata found. Exiting.")

        summary.enter(PipelineStage.CHECKING_METADATA)
        print("[Check] Downloading .txt files to check game versions...")
        candidates = await check_metadata(session, pairs, cfg, summary)

        summary.enter(PipelineStage.FILTERING_BY_CONTENT)
        summary.candidates = len(candidates)
        print(f"[Check] Found {len(candidates)} replays with matching criteria.")
        if not candidates:
            return summary.finish("No valid replays to download. Exiting.")

        summary.enter(PipelineStage.DOWNLOADING_REPLAYS)
        print("[Download] Downloading valid .rep files...")
        await download_candidates(session, candidates, cfg, summary)

        return summary.finish()
    finally:
        summary.elapsed_sec = _monotonic() - start


# =============================================================================
# REPORTS
# =============================================================================

def _sibling_path(output_folder: str, suffix: str) -> Path:
    out = Path(output_folder)
    return out.with_name(out.name + suffix)


def write_overview(*, cfg: ReplayConfig, window: TimeWindow, summary: RunSummary) -> str:
    """Write JSON overview report next to the output folder."""
    report = {
        "script_inputs": {
            "window_start": window.start.isoformat(),
            "window_end": window.end.isoformat(),
            "output_folder": cfg.output_folder,
            "concurrent_downloads": cfg.concurrent_downloads,
            "timeout_sec": cfg.timeout_sec,
            "max_redirects": cfg.max_redirects,
            "required_game_version": cfg.required_game_version,
            "excluded_game_version": cfg.excluded_game_version,
            "required_install_type": cfg.required_install_type,
        },
        "summary": {
            "stage": summary.stage.name,
            "stopped_at": summary.stopped_at.name if summary.stopped_at else None,
            "message": summary.message,
            "log_files": summary.log_files,
            "log_failures": summary.log_failures,
            "uploads_in_window": summary.uploads,
            "replay_pairs": summary.pairs,
            "metadata_failures": summary.metadata_failures,
            "candidates": summary.candidates,
            "duplicate_filenames": summary.duplicates,
            "downloaded": summary.downloaded,
            "download_failures": summary.download_failures,
            "elapsed_sec": round(summary.elapsed_sec, 3),
        },
        "error_breakdown": [
            {"error": err, "count": cnt}
            for err, cnt in summary.download_errors.most_common()
        ],
        "timestamp_local": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime()),
    }

    overview_path = _sibling_path(cfg.output_folder, "_overview.json")
    with overview_path.open("w") as f:
        json.dump(report, f, indent=2)

    return str(overview_path.resolve())


def write_manifest(*, cfg: ReplayConfig, rows: Sequence[dict[str, Any]]) -> Optional[str]:
    """Write a CSV manifest of downloaded replays next to the output folder."""
    if not rows:
        return None

    manifest_path = _sibling_path(cfg.output_folder, "_manifest.csv")
    pl.DataFrame(list(rows)).write_csv(str(manifest_path))
    return str(manifest_path.resolve())


# =============================================================================
# CLI
# =============================================================================

def _positive_hours(value: str) -> float:
    try:
        hours = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError("Hours must be a positive number.")
    if not math.isfinite(hours) or hours <= 0:
        raise argparse.ArgumentTypeError("Hours must be a positive number.")
    try:
        datetime.now(timezone.utc) - timedelta(hours=hours)
    except OverflowError:
        raise argparse.ArgumentTypeError(f"Hours value {value} reaches too far back.")
    return hours


def parse_args(argv: Optional[Sequence[str]] = None) -> Tuple[ReplayConfig, float]:
    """Parse command line arguments (and optional JSON config file)."""
    p = argparse.ArgumentParser(
        description="GenTool Replay Downloader - fetch recent Zero Hour 1.04 replays",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        epilog="""
Examples:
  python download_replays.py -h 48
  python download_replays.py --hours 6 --output replays/ --concurrency 50
  python download_replays.py --hours 12 --config gentool.json
"""
    )

    p.add_argument("--help", action="help", help="Show this help message and exit")
    p.add_argument("-h", "--hours", type=_positive_hours, required=True,
                   help="How many hours back from now to search")
    p.add_argument("--config", type=str, help="Path to JSON config file")
    p.add_argument("--output", dest="output_folder", type=str, default=None,
                   help="Replay output folder (default: replays)")
    p.add_argument("--concurrency", dest="concurrent_downloads", type=int, default=None,
                   help="Concurrent requests per round (default: 50)")
    p.add_argument("--timeout", dest="timeout_sec", type=int, default=None,
                   help="Per-request timeout in seconds (default: 30)")
    p.add_argument("--no_overview", action="store_true")
    p.add_argument("--no_manifest", action="store_true")
    p.add_argument("--no_progress", action="store_true")

    args = p.parse_args(argv)

    try:
        cfg = ReplayConfig()
        if args.config:
            cfg = load_config_file(args.config, cfg)
        cfg = cfg.with_overrides(
            output_folder=args.output_folder,
            concurrent_downloads=args.concurrent_downloads,
            timeout_sec=args.timeout_sec,
            create_overview=False if args.no_overview else None,
            create_manifest=False if args.no_manifest else None,
            show_progress=False if args.no_progress else None,
        )
    except (OSError, ValueError, TypeError) as e:
        p.error(str(e))

    return cfg, args.hours


def print_summary(summary: RunSummary) -> None:
    print("\n" + "=" * 72)
    print("FINAL SUMMARY")
    print("=" * 72)
    print(f"Log files:             {summary.log_files} ({summary.log_failures} failed)")
    print(f"Uploads in window:     {summary.uploads}")
    print(f"Replay pairs:          {summary.pairs}")
    print(f"Matching replays:      {summary.candidates} ({summary.metadata_failures} checks failed)")
    print(f"Downloaded:            {summary.downloaded}")
    print(f"Failed downloads:      {summary.download_failures}")
    print(f"Elapsed time:          {summary.elapsed_sec:.2f}s")


async def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    cfg, hours = parse_args(argv)

    print("=" * 72)
    print("GenTool Replay Downloader")
    print("=" * 72)

    if not os.path.exists(cfg.output_folder):
        os.makedirs(cfg.output_folder, exist_ok=True)
        print(f"[I/O] Created replay directory at: {cfg.output_folder}")

    window = TimeWindow.hours_back(hours)
    print(f"[Window] Time Window: {window}")

    summary = await run_pipeline(cfg, window)
    print_summary(summary)

    if cfg.create_manifest:
        try:
            manifest = write_manifest(cfg=cfg, rows=summary.manifest_rows)
            if manifest:
                print(f"[Report] Manifest: {manifest}")
        except Exception as e:
            print(f"[Report] Manifest failed: {e}")

    if cfg.create_overview:
        try:
            overview = write_overview(cfg=cfg, window=window, summary=summary)
            print(f"[Report] Overview: {overview}")
        except Exception as e:
            print(f"[Report] Failed: {e}")

    print("=" * 72)
    return 0


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\n[Shutdown] Interrupted.")
        sys.exit(130)


if __name__ == "__main__":
    cli()
