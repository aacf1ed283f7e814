#!/usr/bin/env python3
"""
GenTool Single Download Module

Modular functions for fetching individual URLs and saving replay files.

This module is used by fetch_pool.py and download_replays.py and provides:
- create_session(): aiohttp session configured from ReplayConfig
- fetch_one(): Core async GET returning a FetchOutcome (never raises)
- unique_file_path(): Collision-free " (N)" file naming
- save_replay(): Write a downloaded replay into the output folder
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from http import HTTPStatus
from pathlib import Path
from typing import Any, Optional, Tuple

import aiohttp

from replay_config import ReplayConfig


@dataclass(frozen=True)
class FetchTask:
    """One URL to fetch plus an opaque reference back to its owner."""
    url: str
    payload: Any = None


@dataclass
class FetchOutcome:
    """Terminal result of one fetch task, correlated by submission index."""
    index: int
    task: FetchTask
    success: bool
    body: Optional[bytes] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


def create_session(cfg: ReplayConfig) -> aiohttp.ClientSession:
    """
    Create the shared HTTP session for all fetch rounds.

    Args:
        cfg: Configuration (user_agent, concurrent_downloads)

    Returns:
        aiohttp ClientSession; the caller owns it and must close it
    """
    connector = aiohttp.TCPConnector(
        limit=max(50, cfg.concurrent_downloads * 2),
        ttl_dns_cache=300,
        use_dns_cache=True,
    )
    return aiohttp.ClientSession(
        connector=connector,
        headers={"User-Agent": cfg.user_agent},
    )


def _status_error(status: int) -> str:
    try:
        status_name = HTTPStatus(status).phrase
    except ValueError:
        status_name = "Unknown"
    return f"HTTP {status}: {status_name}"


async def fetch_one(
    session: aiohttp.ClientSession,
    task: FetchTask,
    index: int,
    cfg: ReplayConfig,
) -> FetchOutcome:
    """
    Download content via HTTP GET.

    Timeout and redirect cap come from the configuration and apply to every
    task alike. Any failure is captured in the outcome; nothing is raised.

    Args:
        session: aiohttp ClientSession
        task: Task to fetch
        index: Submission index of the task within its round
        cfg: Configuration (timeout_sec, max_redirects)

    Returns:
        FetchOutcome with the full body on success, or the error reason
    """
    try:
        async with session.get(
            task.url,
            timeout=aiohttp.ClientTimeout(total=cfg.timeout_sec),
            # aiohttp fails once the redirect count reaches max_redirects, and
            # treats 0 as unlimited; cap=N must follow N hops and fail on N+1.
            allow_redirects=cfg.max_redirects > 0,
            max_redirects=cfg.max_redirects + 1,
        ) as response:
            if 200 <= response.status < 300:
                content = await response.read()
                return FetchOutcome(index, task, True, body=content, status_code=response.status)
            return FetchOutcome(index, task, False, status_code=response.status,
                                error=_status_error(response.status))

    except asyncio.TimeoutError:
        return FetchOutcome(index, task, False, status_code=408, error="Request Timeout")
    except aiohttp.TooManyRedirects as e:
        return FetchOutcome(index, task, False, error=f"Too Many Redirects: {e}")
    except aiohttp.ClientError as e:
        return FetchOutcome(index, task, False, error=f"Connection Error: {str(e)}")
    except Exception as e:
        return FetchOutcome(index, task, False, error=f"Error: {str(e)}")


def unique_file_path(file_path: str | os.PathLike) -> Path:
    """
    Return file_path, or the first free "name (N).ext" variant if it exists.

    Check-then-write is not atomic; callers must serialize writes to the
    same folder.
    """
    path = Path(file_path)
    if not path.exists():
        return path

    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem} ({counter}){path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


def save_replay(content: bytes, output_folder: str, filename: str) -> Tuple[Optional[Path], Optional[str]]:
    """
    Save a replay under a collision-free name in the output folder.

    Args:
        content: File content bytes
        output_folder: Folder holding downloaded replays
        filename: Original remote basename

    Returns:
        Tuple of (written path or None, error or None)
    """
    try:
        os.makedirs(output_folder, exist_ok=True)
        file_path = unique_file_path(os.path.join(output_folder, filename))
        with open(file_path, "wb") as f:
            f.write(content)
        return file_path, None
    except OSError as e:
        return None, str(e)
