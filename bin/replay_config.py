#!/usr/bin/env python3
"""
GenTool Replay Downloader Configuration

Single immutable configuration value shared by every stage of the pipeline.
Built once at process start (from CLI flags and an optional JSON file) and
passed explicitly to the window planner, pairer, fetch pool and orchestrator.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any


GENTOOL_BASE_URL = "https://www.gentool.net/"
GENTOOL_LOGS_URL = "https://www.gentool.net/data/zh/logs/"

REQUIRED_GAME_VERSION = "Game Version:     Zero Hour 1.04"
EXCLUDED_GAME_VERSION = "Game Version:     Zero Hour 1.04 The First Decade"
REQUIRED_INSTALL_TYPE = "Install Type:     Normal Game Install"


@dataclass(frozen=True)
class ReplayConfig:
    """Main application configuration."""
    output_folder: str = "replays"

    # --- Remote endpoints ---
    base_url: str = GENTOOL_BASE_URL
    logs_url: str = GENTOOL_LOGS_URL

    # --- Metadata content predicate ---
    required_game_version: str = REQUIRED_GAME_VERSION
    excluded_game_version: str = EXCLUDED_GAME_VERSION   # superstring of the required marker
    required_install_type: str = REQUIRED_INSTALL_TYPE

    # --- Network ---
    concurrent_downloads: int = 50      # same ceiling for all three rounds
    timeout_sec: int = 30
    max_redirects: int = 3
    user_agent: str = "Replay-Downloader/2.1"

    # --- Log publication cadence ---
    bucket_minutes: int = 10

    # --- Output options ---
    create_overview: bool = True
    create_manifest: bool = True
    show_progress: bool = True

    def __post_init__(self) -> None:
        if self.concurrent_downloads < 1:
            raise ValueError(f"concurrent_downloads must be >= 1, got {self.concurrent_downloads}")
        if self.timeout_sec <= 0:
            raise ValueError(f"timeout_sec must be positive, got {self.timeout_sec}")
        if self.max_redirects < 0:
            raise ValueError(f"max_redirects must be >= 0, got {self.max_redirects}")
        if self.bucket_minutes < 1 or 60 % self.bucket_minutes != 0:
            raise ValueError(f"bucket_minutes must divide 60, got {self.bucket_minutes}")

    def with_overrides(self, **overrides: Any) -> "ReplayConfig":
        """Return a copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


# Keys accepted in a JSON config file, mapped to ReplayConfig fields.
# "output", "concurrency" and "timeout" mirror the CLI flag names.
_JSON_ALIASES = {
    "output": "output_folder",
    "concurrency": "concurrent_downloads",
    "timeout": "timeout_sec",
}


def load_config_file(path: str, base: ReplayConfig | None = None) -> ReplayConfig:
    """
    Load configuration overrides from a JSON file.

    Args:
        path: Path to a JSON object whose keys are ReplayConfig field names
              (or the CLI aliases output/concurrency/timeout)
        base: Configuration to apply the overrides on top of

    Returns:
        New ReplayConfig

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file isn't a JSON object or names unknown keys
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file {path} not found")

    with cfg_path.open("r") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    known = {f.name for f in fields(ReplayConfig)}
    overrides: dict[str, Any] = {}
    for key, value in data.items():
        name = _JSON_ALIASES.get(key, key)
        if name not in known:
            raise ValueError(f"Unknown config key '{key}' in {path}")
        overrides[name] = value

    return replace(base or ReplayConfig(), **overrides)
