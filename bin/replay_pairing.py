#!/usr/bin/env python3
"""
Pair GenTool replay binaries (.rep) with their metadata text files (.txt).

A pair is only formed when a .txt file's basename starts with the .rep
basename (suffix stripped). The first .txt in file order wins, so with
`match1.rep` and `match10_info.txt` listed first, match1 binds to match10's
metadata. GenTool names both files from the same upload timestamp so this
does not happen in practice, and the tie-break is kept as-is.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from upload_log import UploadRecord


REPLAY_SUFFIX = ".rep"
METADATA_SUFFIX = ".txt"


@dataclass(frozen=True)
class ReplayFilePair:
    rep_file: str
    txt_file: str
    rep_path: str
    txt_path: str
    rep_url: str
    txt_url: str
    upload: Optional["UploadRecord"] = field(default=None, compare=False, repr=False)


def remote_url(base_url: str, path: str) -> str:
    """Append the remote path verbatim to the base origin (no re-encoding)."""
    if not base_url.endswith("/"):
        base_url += "/"
    return base_url + path


def pair_replay_files(
    files: Sequence[str],
    base_url: str,
    upload: Optional["UploadRecord"] = None,
) -> List[ReplayFilePair]:
    """
    Pair each .rep file with the first .txt file sharing its basename prefix.

    Args:
        files: Remote file paths from one upload record, in log order
        base_url: Origin the paths are relative to
        upload: Upload record the files came from (carried for reporting)

    Returns:
        One ReplayFilePair per .rep that found metadata. Replays without a
        matching .txt are dropped since they can't be validated.
    """
    rep_files = [f for f in files if f[-4:] == REPLAY_SUFFIX]
    txt_files = [f for f in files if f[-4:] == METADATA_SUFFIX]

    pairs: List[ReplayFilePair] = []
    for rep_path in rep_files:
        rep_name = posixpath.basename(rep_path)
        stem = rep_name[:-len(REPLAY_SUFFIX)]

        txt_path = next(
            (t for t in txt_files if posixpath.basename(t).startswith(stem)),
            None,
        )
        if txt_path is None:
            continue

        pairs.append(ReplayFilePair(
            rep_file=rep_name,
            txt_file=posixpath.basename(txt_path),
            rep_path=rep_path,
            txt_path=txt_path,
            rep_url=remote_url(base_url, rep_path),
            txt_url=remote_url(base_url, txt_path),
            upload=upload,
        ))

    return pairs
