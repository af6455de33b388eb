#!/usr/bin/env python3
"""Rebuild a list's consolidated mbox from its monthly payloads and deliver it."""

from __future__ import annotations

import glob
import gzip
import logging
import os
import shutil
import zlib
from pathlib import Path
from typing import List, Optional, Tuple

from archive_periods import PeriodUnit, unit_from_filename
from sync_events import format_exception_message, log_event

BUILD_SUFFIX = ".building"
COPY_CHUNK_SIZE = 1024 * 1024


def list_payloads(list_dir: Path) -> List[Tuple[PeriodUnit, Path]]:
    payloads = []
    for path in list_dir.iterdir():
        if not path.is_file():
            continue
        unit = unit_from_filename(path.name)
        if unit is not None:
            payloads.append((unit, path))
    payloads.sort(key=lambda item: item[0])
    return payloads


def _append_payload(path: Path, out_handle) -> bool:
    start = out_handle.tell()
    try:
        with gzip.open(path, "rb") as source:
            shutil.copyfileobj(source, out_handle, COPY_CHUNK_SIZE)
    except (OSError, EOFError, zlib.error) as exc:
        out_handle.seek(start)
        out_handle.truncate()
        log_event(
            "REBUILD_SKIP_PAYLOAD",
            logging.WARNING,
            file=path.name,
            error=format_exception_message(exc),
        )
        return False
    return True


def rebuild_archive(list_dir: Path, archive_name: str) -> Optional[Path]:
    """Concatenate every decompressable payload, oldest month first.

    Returns the artifact path, or None when the list has no payloads yet.
    """
    payloads = list_payloads(list_dir) if list_dir.is_dir() else []
    if not payloads:
        log_event("REBUILD_EMPTY", list_dir=list_dir)
        return None

    artifact = list_dir / archive_name
    build_path = artifact.with_name(artifact.name + BUILD_SUFFIX)
    if artifact.exists():
        artifact.unlink()
    log_event("REBUILD_START", artifact=artifact, payloads=len(payloads))

    included = 0
    with open(build_path, "wb") as out_handle:
        for _unit, path in payloads:
            if _append_payload(path, out_handle):
                included += 1
    build_path.replace(artifact)
    log_event(
        "REBUILD_DONE",
        artifact=artifact,
        included=included,
        skipped=len(payloads) - included,
        bytes=artifact.stat().st_size,
    )
    return artifact


def resolve_destination(destination: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(destination))
    matches = sorted(glob.glob(expanded))
    if matches:
        return Path(matches[0])
    return Path(expanded)


def place_archive(artifact: Path, destination: Optional[str]) -> bool:
    if not destination:
        log_event("PLACE_SKIPPED", artifact=artifact, reason="no_destination")
        return False
    target_dir = resolve_destination(destination)
    target = target_dir / artifact.name
    try:
        if not target_dir.is_dir():
            raise NotADirectoryError(f"Destination is not a directory: {target_dir}")
        shutil.move(str(artifact), str(target))
    except OSError as exc:
        log_event(
            "PLACE_FAILED",
            logging.WARNING,
            artifact=artifact,
            destination=target_dir,
            error=format_exception_message(exc),
        )
        return False
    log_event("PLACE_DONE", artifact=artifact.name, destination=target)
    return True
