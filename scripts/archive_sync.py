#!/usr/bin/env python3
"""Incremental month-by-month sync of one mailing list and the rebuild decision."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from archive_periods import (
    PeriodUnit,
    is_future,
    is_past,
    iter_period_units,
    unit_from_filename,
    utc_today,
)
from pipermail_client import FETCH_DOWNLOADED, FETCH_MISSING, FETCH_NOT_MODIFIED, FetchError
from sync_events import format_exception_message, log_event

MARKER_SUFFIX = ".complete"
SNAPSHOT_SUFFIX = ".prev"
COMPARE_CHUNK_SIZE = 1024 * 1024


@dataclass
class SyncStats:
    fetched: int = 0
    not_modified: int = 0
    missing_remote: int = 0
    skipped_closed: int = 0
    skipped_future: int = 0
    closed: int = 0
    changed: int = 0
    fetch_failures: int = 0
    rebuilt: int = 0
    placed: int = 0
    placement_failures: int = 0

    def as_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class CompletionMarkerStore:
    """Durable per-month "closed" flags kept beside the payload files."""

    def __init__(self, list_dir: Path) -> None:
        self.list_dir = list_dir

    def marker_path(self, unit: PeriodUnit) -> Path:
        return self.list_dir / (unit.filename + MARKER_SUFFIX)

    def is_closed(self, unit: PeriodUnit) -> bool:
        return self.marker_path(unit).exists()

    def close(self, unit: PeriodUnit) -> None:
        marker = self.marker_path(unit)
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.touch(exist_ok=True)

    def closed_units(self) -> List[PeriodUnit]:
        if not self.list_dir.is_dir():
            return []
        units = []
        for path in self.list_dir.glob("*" + MARKER_SUFFIX):
            unit = unit_from_filename(path.name[: -len(MARKER_SUFFIX)])
            if unit is not None:
                units.append(unit)
        return sorted(units)


class RebuildSignal:
    def __init__(self, force: bool = False) -> None:
        self.force = force
        self.changed_units: List[PeriodUnit] = []

    def record(self, unit: PeriodUnit, changed: bool) -> None:
        if changed:
            self.changed_units.append(unit)

    def needs_rebuild(self) -> bool:
        return self.force or bool(self.changed_units)


@dataclass
class ListSyncResult:
    list_name: str
    list_dir: Path
    signal: RebuildSignal
    processed: List[PeriodUnit] = field(default_factory=list)


def files_equal(left: Path, right: Path) -> bool:
    if left.stat().st_size != right.stat().st_size:
        return False
    with open(left, "rb") as left_handle, open(right, "rb") as right_handle:
        while True:
            left_chunk = left_handle.read(COMPARE_CHUNK_SIZE)
            right_chunk = right_handle.read(COMPARE_CHUNK_SIZE)
            if left_chunk != right_chunk:
                return False
            if not left_chunk:
                return True


def detect_change(snapshot: Optional[Path], before_mtime_ns: Optional[int], payload: Path) -> bool:
    """Return True when ``payload`` now holds content the snapshot did not."""
    if not payload.exists():
        return False
    if snapshot is None:
        return True
    if before_mtime_ns is not None and payload.stat().st_mtime_ns == before_mtime_ns:
        return False
    return not files_equal(snapshot, payload)


def sync_unit(
    client: Any,
    store: CompletionMarkerStore,
    unit: PeriodUnit,
    today: date,
    stats: Optional[SyncStats] = None,
) -> bool:
    stats = stats if stats is not None else SyncStats()
    if store.is_closed(unit):
        stats.skipped_closed += 1
        log_event("UNIT_SKIP_CLOSED", logging.DEBUG, unit=unit.label)
        return False

    payload = store.list_dir / unit.filename
    snapshot: Optional[Path] = None
    before_mtime_ns: Optional[int] = None
    if payload.exists():
        snapshot = payload.with_name(payload.name + SNAPSHOT_SUFFIX)
        shutil.copy2(payload, snapshot)
        before_mtime_ns = payload.stat().st_mtime_ns

    try:
        if is_future(unit, today):
            stats.skipped_future += 1
            log_event("UNIT_SKIP_FUTURE", logging.DEBUG, unit=unit.label)
        else:
            try:
                outcome = client.fetch_month(unit, payload)
            except FetchError as exc:
                stats.fetch_failures += 1
                log_event(
                    "UNIT_FETCH_FAILED",
                    logging.WARNING,
                    unit=unit.label,
                    error=format_exception_message(exc),
                )
                return False
            if outcome == FETCH_DOWNLOADED:
                stats.fetched += 1
            elif outcome == FETCH_NOT_MODIFIED:
                stats.not_modified += 1
            elif outcome == FETCH_MISSING:
                stats.missing_remote += 1
            log_event("UNIT_FETCH", logging.DEBUG, unit=unit.label, outcome=outcome)

        if is_past(unit, today):
            store.close(unit)
            stats.closed += 1
            log_event("UNIT_CLOSED", logging.DEBUG, unit=unit.label)

        changed = detect_change(snapshot, before_mtime_ns, payload)
    finally:
        if snapshot is not None:
            snapshot.unlink(missing_ok=True)

    if changed:
        stats.changed += 1
        log_event("UNIT_CHANGED", unit=unit.label, file=unit.filename)
    return changed


def sync_mailing_list(
    client: Any,
    list_name: str,
    list_dir: Path,
    years: Iterable[int],
    *,
    force: bool = False,
    today: Optional[date] = None,
    stats: Optional[SyncStats] = None,
) -> ListSyncResult:
    today = today or utc_today()
    stats = stats if stats is not None else SyncStats()
    list_dir.mkdir(parents=True, exist_ok=True)
    store = CompletionMarkerStore(list_dir)
    result = ListSyncResult(list_name=list_name, list_dir=list_dir, signal=RebuildSignal(force=force))
    log_event("LIST_START", list=list_name, dir=list_dir, today=today.isoformat(), force=force)

    for unit in iter_period_units(years):
        changed = sync_unit(client, store, unit, today, stats)
        result.signal.record(unit, changed)
        result.processed.append(unit)

    log_event(
        "LIST_SYNCED",
        list=list_name,
        units=len(result.processed),
        changed=len(result.signal.changed_units),
        rebuild=result.signal.needs_rebuild(),
    )
    return result
