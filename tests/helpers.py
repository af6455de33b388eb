from __future__ import annotations

import gzip
import os
from pathlib import Path

from archive_periods import PeriodUnit
from pipermail_client import FETCH_DOWNLOADED, FETCH_MISSING, FETCH_NOT_MODIFIED, FetchError

BASE_MTIME = 1_600_000_000


def gz(text: str) -> bytes:
    return gzip.compress(text.encode("utf-8"))


def write_payload(path: Path, data: bytes, mtime: int = BASE_MTIME) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    os.utime(path, (mtime, mtime))
    return path


class FakeArchiveClient:
    """In-memory server honouring the "refresh only if newer" fetch contract."""

    def __init__(self, remote: dict[PeriodUnit, tuple[bytes, int]] | None = None) -> None:
        self.remote = dict(remote or {})
        self.failing: set[PeriodUnit] = set()
        self.calls: list[PeriodUnit] = []

    def publish(self, unit: PeriodUnit, data: bytes, mtime: int = BASE_MTIME) -> None:
        self.remote[unit] = (data, mtime)

    def fetch_month(self, unit: PeriodUnit, destination: Path) -> str:
        self.calls.append(unit)
        if unit in self.failing:
            raise FetchError(f"simulated failure for {unit.label}")
        if unit not in self.remote:
            return FETCH_MISSING
        data, mtime = self.remote[unit]
        if destination.exists() and int(destination.stat().st_mtime) >= mtime:
            return FETCH_NOT_MODIFIED
        write_payload(destination, data, mtime)
        return FETCH_DOWNLOADED
