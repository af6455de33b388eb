#!/usr/bin/env python3
"""Print per-list mirror status from the local archive root."""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import List, Optional, Sequence

from archive_rebuild import list_payloads
from archive_sync import CompletionMarkerStore


def status_rows(archive_root: Path) -> List[str]:
    rows = []
    for list_dir in sorted(path for path in archive_root.iterdir() if path.is_dir()):
        payloads = list_payloads(list_dir)
        closed = CompletionMarkerStore(list_dir).closed_units()
        newest = payloads[-1][0].label if payloads else "-"
        pending = "yes" if (list_dir / list_dir.name).is_file() else "no"
        rows.append(f"{list_dir.name}\t{len(payloads)}\t{len(closed)}\t{newest}\t{pending}")
    return rows


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--archive-root",
        default=os.getenv("ARCHIVE_ROOT", "~/.local/share/pipermail-mirror"),
        help="Archive root directory (falls back to ARCHIVE_ROOT).",
    )
    args = parser.parse_args(argv)
    archive_root = Path(args.archive_root).expanduser()

    print(f"Archive root: {archive_root}")
    if not archive_root.is_dir():
        print("No archive root found.")
        return
    rows = status_rows(archive_root)
    if not rows:
        print("No mirrored lists found.")
        return

    print("list\tpayloads\tclosed_months\tnewest_month\tpending_placement")
    for row in rows:
        print(row)


if __name__ == "__main__":
    main()
