from __future__ import annotations

from pathlib import Path

import show_sync_status
from archive_periods import PeriodUnit
from helpers import gz, write_payload


def test_status_rows_summarise_each_list(tmp_path: Path) -> None:
    alpha = tmp_path / "alpha"
    write_payload(alpha / PeriodUnit(2020, 1).filename, gz("a"))
    write_payload(alpha / PeriodUnit(2020, 4).filename, gz("b"))
    (alpha / (PeriodUnit(2020, 1).filename + ".complete")).touch()
    (alpha / "alpha").write_text("pending", encoding="utf-8")
    (tmp_path / "beta").mkdir()

    rows = show_sync_status.status_rows(tmp_path)

    assert rows == ["alpha\t2\t1\t2020-04\tyes", "beta\t0\t0\t-\tno"]


def test_main_reports_missing_root(tmp_path: Path, capsys) -> None:
    show_sync_status.main(["--archive-root", str(tmp_path / "none")])

    assert "No archive root found." in capsys.readouterr().out
