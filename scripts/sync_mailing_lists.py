#!/usr/bin/env python3
"""Mirror pipermail monthly archives and rebuild each list's mbox when it changed."""

from __future__ import annotations

import argparse
import logging
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from tqdm import tqdm

from archive_rebuild import place_archive, rebuild_archive
from archive_sync import SyncStats, sync_mailing_list
from mailing_list_config import (
    ConfigError,
    ConfigNotFoundError,
    MailingList,
    SyncConfig,
    load_sync_config,
    select_lists,
)
from pipermail_client import FetchError, PipermailClient
from sync_events import configure_logging, format_exception_message, log_event, utc_now_iso

DEFAULT_CONFIG_PATH = "~/.config/pipermail-mirror/config.yaml"
DEFAULT_ARCHIVE_ROOT = "~/.local/share/pipermail-mirror"

EXIT_OK = 0
EXIT_CONFIG_NOT_FOUND = 2
EXIT_ARCHIVE_ROOT_NOT_DIRECTORY = 3
EXIT_CONFIG_INVALID = 4

ClientFactory = Callable[[MailingList, SyncConfig], object]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to YAML/JSON config file (default: {DEFAULT_CONFIG_PATH}).",
    )
    parser.add_argument(
        "-a",
        "--archive-root",
        default=DEFAULT_ARCHIVE_ROOT,
        help=f"Directory holding one folder of monthly archives per list (default: {DEFAULT_ARCHIVE_ROOT}).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Rebuild every selected list's consolidated archive even if nothing changed.",
    )
    parser.add_argument(
        "--list",
        dest="lists",
        action="append",
        default=[],
        help="Only process this list (repeatable). Defaults to every configured list.",
    )
    parser.add_argument(
        "--list-remote",
        action="store_true",
        help="Print the months available on the server for each selected list and exit.",
    )
    return parser.parse_args(argv)


def process_list(
    mailing_list: MailingList,
    config: SyncConfig,
    archive_root: Path,
    client: object,
    *,
    force: bool,
    today: Optional[date],
    stats: SyncStats,
) -> bool:
    list_dir = archive_root / mailing_list.effective_archive_name
    result = sync_mailing_list(
        client,
        mailing_list.name,
        list_dir,
        mailing_list.years,
        force=force,
        today=today,
        stats=stats,
    )
    if not result.signal.needs_rebuild():
        log_event("REBUILD_NOT_NEEDED", list=mailing_list.name)
        return False

    artifact = rebuild_archive(list_dir, mailing_list.effective_archive_name)
    if artifact is None:
        return False
    stats.rebuilt += 1
    if place_archive(artifact, config.destination):
        stats.placed += 1
    else:
        stats.placement_failures += 1
    return True


def print_remote_months(lists: List[MailingList], config: SyncConfig, client_factory: ClientFactory) -> None:
    for mailing_list in lists:
        client = client_factory(mailing_list, config)
        try:
            units = client.list_remote_months()  # type: ignore[attr-defined]
        except FetchError as exc:
            log_event(
                "REMOTE_LIST_FAILED",
                logging.WARNING,
                list=mailing_list.name,
                error=format_exception_message(exc),
            )
            continue
        print(f"{mailing_list.name}\t{len(units)}\t{' '.join(unit.label for unit in units)}")


def main(
    argv: Optional[Sequence[str]] = None,
    client_factory: ClientFactory = PipermailClient.from_config,
    today: Optional[date] = None,
) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    config_path = Path(args.config).expanduser()
    archive_root = Path(args.archive_root).expanduser()
    try:
        config = load_sync_config(config_path)
    except ConfigNotFoundError as exc:
        log_event("CONFIG_MISSING", logging.ERROR, error=format_exception_message(exc))
        return EXIT_CONFIG_NOT_FOUND
    except ConfigError as exc:
        log_event("CONFIG_INVALID", logging.ERROR, config=config_path, error=format_exception_message(exc))
        return EXIT_CONFIG_INVALID

    if archive_root.exists() and not archive_root.is_dir():
        log_event("ARCHIVE_ROOT_NOT_DIRECTORY", logging.ERROR, archive_root=archive_root)
        return EXIT_ARCHIVE_ROOT_NOT_DIRECTORY

    try:
        lists = select_lists(config, args.lists)
    except ConfigError as exc:
        log_event("CONFIG_INVALID", logging.ERROR, config=config_path, error=format_exception_message(exc))
        return EXIT_CONFIG_INVALID
    if not lists:
        log_event("NO_LISTS", logging.WARNING, config=config_path)
        return EXIT_OK

    if args.list_remote:
        print_remote_months(lists, config, client_factory)
        return EXIT_OK

    archive_root.mkdir(parents=True, exist_ok=True)
    log_event("RUN_START", started_at=utc_now_iso(), config=config_path, archive_root=archive_root, lists=len(lists))
    stats = SyncStats()
    for mailing_list in tqdm(lists, desc="Lists", unit="list", disable=len(lists) < 2):
        client = client_factory(mailing_list, config)
        process_list(
            mailing_list,
            config,
            archive_root,
            client,
            force=args.force,
            today=today,
            stats=stats,
        )
    log_event("RUN_SUMMARY", finished_at=utc_now_iso(), **stats.as_dict())
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
