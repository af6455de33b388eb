#!/usr/bin/env python3
"""Mailing list mirror configuration (YAML or JSON)."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from archive_periods import parse_year, utc_today

DEFAULT_SCHEME = "https"
PUBLIC_CONTEXT = "pipermail"
PRIVATE_CONTEXT = "mailman/private"
PASSWORD_ENV_PREFIX = "PIPERMAIL_PASSWORD_"
DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_MAX_RETRIES = 4
DEFAULT_RETRY_SLEEP_SECONDS = 1.5
DEFAULT_REQUEST_INTERVAL_SECONDS = 0.25


class ConfigError(Exception):
    pass


class ConfigNotFoundError(ConfigError):
    pass


@dataclass(frozen=True)
class MailingList:
    name: str
    years: Tuple[int, ...]
    server: str
    archive_name: str = ""
    context: Optional[str] = None
    scheme: str = DEFAULT_SCHEME
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    @property
    def effective_archive_name(self) -> str:
        return self.archive_name or self.name

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    @property
    def effective_context(self) -> str:
        if self.context is not None:
            return self.context.strip("/")
        return PRIVATE_CONTEXT if self.has_credentials else PUBLIC_CONTEXT

    @property
    def base_url(self) -> str:
        root = f"{self.scheme}://{self.server.strip('/')}"
        context = self.effective_context
        return f"{root}/{context}" if context else root

    @property
    def archive_url(self) -> str:
        return f"{self.base_url}/{self.name}/"


@dataclass(frozen=True)
class SyncConfig:
    lists: Tuple[MailingList, ...]
    destination: Optional[str] = None
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_sleep_seconds: float = DEFAULT_RETRY_SLEEP_SECONDS
    request_interval_seconds: float = DEFAULT_REQUEST_INTERVAL_SECONDS

    def list_names(self) -> List[str]:
        return [mailing_list.name for mailing_list in self.lists]


def load_config_file(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise ConfigNotFoundError(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    raw = path.read_text(encoding="utf-8")
    try:
        if suffix == ".json":
            data = json.loads(raw)
        else:
            data = yaml.safe_load(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping/object.")
    return data


def _coerce_optional_str(value: object, key: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        text = str(value).strip()
        return text
    raise ConfigError(f"Config key '{key}' must be a string.")


def _coerce_years(value: object, key: str) -> Tuple[int, ...]:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError(f"Config key '{key}' must be a year or list of years.")
    years: List[int] = []
    seen = set()
    for item in value:
        try:
            year = parse_year(item)
        except ValueError as exc:
            raise ConfigError(f"Config key '{key}': {exc}") from exc
        if year in seen:
            continue
        years.append(year)
        seen.add(year)
    return tuple(years)


def _coerce_number(value: object, key: str, kind: type) -> Any:
    if isinstance(value, bool):
        raise ConfigError(f"Config key '{key}' must be a number.")
    try:
        number = kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config key '{key}' must be a number.") from exc
    if number < 0:
        raise ConfigError(f"Config key '{key}' must not be negative.")
    return number


def password_env_var(list_name: str) -> str:
    return PASSWORD_ENV_PREFIX + re.sub(r"[^A-Z0-9]", "_", list_name.upper())


def _build_mailing_list(
    entry: object,
    index: int,
    *,
    default_years: Tuple[int, ...],
    default_server: Optional[str],
    default_context: Optional[str],
    default_scheme: str,
) -> MailingList:
    if isinstance(entry, str):
        entry = {"name": entry}
    if not isinstance(entry, dict):
        raise ConfigError(f"lists[{index}] must be a list name or a mapping.")
    name = _coerce_optional_str(entry.get("name"), f"lists[{index}].name")
    if not name:
        raise ConfigError(f"lists[{index}] is missing 'name'.")

    years = default_years
    if "years" in entry:
        years = _coerce_years(entry["years"], f"lists[{index}].years")

    server = _coerce_optional_str(entry.get("server"), f"{name}.server") or default_server
    if not server:
        raise ConfigError(f"List '{name}' has no server (set 'server' globally or per list).")

    context = default_context
    if "context" in entry:
        context = _coerce_optional_str(entry["context"], f"{name}.context")

    username = _coerce_optional_str(entry.get("username"), f"{name}.username") or None
    password = _coerce_optional_str(entry.get("password"), f"{name}.password") or None
    if username and not password:
        password = os.getenv(password_env_var(name)) or None

    archive_name = _coerce_optional_str(entry.get("archive_name"), f"{name}.archive_name") or name
    if "/" in archive_name or "\\" in archive_name or ".." in archive_name:
        raise ConfigError(f"List '{name}': archive name '{archive_name}' must be a plain directory name.")

    return MailingList(
        name=name,
        years=years,
        server=server,
        archive_name=archive_name,
        context=context,
        scheme=_coerce_optional_str(entry.get("scheme"), f"{name}.scheme") or default_scheme,
        username=username,
        password=password,
    )


def build_sync_config(data: Dict[str, Any]) -> SyncConfig:
    default_years: Tuple[int, ...] = (utc_today().year,)
    if "years" in data:
        default_years = _coerce_years(data["years"], "years")
    default_server = _coerce_optional_str(data.get("server"), "server") or None
    default_context = _coerce_optional_str(data.get("context"), "context")
    default_scheme = _coerce_optional_str(data.get("scheme"), "scheme") or DEFAULT_SCHEME

    raw_lists = data.get("lists")
    if raw_lists is None:
        raw_lists = []
    if not isinstance(raw_lists, list):
        raise ConfigError("Config key 'lists' must be a list.")

    lists: List[MailingList] = []
    seen = set()
    archive_owners: Dict[str, str] = {}
    for index, entry in enumerate(raw_lists):
        mailing_list = _build_mailing_list(
            entry,
            index,
            default_years=default_years,
            default_server=default_server,
            default_context=default_context,
            default_scheme=default_scheme,
        )
        if mailing_list.name in seen:
            raise ConfigError(f"List '{mailing_list.name}' is configured more than once.")
        archive_name = mailing_list.effective_archive_name
        # Each list owns its storage directory, markers included.
        if archive_name in archive_owners:
            raise ConfigError(
                f"Lists '{archive_owners[archive_name]}' and '{mailing_list.name}' "
                f"share archive_name '{archive_name}'."
            )
        seen.add(mailing_list.name)
        archive_owners[archive_name] = mailing_list.name
        lists.append(mailing_list)

    network = data.get("network") or {}
    if not isinstance(network, dict):
        raise ConfigError("Config key 'network' must be a mapping.")

    return SyncConfig(
        lists=tuple(lists),
        destination=_coerce_optional_str(data.get("destination"), "destination") or None,
        timeout_seconds=_coerce_number(
            network.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS), "network.timeout_seconds", int
        ),
        max_retries=max(
            1, _coerce_number(network.get("max_retries", DEFAULT_MAX_RETRIES), "network.max_retries", int)
        ),
        retry_sleep_seconds=_coerce_number(
            network.get("retry_sleep_seconds", DEFAULT_RETRY_SLEEP_SECONDS), "network.retry_sleep_seconds", float
        ),
        request_interval_seconds=_coerce_number(
            network.get("request_interval_seconds", DEFAULT_REQUEST_INTERVAL_SECONDS),
            "network.request_interval_seconds",
            float,
        ),
    )


def load_sync_config(path: Path) -> SyncConfig:
    return build_sync_config(load_config_file(path))


def select_lists(config: SyncConfig, names: Sequence[str]) -> List[MailingList]:
    if not names:
        return list(config.lists)
    by_name = {mailing_list.name: mailing_list for mailing_list in config.lists}
    unknown = [name for name in names if name not in by_name]
    if unknown:
        raise ConfigError(
            f"Unknown list(s): {', '.join(unknown)}. Configured: {', '.join(config.list_names()) or '-'}"
        )
    selected: List[MailingList] = []
    for name in names:
        if by_name[name] not in selected:
            selected.append(by_name[name])
    return selected
