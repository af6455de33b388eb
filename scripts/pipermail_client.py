#!/usr/bin/env python3
"""HTTP client for pipermail monthly archives (public or Mailman private)."""

from __future__ import annotations

import logging
import os
import shutil
import time
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from typing import List, Optional
from urllib.parse import urljoin, urlparse

import requests
import urllib3
from bs4 import BeautifulSoup

from archive_periods import PeriodUnit, unit_from_filename
from mailing_list_config import MailingList, SyncConfig
from sync_events import format_exception_message, log_event

USER_AGENT = "pipermail-mirror/1.0"
LOGIN_SUBMIT_VALUE = "Let me in..."
RETRY_STATUSES = (429, 500, 502, 503, 504)

FETCH_DOWNLOADED = "downloaded"
FETCH_NOT_MODIFIED = "not_modified"
FETCH_MISSING = "missing"


class FetchError(RuntimeError):
    pass


def parse_retry_after_seconds(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, retry_at.timestamp() - time.time())


def parse_last_modified(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError):
        return None


def looks_like_login_page(html: str) -> bool:
    soup = BeautifulSoup(html, "html.parser")
    return soup.find("input", attrs={"type": "password"}) is not None or (
        soup.find("input", attrs={"name": "password"}) is not None
    )


class PipermailClient:
    """One session per mailing list; logs in lazily when credentials are set."""

    def __init__(
        self,
        mailing_list: MailingList,
        timeout_seconds: int = 60,
        max_retries: int = 4,
        retry_sleep_seconds: float = 1.5,
        request_interval_seconds: float = 0.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.mailing_list = mailing_list
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self.retry_sleep_seconds = retry_sleep_seconds
        self.request_interval_seconds = max(0.0, request_interval_seconds)
        self.next_request_at = 0.0
        self.logged_in = False
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    @classmethod
    def from_config(cls, mailing_list: MailingList, config: SyncConfig) -> "PipermailClient":
        return cls(
            mailing_list,
            timeout_seconds=config.timeout_seconds,
            max_retries=config.max_retries,
            retry_sleep_seconds=config.retry_sleep_seconds,
            request_interval_seconds=config.request_interval_seconds,
        )

    def month_url(self, unit: PeriodUnit) -> str:
        return urljoin(self.mailing_list.archive_url, unit.filename)

    def _request(self, method: str, url: str, *, stream: bool = False, **kwargs: object) -> requests.Response:
        for attempt in range(1, self.max_retries + 1):
            try:
                if self.request_interval_seconds > 0:
                    now = time.monotonic()
                    if now < self.next_request_at:
                        time.sleep(self.next_request_at - now)
                response = self.session.request(
                    method,
                    url,
                    timeout=self.timeout_seconds,
                    stream=stream,
                    **kwargs,
                )
                self.next_request_at = time.monotonic() + self.request_interval_seconds
                if response.status_code in RETRY_STATUSES and attempt < self.max_retries:
                    retry_after = parse_retry_after_seconds(response.headers.get("Retry-After"))
                    response.close()
                    time.sleep(max(self.retry_sleep_seconds * attempt, retry_after))
                    continue
                if response.status_code in (304, 404):
                    return response
                if 400 <= response.status_code < 500 and response.status_code not in RETRY_STATUSES:
                    response.close()
                    raise FetchError(f"{method} {url} rejected: HTTP {response.status_code}")
                response.raise_for_status()
                return response
            except requests.RequestException as exc:
                if attempt >= self.max_retries:
                    raise FetchError(f"{method} {url} failed: {format_exception_message(exc)}") from exc
                log_event(
                    "HTTP_RETRY",
                    logging.DEBUG,
                    url=url,
                    attempt=attempt,
                    error=format_exception_message(exc),
                )
                time.sleep(self.retry_sleep_seconds * attempt)
        raise FetchError("Retry loop exhausted unexpectedly.")

    def login(self) -> None:
        """Post the list credentials to the private archive and keep the session cookie."""
        if not self.mailing_list.has_credentials:
            return
        response = self._request(
            "POST",
            self.mailing_list.archive_url,
            data={
                "username": self.mailing_list.username,
                "password": self.mailing_list.password,
                "submit": LOGIN_SUBMIT_VALUE,
            },
        )
        with response:
            if response.status_code == 404:
                raise FetchError(f"Private archive not found: {self.mailing_list.archive_url}")
            if looks_like_login_page(response.text):
                raise FetchError(f"Login rejected for list '{self.mailing_list.name}'.")
        self.logged_in = True
        log_event("LIST_LOGIN", list=self.mailing_list.name, user=self.mailing_list.username)

    def ensure_session(self) -> None:
        if self.mailing_list.has_credentials and not self.logged_in:
            self.login()

    def fetch_month(self, unit: PeriodUnit, destination: Path) -> str:
        """Refresh ``destination`` from the server if the remote copy is newer.

        The local file is left untouched (same mtime) unless a new body was
        transferred; a transferred file gets the server's Last-Modified time.
        """
        self.ensure_session()
        url = self.month_url(unit)
        local_mtime: Optional[float] = None
        local_size: Optional[int] = None
        if destination.exists():
            stat = destination.stat()
            local_mtime = stat.st_mtime
            local_size = stat.st_size

        relogged = False
        while True:
            headers = {}
            if local_mtime is not None:
                headers["If-Modified-Since"] = formatdate(local_mtime, usegmt=True)
            response = self._request("GET", url, stream=True, headers=headers)
            with response:
                if response.status_code == 304:
                    return FETCH_NOT_MODIFIED
                if response.status_code == 404:
                    return FETCH_MISSING
                content_type = response.headers.get("Content-Type", "")
                if self.mailing_list.has_credentials and content_type.startswith("text/html"):
                    # Expired cookie: Mailman answers with the login form instead of the archive.
                    if relogged:
                        raise FetchError(f"Session rejected while fetching {url}")
                    self.logged_in = False
                    self.login()
                    relogged = True
                    continue
                remote_mtime = parse_last_modified(response.headers.get("Last-Modified"))
                remote_size = response.headers.get("Content-Length")
                if (
                    local_mtime is not None
                    and remote_mtime is not None
                    and int(remote_mtime) == int(local_mtime)
                    and remote_size is not None
                    and remote_size.isdigit()
                    and int(remote_size) == local_size
                ):
                    return FETCH_NOT_MODIFIED
                self._write_body(response, destination)
            break

        stamp = remote_mtime if remote_mtime is not None else time.time()
        os.utime(destination, (stamp, stamp))
        return FETCH_DOWNLOADED

    def _write_body(self, response: requests.Response, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = destination.with_name(destination.name + ".part")
        try:
            # Keep the body as served: a Content-Encoding: gzip header on a .txt.gz
            # must not be undone or the payload is no longer a gzip file.
            response.raw.decode_content = False
            with open(tmp_path, "wb") as handle:
                shutil.copyfileobj(response.raw, handle, 1024 * 1024)
        except (requests.RequestException, urllib3.exceptions.HTTPError) as exc:
            tmp_path.unlink(missing_ok=True)
            raise FetchError(f"Transfer of {destination.name} interrupted: {format_exception_message(exc)}") from exc
        tmp_path.replace(destination)

    def list_remote_months(self) -> List[PeriodUnit]:
        self.ensure_session()
        response = self._request("GET", self.mailing_list.archive_url)
        with response:
            if response.status_code == 404:
                return []
            soup = BeautifulSoup(response.text, "html.parser")
        units = set()
        for anchor in soup.find_all("a", href=True):
            name = os.path.basename(urlparse(anchor["href"].strip()).path)
            unit = unit_from_filename(name)
            if unit is not None:
                units.add(unit)
        return sorted(units)
