from __future__ import annotations

import gzip
import io
from pathlib import Path

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from archive_periods import PeriodUnit
from archive_rebuild import rebuild_archive
from mailing_list_config import MailingList
from pipermail_client import (
    FETCH_DOWNLOADED,
    FETCH_MISSING,
    FETCH_NOT_MODIFIED,
    FetchError,
    PipermailClient,
    looks_like_login_page,
    parse_retry_after_seconds,
)
from helpers import write_payload

UNIT = PeriodUnit(2020, 1)
LAST_MODIFIED = "Sat, 01 Feb 2020 00:00:00 GMT"
LAST_MODIFIED_EPOCH = 1580515200
LOGIN_FORM = '<html><form method="post"><input type="password" name="password"></form></html>'


class FakeRaw(io.BytesIO):
    """Body stream that, like urllib3, undoes Content-Encoding unless told not to."""

    def __init__(self, body: bytes, content_encoding: str = "") -> None:
        super().__init__(body)
        self.content_encoding = content_encoding
        self.decode_content = True

    def read(self, size=-1):
        if self.decode_content and self.content_encoding == "gzip":
            data = super().read()
            return gzip.decompress(data) if data else b""
        return super().read(size)


def make_response(status: int, body: bytes = b"", headers: dict | None = None) -> requests.Response:
    headers = headers or {}
    response = requests.Response()
    response.status_code = status
    response.raw = FakeRaw(body, headers.get("Content-Encoding", ""))
    response.headers = CaseInsensitiveDict(headers)
    response.url = "https://lists.example.org/"
    return response


class FakeSession:
    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.headers: dict = {}
        self.requests: list[tuple[str, str, dict]] = []

    def request(self, method: str, url: str, **kwargs):
        self.requests.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def make_client(responses: list, **list_kwargs) -> tuple[PipermailClient, FakeSession]:
    mailing_list = MailingList(name="alpha", years=(2020,), server="lists.example.org", **list_kwargs)
    session = FakeSession(responses)
    client = PipermailClient(mailing_list, max_retries=2, retry_sleep_seconds=0, session=session)
    return client, session


def test_download_writes_file_and_sets_last_modified(tmp_path: Path) -> None:
    body = gzip.compress(b"From x\n")
    client, session = make_client([make_response(200, body, {"Last-Modified": LAST_MODIFIED})])
    destination = tmp_path / UNIT.filename

    assert client.fetch_month(UNIT, destination) == FETCH_DOWNLOADED

    assert destination.read_bytes() == body
    assert int(destination.stat().st_mtime) == LAST_MODIFIED_EPOCH
    method, url, kwargs = session.requests[0]
    assert (method, url) == ("GET", "https://lists.example.org/pipermail/alpha/2020-January.txt.gz")
    assert "If-Modified-Since" not in kwargs["headers"]
    assert not (tmp_path / (UNIT.filename + ".part")).exists()


def test_not_modified_leaves_local_file_untouched(tmp_path: Path) -> None:
    destination = write_payload(tmp_path / UNIT.filename, b"local", LAST_MODIFIED_EPOCH)
    client, session = make_client([make_response(304)])

    assert client.fetch_month(UNIT, destination) == FETCH_NOT_MODIFIED

    assert destination.read_bytes() == b"local"
    assert session.requests[0][2]["headers"]["If-Modified-Since"] == LAST_MODIFIED


def test_same_timestamp_and_size_counts_as_not_modified(tmp_path: Path) -> None:
    destination = write_payload(tmp_path / UNIT.filename, b"local", LAST_MODIFIED_EPOCH)
    client, _ = make_client(
        [make_response(200, b"other", {"Last-Modified": LAST_MODIFIED, "Content-Length": "5"})]
    )

    assert client.fetch_month(UNIT, destination) == FETCH_NOT_MODIFIED
    assert destination.read_bytes() == b"local"


def test_gzip_content_encoding_is_stored_compressed(tmp_path: Path) -> None:
    body = gzip.compress(b"From a\nhello\n")
    client, _ = make_client(
        [
            make_response(
                200,
                body,
                {
                    "Content-Encoding": "gzip",
                    "Content-Length": str(len(body)),
                    "Last-Modified": LAST_MODIFIED,
                },
            )
        ]
    )
    destination = tmp_path / "alpha" / UNIT.filename

    assert client.fetch_month(UNIT, destination) == FETCH_DOWNLOADED

    assert destination.read_bytes() == body
    assert rebuild_archive(tmp_path / "alpha", "alpha").read_bytes() == b"From a\nhello\n"

    client.session.responses.append(
        make_response(
            200,
            body,
            {
                "Content-Encoding": "gzip",
                "Content-Length": str(len(body)),
                "Last-Modified": LAST_MODIFIED,
            },
        )
    )
    assert client.fetch_month(UNIT, destination) == FETCH_NOT_MODIFIED


def test_client_error_is_not_retried(tmp_path: Path) -> None:
    client, session = make_client([make_response(403), make_response(200, b"unused")])

    with pytest.raises(FetchError):
        client.fetch_month(UNIT, tmp_path / UNIT.filename)
    assert len(session.requests) == 1


def test_missing_month_returns_missing(tmp_path: Path) -> None:
    client, _ = make_client([make_response(404)])

    assert client.fetch_month(UNIT, tmp_path / UNIT.filename) == FETCH_MISSING
    assert not (tmp_path / UNIT.filename).exists()


def test_retries_server_errors_then_succeeds(tmp_path: Path) -> None:
    client, session = make_client([make_response(503), make_response(200, b"data")])

    assert client.fetch_month(UNIT, tmp_path / UNIT.filename) == FETCH_DOWNLOADED
    assert len(session.requests) == 2


def test_network_error_after_retries_raises_fetch_error(tmp_path: Path) -> None:
    client, _ = make_client(
        [requests.ConnectionError("down"), requests.ConnectionError("still down")]
    )

    with pytest.raises(FetchError):
        client.fetch_month(UNIT, tmp_path / UNIT.filename)


def test_private_list_logs_in_once_and_reuses_session(tmp_path: Path) -> None:
    client, session = make_client(
        [
            make_response(200, b"<html>Archive index</html>", {"Content-Type": "text/html"}),
            make_response(200, b"jan", {"Content-Type": "application/x-gzip"}),
            make_response(200, b"feb", {"Content-Type": "application/x-gzip"}),
        ],
        username="reader",
        password="secret",
    )

    client.fetch_month(UNIT, tmp_path / UNIT.filename)
    client.fetch_month(PeriodUnit(2020, 2), tmp_path / PeriodUnit(2020, 2).filename)

    methods = [request[0] for request in session.requests]
    assert methods == ["POST", "GET", "GET"]
    assert session.requests[0][1] == "https://lists.example.org/mailman/private/alpha/"
    assert session.requests[0][2]["data"]["password"] == "secret"


def test_rejected_login_raises_fetch_error(tmp_path: Path) -> None:
    client, _ = make_client(
        [make_response(200, LOGIN_FORM.encode(), {"Content-Type": "text/html"})],
        username="reader",
        password="wrong",
    )

    with pytest.raises(FetchError):
        client.fetch_month(UNIT, tmp_path / UNIT.filename)


def test_expired_session_triggers_one_relogin(tmp_path: Path) -> None:
    client, session = make_client(
        [
            make_response(200, b"<html>ok</html>", {"Content-Type": "text/html"}),
            make_response(200, LOGIN_FORM.encode(), {"Content-Type": "text/html"}),
            make_response(200, b"<html>ok</html>", {"Content-Type": "text/html"}),
            make_response(200, b"jan", {"Content-Type": "application/x-gzip"}),
        ],
        username="reader",
        password="secret",
    )

    assert client.fetch_month(UNIT, tmp_path / UNIT.filename) == FETCH_DOWNLOADED
    assert [request[0] for request in session.requests] == ["POST", "GET", "POST", "GET"]


def test_list_remote_months_scrapes_index(tmp_path: Path) -> None:
    index = b"""
    <html><body>
    <a href="2020-March.txt.gz">[ Gzip'd Text 2 KB ]</a>
    <a href="2019-December.txt.gz">[ Gzip'd Text 1 KB ]</a>
    <a href="2020-March/thread.html">[ Thread ]</a>
    </body></html>
    """
    client, _ = make_client([make_response(200, index, {"Content-Type": "text/html"})])

    assert client.list_remote_months() == [PeriodUnit(2019, 12), PeriodUnit(2020, 3)]


def test_helpers() -> None:
    assert looks_like_login_page(LOGIN_FORM)
    assert not looks_like_login_page("<html><a href='x'>x</a></html>")
    assert parse_retry_after_seconds("7") == 7.0
    assert parse_retry_after_seconds(None) == 0.0
    assert parse_retry_after_seconds("garbage") == 0.0
