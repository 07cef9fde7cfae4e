import http.client
import io
import json

import pytest

from conftest import MODRINTH, make_record, modrinth_version
from modmgr.download import DownloadOrchestrator
from modmgr.exceptions import DownloadError, RegistryError
from modmgr.http import HttpClient
from modmgr.records import Catalog
from modmgr.resolver import RecordResolver
from modmgr.validation import validate_catalog


class _FakeResponse:
    def __init__(self, payload: bytes, truncate_after: int | None = None) -> None:
        self._stream = io.BytesIO(payload)
        self._truncate_after = truncate_after
        self._sent = 0

    def read(self, size: int = -1) -> bytes:
        if self._truncate_after is None:
            return self._stream.read(size)
        remaining = self._truncate_after - self._sent
        if size < 0 or remaining <= 0:
            raise http.client.IncompleteRead(self._stream.read(max(remaining, 0)), 13)
        chunk = self._stream.read(min(size, remaining))
        self._sent += len(chunk)
        return chunk

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


def test_unquoted_url_is_a_registry_error(cfg):
    client = HttpClient(cfg)
    with pytest.raises(RegistryError):
        client.get_json("http://127.0.0.1:9/project/sodium extra/version")


def test_truncated_json_reply_is_a_registry_error(cfg, monkeypatch):
    def _fake_open(request, timeout=0):
        return _FakeResponse(b'{"id": "abc"}', truncate_after=3)

    monkeypatch.setattr("urllib.request.urlopen", _fake_open)
    with pytest.raises(RegistryError):
        HttpClient(cfg).get_json(f"{MODRINTH}/project/X/version")


def test_validation_continues_after_transport_failures(cfg, monkeypatch):
    served = {f"{MODRINTH}/project/other/version": json.dumps([modrinth_version("1.0")]).encode()}
    requested = []

    def _fake_open(request, timeout=0):
        requested.append(request.full_url)
        if "/project/broken/" in request.full_url:
            return _FakeResponse(b"[]", truncate_after=1)
        if request.full_url in served:
            return _FakeResponse(served[request.full_url])
        return _FakeResponse(b"{}")

    monkeypatch.setattr("urllib.request.urlopen", _fake_open)
    catalog = Catalog(records=[make_record(id="sodium extra"), make_record(id="broken"), make_record(id="other")])

    summary = validate_catalog(catalog, RecordResolver(cfg))

    assert f"{MODRINTH}/project/sodium%20extra/version" in requested
    assert [result.record_id for result in summary.results] == ["sodium extra", "broken", "other"]
    assert "broken" in [result.record_id for result in summary.errors]
    assert catalog.find("other").version_url.endswith("/1.0/mod-1.0.jar")


def test_truncated_download_is_a_download_error(cfg, monkeypatch, tmp_path):
    def _fake_open(request, timeout=0):
        return _FakeResponse(b"abcdefghijklmnop", truncate_after=3)

    monkeypatch.setattr("urllib.request.urlopen", _fake_open)
    target = tmp_path / "mods" / "a.jar"

    with pytest.raises(DownloadError):
        HttpClient(cfg).download("https://cdn.example.com/a.jar", target)
    assert not target.exists()
    assert not target.with_name("a.jar.part").exists()


def test_truncated_download_does_not_stop_the_batch(cfg, monkeypatch):
    def _fake_open(request, timeout=0):
        if request.full_url.endswith("/a.jar"):
            return _FakeResponse(b"abcdefghijklmnop", truncate_after=3)
        return _FakeResponse(b"jar-bytes")

    monkeypatch.setattr("urllib.request.urlopen", _fake_open)
    records = [
        make_record(id="a", version_url="https://cdn.example.com/a/a.jar"),
        make_record(id="b", version_url="https://cdn.example.com/b/b.jar"),
    ]

    summary = DownloadOrchestrator(cfg).run(records)

    assert [failure.record_id for failure in summary.failed] == ["a"]
    assert len(summary.downloaded) == 1
    assert summary.downloaded[0].read_bytes() == b"jar-bytes"
