from pathlib import Path

from conftest import make_record
from modmgr.download import DownloadOrchestrator
from modmgr.exceptions import DownloadError
from modmgr.records import RecordGroup, RecordType


class _FakeDownloader:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def download(self, url, dest: Path) -> Path:
        self.calls.append((url, dest))
        dest.parent.mkdir(parents=True, exist_ok=True)
        if url in self.failing:
            dest.write_bytes(b"partial")
            raise DownloadError(f"Failed to download {url}: HTTP Error 404")
        dest.write_bytes(b"jar")
        return dest


def _mod(record_id, **fields):
    values = dict(id=record_id, version_url=f"https://cdn.example.com/{record_id}/{record_id}-1.0.jar")
    values.update(fields)
    return make_record(**values)


def test_target_paths_follow_class_folders(cfg):
    orchestrator = DownloadOrchestrator(cfg, _FakeDownloader())
    root = cfg.cache_root / "1.21.5"

    cases = [
        (_mod("a"), root / "mods" / "a-1.0.jar"),
        (_mod("b", group=RecordGroup.BLOCK), root / "mods" / "block" / "b-1.0.jar"),
        (_mod("c", jar="pinned-c.jar"), root / "mods" / "pinned-c.jar"),
        (_mod("d", type=RecordType.INSTALLER), root / "installer" / "d-1.0.jar"),
        (_mod("e", type=RecordType.LAUNCHER, direct_url="https://example.com/launch/e.jar"), root / "e.jar"),
        (_mod("f", type=RecordType.MODPACK), root / "modpacks" / "f-1.0.jar"),
        (_mod("g", version_url="", type=RecordType.SERVER, url="https://example.com/server.jar"), root / "server.jar"),
    ]
    for record, expected in cases:
        assert orchestrator.target_path(record, orchestrator.source_url(record)) == expected


def test_filename_falls_back_to_id_and_version(cfg):
    orchestrator = DownloadOrchestrator(cfg, _FakeDownloader())
    record = _mod("h", version="2.0", version_url="https://example.com/download/")

    assert orchestrator.target_path(record, record.version_url).name == "h-2.0.jar"


def test_shaderpack_names_are_sanitized(cfg):
    orchestrator = DownloadOrchestrator(cfg, _FakeDownloader())
    url = "https://cdn.example.com/shaders/%C2%A7aComplementary%20%C2%A7rShaders%07.zip"
    record = _mod("shader", type=RecordType.SHADERPACK, version_url=url)

    target = orchestrator.target_path(record, url)

    assert target.parent == cfg.cache_root / "1.21.5" / "shaderpacks"
    assert target.name == "Complementary Shaders.zip"


def test_latest_mode_uses_url_name_and_majority_folder(cfg):
    orchestrator = DownloadOrchestrator(cfg, _FakeDownloader(), majority_version="1.21.6", use_latest=True)
    record = _mod(
        "a",
        jar="a-1.0.jar",
        game_version="1.21.5",
        latest_version_url="https://cdn.example.com/a/a-1.2.jar",
    )

    assert orchestrator.source_url(record) == "https://cdn.example.com/a/a-1.2.jar"
    assert orchestrator.target_path(record, orchestrator.source_url(record)) == (
        cfg.cache_root / "1.21.6" / "mods" / "a-1.2.jar"
    )


def test_run_downloads_and_skips_records_without_url(cfg):
    downloader = _FakeDownloader()
    orchestrator = DownloadOrchestrator(cfg, downloader)

    summary = orchestrator.run([_mod("a"), _mod("b"), _mod("c", version_url="")])

    assert len(summary.downloaded) == 2
    assert summary.unresolved == ["c"]
    assert summary.error_count == 0
    assert all(path.exists() for path in summary.downloaded)


def test_second_run_downloads_nothing_and_reports_each_path_once(cfg):
    records = [_mod("a"), _mod("b")]
    DownloadOrchestrator(cfg, _FakeDownloader()).run(records)

    downloader = _FakeDownloader()
    orchestrator = DownloadOrchestrator(cfg, downloader)
    first = orchestrator.run(records)
    second = orchestrator.run(records)

    assert downloader.calls == []
    assert first.downloaded == [] and second.downloaded == []
    assert len(first.messages) == 2
    assert second.messages == []
    assert len(second.skipped) == 2


def test_duplicate_targets_in_one_run(cfg):
    downloader = _FakeDownloader()
    orchestrator = DownloadOrchestrator(cfg, downloader)
    records = [_mod("a", jar="shared.jar"), _mod("b", jar="shared.jar")]

    summary = orchestrator.run(records)
    assert len(downloader.calls) == 1
    assert len(summary.downloaded) == 1

    again = orchestrator.run(records)
    assert len(again.messages) == 1
    assert len(downloader.calls) == 1


def test_force_redownloads_existing_files(cfg):
    records = [_mod("a")]
    DownloadOrchestrator(cfg, _FakeDownloader()).run(records)

    downloader = _FakeDownloader()
    summary = DownloadOrchestrator(cfg, downloader, force=True).run(records)

    assert len(downloader.calls) == 1
    assert summary.messages == []
    assert len(summary.downloaded) == 1


def test_failed_download_is_recorded_and_cleaned_up(cfg):
    bad = _mod("bad")
    downloader = _FakeDownloader(failing={bad.version_url})
    orchestrator = DownloadOrchestrator(cfg, downloader)

    summary = orchestrator.run([bad, _mod("good")])

    assert summary.error_count == 1
    assert summary.failed[0].record_id == "bad"
    assert "404" in summary.failed[0].error
    assert not summary.failed[0].target.exists()
    assert len(summary.downloaded) == 1


def test_game_version_filter_and_results_csv(cfg):
    orchestrator = DownloadOrchestrator(cfg, _FakeDownloader())
    records = [_mod("a"), _mod("old", game_version="1.20.1")]

    summary = orchestrator.run(records, game_version="1.21.5")
    path = orchestrator.write_results_csv(summary)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "ID,Target,Status,Error"
    assert len(lines) == 2
    assert lines[1].startswith("a,") and lines[1].endswith(",downloaded,")
