from conftest import MODRINTH, FakeHttp, make_record, modrinth_version
from modmgr.exceptions import RegistryError
from modmgr.records import Catalog, RecordType
from modmgr.resolver import MatchKind, ProjectInfo, RecordResolver, ValidationResult
from modmgr.validation import merge_result, validate_catalog, write_results_csv


def _versions_url(record_id):
    return f"{MODRINTH}/project/{record_id}/version"


def test_validate_catalog_merges_and_continues_after_errors(cfg):
    http = FakeHttp(
        {
            _versions_url("a"): [modrinth_version("1.1", game_versions=["1.21.6"]), modrinth_version("1.0")],
            _versions_url("b"): RegistryError("Network error fetching b: connection refused"),
            _versions_url("c"): [modrinth_version("2.0")],
            f"{MODRINTH}/project/a": {"title": "A", "client_side": "required", "server_side": "optional"},
        }
    )
    catalog = Catalog(records=[make_record(id="a"), make_record(id="b"), make_record(id="c", version="9.0")])

    summary = validate_catalog(catalog, RecordResolver(cfg, http))

    assert [result.record_id for result in summary.results] == ["a", "b", "c"]
    assert summary.found == 1
    assert summary.not_found == 1
    assert [result.record_id for result in summary.errors] == ["b"]
    assert summary.updates_available == ["a"]

    a = catalog.find("a")
    assert a.version == "1.0"
    assert a.version_url.endswith("/1.0/mod-1.0.jar")
    assert a.latest_version == "1.1"
    assert a.latest_game_version == "1.21.6"
    assert a.title == "A"
    assert a.client_side == "required"
    assert a.has_valid_hash()
    assert catalog.find("b").record_hash == ""


def test_jar_match_rewrites_version():
    record = make_record(version="1.0.0", jar="x.jar").fingerprinted()
    result = ValidationResult(
        record_id="X",
        exists=True,
        matched_by=MatchKind.JAR_FILENAME,
        expected_version="1.0.0",
        version="1.0",
        version_url="https://cdn.example.com/x.jar",
    )

    merged = merge_result(record, result)

    assert merged.version == "1.0"
    assert merged.record_hash != record.record_hash
    assert merged.has_valid_hash()


def test_update_promotes_latest_version_and_jar_name():
    record = make_record(version="1.0", jar="x-1.0.jar")
    result = ValidationResult(
        record_id="X",
        exists=True,
        matched_by=MatchKind.EXACT_VERSION,
        expected_version="1.0",
        version="1.0",
        version_url="https://cdn.example.com/x-1.0.jar",
        latest_version="1.2",
        latest_version_url="https://cdn.example.com/x-1.2.jar",
    )

    merged = merge_result(record, result, update=True)

    assert merged.version == "1.2"
    assert merged.version_url == "https://cdn.example.com/x-1.2.jar"
    assert merged.jar == "x-1.2.jar"


def test_unchanged_record_is_returned_as_is():
    record = make_record(version_url="https://cdn.example.com/x.jar", api_source="modrinth").fingerprinted()
    result = ValidationResult(
        record_id="X",
        exists=True,
        matched_by=MatchKind.EXACT_VERSION,
        version_url="https://cdn.example.com/x.jar",
        provider="modrinth",
        project=ProjectInfo(error="HTTP 404"),
    )

    assert merge_result(record, result) is record


def test_system_records_keep_their_direct_url(cfg):
    record = make_record(id="server", type=RecordType.SERVER, direct_url="https://example.com/server.jar")
    catalog = Catalog(records=[record])

    summary = validate_catalog(catalog, RecordResolver(cfg, FakeHttp()), update=True)

    assert summary.found == 1
    assert catalog.records[0].version_url == "https://example.com/server.jar"
    assert catalog.records[0].version == "1.0"


def test_results_csv(cfg, tmp_path):
    http = FakeHttp({_versions_url("X"): [modrinth_version("1.0")]})
    summary = validate_catalog(Catalog(records=[make_record()]), RecordResolver(cfg, http))

    path = write_results_csv(summary, tmp_path / "results.csv")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[1].startswith("X,1.0,yes,exact-version,1.0,1.0,1.21.5,")
