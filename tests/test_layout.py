import pytest

from conftest import make_record
from modmgr.layout import (
    artifact_filename,
    class_folder,
    filename_from_url,
    mod_folder,
    sanitize_shaderpack_name,
)
from modmgr.records import RecordGroup, RecordType


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://cdn.example.com/data/a/Mod%20A%2B1.0.jar", "Mod A+1.0.jar"),
        ("https://cdn.example.com/a.jar?token=abc", "a.jar"),
        ("https://example.com/download/", ""),
        ("", ""),
    ],
)
def test_filename_from_url(url, expected):
    assert filename_from_url(url) == expected


def test_sanitize_shaderpack_name():
    assert sanitize_shaderpack_name("§aBSL%20v8\x07.zip") == "BSL v8.zip"
    assert sanitize_shaderpack_name("packs%2FComplementary.zip") == "packs_Complementary.zip"


def test_block_group_wins_over_server_only():
    record = make_record(group=RecordGroup.BLOCK, server_side="required", client_side="unsupported")
    assert mod_folder(record) == "mods/block"


def test_class_folders_for_system_types():
    assert class_folder(make_record(type=RecordType.INSTALLER)) == "installer"
    assert class_folder(make_record(type=RecordType.MODPACK)) == "modpacks"
    assert class_folder(make_record(type=RecordType.SERVER)) == ""
    assert class_folder(make_record(type=RecordType.LAUNCHER)) == ""


def test_artifact_filename_precedence():
    record = make_record(jar="x-1.0.jar")
    latest_url = "https://cdn.example.com/x-1.2.jar"

    assert artifact_filename(record, latest_url) == "x-1.0.jar"
    assert artifact_filename(record, latest_url, use_latest=True) == "x-1.2.jar"
    assert artifact_filename(make_record(), "https://example.com/download/") == "X-1.0.jar"
    assert artifact_filename(make_record(version="latest"), "") == "X-latest.jar"
    assert artifact_filename(make_record(type=RecordType.MODPACK), "") == "X-1.0.mrpack"
