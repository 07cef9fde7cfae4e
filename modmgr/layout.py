"""Where artifacts live inside a version directory of the download cache."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse

from .records import ModRecord, RecordGroup, RecordType

MODS_DIR = "mods"
OPTIONAL_DIR = "mods/optional"
BLOCK_DIR = "mods/block"
SERVER_DIR = "mods/server"
SHADERPACKS_DIR = "shaderpacks"
DATAPACKS_DIR = "datapacks"
INSTALLER_DIR = "installer"
MODPACKS_DIR = "modpacks"

MOD_EXTENSIONS = frozenset({".jar"})
ARCHIVE_EXTENSIONS = frozenset({".zip"})
ADMISSIBLE_EXTENSIONS = MOD_EXTENSIONS | ARCHIVE_EXTENSIONS

DEFAULT_EXTENSIONS = {
    RecordType.MOD: ".jar",
    RecordType.DATAPACK: ".zip",
    RecordType.SHADERPACK: ".zip",
    RecordType.INSTALLER: ".jar",
    RecordType.SERVER: ".jar",
    RecordType.LAUNCHER: ".jar",
    RecordType.MODPACK: ".mrpack",
}

_FORMAT_CODES = re.compile(r"§.", re.DOTALL)


def is_server_only(record: ModRecord) -> bool:
    client = record.client_side.strip().lower()
    server = record.server_side.strip().lower()
    if record.group is RecordGroup.ADMIN:
        return True
    if client == "unsupported":
        return True
    return server == "required" and client != "required"


def mod_folder(record: ModRecord) -> str:
    if record.group is RecordGroup.BLOCK:
        return BLOCK_DIR
    if is_server_only(record):
        return SERVER_DIR
    if record.group is RecordGroup.OPTIONAL:
        return OPTIONAL_DIR
    return MODS_DIR


def class_folder(record: ModRecord) -> str:
    """Folder relative to the version directory; '' means the version root."""
    if record.type is RecordType.MOD:
        return mod_folder(record)
    if record.type is RecordType.SHADERPACK:
        return SHADERPACKS_DIR
    if record.type is RecordType.DATAPACK:
        return DATAPACKS_DIR
    if record.type is RecordType.INSTALLER:
        return INSTALLER_DIR
    if record.type is RecordType.MODPACK:
        return MODPACKS_DIR
    return ""


def filename_from_url(url: str) -> str:
    if not url:
        return ""
    path = urlparse(url).path
    if not path or path.endswith("/"):
        return ""
    return unquote(PurePosixPath(path).name)


def sanitize_shaderpack_name(name: str) -> str:
    """URL-decode and drop format codes and non-printable characters."""
    cleaned = _FORMAT_CODES.sub("", unquote(name))
    cleaned = "".join(ch for ch in cleaned if ch.isprintable())
    return cleaned.replace("/", "_").replace("\\", "_").strip()


def extension_of(filename: str) -> str:
    return PurePosixPath(filename).suffix.lower()


def fallback_filename(record: ModRecord, url: Optional[str] = None) -> str:
    ext = extension_of(filename_from_url(url or "")) or DEFAULT_EXTENSIONS.get(record.type, ".jar")
    version = record.version if not record.wants_latest else (record.latest_version or "latest")
    return f"{record.id}-{version}{ext}"


def artifact_filename(record: ModRecord, url: str, use_latest: bool = False) -> str:
    """Pinned jar name, else the URL's last segment, else ``<id>-<version>.<ext>``.

    With ``use_latest`` the pinned name is ignored because the newest
    artifact is usually named differently.
    """
    name = ""
    if record.jar and not use_latest:
        name = record.jar
    if not name:
        name = filename_from_url(url)
    if not name:
        name = fallback_filename(record, url)
    if record.type is RecordType.SHADERPACK:
        name = sanitize_shaderpack_name(name)
    return name
