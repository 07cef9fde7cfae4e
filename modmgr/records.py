from __future__ import annotations

import csv
import hashlib
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import CatalogError

logger = logging.getLogger(__name__)

CATALOG_SCHEMA_VERSION = 2
HASH_COLUMN = "RecordHash"


class RecordGroup(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    ADMIN = "admin"
    BLOCK = "block"


class RecordType(str, Enum):
    MOD = "mod"
    DATAPACK = "datapack"
    SHADERPACK = "shaderpack"
    INSTALLER = "installer"
    SERVER = "server"
    LAUNCHER = "launcher"
    MODPACK = "modpack"


class Host(str, Enum):
    MODRINTH = "modrinth"
    CURSEFORGE = "curseforge"
    DIRECT = "direct"


SYSTEM_TYPES = frozenset({RecordType.INSTALLER, RecordType.SERVER, RecordType.LAUNCHER})

# Columns renamed between catalog revisions: legacy name -> current name.
LEGACY_COLUMN_ALIASES: Dict[str, str] = {
    "ModType": "Type",
    "JarFilename": "Jar",
    "DirectUrl": "UrlDirect",
    "MinecraftVersion": "GameVersion",
    "Provider": "Host",
}


class ModRecord(BaseModel):
    """One catalog row. Field aliases are the CSV column names."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    group: RecordGroup = Field(default=RecordGroup.REQUIRED, alias="Group")
    type: RecordType = Field(default=RecordType.MOD, alias="Type")
    game_version: str = Field(default="", alias="GameVersion")
    id: str = Field(default="", alias="ID")
    loader: str = Field(default="", alias="Loader")
    version: str = Field(default="", alias="Version")
    name: str = Field(default="", alias="Name")
    description: str = Field(default="", alias="Description")
    jar: str = Field(default="", alias="Jar")
    url: str = Field(default="", alias="Url")
    category: str = Field(default="", alias="Category")
    version_url: str = Field(default="", alias="VersionUrl")
    latest_version_url: str = Field(default="", alias="LatestVersionUrl")
    latest_version: str = Field(default="", alias="LatestVersion")
    api_source: str = Field(default="", alias="ApiSource")
    host: Host = Field(default=Host.MODRINTH, alias="Host")
    icon_url: str = Field(default="", alias="IconUrl")
    client_side: str = Field(default="", alias="ClientSide")
    server_side: str = Field(default="", alias="ServerSide")
    title: str = Field(default="", alias="Title")
    project_description: str = Field(default="", alias="ProjectDescription")
    issues_url: str = Field(default="", alias="IssuesUrl")
    source_url: str = Field(default="", alias="SourceUrl")
    wiki_url: str = Field(default="", alias="WikiUrl")
    latest_game_version: str = Field(default="", alias="LatestGameVersion")
    record_hash: str = Field(default="", alias=HASH_COLUMN)
    direct_url: str = Field(default="", alias="UrlDirect")
    available_game_versions: str = Field(default="", alias="AvailableGameVersions")

    @field_validator("*", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def is_system(self) -> bool:
        return self.type in SYSTEM_TYPES

    @property
    def wants_latest(self) -> bool:
        return self.version.strip().lower() in {"", "latest"}

    @property
    def key(self) -> str:
        return f"{self.id}@{self.game_version}"

    def to_row(self) -> Dict[str, str]:
        row: Dict[str, str] = {}
        for name, info in type(self).model_fields.items():
            value = getattr(self, name)
            if isinstance(value, Enum):
                value = value.value
            row[info.alias or name] = "" if value is None else str(value)
        return row

    def compute_hash(self) -> str:
        return compute_record_hash(self)

    def has_valid_hash(self) -> bool:
        return bool(self.record_hash) and self.record_hash == self.compute_hash()

    def with_updates(self, **changes: Any) -> "ModRecord":
        """Return a copy with ``changes`` applied and the fingerprint recomputed."""
        changes.pop("record_hash", None)
        updated = self.model_validate({**self.model_dump(), **changes})
        return updated.model_copy(update={"record_hash": updated.compute_hash()})

    def fingerprinted(self) -> "ModRecord":
        return self.model_copy(update={"record_hash": self.compute_hash()})


CATALOG_COLUMNS: List[str] = [info.alias for info in ModRecord.model_fields.values()]


def compute_record_hash(record: ModRecord) -> str:
    """SHA-256 over the sorted ``Column=value`` pairs of every non-hash column."""
    row = record.to_row()
    pairs = sorted(f"{column}={value}" for column, value in row.items() if column != HASH_COLUMN)
    return hashlib.sha256("|".join(pairs).encode("utf-8")).hexdigest()


def migrate_row(row: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """Bring a raw CSV row up to the current column schema."""
    migrated: Dict[str, str] = {}
    for column, value in row.items():
        if column is None:
            continue
        column = column.strip()
        target = LEGACY_COLUMN_ALIASES.get(column, column)
        if target in migrated and migrated[target]:
            continue
        migrated[target] = (value or "").strip()

    for column in ("Group", "Type", "Host"):
        if migrated.get(column):
            migrated[column] = migrated[column].lower()

    if not migrated.get("Group"):
        migrated["Group"] = RecordGroup.REQUIRED.value
    if not migrated.get("Type"):
        migrated["Type"] = RecordType.MOD.value
    if not migrated.get("Host"):
        api_source = migrated.get("ApiSource", "").lower()
        if migrated["Type"] in {t.value for t in SYSTEM_TYPES}:
            migrated["Host"] = Host.DIRECT.value
        elif api_source in {h.value for h in Host}:
            migrated["Host"] = api_source
        else:
            migrated["Host"] = Host.MODRINTH.value

    return {column: migrated.get(column, "") for column in CATALOG_COLUMNS}


@dataclass
class IntegrityWarning:
    record_id: str
    game_version: str
    stored: str
    computed: str

    def __str__(self) -> str:
        return (
            f"{self.record_id} ({self.game_version or 'no version'}) was modified outside modmgr: "
            f"stored hash {self.stored[:12]}, computed {self.computed[:12]}"
        )


@dataclass
class Catalog:
    records: List[ModRecord]
    path: Optional[Path] = None
    migrated_columns: List[str] = field(default_factory=list)
    loaded_hashes: List[str] = field(default_factory=list)

    def __iter__(self) -> Iterator[ModRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def find(self, record_id: str, game_version: Optional[str] = None) -> ModRecord:
        for record in self.records:
            if record.id == record_id and (game_version is None or record.game_version == game_version):
                return record
        raise CatalogError(f"Record '{record_id}' not found in catalog")

    def for_game_version(self, game_version: str) -> List[ModRecord]:
        return [record for record in self.records if record.game_version == game_version]

    def replace(self, index: int, record: ModRecord) -> None:
        self.records[index] = record

    def integrity_warnings(self) -> List[IntegrityWarning]:
        warnings: List[IntegrityWarning] = []
        for record in self.records:
            if not record.record_hash:
                continue
            computed = record.compute_hash()
            if computed != record.record_hash:
                warnings.append(
                    IntegrityWarning(
                        record_id=record.id,
                        game_version=record.game_version,
                        stored=record.record_hash,
                        computed=computed,
                    )
                )
        return warnings

    def unfingerprinted(self) -> List[ModRecord]:
        return [record for record in self.records if not record.record_hash]


def _read_rows(path: Path) -> List[Dict[str, Optional[str]]]:
    try:
        with path.open("r", encoding="utf-8-sig", newline="") as handle:
            reader = csv.DictReader(handle)
            if reader.fieldnames is None:
                return []
            return list(reader)
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise CatalogError(f"Unable to read catalog {path}: {exc}") from exc


def _content_snapshot(records: Iterable[ModRecord]) -> List[str]:
    """Per-record digest of every column, the stored fingerprint included."""
    return [f"{record.key}:{record.compute_hash()}:{record.record_hash}" for record in records]


def _parse_records(path: Path, rows: List[Dict[str, Optional[str]]]) -> List[ModRecord]:
    records: List[ModRecord] = []
    for line_no, row in enumerate(rows, start=2):
        try:
            records.append(ModRecord.model_validate(migrate_row(row)))
        except ValidationError as exc:
            raise CatalogError(f"{path}:{line_no}: invalid record: {exc}") from exc
    return records


def load_catalog(path: Path) -> Catalog:
    """Load and migrate the catalog; fails before any per-record work."""
    if not path.exists():
        raise CatalogError(f"Catalog not found: {path}")

    rows = _read_rows(path)
    legacy = sorted({column for row in rows[:1] for column in row if column in LEGACY_COLUMN_ALIASES})
    records = _parse_records(path, rows)

    catalog = Catalog(
        records=records,
        path=path,
        migrated_columns=legacy,
        loaded_hashes=_content_snapshot(records),
    )
    if legacy:
        logger.info(f"Migrated legacy catalog columns: {', '.join(legacy)}")
    for warning in catalog.integrity_warnings():
        logger.warning(str(warning))
    return catalog


def backup_catalog(path: Path, backup_dir: Path) -> Optional[Path]:
    if not path.exists():
        return None
    backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    target = backup_dir / f"{path.stem}-{stamp}{path.suffix}"
    counter = 1
    while target.exists():
        target = backup_dir / f"{path.stem}-{stamp}-{counter}{path.suffix}"
        counter += 1
    shutil.copy2(path, target)
    return target


def _check_unchanged_on_disk(catalog: Catalog, path: Path) -> None:
    if not path.exists():
        return
    current = _parse_records(path, _read_rows(path))
    if _content_snapshot(current) != catalog.loaded_hashes:
        raise CatalogError(
            f"{path} was changed by another writer since it was loaded; reload before saving."
        )


def save_catalog(
    catalog: Catalog,
    path: Optional[Path] = None,
    *,
    backup_dir: Optional[Path] = None,
    check_concurrent: bool = False,
) -> Optional[Path]:
    """Rewrite the whole catalog, backing up the previous file first.

    Records that were never fingerprinted get one; records whose stored
    fingerprint does not match are written unchanged so the mismatch stays
    visible. Returns the backup path, if one was made.
    """
    target = path or catalog.path
    if target is None:
        raise CatalogError("No catalog path given")

    if check_concurrent:
        _check_unchanged_on_disk(catalog, target)

    backup = backup_catalog(target, backup_dir) if backup_dir is not None else None

    catalog.records = [record if record.record_hash else record.fingerprinted() for record in catalog.records]
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_suffix(target.suffix + ".tmp")
    try:
        with tmp_path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=CATALOG_COLUMNS)
            writer.writeheader()
            for record in catalog.records:
                writer.writerow(record.to_row())
        tmp_path.replace(target)
    except OSError as exc:
        raise CatalogError(f"Unable to write catalog {target}: {exc}") from exc

    catalog.path = target
    catalog.loaded_hashes = _content_snapshot(catalog.records)
    return backup
