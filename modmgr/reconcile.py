from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .config import ModmgrConfig
from .layout import (
    ADMISSIBLE_EXTENSIONS,
    ARCHIVE_EXTENSIONS,
    BLOCK_DIR,
    DATAPACKS_DIR,
    MOD_EXTENSIONS,
    MODS_DIR,
    OPTIONAL_DIR,
    SERVER_DIR,
    SHADERPACKS_DIR,
    extension_of,
    filename_from_url,
    mod_folder,
    sanitize_shaderpack_name,
)
from .records import ModRecord, RecordType

logger = logging.getLogger(__name__)

PACKAGED_TYPES = frozenset({RecordType.MOD, RecordType.SHADERPACK, RecordType.DATAPACK})
MOD_FOLDERS = (MODS_DIR, OPTIONAL_DIR, BLOCK_DIR, SERVER_DIR)
SCANNED_FOLDERS = MOD_FOLDERS + (SHADERPACKS_DIR, DATAPACKS_DIR)
RELAXED_FOLDERS = frozenset({MODS_DIR, OPTIONAL_DIR})

_TOKEN_SPLIT = re.compile(r"([-_+ ]+)")
_VERSION_TOKEN = re.compile(r"^v?\d", re.IGNORECASE)


@dataclass
class VersionPair:
    folder: str
    base: str
    expected: List[str] = field(default_factory=list)
    actual: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.folder}/{self.base}: expected {', '.join(self.expected)} | actual {', '.join(self.actual)}"


@dataclass
class ReconciliationReport:
    game_version: str
    relaxed: bool
    expected: Set[str] = field(default_factory=set)
    actual: Set[str] = field(default_factory=set)
    missing: List[str] = field(default_factory=list)
    extra: List[str] = field(default_factory=list)
    paired_by_version: List[VersionPair] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.extra

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "expected": len(self.expected),
            "actual": len(self.actual),
            "missing": len(self.missing),
            "extra": len(self.extra),
            "paired_by_version": len(self.paired_by_version),
            "warnings": len(self.warnings),
        }


def matches_game_version(record: ModRecord, game_version: str) -> bool:
    if record.game_version == game_version:
        return True
    # Libraries built against a nearby patch release list the target among
    # their supported versions; a substring test is intentionally loose.
    return bool(record.available_game_versions) and game_version in record.available_game_versions


def expected_filename(record: ModRecord) -> str:
    if record.jar:
        return record.jar
    for url in (record.version_url, record.latest_version_url, record.url):
        name = filename_from_url(url)
        if name:
            return name
    return ""


def expected_files(records: Iterable[ModRecord], game_version: str) -> Tuple[Set[str], List[str]]:
    """Relative paths the release for ``game_version`` should contain, plus warnings."""
    expected: Set[str] = set()
    warnings: List[str] = []
    for record in records:
        if record.type not in PACKAGED_TYPES or not matches_game_version(record, game_version):
            continue
        filename = expected_filename(record)
        if not filename:
            warnings.append(f"{record.id}: no filename could be derived (no jar name and no resolved URL)")
            continue

        extension = extension_of(filename)
        if record.type is RecordType.MOD:
            path = f"{mod_folder(record)}/{filename}"
            expected.add(path)
            if extension in ARCHIVE_EXTENSIONS:
                warnings.append(f"Expected mod {path} has a shaderpack-style {extension} extension; check its type")
        elif record.type is RecordType.SHADERPACK:
            expected.add(f"{SHADERPACKS_DIR}/{sanitize_shaderpack_name(filename)}")
        else:
            expected.add(f"{DATAPACKS_DIR}/{filename}")
            if extension in MOD_EXTENSIONS:
                expected.add(f"{MODS_DIR}/{filename}")
                warnings.append(f"Datapack {filename} is a jar and will also be placed in {MODS_DIR}/")
    return expected, warnings


def actual_files(version_dir: Path) -> Tuple[Set[str], List[str]]:
    """Relative paths present in one version directory of the cache, plus warnings."""
    actual: Set[str] = set()
    warnings: List[str] = []
    for folder in SCANNED_FOLDERS:
        directory = version_dir / folder
        if not directory.is_dir():
            continue
        for file in sorted(directory.iterdir()):
            if not file.is_file() or file.suffix.lower() not in ADMISSIBLE_EXTENSIONS:
                continue
            actual.add(f"{folder}/{file.name}")
            if folder == DATAPACKS_DIR and file.suffix.lower() in MOD_EXTENSIONS:
                actual.add(f"{MODS_DIR}/{file.name}")
            elif folder in MOD_FOLDERS and file.suffix.lower() in ARCHIVE_EXTENSIONS:
                warnings.append(f"Cached mod {folder}/{file.name} has a shaderpack-style extension; wrong file picked?")
    return actual, warnings


def base_key(path: str) -> Tuple[str, str]:
    """``(folder, base)`` where base is the name with its version tail removed.

    ``mods/sodium-fabric-0.5.8.jar`` gives ``("mods", "sodium-fabric")``. A
    name without any version-looking token keeps its whole stem.
    """
    pure = PurePosixPath(path)
    folder = str(pure.parent)
    stem = pure.name[: -len(pure.suffix)] if pure.suffix else pure.name
    parts = _TOKEN_SPLIT.split(stem)
    base_parts: List[str] = []
    for index in range(0, len(parts), 2):
        token = parts[index]
        if _VERSION_TOKEN.match(token):
            break
        if base_parts:
            base_parts.append(parts[index - 1])
        base_parts.append(token)
    base = "".join(base_parts).strip() or stem
    return folder, base.lower()


def pair_by_version(missing: List[str], extra: List[str]) -> Tuple[List[str], List[str], List[VersionPair]]:
    missing_groups: Dict[Tuple[str, str], List[str]] = defaultdict(list)
    extra_groups: Dict[Tuple[str, str], List[str]] = defaultdict(list)
    for path in missing:
        key = base_key(path)
        if key[0] in RELAXED_FOLDERS:
            missing_groups[key].append(path)
    for path in extra:
        key = base_key(path)
        if key[0] in RELAXED_FOLDERS:
            extra_groups[key].append(path)

    pairs: List[VersionPair] = []
    paired: Set[str] = set()
    for key in sorted(set(missing_groups) & set(extra_groups)):
        folder, base = key
        pairs.append(
            VersionPair(
                folder=folder,
                base=base,
                expected=[PurePosixPath(p).name for p in missing_groups[key]],
                actual=[PurePosixPath(p).name for p in extra_groups[key]],
            )
        )
        paired.update(missing_groups[key])
        paired.update(extra_groups[key])

    return (
        [path for path in missing if path not in paired],
        [path for path in extra if path not in paired],
        pairs,
    )


class ReleaseReconciler:
    """Compares the catalog's expected release contents with the download cache.

    Advisory only: nothing in the cache is moved or deleted.
    """

    def __init__(self, cfg: ModmgrConfig) -> None:
        self.cfg = cfg

    def reconcile(
        self,
        records: Iterable[ModRecord],
        game_version: str,
        cache_root: Optional[Path] = None,
        *,
        relaxed: bool = False,
    ) -> ReconciliationReport:
        root = cache_root or self.cfg.cache_root
        expected, expected_warnings = expected_files(records, game_version)
        actual, actual_warnings = actual_files(root / game_version)

        missing = sorted(expected - actual)
        extra = sorted(actual - expected)
        pairs: List[VersionPair] = []
        if relaxed:
            missing, extra, pairs = pair_by_version(missing, extra)

        report = ReconciliationReport(
            game_version=game_version,
            relaxed=relaxed,
            expected=expected,
            actual=actual,
            missing=missing,
            extra=extra,
            paired_by_version=pairs,
            warnings=expected_warnings + actual_warnings,
        )
        logger.info(
            f"Reconciled {game_version}: {len(missing)} missing, {len(extra)} extra, "
            f"{len(pairs)} version-only differences"
        )
        return report

    def write(self, report: ReconciliationReport, output_dir: Optional[Path] = None) -> Path:
        if output_dir is None:
            stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
            output_dir = self.cfg.report_dir / f"{report.game_version}-{stamp}"
        return write_report(report, output_dir)


def _write_lines(path: Path, lines: Iterable[str]) -> None:
    content = "\n".join(lines)
    path.write_text(content + "\n" if content else "", encoding="utf-8")


def write_report(report: ReconciliationReport, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    _write_lines(output_dir / "expected.txt", sorted(report.expected))
    _write_lines(output_dir / "actual.txt", sorted(report.actual))
    _write_lines(output_dir / "missing.txt", report.missing)
    _write_lines(output_dir / "extra.txt", report.extra)
    if report.warnings:
        _write_lines(output_dir / "warnings.txt", report.warnings)

    lines = [
        f"Release reconciliation for Minecraft {report.game_version}",
        f"Mode: {'relaxed-version' if report.relaxed else 'exact'}",
        f"Generated: {datetime.now().isoformat(timespec='seconds')}",
        "",
    ]
    lines.extend(f"{name}: {count}" for name, count in report.summary.items())
    sections = [
        ("Missing", report.missing),
        ("Extra", report.extra),
        ("Version-only differences", [str(pair) for pair in report.paired_by_version]),
        ("Warnings", report.warnings),
    ]
    for title, entries in sections:
        if entries:
            lines.extend(["", f"{title}:"])
            lines.extend(f"  {entry}" for entry in entries)
    lines.extend(["", "Result: " + ("OK" if report.ok else "MISMATCH")])
    _write_lines(output_dir / "report.txt", lines)
    return output_dir
