from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from .layout import filename_from_url
from .records import Catalog, ModRecord
from .resolver import MatchKind, ValidationResult, VersionResolver

logger = logging.getLogger(__name__)

RESULTS_FILENAME = "mod-validation-results.csv"


@dataclass
class ValidationSummary:
    results: List[ValidationResult] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    updates_available: List[str] = field(default_factory=list)

    @property
    def found(self) -> int:
        return sum(1 for result in self.results if result.exists)

    @property
    def not_found(self) -> int:
        return sum(1 for result in self.results if not result.exists and not result.error)

    @property
    def errors(self) -> List[ValidationResult]:
        return [result for result in self.results if result.error]


def merge_result(record: ModRecord, result: ValidationResult, *, update: bool = False) -> ModRecord:
    """Fold a validation result into its record; unchanged records are returned as-is."""
    changes: Dict[str, Any] = {}
    if result.exists:
        changes["version_url"] = result.version_url
        changes["available_game_versions"] = ",".join(result.available_game_versions)
        if result.matched_by is MatchKind.JAR_FILENAME:
            changes["version"] = result.version
    if result.latest_version_url:
        changes["latest_version_url"] = result.latest_version_url
        changes["latest_version"] = result.latest_version
    if result.latest_game_version:
        changes["latest_game_version"] = result.latest_game_version
    if result.provider and not result.error and not record.is_system:
        changes["api_source"] = result.provider

    project = result.project
    if project is not None and not project.error:
        changes.update(
            title=project.title or record.title,
            project_description=project.description or record.project_description,
            client_side=project.client_side or record.client_side,
            server_side=project.server_side or record.server_side,
            icon_url=project.icon_url or record.icon_url,
            issues_url=project.issues_url or record.issues_url,
            source_url=project.source_url or record.source_url,
            wiki_url=project.wiki_url or record.wiki_url,
        )

    if update and result.latest_version_url and not record.is_system:
        changes["version"] = result.latest_version
        changes["version_url"] = result.latest_version_url
        if record.jar:
            changes["jar"] = filename_from_url(result.latest_version_url) or record.jar

    if all(getattr(record, name) == value for name, value in changes.items()):
        return record
    return record.with_updates(**changes)


def validate_catalog(catalog: Catalog, resolver: VersionResolver, *, update: bool = False) -> ValidationSummary:
    """Resolve every record in order and merge the results back into ``catalog``.

    A failing record never stops the batch; its error stays on its result.
    Saving the catalog is left to the caller.
    """
    summary = ValidationSummary()
    for index, record in enumerate(list(catalog.records)):
        result = resolver.resolve(record)
        summary.results.append(result)
        if result.error:
            logger.warning(f"{record.id}: {result.error}")
        if result.version_corrected:
            logger.info(f"{record.id}: version corrected from '{result.expected_version}' to '{result.version}' by jar name")
        if (
            result.exists
            and result.latest_version
            and not record.wants_latest
            and result.latest_version_url != result.version_url
        ):
            summary.updates_available.append(record.id)

        merged = merge_result(record, result, update=update)
        if merged is not record:
            if record.record_hash and not record.has_valid_hash():
                logger.warning(f"{record.id}: was modified outside modmgr; its fingerprint is re-issued with this update")
            catalog.replace(index, merged)
            summary.changed.append(record.id)
    return summary


def write_results_csv(summary: ValidationSummary, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(["ID", "ExpectedVersion", "Found", "MatchedBy", "Version", "LatestVersion", "LatestGameVersion", "Error"])
        for result in summary.results:
            writer.writerow(
                [
                    result.record_id,
                    result.expected_version,
                    "yes" if result.exists else "no",
                    result.matched_by.value if result.matched_by else "",
                    result.version,
                    result.latest_version,
                    result.latest_game_version,
                    result.error or "",
                ]
            )
    return path
