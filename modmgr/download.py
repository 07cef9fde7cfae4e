from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Set

from .config import ModmgrConfig
from .exceptions import DownloadError
from .http import HttpClient
from .layout import artifact_filename, class_folder
from .records import ModRecord

logger = logging.getLogger(__name__)

RESULTS_FILENAME = "mod-download-results.csv"


class Downloader(Protocol):
    def download(self, url: str, dest: Path) -> Path:  # pragma: no cover - protocol
        ...


@dataclass
class DownloadPlan:
    record: ModRecord
    url: str
    target: Path
    game_version: str


@dataclass
class DownloadFailure:
    record_id: str
    url: str
    target: Path
    error: str


@dataclass
class DownloadOutcome:
    record_id: str
    target: Optional[Path]
    status: str
    error: str = ""


@dataclass
class DownloadSummary:
    downloaded: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    failed: List[DownloadFailure] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    outcomes: List[DownloadOutcome] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.failed)


class DownloadOrchestrator:
    """Fetches resolved artifacts into ``<cache_root>/<game version>/<folder>/``.

    One instance remembers which paths it has already reported as present, so
    running it several times in one invocation reports each path once.
    """

    def __init__(
        self,
        cfg: ModmgrConfig,
        downloader: Optional[Downloader] = None,
        *,
        majority_version: Optional[str] = None,
        use_latest: bool = False,
        force: bool = False,
    ) -> None:
        self.cfg = cfg
        self.root = cfg.cache_root
        self.downloader = downloader or HttpClient(cfg)
        self.majority_version = majority_version or cfg.default_game_version
        self.use_latest = use_latest
        self.force = force
        self._announced: Set[Path] = set()

    def source_url(self, record: ModRecord) -> str:
        if record.is_system:
            return record.direct_url or record.url or record.version_url
        if self.use_latest:
            return record.latest_version_url or record.version_url
        return record.version_url or record.direct_url

    def target_version(self, record: ModRecord) -> str:
        if self.use_latest:
            return self.majority_version
        return record.game_version or self.majority_version

    def target_path(self, record: ModRecord, url: str) -> Path:
        version_dir = self.root / self.target_version(record)
        folder = class_folder(record)
        directory = version_dir / folder if folder else version_dir
        return directory / artifact_filename(record, url, use_latest=self.use_latest)

    def plan(self, records: Iterable[ModRecord], game_version: Optional[str] = None) -> tuple[List[DownloadPlan], List[str]]:
        plans: List[DownloadPlan] = []
        unresolved: List[str] = []
        for record in records:
            if game_version and record.game_version != game_version:
                continue
            url = self.source_url(record)
            if not url:
                unresolved.append(record.id)
                continue
            plans.append(
                DownloadPlan(
                    record=record,
                    url=url,
                    target=self.target_path(record, url),
                    game_version=self.target_version(record),
                )
            )
        return plans, unresolved

    def run(self, records: Iterable[ModRecord], game_version: Optional[str] = None) -> DownloadSummary:
        plans, unresolved = self.plan(records, game_version)
        summary = DownloadSummary(unresolved=unresolved)
        for record_id in unresolved:
            summary.outcomes.append(DownloadOutcome(record_id=record_id, target=None, status="unresolved"))
            logger.debug(f"{record_id}: no resolved URL, nothing to download")

        pre_existing = {plan.target for plan in plans if plan.target.exists()}
        fetched: Set[Path] = set()

        for plan in plans:
            target = plan.target
            if not self.force:
                if target in fetched:
                    summary.outcomes.append(DownloadOutcome(plan.record.id, target, "duplicate"))
                    continue
                if target in pre_existing:
                    summary.skipped.append(target)
                    summary.outcomes.append(DownloadOutcome(plan.record.id, target, "exists"))
                    if target not in self._announced:
                        self._announced.add(target)
                        message = f"{plan.record.id}: already exists at {target}"
                        summary.messages.append(message)
                        logger.info(message)
                    continue

            try:
                self.downloader.download(plan.url, target)
            except (DownloadError, OSError) as exc:
                if target.exists() and target not in pre_existing:
                    target.unlink()
                failure = DownloadFailure(record_id=plan.record.id, url=plan.url, target=target, error=str(exc))
                summary.failed.append(failure)
                summary.outcomes.append(DownloadOutcome(plan.record.id, target, "failed", str(exc)))
                logger.warning(f"{plan.record.id}: download failed: {exc}")
                continue

            fetched.add(target)
            summary.downloaded.append(target)
            summary.outcomes.append(DownloadOutcome(plan.record.id, target, "downloaded"))
            logger.info(f"{plan.record.id}: downloaded {target.name}")

        return summary

    def write_results_csv(self, summary: DownloadSummary, path: Optional[Path] = None) -> Path:
        path = path or self.root / RESULTS_FILENAME
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(["ID", "Target", "Status", "Error"])
            for outcome in summary.outcomes:
                writer.writerow([outcome.record_id, str(outcome.target or ""), outcome.status, outcome.error])
        return path
