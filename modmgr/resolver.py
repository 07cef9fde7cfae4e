from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple
from urllib.parse import quote, urlencode

from .config import ModmgrConfig
from .exceptions import RegistryError
from .http import HttpClient
from .records import Host, ModRecord

logger = logging.getLogger(__name__)

KNOWN_LOADERS = ("fabric", "forge", "neoforge", "quilt", "liteloader", "rift")

_LEADING_TOKEN = re.compile(r"^(?:version|release|v)[\s._-]*(?=\d)", re.IGNORECASE)
_GAME_VERSION = re.compile(r"^(\d+(?:\.\d+)*)(.*)$")
_RELEASE_LIKE = re.compile(r"^\d+\.\d+")
_VERSION_TOKEN = re.compile(r"(?<![\d.])(\d+(?:\.\d+)+)")


class MatchKind(str, Enum):
    EXACT_VERSION = "exact-version"
    JAR_FILENAME = "jar-filename"
    LATEST_REQUEST = "latest-request"


@dataclass
class CandidateFile:
    filename: str
    url: str
    primary: bool = False


@dataclass
class Candidate:
    """A registry version entry, reduced to what resolution needs."""

    version: str
    loaders: List[str] = field(default_factory=list)
    game_versions: List[str] = field(default_factory=list)
    files: List[CandidateFile] = field(default_factory=list)
    version_id: str = ""
    aliases: List[str] = field(default_factory=list)

    def supports_loader(self, loader: str) -> bool:
        return normalize_loader(loader) in {normalize_loader(item) for item in self.loaders}

    def primary_file(self) -> Optional[CandidateFile]:
        for file in self.files:
            if file.primary:
                return file
        return self.files[0] if self.files else None

    @property
    def download_url(self) -> str:
        file = self.primary_file()
        return file.url if file else ""


@dataclass
class ProjectInfo:
    title: str = ""
    description: str = ""
    client_side: str = ""
    server_side: str = ""
    icon_url: str = ""
    issues_url: str = ""
    source_url: str = ""
    wiki_url: str = ""
    error: Optional[str] = None


@dataclass
class ValidationResult:
    record_id: str
    exists: bool
    matched_by: Optional[MatchKind] = None
    expected_version: str = ""
    version: str = ""
    version_url: str = ""
    latest_version_url: str = ""
    latest_version: str = ""
    latest_game_version: str = ""
    available_game_versions: List[str] = field(default_factory=list)
    project: Optional[ProjectInfo] = None
    provider: str = ""
    error: Optional[str] = None

    @property
    def version_corrected(self) -> bool:
        return self.matched_by is MatchKind.JAR_FILENAME and self.version != self.expected_version


def normalize_loader(value: Optional[str]) -> str:
    return re.sub(r"\s+", "", value or "").lower()


def normalize_version(value: Optional[str], loader: Optional[str] = None) -> str:
    """Canonical form of a version string for equality checks.

    Strips a leading ``v``/``version``/``release`` token and a trailing
    ``+<loader>`` or ``+mod`` suffix. Applying it twice gives the same result.
    """
    suffixes = set(KNOWN_LOADERS) | {"mod"}
    if loader:
        suffixes.add(normalize_loader(loader))
    current = (value or "").strip().lower()
    while True:
        stripped = _LEADING_TOKEN.sub("", current).strip()
        head, plus, tail = stripped.rpartition("+")
        if plus and tail.strip() in suffixes:
            stripped = head.strip()
        if stripped == current:
            return current
        current = stripped


def game_version_key(value: str) -> Tuple[Tuple[int, ...], int, str]:
    match = _GAME_VERSION.match(value.strip())
    if not match:
        return ((), 0, value)
    numbers = tuple(int(part) for part in match.group(1).split("."))
    rest = match.group(2)
    return (numbers, 0 if rest else 1, rest)


def highest_game_version(values: Iterable[str]) -> str:
    candidates = [value for value in values if value and _RELEASE_LIKE.match(value.strip())]
    if not candidates:
        return ""
    return max(candidates, key=game_version_key)


def _version_aliases(display_name: str, filename: str, game_versions: Iterable[str]) -> List[str]:
    """Bare version numbers found in a display name or file name.

    Tokens equal to one of the file's game versions are skipped.
    """
    skip = {value.strip() for value in game_versions}
    aliases: List[str] = []
    for text in (display_name, Path(filename).stem):
        for token in _VERSION_TOKEN.findall(text):
            if token in skip:
                continue
            if token not in aliases and token != display_name:
                aliases.append(token)
            break
    return aliases


class VersionResolver(Protocol):
    def resolve(self, record: ModRecord) -> ValidationResult:  # pragma: no cover - protocol
        ...


class RegistryResolver:
    """Shared resolution algorithm; subclasses supply the provider calls."""

    provider = ""

    def __init__(self, cfg: ModmgrConfig, http: Optional[HttpClient] = None) -> None:
        self.cfg = cfg
        self.http = http or HttpClient(cfg)

    # provider hooks

    def _versions_url(self, record_id: str) -> str:
        raise NotImplementedError

    def _project_url(self, record_id: str) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        return self.http.headers()

    def _parse_candidates(self, payload: Any) -> List[Candidate]:
        raise NotImplementedError

    def _parse_project(self, payload: Any) -> ProjectInfo:
        raise NotImplementedError

    # response cache

    def _cache_path(self, record_id: str, kind: str) -> Path:
        suffix = "" if kind == "versions" else f"-{kind}"
        safe_id = re.sub(r"[^A-Za-z0-9._-]+", "_", record_id)
        return self.cfg.api_cache_dir / f"{safe_id}{suffix}.json"

    def _get_cached_json(self, record_id: str, kind: str, url: str) -> Any:
        path = self._cache_path(record_id, kind)
        if self.cfg.use_cached_responses and path.exists():
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise RegistryError(f"Unreadable cached response {path}: {exc}") from exc

        payload = self.http.get_json(url, headers=self._headers())
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.debug(f"Could not cache response for {record_id}: {exc}")
        return payload

    def fetch_candidates(self, record_id: str) -> List[Candidate]:
        payload = self._get_cached_json(record_id, "versions", self._versions_url(record_id))
        try:
            return self._parse_candidates(payload)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise RegistryError(f"Malformed {self.provider} version list for {record_id}: {exc}") from exc

    def fetch_project(self, record_id: str) -> ProjectInfo:
        try:
            payload = self._get_cached_json(record_id, "project", self._project_url(record_id))
            return self._parse_project(payload)
        except RegistryError as exc:
            return ProjectInfo(error=str(exc))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            return ProjectInfo(error=f"Malformed {self.provider} project for {record_id}: {exc}")

    # resolution

    def resolve(self, record: ModRecord) -> ValidationResult:
        result = ValidationResult(
            record_id=record.id,
            exists=False,
            expected_version=record.version,
            version=record.version,
            provider=self.provider,
        )
        if not record.id:
            result.error = "Record has no registry id"
            return result

        try:
            candidates = self.fetch_candidates(record.id)
        except RegistryError as exc:
            logger.warning(f"{record.id}: {exc}")
            result.error = str(exc)
            return result

        filtered = candidates
        if normalize_loader(record.loader):
            filtered = [candidate for candidate in candidates if candidate.supports_loader(record.loader)]

        if candidates:
            result.latest_game_version = highest_game_version(candidates[0].game_versions)
        if filtered:
            result.latest_version = filtered[0].version
            result.latest_version_url = filtered[0].download_url

        match, matched_by = self._match(record, candidates, filtered)
        if match is not None:
            result.exists = True
            result.matched_by = matched_by
            result.version_url = match.download_url
            result.available_game_versions = list(match.game_versions)
            if matched_by is not MatchKind.EXACT_VERSION:
                result.version = match.version
            if not result.version_url:
                result.error = f"Version {match.version} has no downloadable files"
            logger.debug(f"{record.id}: matched {match.version} by {matched_by.value}")
        else:
            logger.info(f"{record.id}: version '{record.version}' not found for loader '{record.loader}'")

        result.project = self.fetch_project(record.id)
        if result.project.error:
            logger.debug(f"{record.id}: project metadata unavailable: {result.project.error}")
        return result

    def _match(
        self,
        record: ModRecord,
        candidates: List[Candidate],
        filtered: List[Candidate],
    ) -> Tuple[Optional[Candidate], Optional[MatchKind]]:
        if record.wants_latest:
            if filtered:
                return filtered[0], MatchKind.LATEST_REQUEST
            return None, None

        expected = normalize_version(record.version, record.loader)
        for candidate in filtered:
            if normalize_version(candidate.version, record.loader) == expected:
                return candidate, MatchKind.EXACT_VERSION
        for candidate in filtered:
            if any(normalize_version(alias, record.loader) == expected for alias in candidate.aliases):
                return candidate, MatchKind.EXACT_VERSION

        if record.jar:
            wanted = record.jar.strip().lower()
            for candidate in candidates:
                for file in candidate.files:
                    if file.filename.strip().lower() == wanted:
                        return candidate, MatchKind.JAR_FILENAME
        return None, None


class ModrinthResolver(RegistryResolver):
    provider = Host.MODRINTH.value

    def _versions_url(self, record_id: str) -> str:
        return f"{self.cfg.modrinth_api_base}/project/{quote(record_id, safe='')}/version"

    def _project_url(self, record_id: str) -> str:
        return f"{self.cfg.modrinth_api_base}/project/{quote(record_id, safe='')}"

    def _parse_candidates(self, payload: Any) -> List[Candidate]:
        if not isinstance(payload, list):
            raise RegistryError("Modrinth version list is not a JSON array")
        candidates = []
        for version in payload:
            files = [
                CandidateFile(
                    filename=str(file.get("filename") or ""),
                    url=str(file.get("url") or ""),
                    primary=bool(file.get("primary")),
                )
                for file in version.get("files") or []
            ]
            candidates.append(
                Candidate(
                    version=str(version.get("version_number") or ""),
                    loaders=[str(loader) for loader in version.get("loaders") or []],
                    game_versions=[str(item) for item in version.get("game_versions") or []],
                    files=files,
                    version_id=str(version.get("id") or ""),
                )
            )
        return candidates

    def _parse_project(self, payload: Any) -> ProjectInfo:
        return ProjectInfo(
            title=payload.get("title") or "",
            description=payload.get("description") or "",
            client_side=payload.get("client_side") or "",
            server_side=payload.get("server_side") or "",
            icon_url=payload.get("icon_url") or "",
            issues_url=payload.get("issues_url") or "",
            source_url=payload.get("source_url") or "",
            wiki_url=payload.get("wiki_url") or "",
        )


class CurseForgeResolver(RegistryResolver):
    provider = Host.CURSEFORGE.value
    CDN_BASE = "https://edge.forgecdn.net/files"

    def _versions_url(self, record_id: str) -> str:
        query = urlencode({"pageSize": 50})
        return f"{self.cfg.curseforge_api_base}/mods/{quote(record_id, safe='')}/files?{query}"

    def _project_url(self, record_id: str) -> str:
        return f"{self.cfg.curseforge_api_base}/mods/{quote(record_id, safe='')}"

    def _headers(self) -> Dict[str, str]:
        if not self.cfg.curseforge_api_key:
            raise RegistryError(
                "CurseForge API key missing. Set MODMGR_CURSEFORGE_API_KEY or add curseforge_api_key to .modmgr.json."
            )
        return self.http.headers({"x-api-key": self.cfg.curseforge_api_key})

    def _parse_candidates(self, payload: Any) -> List[Candidate]:
        files = payload.get("data") if isinstance(payload, dict) else payload
        if not isinstance(files, list):
            raise RegistryError("CurseForge file list is not a JSON array")
        candidates = []
        for file_data in files:
            tags = [str(tag) for tag in file_data.get("gameVersions") or []]
            loaders = [tag.lower() for tag in tags if normalize_loader(tag) in KNOWN_LOADERS]
            game_versions = [tag for tag in tags if _RELEASE_LIKE.match(tag)]
            filename = str(file_data.get("fileName") or "")
            display_name = str(file_data.get("displayName") or filename)
            candidates.append(
                Candidate(
                    version=display_name,
                    loaders=loaders,
                    game_versions=game_versions,
                    files=[CandidateFile(filename=filename, url=self._download_url(file_data), primary=True)],
                    version_id=str(file_data.get("id") or ""),
                    aliases=_version_aliases(display_name, filename, game_versions),
                )
            )
        return candidates

    def _download_url(self, file_data: Dict[str, Any]) -> str:
        url = file_data.get("downloadUrl")
        if url:
            return str(url)
        file_id = file_data.get("id")
        filename = file_data.get("fileName")
        if not file_id or not filename:
            return ""
        # Files with third-party distribution disabled still live on the CDN.
        file_id = int(file_id)
        return f"{self.CDN_BASE}/{file_id // 1000}/{file_id % 1000}/{filename}"

    def _parse_project(self, payload: Any) -> ProjectInfo:
        data = payload.get("data") or {}
        links = data.get("links") or {}
        return ProjectInfo(
            title=data.get("name") or "",
            description=data.get("summary") or "",
            icon_url=(data.get("logo") or {}).get("url") or "",
            issues_url=links.get("issuesUrl") or "",
            source_url=links.get("sourceUrl") or "",
            wiki_url=links.get("wikiUrl") or "",
        )


class DirectResolver:
    """System artifacts and direct-host records use their URL verbatim."""

    provider = Host.DIRECT.value

    def resolve(self, record: ModRecord) -> ValidationResult:
        url = record.direct_url or record.url
        return ValidationResult(
            record_id=record.id,
            exists=bool(url),
            expected_version=record.version,
            version=record.version,
            version_url=url,
            latest_version_url=url,
            latest_version=record.version,
            latest_game_version=record.game_version,
            provider=self.provider,
            error=None if url else "No direct URL recorded",
        )


class RecordResolver:
    """Dispatches each record to the resolver for its host."""

    def __init__(
        self,
        cfg: ModmgrConfig,
        http: Optional[HttpClient] = None,
        resolvers: Optional[Dict[Host, VersionResolver]] = None,
    ) -> None:
        http = http or HttpClient(cfg)
        self.resolvers: Dict[Host, VersionResolver] = resolvers or {
            Host.MODRINTH: ModrinthResolver(cfg, http),
            Host.CURSEFORGE: CurseForgeResolver(cfg, http),
            Host.DIRECT: DirectResolver(),
        }

    def resolve(self, record: ModRecord) -> ValidationResult:
        host = Host.DIRECT if record.is_system else record.host
        return self.resolvers[host].resolve(record)
