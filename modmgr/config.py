from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_FILENAME = ".modmgr.json"
DEFAULT_ENV_FILENAME = ".env"
DEFAULT_CATALOG = Path("modlist.csv")
DEFAULT_CACHE_ROOT = Path("download")
DEFAULT_API_CACHE_DIR = Path("apiresponse")
DEFAULT_REPORT_DIR = Path("releases")
DEFAULT_BACKUP_DIR = Path("backups")
DEFAULT_GAME_VERSION = "1.21.5"
DEFAULT_LOADER = "fabric"

MODRINTH_API_BASE = "https://api.modrinth.com/v2"
CURSEFORGE_API_BASE = "https://api.curseforge.com/v1"


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


class FileConfig(BaseModel):
    catalog: Optional[Path] = None
    cache_root: Optional[Path] = None
    api_cache_dir: Optional[Path] = None
    report_dir: Optional[Path] = None
    backup_dir: Optional[Path] = None
    default_game_version: str = DEFAULT_GAME_VERSION
    default_loader: str = DEFAULT_LOADER
    modrinth_api_base: Optional[str] = None
    curseforge_api_base: Optional[str] = None
    curseforge_api_key: Optional[str] = None
    api_user_agent: Optional[str] = None
    http_timeout: float = Field(default=30.0, description="Seconds before a registry call is abandoned")
    use_cached_responses: bool = False


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MODMGR_", extra="ignore")

    project_root: Optional[Path] = None
    catalog: Optional[Path] = None
    cache_root: Optional[Path] = None
    api_cache_dir: Optional[Path] = None
    default_game_version: Optional[str] = None
    modrinth_api_base: Optional[str] = None
    curseforge_api_base: Optional[str] = None
    curseforge_api_key: Optional[str] = None
    api_user_agent: Optional[str] = None
    use_cached_responses: Optional[bool] = None


class ModmgrConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_root: Path
    catalog_path: Path
    cache_root: Path
    api_cache_dir: Path
    report_dir: Path
    backup_dir: Path
    default_game_version: str = DEFAULT_GAME_VERSION
    default_loader: str = DEFAULT_LOADER
    modrinth_api_base: str = MODRINTH_API_BASE
    curseforge_api_base: str = CURSEFORGE_API_BASE
    curseforge_api_key: Optional[str] = None
    api_user_agent: str = "modmgr/dev"
    http_timeout: float = 30.0
    use_cached_responses: bool = False

    @classmethod
    def for_root(cls, root: Path, **overrides) -> "ModmgrConfig":
        """Build a config with default paths under ``root``."""
        root = Path(root)
        values = dict(
            project_root=root,
            catalog_path=root / DEFAULT_CATALOG,
            cache_root=root / DEFAULT_CACHE_ROOT,
            api_cache_dir=root / DEFAULT_API_CACHE_DIR,
            report_dir=root / DEFAULT_REPORT_DIR,
            backup_dir=root / DEFAULT_BACKUP_DIR,
        )
        values.update(overrides)
        return cls(**values)


def _coerce_path(base: Path, value: Path | str) -> Path:
    path = value if isinstance(value, Path) else Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def _load_file_config(path: Path) -> FileConfig:
    if not path.exists():
        return FileConfig()
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:  # pragma: no cover - config errors are user-facing
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    return FileConfig(**data)


def load_config(root: Path | None = None) -> ModmgrConfig:
    """Load configuration from env + .modmgr.json."""

    project_root = Path(root).expanduser().resolve() if root is not None else Path.cwd().resolve()
    env_file = project_root / DEFAULT_ENV_FILENAME
    env_settings = EnvSettings(
        _env_file=env_file if env_file.exists() else None,
    )

    if env_settings.project_root:
        project_root = _coerce_path(project_root, env_settings.project_root)

    file_cfg = _load_file_config(project_root / DEFAULT_CONFIG_FILENAME)

    catalog = env_settings.catalog or file_cfg.catalog or DEFAULT_CATALOG
    cache_root = env_settings.cache_root or file_cfg.cache_root or DEFAULT_CACHE_ROOT
    api_cache_dir = env_settings.api_cache_dir or file_cfg.api_cache_dir or DEFAULT_API_CACHE_DIR
    report_dir = file_cfg.report_dir or DEFAULT_REPORT_DIR
    backup_dir = file_cfg.backup_dir or DEFAULT_BACKUP_DIR

    use_cached = file_cfg.use_cached_responses
    if env_settings.use_cached_responses is not None:
        use_cached = env_settings.use_cached_responses

    return ModmgrConfig(
        project_root=project_root,
        catalog_path=_coerce_path(project_root, catalog),
        cache_root=_coerce_path(project_root, cache_root),
        api_cache_dir=_coerce_path(project_root, api_cache_dir),
        report_dir=_coerce_path(project_root, report_dir),
        backup_dir=_coerce_path(project_root, backup_dir),
        default_game_version=env_settings.default_game_version or file_cfg.default_game_version,
        default_loader=file_cfg.default_loader,
        modrinth_api_base=env_settings.modrinth_api_base or file_cfg.modrinth_api_base or MODRINTH_API_BASE,
        curseforge_api_base=env_settings.curseforge_api_base or file_cfg.curseforge_api_base or CURSEFORGE_API_BASE,
        curseforge_api_key=env_settings.curseforge_api_key or file_cfg.curseforge_api_key,
        api_user_agent=env_settings.api_user_agent or file_cfg.api_user_agent or "modmgr/dev",
        http_timeout=file_cfg.http_timeout,
        use_cached_responses=use_cached,
    )
