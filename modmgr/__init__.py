from .config import ModmgrConfig, load_config
from .download import DownloadOrchestrator
from .majority import select_majority
from .reconcile import ReleaseReconciler
from .records import Catalog, ModRecord, load_catalog, save_catalog
from .resolver import RecordResolver, ValidationResult, normalize_version

__all__ = [
    "Catalog",
    "DownloadOrchestrator",
    "ModRecord",
    "ModmgrConfig",
    "RecordResolver",
    "ReleaseReconciler",
    "ValidationResult",
    "load_catalog",
    "load_config",
    "normalize_version",
    "save_catalog",
    "select_majority",
]
