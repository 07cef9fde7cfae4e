class ModmgrError(RuntimeError):
    """Base exception for modmgr."""


class CatalogError(ModmgrError):
    """Raised when the catalog file cannot be read, parsed or written."""


class RegistryError(ModmgrError):
    """Raised when a registry request fails or returns an unusable payload."""


class DownloadError(ModmgrError):
    """Raised when an artifact download fails."""
