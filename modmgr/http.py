from __future__ import annotations

import http.client
import json
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Dict, Optional

from .config import ModmgrConfig
from .exceptions import DownloadError, RegistryError


def _build_request(url: str, headers: Optional[Dict[str, str]] = None) -> urllib.request.Request:
    request = urllib.request.Request(url)
    if headers:
        for key, value in headers.items():
            if value is not None:
                request.add_header(key, value)
    return request


def http_get_json(url: str, headers: Optional[Dict[str, str]] = None, timeout: float = 30.0) -> Any:
    try:
        with urllib.request.urlopen(_build_request(url, headers), timeout=timeout) as response:
            payload = response.read()
    except urllib.error.HTTPError as exc:  # pragma: no cover - network dependent
        detail = exc.read().decode("utf-8", errors="ignore")
        message = detail or exc.reason
        raise RegistryError(f"HTTP {exc.code} error fetching {url}: {message}") from exc
    except urllib.error.URLError as exc:  # pragma: no cover - network dependent
        raise RegistryError(f"Network error fetching {url}: {exc.reason}") from exc
    except (TimeoutError, OSError) as exc:  # pragma: no cover - network dependent
        raise RegistryError(f"Network error fetching {url}: {exc}") from exc
    except (http.client.HTTPException, ValueError) as exc:
        raise RegistryError(f"Bad response or URL for {url}: {exc!r}") from exc

    try:
        return json.loads(payload.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RegistryError(f"Invalid JSON payload from {url}: {exc}") from exc


def download_file(
    url: str,
    dest: Path,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 60.0,
) -> Path:
    """Stream ``url`` into ``dest``; nothing is left behind on failure."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    partial = dest.with_name(dest.name + ".part")
    try:
        with urllib.request.urlopen(_build_request(url, headers), timeout=timeout) as response, partial.open("wb") as handle:
            shutil.copyfileobj(response, handle, 1024 * 1024)
        partial.replace(dest)
    except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as exc:
        raise DownloadError(f"Failed to download {url}: {exc}") from exc
    finally:
        if partial.exists():
            partial.unlink()
    return dest


class HttpClient:
    """Carries the headers and timeout every registry call needs."""

    def __init__(self, cfg: ModmgrConfig) -> None:
        self.timeout = cfg.http_timeout
        self.user_agent = cfg.api_user_agent

    def headers(self, extra: Optional[Dict[str, Optional[str]]] = None) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }
        for key, value in (extra or {}).items():
            if value is not None:
                headers[key] = value
        return headers

    def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        return http_get_json(url, headers=headers or self.headers(), timeout=self.timeout)

    def download(self, url: str, dest: Path) -> Path:
        return download_file(url, dest, headers={"User-Agent": self.user_agent}, timeout=self.timeout * 2)
