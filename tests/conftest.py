import pytest

from modmgr.config import ModmgrConfig
from modmgr.exceptions import RegistryError
from modmgr.records import ModRecord

MODRINTH = "https://api.modrinth.com/v2"


class FakeHttp:
    """Serves canned registry payloads keyed by URL."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def headers(self, extra=None):
        headers = {"User-Agent": "modmgr-tests"}
        for key, value in (extra or {}).items():
            if value is not None:
                headers[key] = value
        return headers

    def get_json(self, url, headers=None):
        self.calls.append(url)
        value = self.responses.get(url)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise RegistryError(f"HTTP 404 error fetching {url}: not found")
        return value


def modrinth_version(number, loaders=("fabric",), game_versions=("1.21.5",), filename=None, primary=True):
    filename = filename or f"mod-{number}.jar"
    return {
        "id": f"id-{number}",
        "version_number": number,
        "loaders": list(loaders),
        "game_versions": list(game_versions),
        "files": [
            {"filename": filename, "url": f"https://cdn.modrinth.com/data/X/versions/{number}/{filename}", "primary": primary}
        ],
    }


def make_record(**fields):
    values = dict(id="X", game_version="1.21.5", loader="fabric", version="1.0")
    values.update(fields)
    return ModRecord(**values)


@pytest.fixture
def cfg(tmp_path):
    return ModmgrConfig.for_root(tmp_path)
