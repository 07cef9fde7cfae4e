from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .records import ModRecord


@dataclass
class VersionShare:
    version: str
    count: int
    percentage: float


@dataclass
class MajorityVersion:
    version: str
    total: int
    distribution: List[VersionShare] = field(default_factory=list)
    is_default: bool = False
    tied: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        for share in self.distribution:
            if share.version == self.version:
                return share.count
        return 0


def select_majority(records: Iterable[ModRecord], default: str) -> MajorityVersion:
    """Pick the game version most records report as their latest target.

    Ties go to the version encountered first, so the outcome depends on the
    order records (and registry responses) arrive in; ``tied`` lists the other
    versions sharing the top count so callers can report it.
    """
    counts: Dict[str, int] = {}
    for record in records:
        value = record.latest_game_version.strip()
        if value:
            counts[value] = counts.get(value, 0) + 1

    total = sum(counts.values())
    if not total:
        return MajorityVersion(version=default, total=0, is_default=True)

    winner = ""
    best = 0
    for version, count in counts.items():
        if count > best:
            winner, best = version, count

    distribution = [
        VersionShare(version=version, count=count, percentage=round(count * 100.0 / total, 1))
        for version, count in sorted(counts.items(), key=lambda item: -item[1])
    ]
    tied = [version for version, count in counts.items() if count == best and version != winner]
    return MajorityVersion(version=winner, total=total, distribution=distribution, tied=tied)
