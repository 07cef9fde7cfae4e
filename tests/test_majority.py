import pytest

from conftest import make_record
from modmgr.majority import select_majority


def _records(*versions):
    return [make_record(id=f"m{index}", latest_game_version=version) for index, version in enumerate(versions)]


def test_majority_picks_most_common_version():
    result = select_majority(_records("1.21.5", "1.21.6", "1.21.5", "", "1.21.4"), default="1.20.1")

    assert result.version == "1.21.5"
    assert result.count == 2
    assert result.total == 4
    assert result.is_default is False
    assert [share.version for share in result.distribution] == ["1.21.5", "1.21.6", "1.21.4"]


def test_majority_falls_back_to_default():
    result = select_majority(_records("", ""), default="1.21.5")

    assert result.version == "1.21.5"
    assert result.is_default is True
    assert result.distribution == []


def test_tie_goes_to_first_encountered_and_is_reported():
    result = select_majority(_records("1.21.6", "1.21.5", "1.21.5", "1.21.6"), default="x")

    assert result.version == "1.21.6"
    assert result.tied == ["1.21.5"]


@pytest.mark.parametrize(
    "versions",
    [
        ("a",),
        ("1.21.5", "1.21.6", "1.21.7"),
        ("1.21.5",) * 5 + ("1.21.6",) * 2 + ("1.21.4",),
        ("1.20.1", "1.21", "1.21", "1.20.1", "1.19.2", "1.21"),
    ],
)
def test_winner_count_dominates_and_shares_sum_to_100(versions):
    result = select_majority(_records(*versions), default="x")

    assert all(result.count >= share.count for share in result.distribution)
    assert abs(sum(share.percentage for share in result.distribution) - 100.0) <= 0.5
