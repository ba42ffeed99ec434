"""Tests for the SQLite score store."""

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from plusplus_bot.adapters.sqlite_repository import SQLiteRepository
from plusplus_bot.domain.exceptions import RepositoryError
from plusplus_bot.domain.protocols import RepositoryProtocol


def test_apply_creates_record_lazily(repo: RepositoryProtocol) -> None:
    record = repo.apply("U0TARGET1", 1, 1)

    assert record.item == "U0TARGET1"
    assert record.total == 1
    assert record.temp == 1


def test_apply_accumulates_total_and_temp(repo: RepositoryProtocol) -> None:
    repo.apply("coffee", 1, 3)
    repo.apply("coffee", -1, 1)
    record = repo.apply("coffee", 1, 2)

    assert record.total == 4
    assert record.temp == 4


def test_scores_can_go_negative(repo: RepositoryProtocol) -> None:
    record = repo.apply("mondays", -1, 5)

    assert record.total == -5
    assert record.temp == -5


def test_items_are_case_insensitive_and_keep_first_spelling(
    repo: RepositoryProtocol,
) -> None:
    repo.apply("Coffee", 1, 1)
    record = repo.apply("COFFEE", 1, 1)

    assert record.item == "Coffee"
    assert record.total == 2
    assert repo.query("coffee").total == 2


def test_query_creates_zeroed_record(repo: RepositoryProtocol) -> None:
    record = repo.query("tea")

    assert (record.item, record.total, record.temp) == ("tea", 0, 0)
    assert [r.item for r in repo.retrieve_top_scores()] == ["tea"]


def test_reset_era_zeroes_temp_only(repo: RepositoryProtocol) -> None:
    repo.apply("coffee", 1, 3)
    repo.apply("tea", 1, 2)
    repo.query("water")

    reset_count = repo.reset_era()

    assert reset_count == 2
    coffee = repo.query("coffee")
    assert coffee.total == 3
    assert coffee.temp == 0

    after = repo.apply("coffee", 1, 1)
    assert after.total == 4
    assert after.temp == 1


def test_retrieve_top_scores_orders_by_total(repo: RepositoryProtocol) -> None:
    repo.apply("bravo", 1, 2)
    repo.apply("alpha", 1, 2)
    repo.apply("charlie", 1, 5)
    repo.apply("delta", -1, 1)

    records = repo.retrieve_top_scores()
    assert [r.item for r in records] == ["charlie", "alpha", "bravo", "delta"]

    top_two = repo.retrieve_top_scores(limit=2)
    assert [r.item for r in top_two] == ["charlie", "alpha"]


@pytest.mark.parametrize(("polarity", "magnitude"), [(0, 1), (2, 1), (1, 0)])
def test_apply_rejects_invalid_delta(
    repo: RepositoryProtocol, polarity: int, magnitude: int
) -> None:
    with pytest.raises(ValueError):
        repo.apply("coffee", polarity, magnitude)


def test_concurrent_applies_are_not_lost(repo: RepositoryProtocol) -> None:
    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(lambda _: repo.apply("coffee", 1, 1), range(40)))

    record = repo.query("coffee")
    assert record.total == 40
    assert record.temp == 40


def test_storage_errors_are_wrapped(tmp_path: Path) -> None:
    db_path = tmp_path / "broken.sqlite"
    repository = SQLiteRepository(str(db_path))

    with sqlite3.connect(db_path) as conn:
        conn.execute("DROP TABLE scores")

    with pytest.raises(RepositoryError):
        repository.apply("coffee", 1, 1)


def test_schema_creation_is_idempotent(tmp_path: Path) -> None:
    db_path = str(tmp_path / "nested" / "plusplus.sqlite")

    first = SQLiteRepository(db_path)
    first.apply("coffee", 1, 1)
    second = SQLiteRepository(db_path)

    assert second.query("coffee").total == 1


def test_reads_do_not_wait_for_an_open_writer(tmp_path: Path) -> None:
    repository = SQLiteRepository(str(tmp_path / "reads.db"), busy_timeout=0.1)
    repository.apply("coffee", 1, 2)
    repository.consume_rate_limit("U0ACTOR01", 1_700_000_000, 3, 3600)

    writer = sqlite3.connect(str(tmp_path / "reads.db"), isolation_level=None)
    try:
        writer.execute("BEGIN IMMEDIATE")

        assert [r.item for r in repository.retrieve_top_scores()] == ["coffee"]
        stored = repository.get_rate_limit("U0ACTOR01")
        assert stored is not None
        assert stored.count == 1
        with pytest.raises(RepositoryError):
            repository.apply("coffee", 1, 1)
    finally:
        writer.execute("ROLLBACK")
        writer.close()
