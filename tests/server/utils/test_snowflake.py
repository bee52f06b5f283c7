from unittest.mock import patch

import pytest

from foldertree.server.utils.snowflake import SnowflakeGenerator, next_id


def test_ids_are_unique_and_increasing() -> None:
    generator = SnowflakeGenerator(worker_id=3)
    ids = [generator.next_id() for _ in range(5000)]

    assert len(set(ids)) == len(ids)
    assert ids == sorted(ids)


def test_module_level_ids_are_positive() -> None:
    assert 0 < next_id() < next_id()


def test_worker_id_bounds() -> None:
    with pytest.raises(ValueError):
        SnowflakeGenerator(worker_id=-1)
    with pytest.raises(ValueError):
        SnowflakeGenerator(worker_id=1024)


def test_clock_moving_backwards() -> None:
    generator = SnowflakeGenerator()
    with patch(
        "foldertree.server.utils.snowflake._now_ms",
        side_effect=[1_800_000_000_000, 1_799_999_999_000],
    ):
        first = generator.next_id()
        second = generator.next_id()

    assert second > first
