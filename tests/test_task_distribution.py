import pytest

from balancer.utils.exceptions import PartitionError
from balancer.utils.task_distribution import partition_range, partition_table, split


@pytest.mark.parametrize("size", [1, 2, 3, 4, 7, 16])
@pytest.mark.parametrize("total_len", [0, 1, 2, 5, 7, 10, 15, 16, 17, 100, 1001])
def test_ranges_cover_total_exactly_once(total_len, size):
    table = partition_table(total_len, size)

    assert len(table) == size
    assert table[0][0] == 0
    assert table[-1][1] == total_len
    for (_, prev_end), (start, _) in zip(table, table[1:]):
        assert start == prev_end
    covered = [i for start, end in table for i in range(start, end)]
    assert covered == list(range(total_len))


@pytest.mark.parametrize("size", [1, 2, 3, 5, 8])
@pytest.mark.parametrize("total_len", [0, 3, 9, 10, 11, 64])
def test_range_lengths_differ_by_at_most_one(total_len, size):
    lengths = [end - start for start, end in partition_table(total_len, size)]

    assert max(lengths) - min(lengths) <= 1
    # Longer ranges come first
    assert lengths == sorted(lengths, reverse=True)


def test_two_ranks_over_ten():
    assert partition_range(10, 0, 2) == (0, 5)
    assert partition_range(10, 1, 2) == (5, 10)


def test_remainder_goes_to_lowest_ranks():
    assert partition_table(7, 3) == [(0, 3), (3, 5), (5, 7)]


def test_fewer_items_than_ranks_gives_empty_ranges():
    table = partition_table(2, 4)

    assert table == [(0, 1), (1, 2), (2, 2), (2, 2)]


def test_single_rank_owns_everything():
    assert partition_range(42, 0, 1) == (0, 42)
    assert partition_range(0, 0, 1) == (0, 0)


def test_same_table_on_every_rank():
    tables = [[partition_range(23, r, 5) for r in range(5)] for _ in range(5)]

    assert all(table == tables[0] for table in tables)


@pytest.mark.parametrize(
    "total_len, rank, size",
    [(10, 0, 0), (10, -1, 2), (10, 2, 2), (-1, 0, 1)],
)
def test_invalid_arguments_raise(total_len, rank, size):
    with pytest.raises(PartitionError):
        partition_range(total_len, rank, size)


def test_partition_error_is_a_value_error():
    with pytest.raises(ValueError, match="size must be >= 1"):
        partition_range(1, 0, 0)


def test_split_matches_table():
    items = list("abcdefg")

    assert split(items, 3) == [["a", "b", "c"], ["d", "e"], ["f", "g"]]
    assert split([], 2) == [[], []]
