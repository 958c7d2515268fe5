"""Tests for BagPartition construction, validation and the round schedule."""

import pytest
import torch

from torch_milann import BagPartition, Round, as_partition


class TestConstruction:
    """Tests for building partitions."""

    def test_from_ranges(self):
        bags = BagPartition([range(0, 3), range(3, 4), range(4, 6)])
        assert bags.num_bags == 3
        assert len(bags) == 3
        assert bags.lengths.tolist() == [3, 1, 2]
        assert bags.starts.tolist() == [0, 3, 4]
        assert bags.max_length == 3
        assert bags.stop == 6

    def test_from_pairs(self):
        """(start, stop) pairs are equivalent to ranges."""
        assert BagPartition([(0, 2), (2, 5)]) == BagPartition([range(0, 2), range(2, 5)])

    def test_from_lengths(self):
        bags = BagPartition.from_lengths([2, 3, 1])
        assert bags.ranges() == [range(0, 2), range(2, 5), range(5, 6)]

    def test_from_lengths_with_offset(self):
        bags = BagPartition.from_lengths([2, 2], start=3)
        assert bags.ranges() == [range(3, 5), range(5, 7)]
        assert bags.stop == 7

    def test_from_lengths_tensor(self):
        bags = BagPartition.from_lengths(torch.tensor([1, 4]))
        assert bags.lengths.tolist() == [1, 4]

    def test_gaps_allowed(self):
        """Bags need not cover every instance."""
        bags = BagPartition([range(1, 3), range(5, 6)])
        assert bags.starts.tolist() == [1, 5]
        assert bags.stop == 6

    def test_iteration_yields_ranges(self):
        bags = BagPartition([(0, 2), (2, 3)])
        assert list(bags) == [range(0, 2), range(2, 3)]

    def test_as_partition_passthrough(self):
        bags = BagPartition([range(0, 2)])
        assert as_partition(bags) is bags

    def test_as_partition_builds(self):
        bags = as_partition([range(0, 2), range(2, 4)])
        assert isinstance(bags, BagPartition)
        assert bags.num_bags == 2

    def test_hashable(self):
        a = BagPartition([range(0, 2)])
        b = BagPartition([(0, 2)])
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_repr_truncates(self):
        bags = BagPartition.from_lengths([1] * 10)
        assert "10 bags" in repr(bags)


class TestValidation:
    """Malformed partitions are rejected at construction."""

    def test_empty_partition_raises(self):
        with pytest.raises(ValueError, match="at least one bag"):
            BagPartition([])

    def test_empty_bag_raises(self):
        with pytest.raises(ValueError, match="is empty"):
            BagPartition([range(0, 2), range(2, 2)])

    def test_reversed_bag_raises(self):
        with pytest.raises(ValueError, match="is empty"):
            BagPartition([(3, 1)])

    def test_overlap_raises(self):
        with pytest.raises(ValueError, match="overlaps"):
            BagPartition([range(0, 3), range(2, 4)])

    def test_non_increasing_raises(self):
        with pytest.raises(ValueError, match="overlaps or precedes"):
            BagPartition([range(4, 6), range(0, 2)])

    def test_negative_start_raises(self):
        with pytest.raises(ValueError, match="negative start"):
            BagPartition([(-1, 2)])

    def test_step_raises(self):
        with pytest.raises(ValueError, match="step 1"):
            BagPartition([range(0, 6, 2)])

    def test_bad_pair_raises(self):
        with pytest.raises(ValueError, match=r"\(start, stop\) pair"):
            BagPartition([(0, 1, 2)])

    def test_non_integer_bounds_raise(self):
        with pytest.raises(ValueError, match="must be integers"):
            BagPartition([(0.0, 2.0)])

    def test_bool_bounds_raise(self):
        with pytest.raises(ValueError, match="must be integers"):
            BagPartition([(False, True)])

    def test_from_lengths_zero_raises(self):
        with pytest.raises(ValueError, match="must be positive"):
            BagPartition.from_lengths([2, 0, 1])

    def test_from_lengths_float_tensor_raises(self):
        with pytest.raises(ValueError, match="integer dtype"):
            BagPartition.from_lengths(torch.tensor([2.0, 1.0]))

    def test_from_lengths_bool_tensor_raises(self):
        with pytest.raises(ValueError, match="torch.bool"):
            BagPartition.from_lengths(torch.tensor([True, True]))

    def test_from_lengths_2d_raises(self):
        with pytest.raises(ValueError, match="must be 1D"):
            BagPartition.from_lengths(torch.tensor([[1, 2]]))


class TestRounds:
    """Tests for the round schedule."""

    def test_schedule(self):
        bags = BagPartition([range(0, 3), range(3, 4), range(4, 6)])
        rounds = bags.rounds()
        assert len(rounds) == bags.max_length
        assert all(isinstance(r, Round) for r in rounds)
        assert [r.bags.tolist() for r in rounds] == [[0, 1, 2], [0, 2], [0]]
        assert [r.instances.tolist() for r in rounds] == [[0, 3, 4], [1, 5], [2]]

    def test_every_instance_visited_once(self):
        """Each bagged instance is the representative of exactly one round."""
        bags = BagPartition([range(1, 4), range(4, 5), range(7, 11)])
        visited = torch.cat([r.instances for r in bags.rounds()]).tolist()
        expected = [i for seg in bags for i in seg]
        assert sorted(visited) == expected

    def test_rounds_cached(self):
        bags = BagPartition.from_lengths([2, 3])
        assert bags.rounds() is bags.rounds()
        assert bags.rounds() is bags.rounds(torch.device("cpu"))

    def test_index_dtype(self):
        bags = BagPartition.from_lengths([2, 3])
        for r in bags.rounds():
            assert r.bags.dtype == torch.long
            assert r.instances.dtype == torch.long

    def test_length_groups(self):
        bags = BagPartition([range(0, 2), range(2, 3), range(3, 5), range(5, 8)])
        groups = bags.length_groups()
        assert [length for length, _ in groups] == [2, 3]
        assert groups[0][1].tolist() == [0, 1, 3, 4]
        assert groups[1][1].tolist() == [5, 6, 7]

    def test_length_groups_all_singletons(self):
        assert BagPartition.from_lengths([1, 1, 1]).length_groups() == []
