r"""Bag partitions over a contiguous instance axis.

A :class:`BagPartition` splits the instance axis of a ``(features, N)``
tensor into ordered, non-overlapping, contiguous half-open ranges ("bags").
Besides validation and per-bag statistics it provides the *round schedule*
shared by every segmented reduction in this package.

Round Schedule
--------------
A ragged reduction over bags of different lengths is converted into
``max_length`` dense steps. In round ``r`` every bag with ``length > r`` is
*active* and contributes its round-``r`` representative ``start + r``::

    bags:      [0 1 2] [3] [4 5]
    round 0:   bags (0, 1, 2) <- instances (0, 3, 4)
    round 1:   bags (0, 2)    <- instances (1, 5)
    round 2:   bags (0,)      <- instances (2,)

Each round is a single gather/scatter over the active columns, so the number
of sequential steps depends only on the longest bag, not on the bag count.
"""

import numbers
from collections.abc import Iterable, Sequence
from typing import NamedTuple, Optional, Union

import torch
from torch import Tensor

__all__ = [
    "BagPartition",
    "Round",
    "as_partition",
]


class Round(NamedTuple):
    r"""Index tensors of one round of the schedule.

    Attributes:
        bags (Tensor): Indices of the active bags, shape :math:`(A,)`.
        instances (Tensor): Absolute instance index of each active bag's
            round representative, shape :math:`(A,)`.
    """

    bags: Tensor
    instances: Tensor


RangeLike = Union[range, tuple[int, int], Sequence[int]]


def _as_bounds(segment: RangeLike, position: int) -> tuple[int, int]:
    if isinstance(segment, range):
        if segment.step != 1:
            raise ValueError(f"segment {position} must have step 1, got {segment!r}")
        return segment.start, segment.stop

    if len(segment) != 2:
        raise ValueError(
            f"segment {position} must be a range or a (start, stop) pair, got {segment!r}"
        )
    start, stop = segment
    for value in (start, stop):
        if isinstance(value, bool) or not isinstance(value, numbers.Integral):
            raise ValueError(
                f"segment {position} bounds must be integers, got {type(value).__name__}({value!r})"
            )
    return int(start), int(stop)


class BagPartition:
    r"""Ordered, contiguous, non-overlapping bags over the instance axis.

    Args:
        segments (Iterable): One entry per bag, either a ``range`` with step 1
            or a ``(start, stop)`` pair. Bounds are 0-based and half-open.

    Raises:
        ValueError: If there are no bags, a bag is empty, a start is
            negative, or a bag starts before the previous bag stops.

    Examples::

        >>> bags = BagPartition([range(0, 3), range(3, 4), range(4, 6)])
        >>> bags.lengths
        tensor([3, 1, 2])
        >>> bags.max_length
        3
        >>> [r.instances.tolist() for r in bags.rounds()]
        [[0, 3, 4], [1, 5], [2]]
    """

    def __init__(self, segments: Iterable[RangeLike]):
        bounds = [_as_bounds(seg, i) for i, seg in enumerate(segments)]
        if not bounds:
            raise ValueError("segments must contain at least one bag")

        previous_stop = 0
        for i, (start, stop) in enumerate(bounds):
            if start < 0:
                raise ValueError(f"segment {i} has negative start {start}")
            if stop <= start:
                raise ValueError(f"segment {i} is empty: range({start}, {stop})")
            if start < previous_stop:
                raise ValueError(
                    f"segment {i} (range({start}, {stop})) overlaps or precedes "
                    f"the previous segment ending at {previous_stop}"
                )
            previous_stop = stop

        self._bounds = tuple(bounds)
        self._starts = torch.tensor([start for start, _ in bounds], dtype=torch.long)
        self._lengths = torch.tensor([stop - start for start, stop in bounds], dtype=torch.long)
        self._cache = {}

    @classmethod
    def from_lengths(
        cls, lengths: Union[Sequence[int], Tensor], start: int = 0
    ) -> "BagPartition":
        r"""from_lengths(lengths, start=0) -> BagPartition

        Build back-to-back bags from their lengths.

        Args:
            lengths (Sequence[int] or Tensor): Length of each bag, in order.
            start (int, optional): Instance index of the first bag. Default: ``0``

        Returns:
            BagPartition: Bags ``range(start, start + l0)``, ``range(start + l0, ...)``, ...

        Raises:
            ValueError: If a length is not a positive integer.
        """
        if isinstance(lengths, Tensor):
            if lengths.ndim != 1:
                raise ValueError(f"lengths must be 1D, got {lengths.ndim}D")
            if lengths.dtype == torch.bool:
                raise ValueError("lengths must not be torch.bool")
            if lengths.is_floating_point() or lengths.is_complex():
                raise ValueError(f"lengths must have an integer dtype, got {lengths.dtype}")
            lengths = lengths.tolist()

        segments = []
        position = start
        for i, length in enumerate(lengths):
            if isinstance(length, bool) or not isinstance(length, numbers.Integral):
                raise ValueError(
                    f"length {i} must be an integer, got {type(length).__name__}({length!r})"
                )
            if length <= 0:
                raise ValueError(f"lengths must be positive, got {length} at position {i}")
            segments.append(range(position, position + int(length)))
            position += int(length)
        return cls(segments)

    @property
    def num_bags(self) -> int:
        return len(self._bounds)

    @property
    def starts(self) -> Tensor:
        r"""First instance index of each bag, shape :math:`(B,)`."""
        return self._starts

    @property
    def lengths(self) -> Tensor:
        r"""Number of instances in each bag, shape :math:`(B,)`."""
        return self._lengths

    @property
    def max_length(self) -> int:
        r"""Length of the longest bag; the number of rounds."""
        return max(stop - start for start, stop in self._bounds)

    @property
    def stop(self) -> int:
        r"""One past the last instance index covered by any bag."""
        return self._bounds[-1][1]

    def ranges(self) -> list[range]:
        return [range(start, stop) for start, stop in self._bounds]

    def __len__(self) -> int:
        return self.num_bags

    def __iter__(self):
        return iter(self.ranges())

    def __eq__(self, other) -> bool:
        if not isinstance(other, BagPartition):
            return NotImplemented
        return self._bounds == other._bounds

    def __hash__(self) -> int:
        return hash(self._bounds)

    def __repr__(self) -> str:
        shown = ", ".join(f"range({a}, {b})" for a, b in self._bounds[:4])
        if self.num_bags > 4:
            shown += f", ... ({self.num_bags} bags)"
        return f"BagPartition([{shown}])"

    def _cached(self, key: str, device: Optional[torch.device], build):
        device = torch.device("cpu") if device is None else torch.device(device)
        cache_key = (key, str(device))
        if cache_key not in self._cache:
            self._cache[cache_key] = build(device)
        return self._cache[cache_key]

    def rounds(self, device: Optional[torch.device] = None) -> list[Round]:
        r"""rounds(device=None) -> list[Round]

        Round schedule of the partition: for round ``r`` the active bags
        (``length > r``) and their representatives ``start + r``.

        Args:
            device (torch.device, optional): Device of the index tensors.
                Default: CPU

        Returns:
            list[Round]: ``max_length`` rounds, in order.
        """

        def build(device):
            schedule = []
            for r in range(self.max_length):
                bags = torch.nonzero(self._lengths > r, as_tuple=False).squeeze(1)
                instances = self._starts[bags] + r
                schedule.append(Round(bags.to(device), instances.to(device)))
            return schedule

        return self._cached("rounds", device, build)

    def length_groups(self, device: Optional[torch.device] = None) -> list[tuple[int, Tensor]]:
        r"""length_groups(device=None) -> list[tuple[int, Tensor]]

        Instances grouped by the length of their owning bag, for every distinct
        length of at least 2. Bags of length 1 are omitted.

        Args:
            device (torch.device, optional): Device of the index tensors.
                Default: CPU

        Returns:
            list[tuple[int, Tensor]]: ``(length, instances)`` pairs in
            increasing length order.
        """

        def build(device):
            groups = []
            for length in sorted({stop - start for start, stop in self._bounds}):
                if length < 2:
                    continue
                members = [
                    torch.arange(start, stop, dtype=torch.long)
                    for start, stop in self._bounds
                    if stop - start == length
                ]
                groups.append((length, torch.cat(members).to(device)))
            return groups

        return self._cached("length_groups", device, build)


def as_partition(segments: Union[BagPartition, Iterable[RangeLike]]) -> BagPartition:
    r"""Return ``segments`` as a :class:`BagPartition`, building one if needed."""
    if isinstance(segments, BagPartition):
        return segments
    return BagPartition(segments)
