r"""Segmented max/mean pooling for Multiple-Instance Learning in PyTorch.

Instances of all bags are stored in one contiguous ``(features, N)`` tensor
and bags are delimited by ordered, non-overlapping ranges over the instance
axis. :func:`segmax` and :func:`segmean` reduce every bag to one column and
carry hand-derived gradients, so they can sit between arbitrary upstream and
downstream modules.

Round-Based Reduction
---------------------
A per-bag Python loop issues one small kernel per bag. Instead, the
reductions here run ``max_length`` *rounds*: in round ``r`` every bag with at
least ``r + 1`` instances contributes its ``r``-th instance, and all of them
are combined with one dense gather/scatter::

    bags:     [0 1 2] [3] [4 5]
    round 0:  Y[:, (0, 1, 2)] op= X[:, (0, 3, 4)]
    round 1:  Y[:, (0, 2)]    op= X[:, (1, 5)]
    round 2:  Y[:, (0,)]      op= X[:, (2,)]

The number of sequential steps depends only on the longest bag.

Gradients
---------
- **max**: winner-take-all. The forward records, per feature and bag, the
  earliest instance that attains the maximum; backward scatters the upstream
  gradient onto those instances.
- **mean**: uniform. Backward copies the upstream gradient to every member of
  the bag and divides by the bag length.

Usage
-----
>>> import torch
>>> from torch_milann import BagPartition, segmax, segmean
>>>
>>> X = torch.randn(16, 10, requires_grad=True)       # 16 features, 10 instances
>>> bags = BagPartition.from_lengths([4, 1, 5])        # range(0,4), range(4,5), range(5,10)
>>> Y = segmax(X, bags)                                # (16, 3)
>>> Y.sum().backward()
"""

from .autograd import HAS_TRITON, SegmentedMax, SegmentedMean, segmax, segmean
from .bags import BagPartition, Round, as_partition
from .constants import NEG_INF
from .nn import FeatureMajor, RangeMIL, SegmentedMaxPool, SegmentedMeanPool
from .reference import segmax_naive, segmean_naive
from .segmax import segmax_backward, segmax_forward, segmax_forward_with_index
from .segmean import segmean_backward, segmean_forward

__version__ = "0.1.0"

__all__ = [
    # Main API
    "segmax",
    "segmean",
    "BagPartition",
    "Round",
    "as_partition",
    # Autograd Functions
    "SegmentedMax",
    "SegmentedMean",
    # Round-based kernels
    "segmax_forward",
    "segmax_forward_with_index",
    "segmax_backward",
    "segmean_forward",
    "segmean_backward",
    # Reference implementations
    "segmax_naive",
    "segmean_naive",
    # Modules
    "SegmentedMaxPool",
    "SegmentedMeanPool",
    "FeatureMajor",
    "RangeMIL",
    # Utilities
    "NEG_INF",
    "HAS_TRITON",
]
