r"""Naive per-bag reference reductions.

These slice each bag and reduce it directly, relying on generic autograd for
gradients. They are correctness oracles for the round-based kernels and are
not meant for training: the Python loop runs once per bag.
"""

import torch
from torch import Tensor

from .bags import BagPartition, as_partition

__all__ = [
    "segmax_naive",
    "segmean_naive",
]


def segmax_naive(instances: Tensor, segments) -> Tensor:
    r"""segmax_naive(instances, segments) -> Tensor

    Segmented maximum, one bag at a time.

    Ties share the gradient evenly (``torch.amax`` semantics), unlike
    :func:`~torch_milann.segmax`, which routes it to the earliest instance.

    Args:
        instances (Tensor): Instances of shape :math:`(F, N)`.
        segments (BagPartition or Iterable): Bags over the instance axis.

    Returns:
        Tensor: Maxima of shape :math:`(F, B)`.
    """
    partition: BagPartition = as_partition(segments)
    return torch.cat(
        [instances[:, seg.start : seg.stop].amax(dim=1, keepdim=True) for seg in partition],
        dim=1,
    )


def segmean_naive(instances: Tensor, segments) -> Tensor:
    r"""segmean_naive(instances, segments) -> Tensor

    Segmented mean, one bag at a time.

    Args:
        instances (Tensor): Instances of shape :math:`(F, N)`.
        segments (BagPartition or Iterable): Bags over the instance axis.

    Returns:
        Tensor: Means of shape :math:`(F, B)`.
    """
    partition: BagPartition = as_partition(segments)
    return torch.cat(
        [instances[:, seg.start : seg.stop].mean(dim=1, keepdim=True) for seg in partition],
        dim=1,
    )
