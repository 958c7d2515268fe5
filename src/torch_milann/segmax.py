r"""Round-based segmented maximum: forward, forward with winners, backward.

The forward pass visits every bag once per round of the partition's schedule
(see :mod:`torch_milann.bags`)::

    Y = identity                                  # -inf, or 0 for non-negative data
    for bags, instances in partition.rounds():
        Y[:, bags] = max(Y[:, bags], X[:, instances])

The gradient of a maximum is winner-take-all, so the backward pass needs the
absolute index of the instance that produced every output cell. The indexed
forward records it on the fly: whenever the running maximum *strictly*
increases in round ``r``, the cell's winner becomes ``start + r``. Equal
values never move the winner, so ties resolve to the earliest instance.

The winner is the position of the *last* strict increase, not the number of
increases: in the bag ``[2, 1, 3]`` the maximum rises twice (rounds 0 and 2),
and counting rises would select the wrong instance.
"""

import torch
from torch import Tensor

from .bags import BagPartition
from .constants import NEG_INF
from .validation import (
    validate_device_consistency,
    validate_grad_shape,
    validate_winner_shape,
)

__all__ = [
    "segmax_forward",
    "segmax_forward_with_index",
    "segmax_backward",
]


def _identity(instances: Tensor, num_bags: int, assume_nonnegative: bool) -> Tensor:
    fill = 0.0 if assume_nonnegative else NEG_INF
    return instances.new_full((instances.shape[0], num_bags), fill)


def segmax_forward(
    instances: Tensor,
    partition: BagPartition,
    assume_nonnegative: bool = False,
) -> Tensor:
    r"""segmax_forward(instances, partition, assume_nonnegative=False) -> Tensor

    Per-bag maximum of each feature.

    Args:
        instances (Tensor): Instances of shape :math:`(F, N)`.
        partition (BagPartition): Bags over the instance axis.
        assume_nonnegative (bool, optional): Start the running maximum at 0
            instead of ``-inf``. Only correct when no value is negative.
            Default: ``False``

    Returns:
        Tensor: Maxima of shape :math:`(F, B)`.
    """
    out = _identity(instances, partition.num_bags, assume_nonnegative)
    for bags, idx in partition.rounds(instances.device):
        out[:, bags] = torch.maximum(out[:, bags], instances[:, idx])
    return out


def segmax_forward_with_index(
    instances: Tensor,
    partition: BagPartition,
    assume_nonnegative: bool = False,
) -> tuple[Tensor, Tensor]:
    r"""segmax_forward_with_index(instances, partition, assume_nonnegative=False) -> (Tensor, Tensor)

    Per-bag maximum together with the absolute index of the winning instance.

    Two running-value buffers alternate by round parity: round ``r`` reads
    ``buffers[r % 2]`` and writes ``buffers[(r + 1) % 2]``, so the comparison
    never reads a column it is overwriting. A bag of length ``L`` is last
    written in round ``L - 1``, so its final value lives in
    ``buffers[L % 2]``.

    Inputs must be finite. NaN breaks the strict-increase comparison and the
    recorded winner is then undefined.

    Args:
        instances (Tensor): Instances of shape :math:`(F, N)`.
        partition (BagPartition): Bags over the instance axis.
        assume_nonnegative (bool, optional): Start the running maximum at 0.
            Winners start at each bag's first instance, so all-zero bags
            still resolve to their earliest instance. Default: ``False``

    Returns:
        Tuple[Tensor, Tensor]: ``(maxima, winners)``, both of shape
        :math:`(F, B)`; ``winners`` is ``torch.long``.
    """
    num_features = instances.shape[0]
    device = instances.device
    buffers = (
        _identity(instances, partition.num_bags, assume_nonnegative),
        _identity(instances, partition.num_bags, assume_nonnegative),
    )
    starts = partition.starts.to(device)
    winners = starts.unsqueeze(0).expand(num_features, -1).clone()

    for r, (bags, idx) in enumerate(partition.rounds(device)):
        current = buffers[r % 2]
        updated = buffers[(r + 1) % 2]

        running = current[:, bags]
        candidate = instances[:, idx]
        updated[:, bags] = torch.maximum(running, candidate)

        increased = candidate > running
        winners[:, bags] = torch.where(
            increased, idx.unsqueeze(0).expand_as(increased), winners[:, bags]
        )

    odd = (partition.lengths.to(device) % 2 == 1).unsqueeze(0)
    out = torch.where(odd, buffers[1], buffers[0])
    return out, winners


def segmax_backward(
    grad_output: Tensor,
    partition: BagPartition,
    winners: Tensor,
    num_instances: int,
) -> Tensor:
    r"""segmax_backward(grad_output, partition, winners, num_instances) -> Tensor

    Scatter the upstream gradient onto the winning instances.

    Every ``(feature, bag)`` cell routes its gradient to exactly one instance
    and distinct bags own disjoint instances, so the scatter never writes the
    same location twice and no accumulation is needed.

    Args:
        grad_output (Tensor): Upstream gradient of shape :math:`(F, B)`.
        partition (BagPartition): Bags used in the forward pass.
        winners (Tensor): Winner indices from :func:`segmax_forward_with_index`.
        num_instances (int): Size of the instance axis of the forward input.

    Returns:
        Tensor: Gradient w.r.t. the instances, shape :math:`(F, N)`.

    Raises:
        ValueError: If ``grad_output`` or ``winners`` do not have shape :math:`(F, B)`,
            or if they are on different devices.
    """
    expected = (grad_output.shape[0], partition.num_bags)
    validate_grad_shape(grad_output, expected)
    validate_winner_shape(winners, expected)
    validate_device_consistency(grad_output, winners, names=["grad_output", "winners"])

    grad_instances = grad_output.new_zeros((grad_output.shape[0], num_instances))
    grad_instances.scatter_(1, winners.to(dtype=torch.long), grad_output)
    return grad_instances
