r"""Round-based segmented mean: forward and backward.

Forward accumulates each round's representatives into their bags and divides
by the bag lengths once at the end. Backward is the transpose: the upstream
gradient of bag ``i`` is copied to every member (one round at a time, since
each instance is the representative of exactly one round) and then divided
by the bag length, grouped by length so each instance is divided only once.
"""

from torch import Tensor

from .bags import BagPartition
from .validation import validate_grad_shape

__all__ = [
    "segmean_forward",
    "segmean_backward",
]


def segmean_forward(instances: Tensor, partition: BagPartition) -> Tensor:
    r"""segmean_forward(instances, partition) -> Tensor

    Per-bag mean of each feature.

    Args:
        instances (Tensor): Instances of shape :math:`(F, N)`.
        partition (BagPartition): Bags over the instance axis.

    Returns:
        Tensor: Means of shape :math:`(F, B)`.
    """
    out = instances.new_zeros((instances.shape[0], partition.num_bags))
    for bags, idx in partition.rounds(instances.device):
        out[:, bags] += instances[:, idx]
    lengths = partition.lengths.to(device=instances.device, dtype=instances.dtype)
    return out / lengths.unsqueeze(0)


def segmean_backward(
    grad_output: Tensor,
    partition: BagPartition,
    num_instances: int,
) -> Tensor:
    r"""segmean_backward(grad_output, partition, num_instances) -> Tensor

    Distribute the upstream gradient uniformly over each bag.

    Instances outside every bag receive zero gradient.

    Args:
        grad_output (Tensor): Upstream gradient of shape :math:`(F, B)`.
        partition (BagPartition): Bags used in the forward pass.
        num_instances (int): Size of the instance axis of the forward input.

    Returns:
        Tensor: Gradient w.r.t. the instances, shape :math:`(F, N)`.

    Raises:
        ValueError: If ``grad_output`` does not have shape :math:`(F, B)`.
    """
    validate_grad_shape(grad_output, (grad_output.shape[0], partition.num_bags))

    device = grad_output.device
    grad_instances = grad_output.new_zeros((grad_output.shape[0], num_instances))

    # Broadcast: round representatives are disjoint across rounds
    for bags, idx in partition.rounds(device):
        grad_instances[:, idx] = grad_output[:, bags]

    # Normalize once per bag, keyed by bag length
    for length, idx in partition.length_groups(device):
        grad_instances[:, idx] /= length

    return grad_instances
