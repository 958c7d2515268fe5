"""Autograd functions and public API for segmented MIL pooling.

This module contains the torch.autograd.Function classes that attach the
hand-derived gradients to the round-based reductions, and the ``segmax`` /
``segmean`` entry points.
"""

import torch

from .bags import BagPartition, as_partition
from .segmax import segmax_backward, segmax_forward, segmax_forward_with_index
from .segmean import segmean_backward, segmean_forward
from .validation import validate_instances, validate_partition_extent, warn_if_negative

# Triton imports are conditional
try:
    from .triton_forward import HAS_TRITON, launch_segmax_triton, launch_segmean_triton
except ImportError:
    HAS_TRITON = False
    launch_segmax_triton = None
    launch_segmean_triton = None


def _can_use_triton(instances: torch.Tensor, use_triton: bool) -> bool:
    return HAS_TRITON and use_triton and instances.is_cuda


class SegmentedMax(torch.autograd.Function):
    r"""Autograd function for the round-based segmented maximum.

    The forward pass records the winning instance of every ``(feature, bag)``
    cell; the backward pass scatters the upstream gradient onto exactly those
    instances. The partition never receives a gradient.

    Note:
        This class is used internally by :func:`segmax`.
        Users should call that function directly rather than using this class.

    See Also:
        :func:`segmax`: Main entry point for segmented max pooling
    """

    @staticmethod
    def forward(
        ctx,
        instances: torch.Tensor,
        partition: BagPartition,
        assume_nonnegative: bool = False,
        use_triton: bool = True,
    ) -> torch.Tensor:
        if _can_use_triton(instances, use_triton):
            out, winners = launch_segmax_triton(
                instances.detach(), partition, assume_nonnegative=assume_nonnegative
            )
        else:
            out, winners = segmax_forward_with_index(
                instances.detach(), partition, assume_nonnegative=assume_nonnegative
            )

        # Winners are private cache for backward, never an output
        ctx.save_for_backward(winners)
        ctx.partition = partition
        ctx.num_instances = instances.shape[1]

        return out

    @staticmethod
    def backward(ctx, grad_output: torch.Tensor):
        (winners,) = ctx.saved_tensors

        grad_instances = segmax_backward(
            grad_output, ctx.partition, winners, ctx.num_instances
        )

        return (
            grad_instances,
            None,  # partition
            None,  # assume_nonnegative
            None,  # use_triton
        )


class SegmentedMean(torch.autograd.Function):
    r"""Autograd function for the round-based segmented mean.

    Note:
        This class is used internally by :func:`segmean`.
        Users should call that function directly rather than using this class.

    See Also:
        :func:`segmean`: Main entry point for segmented mean pooling
    """

    @staticmethod
    def forward(
        ctx,
        instances: torch.Tensor,
        partition: BagPartition,
        use_triton: bool = True,
    ) -> torch.Tensor:
        if _can_use_triton(instances, use_triton):
            out = launch_segmean_triton(instances.detach(), partition)
        else:
            out = segmean_forward(instances.detach(), partition)

        ctx.partition = partition
        ctx.num_instances = instances.shape[1]

        return out

    @staticmethod
    def backward(ctx, grad_output: torch.Tensor):
        grad_instances = segmean_backward(grad_output, ctx.partition, ctx.num_instances)

        return (
            grad_instances,
            None,  # partition
            None,  # use_triton
        )


def _prepare(instances: torch.Tensor, segments) -> BagPartition:
    validate_instances(instances)
    partition = as_partition(segments)
    validate_partition_extent(partition.stop, instances.shape[1])
    return partition


def segmax(
    instances: torch.Tensor,
    segments,
    assume_nonnegative: bool = False,
    use_triton: bool = True,
) -> torch.Tensor:
    r"""Compute the segmented maximum of ``instances`` over the bags in ``segments``.

    The reduction runs :attr:`BagPartition.max_length` rounds; each round
    updates all bags that still have an unvisited instance with one dense
    ``maximum`` over the active columns.

    - **Inference** (no gradients): forward only, no winner bookkeeping
      on the PyTorch path
    - **Training** (with gradients): goes through :class:`SegmentedMax`, whose
      backward routes each output gradient to the earliest instance that
      attains the maximum

    Warning:
        Inputs must be finite. The winner tracking compares with ``>``, which
        is meaningless for NaN.

    Args:
        instances: Instances of shape (F, N). Features first, instances last.
        segments: :class:`BagPartition`, or an iterable of ``range`` objects /
            ``(start, stop)`` pairs (0-based, half-open).
        assume_nonnegative: Start the running maximum at 0 instead of -inf.
            Only correct when every value is >= 0. Default: False
        use_triton: If True, use Triton kernels when available. Default: True

    Returns:
        Per-bag maxima of shape (F, B).

    Raises:
        ValueError: If ``instances`` is not a 2D floating tensor or the
            partition is malformed or exceeds the instance axis.

    Examples::

        >>> import torch
        >>> from torch_milann import segmax
        >>>
        >>> X = torch.tensor([[1.0, 2.0, 3.0, 4.0]], requires_grad=True)
        >>> Y = segmax(X, [range(0, 2), range(2, 4)])
        >>> Y
        tensor([[2., 4.]], grad_fn=<SegmentedMaxBackward>)
        >>> Y.sum().backward()
        >>> X.grad
        tensor([[0., 1., 0., 1.]])
    """
    partition = _prepare(instances, segments)
    if assume_nonnegative:
        warn_if_negative(instances)

    if instances.requires_grad and torch.is_grad_enabled():
        return SegmentedMax.apply(instances, partition, assume_nonnegative, use_triton)

    if _can_use_triton(instances, use_triton):
        out, _ = launch_segmax_triton(instances, partition, assume_nonnegative=assume_nonnegative)
        return out
    return segmax_forward(instances, partition, assume_nonnegative=assume_nonnegative)


def segmean(
    instances: torch.Tensor,
    segments,
    use_triton: bool = True,
) -> torch.Tensor:
    r"""Compute the segmented mean of ``instances`` over the bags in ``segments``.

    Args:
        instances: Instances of shape (F, N). Features first, instances last.
        segments: :class:`BagPartition`, or an iterable of ``range`` objects /
            ``(start, stop)`` pairs (0-based, half-open).
        use_triton: If True, use Triton kernels when available. Default: True

    Returns:
        Per-bag means of shape (F, B).

    Raises:
        ValueError: If ``instances`` is not a 2D floating tensor or the
            partition is malformed or exceeds the instance axis.

    Examples::

        >>> X = torch.tensor([[1.0, 2.0, 3.0, 4.0]], requires_grad=True)
        >>> Y = segmean(X, [range(0, 2), range(2, 4)])
        >>> Y.sum().backward()
        >>> X.grad
        tensor([[0.5000, 0.5000, 0.5000, 0.5000]])
    """
    partition = _prepare(instances, segments)

    if instances.requires_grad and torch.is_grad_enabled():
        return SegmentedMean.apply(instances, partition, use_triton)

    if _can_use_triton(instances, use_triton):
        return launch_segmean_triton(instances, partition)
    return segmean_forward(instances, partition)
