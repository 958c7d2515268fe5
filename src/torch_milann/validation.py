r"""Input validation utilities for segmented MIL pooling."""

import warnings
from typing import Optional

import torch
from torch import Tensor

__all__ = [
    "validate_instances",
    "validate_partition_extent",
    "validate_grad_shape",
    "validate_winner_shape",
    "validate_device_consistency",
    "warn_if_negative",
]


def validate_instances(
    instances: Tensor,
    name: str = "instances",
    check_nan: bool = False,
    check_inf: bool = False,
) -> None:
    r"""Validate the instance tensor shape, dtype and (optionally) values.

    Args:
        instances (Tensor): Input tensor, expected shape :math:`(\text{features}, N)`.
        name (str, optional): Name for error messages. Default: ``"instances"``
        check_nan (bool, optional): Check for NaN values. Default: ``False``
        check_inf (bool, optional): Check for Inf values. Default: ``False``

    Raises:
        ValueError: If not 2D, not floating point, or contains NaN/Inf when checked.
    """
    if instances.ndim != 2:
        raise ValueError(f"{name} must be 2D (features, instances), got {instances.ndim}D")

    if not instances.is_floating_point():
        raise ValueError(f"{name} must be a floating point tensor, got {instances.dtype}")

    if check_nan and torch.isnan(instances).any():
        raise ValueError(f"{name} contains NaN values")

    if check_inf and torch.isinf(instances).any():
        raise ValueError(f"{name} contains Inf values")


def validate_partition_extent(
    stop: int,
    num_instances: int,
    name: str = "segments",
) -> None:
    r"""Validate that a bag partition fits inside the instance axis.

    Args:
        stop (int): One past the last instance index covered by the partition.
        num_instances (int): Size of the instance axis (N).
        name (str, optional): Name for error messages. Default: ``"segments"``

    Raises:
        ValueError: If the partition reaches past the last instance.
    """
    if stop > num_instances:
        raise ValueError(
            f"{name} cover instances up to index {stop - 1}, "
            f"but only {num_instances} instances were given"
        )


def validate_grad_shape(
    grad_output: Tensor,
    expected: tuple[int, int],
    name: str = "grad_output",
) -> None:
    r"""Validate that an upstream gradient matches the forward output exactly.

    No broadcasting is allowed: a mismatch is a programming error.

    Args:
        grad_output (Tensor): Upstream gradient, expected shape :math:`(\text{features}, B)`.
        expected (tuple[int, int]): Shape of the forward output.
        name (str, optional): Name for error messages. Default: ``"grad_output"``

    Raises:
        ValueError: If the shape differs from ``expected``.
    """
    if tuple(grad_output.shape) != tuple(expected):
        raise ValueError(
            f"{name} shape must be (features, bags) = {tuple(expected)}, "
            f"got {tuple(grad_output.shape)}"
        )


def validate_winner_shape(winners: Tensor, expected: tuple[int, int]) -> None:
    r"""Validate the winner-index cache of the max reduction.

    Args:
        winners (Tensor): Absolute winner indices, expected integer dtype.
        expected (tuple[int, int]): Shape of the forward output.

    Raises:
        ValueError: If the shape differs or the dtype is not an integer type.
    """
    if tuple(winners.shape) != tuple(expected):
        raise ValueError(
            f"winners shape must be (features, bags) = {tuple(expected)}, "
            f"got {tuple(winners.shape)}"
        )
    if winners.is_floating_point() or winners.is_complex() or winners.dtype == torch.bool:
        raise ValueError(f"winners must have an integer dtype, got {winners.dtype}")


def validate_device_consistency(
    *tensors: Tensor,
    names: Optional[list[str]] = None,
) -> None:
    r"""Validate that all given tensors live on one device.

    Args:
        *tensors (Tensor): Tensors to check. ``None`` entries are ignored.
        names (list[str], optional): One name per tensor for the error message.
            Default: ``tensor_0``, ``tensor_1``, ...

    Raises:
        ValueError: If two tensors are on different devices.
    """
    if names is None:
        names = [f"tensor_{i}" for i in range(len(tensors))]
    present = [(name, t) for name, t in zip(names, tensors) if t is not None]
    if len({str(t.device) for _, t in present}) > 1:
        placement = ", ".join(f"{name} on {t.device}" for name, t in present)
        raise ValueError(f"tensors must be on the same device, got {placement}")


def warn_if_negative(instances: Tensor, name: str = "instances") -> None:
    r"""Warn when ``assume_nonnegative`` is requested for data with negative values.

    Only CPU tensors are inspected; checking a CUDA tensor would force a
    device synchronization on every call.

    Args:
        instances (Tensor): Instance tensor of shape :math:`(\text{features}, N)`.
        name (str, optional): Name for warning messages. Default: ``"instances"``
    """
    if instances.device.type != "cpu" or instances.numel() == 0:
        return

    min_val = instances.min().item()
    if min_val < 0:
        warnings.warn(
            f"assume_nonnegative=True but {name} has negative values (min={min_val:.4g}); "
            f"bags whose values are all negative will reduce to 0.",
            UserWarning,
            stacklevel=3,
        )
