r"""Neural network modules for segmented MIL pooling.

Provides :class:`torch.nn.Module` wrappers around the segmented reductions and
the three-stage :class:`RangeMIL` pipeline::

    instances (F, N) --premodel--> (H, N) --aggregation(segments)--> (H, B) --postmodel--> out

All stages use the features-first layout of :func:`~torch_milann.segmax`.
Row-major modules such as :class:`torch.nn.Linear` can be wrapped with
:class:`FeatureMajor`.
"""

from typing import Union

import torch.nn as nn
from torch import Tensor

from .autograd import segmax, segmean

__all__ = [
    "SegmentedMaxPool",
    "SegmentedMeanPool",
    "FeatureMajor",
    "RangeMIL",
]


class SegmentedMaxPool(nn.Module):
    r"""Max pooling over bags: ``(F, N), segments -> (F, B)``.

    Args:
        assume_nonnegative (bool, optional): Start the running maximum at 0,
            e.g. after a ReLU. Default: ``False``
        use_triton (bool, optional): Use Triton kernels on CUDA when available.
            Default: ``True``
    """

    def __init__(self, assume_nonnegative: bool = False, use_triton: bool = True):
        super().__init__()
        self.assume_nonnegative = assume_nonnegative
        self.use_triton = use_triton

    def forward(self, instances: Tensor, segments) -> Tensor:
        return segmax(
            instances,
            segments,
            assume_nonnegative=self.assume_nonnegative,
            use_triton=self.use_triton,
        )

    def extra_repr(self) -> str:
        return f"assume_nonnegative={self.assume_nonnegative}"


class SegmentedMeanPool(nn.Module):
    r"""Mean pooling over bags: ``(F, N), segments -> (F, B)``.

    Args:
        use_triton (bool, optional): Use Triton kernels on CUDA when available.
            Default: ``True``
    """

    def __init__(self, use_triton: bool = True):
        super().__init__()
        self.use_triton = use_triton

    def forward(self, instances: Tensor, segments) -> Tensor:
        return segmean(instances, segments, use_triton=self.use_triton)


class FeatureMajor(nn.Module):
    r"""Apply a row-major module to a features-first tensor.

    ``FeatureMajor(m)(x) == m(x.T).T``, so ``nn.Linear(F, H)`` maps
    ``(F, N)`` to ``(H, N)``.

    Args:
        module (nn.Module): Module taking ``(N, F)`` and returning ``(N, H)``.
    """

    def __init__(self, module: nn.Module):
        super().__init__()
        self.module = module

    def forward(self, x: Tensor) -> Tensor:
        return self.module(x.transpose(0, 1)).transpose(0, 1)


_AGGREGATIONS = {
    "max": SegmentedMaxPool,
    "mean": SegmentedMeanPool,
}


class RangeMIL(nn.Module):
    r"""Multiple-instance model over contiguous bags.

    Computes ``postmodel(aggregation(premodel(instances), segments))``.

    Args:
        premodel (nn.Module): Per-instance transform, ``(F, N) -> (H, N)``.
        aggregation (nn.Module or str): Bag reduction, ``(H, N), segments -> (H, B)``.
            ``"max"`` and ``"mean"`` select :class:`SegmentedMaxPool` /
            :class:`SegmentedMeanPool`.
        postmodel (nn.Module): Per-bag transform, ``(H, B) -> (O, B)``.

    Raises:
        ValueError: If ``aggregation`` is an unknown name.

    Examples::

        >>> model = RangeMIL(
        ...     FeatureMajor(nn.Linear(8, 16)),
        ...     "max",
        ...     FeatureMajor(nn.Linear(16, 2)),
        ... )
        >>> X = torch.randn(8, 10)
        >>> model(X, [range(0, 4), range(4, 10)]).shape
        torch.Size([2, 2])
    """

    def __init__(
        self,
        premodel: nn.Module,
        aggregation: Union[nn.Module, str],
        postmodel: nn.Module,
    ):
        super().__init__()
        if isinstance(aggregation, str):
            key = aggregation.lower()
            if key not in _AGGREGATIONS:
                raise ValueError(
                    f"aggregation must be one of {sorted(_AGGREGATIONS)} or an nn.Module, "
                    f"got {aggregation!r}"
                )
            aggregation = _AGGREGATIONS[key]()
        self.premodel = premodel
        self.aggregation = aggregation
        self.postmodel = postmodel

    def forward(self, instances: Tensor, segments) -> Tensor:
        hidden = self.premodel(instances)
        pooled = self.aggregation(hidden, segments)
        return self.postmodel(pooled)
