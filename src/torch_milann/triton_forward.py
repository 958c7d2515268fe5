r"""Triton forward kernels for segmented MIL pooling.

One program per ``(bag, feature block)``. Every program runs the same
``num_rounds`` iterations of the round schedule and masks out rounds past its
bag's length, so all programs share one trip count:

.. math::
    Y_{f,i} = \bigoplus_{r < \text{mlen}} \left[ r < \ell_i \right] X_{f,\, s_i + r}

with :math:`\oplus` either ``max`` (tracking the strict-increase winner) or
``+`` followed by division by :math:`\ell_i`.
"""

import torch

from .bags import BagPartition

# Triton is optional
try:
    import triton
    import triton.language as tl

    HAS_TRITON = True
except ImportError:
    HAS_TRITON = False
    triton = None
    tl = None


def _next_power_of_2(n: int) -> int:
    """Smallest power of 2 >= n. Returns 1 for n <= 0."""
    if n <= 0:
        return 1
    if n & (n - 1) == 0:
        return n
    p = 1
    while p < n:
        p *= 2
    return p


if HAS_TRITON:

    @triton.jit
    def segmax_round_kernel(
        # Inputs
        x_ptr,  # (F, N) - instances
        starts_ptr,  # (B,) - first instance of each bag
        lengths_ptr,  # (B,) - bag lengths
        # Outputs
        out_ptr,  # (F, B) - maxima
        winners_ptr,  # (F, B) - absolute winner indices
        # Dimensions
        num_features,
        num_rounds,
        # Strides
        stride_x_f,
        stride_x_n,
        stride_out_f,
        stride_out_b,
        stride_win_f,
        stride_win_b,
        ASSUME_NONNEGATIVE: tl.constexpr,
        BLOCK_F: tl.constexpr,
    ):
        """Round-masked segmented max with earliest-winner tracking."""
        bag = tl.program_id(0)
        f_block = tl.program_id(1)

        f_idx = f_block * BLOCK_F + tl.arange(0, BLOCK_F)
        f_mask = f_idx < num_features

        start = tl.load(starts_ptr + bag)
        length = tl.load(lengths_ptr + bag)

        if ASSUME_NONNEGATIVE:
            running = tl.zeros([BLOCK_F], dtype=x_ptr.dtype.element_ty)
        else:
            running = tl.zeros([BLOCK_F], dtype=x_ptr.dtype.element_ty) - float("inf")
        winner = tl.zeros([BLOCK_F], dtype=tl.int64) + start

        for r in tl.range(0, num_rounds):
            active = r < length
            idx = start + r
            x = tl.load(
                x_ptr + f_idx * stride_x_f + idx * stride_x_n,
                mask=f_mask & active,
                other=float("-inf"),
            )
            # Strict comparison: ties keep the earliest instance
            increased = x > running
            running = tl.where(increased, x, running)
            winner = tl.where(increased, idx, winner)

        tl.store(out_ptr + f_idx * stride_out_f + bag * stride_out_b, running, mask=f_mask)
        tl.store(winners_ptr + f_idx * stride_win_f + bag * stride_win_b, winner, mask=f_mask)

    @triton.jit
    def segmean_round_kernel(
        # Inputs
        x_ptr,  # (F, N) - instances
        starts_ptr,  # (B,) - first instance of each bag
        lengths_ptr,  # (B,) - bag lengths
        # Outputs
        out_ptr,  # (F, B) - means
        # Dimensions
        num_features,
        num_rounds,
        # Strides
        stride_x_f,
        stride_x_n,
        stride_out_f,
        stride_out_b,
        ACC_FP64: tl.constexpr,
        BLOCK_F: tl.constexpr,
    ):
        """Round-masked segmented sum divided by the bag length."""
        bag = tl.program_id(0)
        f_block = tl.program_id(1)

        f_idx = f_block * BLOCK_F + tl.arange(0, BLOCK_F)
        f_mask = f_idx < num_features

        start = tl.load(starts_ptr + bag)
        length = tl.load(lengths_ptr + bag)

        if ACC_FP64:
            acc = tl.zeros([BLOCK_F], dtype=tl.float64)
        else:
            acc = tl.zeros([BLOCK_F], dtype=tl.float32)

        for r in tl.range(0, num_rounds):
            active = r < length
            x = tl.load(
                x_ptr + f_idx * stride_x_f + (start + r) * stride_x_n,
                mask=f_mask & active,
                other=0.0,
            )
            acc += x.to(acc.dtype)

        mean = acc / length.to(acc.dtype)
        tl.store(
            out_ptr + f_idx * stride_out_f + bag * stride_out_b,
            mean.to(out_ptr.dtype.element_ty),
            mask=f_mask,
        )

    def _launch_config(instances: torch.Tensor, partition: BagPartition, block_f):
        num_features = instances.shape[0]
        if block_f is None:
            block_f = min(_next_power_of_2(num_features), 128)
        grid = (partition.num_bags, triton.cdiv(num_features, block_f))
        starts = partition.starts.to(instances.device)
        lengths = partition.lengths.to(instances.device)
        return block_f, grid, starts, lengths

    def launch_segmax_triton(
        instances: torch.Tensor,
        partition: BagPartition,
        assume_nonnegative: bool = False,
        block_f: int = None,
        num_warps: int = 4,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """Launch the segmented max kernel.

        Args:
            instances: Shape (F, N), on CUDA.
            partition: Bags over the instance axis.
            assume_nonnegative: Start the running max at 0 instead of -inf.
            block_f: Features per program. Default: next power of 2, capped at 128.
            num_warps: Warps per block (2-8).

        Returns:
            (maxima, winners), both of shape (F, B).
        """
        device = instances.device
        num_features = instances.shape[0]
        block_f, grid, starts, lengths = _launch_config(instances, partition, block_f)

        out = torch.empty((num_features, partition.num_bags), device=device, dtype=instances.dtype)
        winners = torch.empty((num_features, partition.num_bags), device=device, dtype=torch.long)

        with torch.cuda.device(device):
            segmax_round_kernel[grid](
                instances,
                starts,
                lengths,
                out,
                winners,
                num_features,
                partition.max_length,
                instances.stride(0),
                instances.stride(1),
                out.stride(0),
                out.stride(1),
                winners.stride(0),
                winners.stride(1),
                ASSUME_NONNEGATIVE=assume_nonnegative,
                BLOCK_F=block_f,
                num_warps=num_warps,
            )
        return out, winners

    def launch_segmean_triton(
        instances: torch.Tensor,
        partition: BagPartition,
        block_f: int = None,
        num_warps: int = 4,
    ) -> torch.Tensor:
        """Launch the segmented mean kernel.

        Args:
            instances: Shape (F, N), on CUDA.
            partition: Bags over the instance axis.
            block_f: Features per program. Default: next power of 2, capped at 128.
            num_warps: Warps per block (2-8).

        Returns:
            Means of shape (F, B).
        """
        device = instances.device
        num_features = instances.shape[0]
        block_f, grid, starts, lengths = _launch_config(instances, partition, block_f)

        out = torch.empty((num_features, partition.num_bags), device=device, dtype=instances.dtype)

        with torch.cuda.device(device):
            segmean_round_kernel[grid](
                instances,
                starts,
                lengths,
                out,
                num_features,
                partition.max_length,
                instances.stride(0),
                instances.stride(1),
                out.stride(0),
                out.stride(1),
                ACC_FP64=instances.dtype == torch.float64,
                BLOCK_F=block_f,
                num_warps=num_warps,
            )
        return out
