"""
Pytest configuration for torch-milann tests.

IMPORTANT: CPU-ONLY TESTING
---------------------------
This test suite is designed to run on CPU. The Triton kernels are only
exercised when CUDA is available; everything else uses the PyTorch
round-based kernels.
"""

import pytest
import torch

from torch_milann import BagPartition


@pytest.fixture(autouse=True)
def ensure_cpu_default():
    """Verify tensors are created on CPU unless a test asks otherwise."""
    assert torch.tensor([1.0]).device.type == "cpu", "Default device should be CPU"
    yield


@pytest.fixture
def skip_if_no_cuda():
    """Fixture to skip tests that require CUDA."""
    if not torch.cuda.is_available():
        pytest.skip("CUDA not available")


@pytest.fixture
def literal_inputs():
    """Single-feature example: X = [1, 2, 3, 4], bags [0, 2) and [2, 4)."""
    X = torch.tensor([[1.0, 2.0, 3.0, 4.0]], dtype=torch.float64)
    return X, BagPartition([range(0, 2), range(2, 4)])


@pytest.fixture
def create_random_bags():
    """Factory for random instance tensors with random ragged partitions.

    Returns a function that generates:
    - instances of shape (F, N)
    - a BagPartition whose bags have lengths in [1, max_len], optionally
      separated by unbagged gaps
    """

    def _create(
        num_features,
        num_bags,
        max_len=6,
        gaps=False,
        dtype=torch.float64,
        device="cpu",
        seed=None,
    ):
        generator = torch.Generator().manual_seed(seed if seed is not None else 0)
        lengths = torch.randint(1, max_len + 1, (num_bags,), generator=generator).tolist()

        segments = []
        position = 0
        for length in lengths:
            if gaps:
                position += int(torch.randint(0, 3, (1,), generator=generator).item())
            segments.append(range(position, position + length))
            position += length

        num_instances = position + (2 if gaps else 0)
        instances = torch.randn(num_features, num_instances, generator=generator, dtype=dtype)
        return instances.to(device), BagPartition(segments)

    return _create
