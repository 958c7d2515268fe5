"""Tests for the nn.Module wrappers and the RangeMIL pipeline."""

import pytest
import torch
import torch.nn as nn

from torch_milann import (
    BagPartition,
    FeatureMajor,
    RangeMIL,
    SegmentedMaxPool,
    SegmentedMeanPool,
    segmax_naive,
    segmean_naive,
)


def test_pool_modules_match_reference(create_random_bags):
    X, bags = create_random_bags(num_features=4, num_bags=5, seed=1)
    torch.testing.assert_close(SegmentedMaxPool()(X, bags), segmax_naive(X, bags))
    torch.testing.assert_close(SegmentedMeanPool()(X, bags), segmean_naive(X, bags))


def test_max_pool_extra_repr():
    assert "assume_nonnegative=True" in repr(SegmentedMaxPool(assume_nonnegative=True))


def test_feature_major_linear():
    torch.manual_seed(0)
    linear = nn.Linear(3, 5)
    X = torch.randn(3, 8)
    out = FeatureMajor(linear)(X)
    assert out.shape == (5, 8)
    torch.testing.assert_close(out, linear(X.t()).t())


@pytest.mark.parametrize("aggregation", ["max", "mean", "MAX"])
def test_range_mil_string_aggregation(aggregation):
    model = RangeMIL(nn.Identity(), aggregation, nn.Identity())
    expected = SegmentedMaxPool if aggregation.lower() == "max" else SegmentedMeanPool
    assert isinstance(model.aggregation, expected)


def test_range_mil_unknown_aggregation_raises():
    with pytest.raises(ValueError, match="aggregation must be one of"):
        RangeMIL(nn.Identity(), "median", nn.Identity())


def test_range_mil_identity_stages(literal_inputs):
    X, bags = literal_inputs
    model = RangeMIL(nn.Identity(), "mean", nn.Identity())
    torch.testing.assert_close(model(X, bags), torch.tensor([[1.5, 3.5]], dtype=torch.float64))


def test_range_mil_shapes():
    torch.manual_seed(0)
    model = RangeMIL(
        FeatureMajor(nn.Sequential(nn.Linear(8, 16), nn.ReLU())),
        SegmentedMaxPool(assume_nonnegative=True),
        FeatureMajor(nn.Linear(16, 2)),
    )
    X = torch.randn(8, 10)
    out = model(X, [range(0, 4), range(4, 10)])
    assert out.shape == (2, 2)


def test_range_mil_registers_submodules():
    model = RangeMIL(FeatureMajor(nn.Linear(4, 6)), "max", FeatureMajor(nn.Linear(6, 1)))
    names = {name for name, _ in model.named_parameters()}
    assert "premodel.module.weight" in names
    assert "postmodel.module.bias" in names


@pytest.mark.parametrize("aggregation", ["max", "mean"])
def test_range_mil_training_step(aggregation):
    """A few SGD steps on a separable toy problem reduce the loss."""
    torch.manual_seed(0)
    bags = BagPartition.from_lengths([3, 5, 2, 4, 6, 1])
    X = torch.randn(4, bags.stop)
    # Positive bags contain an instance with a large first feature
    labels = torch.tensor([1.0, 0.0, 1.0, 0.0, 1.0, 0.0])
    for bag, label in zip(bags, labels):
        if label == 1.0:
            X[0, bag.start] = 4.0

    model = RangeMIL(
        FeatureMajor(nn.Sequential(nn.Linear(4, 8), nn.Tanh())),
        aggregation,
        FeatureMajor(nn.Linear(8, 1)),
    )
    optimizer = torch.optim.SGD(model.parameters(), lr=0.5)
    loss_fn = nn.BCEWithLogitsLoss()

    losses = []
    for _ in range(30):
        optimizer.zero_grad()
        logits = model(X, bags).squeeze(0)
        loss = loss_fn(logits, labels)
        loss.backward()
        optimizer.step()
        losses.append(loss.item())

    assert losses[-1] < losses[0]
    for param in model.parameters():
        assert param.grad is not None
        assert torch.isfinite(param.grad).all()
