"""Tests for the round-based segmented mean kernels."""

import pytest
import torch

from torch_milann import BagPartition, segmean_backward, segmean_forward, segmean_naive


def test_literal_forward(literal_inputs):
    X, bags = literal_inputs
    Y = segmean_forward(X, bags)
    torch.testing.assert_close(Y, torch.tensor([[1.5, 3.5]], dtype=torch.float64))


def test_literal_backward(literal_inputs):
    X, bags = literal_inputs
    grad = segmean_backward(torch.ones(1, 2, dtype=torch.float64), bags, X.shape[1])
    torch.testing.assert_close(grad, torch.full((1, 4), 0.5, dtype=torch.float64))


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
@pytest.mark.parametrize("gaps", [False, True])
def test_forward_matches_naive(create_random_bags, seed, gaps):
    X, bags = create_random_bags(num_features=5, num_bags=7, gaps=gaps, seed=seed)
    torch.testing.assert_close(segmean_forward(X, bags), segmean_naive(X, bags))


def test_forward_float32(create_random_bags):
    X, bags = create_random_bags(num_features=3, num_bags=4, dtype=torch.float32, seed=9)
    Y = segmean_forward(X, bags)
    assert Y.dtype == torch.float32
    torch.testing.assert_close(Y, segmean_naive(X, bags))


def test_single_instance_bags_pass_through():
    X = torch.tensor([[1.0, -2.0, 3.0]])
    bags = BagPartition.from_lengths([1, 1, 1])
    torch.testing.assert_close(segmean_forward(X, bags), X)

    grad_out = torch.tensor([[0.3, -0.7, 2.0]])
    torch.testing.assert_close(segmean_backward(grad_out, bags, 3), grad_out)


def test_backward_divides_each_instance_once():
    """A bag of length 4 spans four rounds; its members are divided by 4 exactly once."""
    bags = BagPartition([range(0, 4), range(4, 6), range(6, 7)])
    grad_out = torch.tensor([[8.0, 6.0, 5.0]])
    grad = segmean_backward(grad_out, bags, 7)
    assert grad.tolist() == [[2.0, 2.0, 2.0, 2.0, 3.0, 3.0, 5.0]]


def test_backward_zero_outside_bags():
    bags = BagPartition([range(1, 3), range(4, 5)])
    grad = segmean_backward(torch.tensor([[4.0, 1.0]]), bags, 6)
    assert grad.tolist() == [[0.0, 2.0, 2.0, 0.0, 1.0, 0.0]]


def test_backward_matches_autograd_of_naive(create_random_bags):
    X, bags = create_random_bags(num_features=4, num_bags=6, gaps=True, seed=21)
    X.requires_grad_(True)
    grad_out = torch.randn(4, bags.num_bags, dtype=torch.float64)

    segmean_naive(X, bags).backward(grad_out)
    expected = X.grad.clone()

    grad = segmean_backward(grad_out, bags, X.shape[1])
    torch.testing.assert_close(grad, expected)


def test_backward_grad_shape_mismatch_raises(literal_inputs):
    _, bags = literal_inputs
    with pytest.raises(ValueError, match="grad_output shape"):
        segmean_backward(torch.ones(1, 1, dtype=torch.float64), bags, 4)


def test_does_not_mutate_input():
    torch.manual_seed(5)
    X = torch.randn(3, 9)
    X_copy = X.clone()
    segmean_forward(X, BagPartition.from_lengths([4, 2, 3]))
    torch.testing.assert_close(X, X_copy, rtol=0, atol=0)
