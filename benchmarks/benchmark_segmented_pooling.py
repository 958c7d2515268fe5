#!/usr/bin/env python3
"""Segmented pooling benchmark: round-based kernels vs the naive per-bag loop.

Holds the feature dimension fixed and sweeps the number of bags. The naive
reference issues one slice + reduction per bag, so its wall time grows with
the bag count; the round-based kernels issue one gather/scatter per round,
so they depend on the longest bag instead.

Usage:
    # Default: F=128, bag lengths uniform in [1, 32], forward + backward
    python benchmarks/benchmark_segmented_pooling.py

    # Custom bag counts
    python benchmarks/benchmark_segmented_pooling.py --bags 16,256,4096

    # Forward only, on GPU, written to JSON
    python benchmarks/benchmark_segmented_pooling.py --device cuda --phase forward \
        --output results.json
"""

from __future__ import annotations

import argparse
import json
import time
from dataclasses import asdict, dataclass

import torch

from torch_milann import (
    HAS_TRITON,
    BagPartition,
    segmax,
    segmax_naive,
    segmean,
    segmean_naive,
)

DEFAULT_BAG_COUNTS = [16, 64, 256, 1024, 4096]
QUICK_BAG_COUNTS = [16, 256]

BACKENDS = {
    "segmax": lambda x, bags: segmax(x, bags, use_triton=False),
    "segmax_triton": lambda x, bags: segmax(x, bags, use_triton=True),
    "segmax_naive": segmax_naive,
    "segmean": lambda x, bags: segmean(x, bags, use_triton=False),
    "segmean_triton": lambda x, bags: segmean(x, bags, use_triton=True),
    "segmean_naive": segmean_naive,
}


@dataclass
class BenchmarkResult:
    backend: str
    num_bags: int
    num_instances: int
    num_features: int
    max_length: int
    phase: str
    mean_ms: float
    std_ms: float


def _sync(device: torch.device) -> None:
    if device.type == "cuda":
        torch.cuda.synchronize(device)


def make_inputs(num_features, num_bags, max_len, device, seed):
    generator = torch.Generator().manual_seed(seed)
    lengths = torch.randint(1, max_len + 1, (num_bags,), generator=generator)
    bags = BagPartition.from_lengths(lengths)
    instances = torch.randn(num_features, bags.stop, generator=generator).to(device)
    return instances, bags


def time_backend(fn, instances, bags, phase, repeats, device):
    """Mean and std wall time (ms) over ``repeats`` runs after one warmup."""
    needs_grad = phase == "backward"
    x = instances.detach().requires_grad_(needs_grad)

    def run():
        out = fn(x, bags)
        if needs_grad:
            out.backward(torch.ones_like(out))
            x.grad = None

    run()
    _sync(device)

    times = []
    for _ in range(repeats):
        start = time.perf_counter()
        run()
        _sync(device)
        times.append((time.perf_counter() - start) * 1e3)

    t = torch.tensor(times)
    std = t.std().item() if len(times) > 1 else 0.0
    return t.mean().item(), std


def run_sweep(bag_counts, num_features, max_len, backends, device, repeats, phase):
    results: list[BenchmarkResult] = []

    print(f"  {'backend':>16} | {'B':>6} | {'N':>8} | {'Time (ms)':>10} | {'Std':>8}")
    print("  " + "-" * 60)
    for num_bags in bag_counts:
        instances, bags = make_inputs(num_features, num_bags, max_len, device, seed=num_bags)
        for backend in backends:
            mean_ms, std_ms = time_backend(
                BACKENDS[backend], instances, bags, phase, repeats, device
            )
            result = BenchmarkResult(
                backend=backend,
                num_bags=num_bags,
                num_instances=instances.shape[1],
                num_features=num_features,
                max_length=bags.max_length,
                phase=phase,
                mean_ms=mean_ms,
                std_ms=std_ms,
            )
            results.append(result)
            print(
                f"  {backend:>16} | {num_bags:>6} | {result.num_instances:>8} | "
                f"{mean_ms:>10.3f} | {std_ms:>8.3f}"
            )
    return results


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--bags", type=str, default=None, help="Comma-separated bag counts")
    parser.add_argument("--features", type=int, default=128)
    parser.add_argument("--max-len", type=int, default=32, help="Maximum bag length")
    parser.add_argument(
        "--backends",
        type=str,
        default=None,
        help=f"Comma-separated subset of {sorted(BACKENDS)}",
    )
    parser.add_argument("--device", type=str, default="cpu")
    parser.add_argument("--phase", choices=["forward", "backward"], default="backward")
    parser.add_argument("--repeats", type=int, default=10)
    parser.add_argument("--quick", action="store_true", help="Small sweep for smoke testing")
    parser.add_argument("--output", type=str, default=None, help="Write results as JSON")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    device = torch.device(args.device)

    if args.bags is not None:
        bag_counts = [int(b) for b in args.bags.split(",")]
    else:
        bag_counts = QUICK_BAG_COUNTS if args.quick else DEFAULT_BAG_COUNTS

    if args.backends is not None:
        backends = args.backends.split(",")
        unknown = [b for b in backends if b not in BACKENDS]
        if unknown:
            raise SystemExit(f"Unknown backends: {unknown}")
    else:
        backends = [b for b in BACKENDS if not b.endswith("_triton")]
        if HAS_TRITON and device.type == "cuda":
            backends += ["segmax_triton", "segmean_triton"]

    print(
        f"\nSegmented pooling sweep: F={args.features}, max_len={args.max_len}, "
        f"phase={args.phase}, device={device}\n"
    )
    results = run_sweep(
        bag_counts, args.features, args.max_len, backends, device, args.repeats, args.phase
    )

    if args.output is not None:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump([asdict(r) for r in results], f, indent=2)
        print(f"\nWrote {len(results)} results to {args.output}")


if __name__ == "__main__":
    main()
