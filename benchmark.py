#!/usr/bin/env python
"""Benchmark expression factor linearization and VectorValues arithmetic."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import jax
import jaxlie
import numpy as onp
import tyro
from rich.console import Console
from rich.table import Table

import jaxlin
from jaxlin import JacMode


@dataclass
class BenchmarkConfig:
    """Benchmark linearization of an SE(2) pose chain."""

    num_poses: int = 200
    """Number of poses in the chain. One between factor is made per edge."""

    num_threads: int = 4
    """Worker threads used for the threaded linearization pass."""

    jac_mode: JacMode = "reverse"
    """Autodiff mode: 'auto', 'forward', or 'reverse'."""

    output_txt: Path | None = None
    """Optional output text file for the results table."""

    seed: int = 0


@dataclass
class BenchmarkResult:
    label: str
    count: int
    seconds: float


def make_chain(
    config: BenchmarkConfig,
) -> tuple[list[jaxlin.ExpressionFactor[jaxlie.SE2]], jaxlin.Values]:
    """Odometry chain with noisy initial guesses."""
    rng = onp.random.default_rng(config.seed)
    noise = jaxlin.noises.DiagonalGaussian.make_from_sigmas([0.1, 0.1, 0.05])
    poses = [jaxlin.leaf(jaxlin.symbol("x", i), jaxlie.SE2) for i in range(config.num_poses)]

    factors = [
        jaxlin.ExpressionFactor(
            noise,
            jaxlie.SE2.from_xy_theta(1.0, 0.0, 0.1),
            jaxlin.between(poses[i], poses[i + 1]),
            jac_mode=config.jac_mode,
        )
        for i in range(config.num_poses - 1)
    ]

    vals = jaxlin.Values()
    for i in range(config.num_poses):
        x, y, theta = rng.normal(size=3) * 0.1
        vals.insert(jaxlin.symbol("x", i), jaxlie.SE2.from_xy_theta(i + x, y, theta))
    return factors, vals


def run(config: BenchmarkConfig) -> list[BenchmarkResult]:
    factors, vals = make_chain(config)
    results = list[BenchmarkResult]()

    with jaxlin.utils.stopwatch("serial linearize") as elapsed:
        linear_factors = [factor.linearize(vals) for factor in factors]
    results.append(BenchmarkResult("serial linearize", len(factors), elapsed[0]))

    with jaxlin.utils.stopwatch("threaded linearize") as elapsed:
        with ThreadPoolExecutor(max_workers=config.num_threads) as executor:
            threaded_factors = list(executor.map(lambda f: f.linearize(vals), factors))
    results.append(BenchmarkResult("threaded linearize", len(factors), elapsed[0]))

    for serial, threaded in zip(linear_factors, threaded_factors):
        assert serial is not None and threaded is not None
        onp.testing.assert_allclose(serial.ab.matrix, threaded.ab.matrix)

    # Accumulate gradients into a pre-sized store, then do some vector math.
    with jaxlin.utils.stopwatch("gradient accumulation") as elapsed:
        gradient = vals.zero_vectors()
        for linear_factor in linear_factors:
            assert linear_factor is not None
            gradient.add_in_place_(linear_factor.gradient_at_zero())
        step = gradient.scale(-1.0 / max(gradient.norm(), 1e-12))
        jax.block_until_ready(step.vector())
    results.append(BenchmarkResult("gradient accumulation", len(factors), elapsed[0]))
    return results


def display_results(results: list[BenchmarkResult], console: Console) -> Table:
    """Display results in a rich table."""
    table = Table(title="jaxlin Benchmark Results")
    table.add_column("Stage", style="cyan")
    table.add_column("Factors", justify="right")
    table.add_column("Total (s)", justify="right")
    table.add_column("Per factor (ms)", justify="right")

    for r in results:
        table.add_row(
            r.label,
            str(r.count),
            f"{r.seconds:.4f}",
            f"{1000.0 * r.seconds / max(r.count, 1):.4f}",
        )

    console.print(table)
    return table


def main(config: BenchmarkConfig) -> None:
    """Run benchmarks."""
    console = Console()
    console.print(
        f"[bold]Linearizing a chain of {config.num_poses} poses"
        f" ({config.jac_mode} mode)...[/bold]"
    )
    table = display_results(run(config), console)

    if config.output_txt is not None:
        with open(config.output_txt, "w") as f:
            Console(file=f, force_terminal=False, no_color=True, width=80).print(table)
        console.print(f"\n[bold]Results exported to {config.output_txt}[/bold]")


if __name__ == "__main__":
    config = tyro.cli(BenchmarkConfig)
    main(config)
