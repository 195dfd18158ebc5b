"""ecosim command-line interface."""

from __future__ import annotations

import argparse
import logging
import shlex
import sys
from typing import Sequence

import numpy as np

from .binning import read_binning
from .confidence import CONFIDENCE_REPLICATES, omega_confidence_interval, sigma_confidence_interval
from .config import SearchConfig
from .errors import EcosimError
from .estimate import estimate_parameters
from .hillclimb import best_result, hillclimb, omega_scan
from .oracle import SimulationOracle
from .trees import read_tree

# Likelihood ratio for a 95% profile interval (exp(1.92)).
LIKELIHOOD_RATIO = 6.83


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ecosim",
        description="Estimate ecotype formation rate, periodic selection rate and ecotype count from a binning curve.",
    )
    parser.add_argument("binning", help="Binning curve file with one 'crit level' pair per line.")
    parser.add_argument(
        "--simulator",
        required=True,
        help="Simulator command; it is called with request and response file paths appended.",
    )
    parser.add_argument("--length", type=int, required=True, help="Sequence length after removing gaps.")
    parser.add_argument("--nu", type=int, default=None, help="Number of sequences. Defaults to the tree's leaf count.")
    parser.add_argument("--tree", default=None, help="Optional Newick tree of the sequences.")
    parser.add_argument("--outgroup", default=None, help="Outgroup leaf to root on and then remove from --tree.")
    parser.add_argument("--write-tree", default=None, help="Write the prepared tree to this path.")
    parser.add_argument("--criterion", type=int, default=1, help="Success-rate statistic reported by the simulator (1-6).")
    parser.add_argument("--nrep", type=int, default=10000, help="Simulator replicates per likelihood evaluation.")
    parser.add_argument("--max-evaluations", type=int, default=100, help="Simplex evaluation budget per optimization.")
    parser.add_argument("--workers", type=int, default=1, help="Concurrent optimizations for grid searches.")
    parser.add_argument("--omega-range", type=float, nargs=2, default=(1e-3, 100.0), metavar=("LOW", "HIGH"))
    parser.add_argument("--sigma-range", type=float, nargs=2, default=(1e-3, 100.0), metavar=("LOW", "HIGH"))
    parser.add_argument("--increments", type=int, default=20, help="Grid increments per search range.")
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Likelihood threshold for confidence intervals. Defaults to the best likelihood divided by 6.83.",
    )
    parser.add_argument("--skip-intervals", action="store_true", help="Stop after the point estimate.")
    parser.add_argument("--timeout", type=float, default=None, help="Timeout in seconds for one simulator run.")
    parser.add_argument("--seed", type=int, default=0, help="Seed for the simulator seed stream.")
    parser.add_argument("-o", "--output", default=None, help="Optional output path. Defaults to stdout.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.increments < 1:
        print("error: --increments must be >= 1", file=sys.stderr)
        return 2
    if args.threshold is not None and not 0.0 <= args.threshold <= 1.0:
        print("error: --threshold must be in [0, 1]", file=sys.stderr)
        return 2
    if args.outgroup is not None and args.tree is None:
        print("error: --outgroup requires --tree", file=sys.stderr)
        return 2

    nu = args.nu
    if args.tree is not None:
        try:
            tree = read_tree(args.tree)
            if args.outgroup is not None:
                tree.reroot(args.outgroup)
                tree.prune(args.outgroup)
            if args.write_tree:
                tree.save(args.write_tree)
        except (EcosimError, KeyError, ValueError, OSError) as exc:
            print(f"error: failed preparing tree: {exc}", file=sys.stderr)
            return 1
        if nu is None:
            nu = tree.size()
    if nu is None:
        print("error: one of --nu or --tree is required", file=sys.stderr)
        return 2

    try:
        config = SearchConfig(
            nu=nu,
            length=args.length,
            nrep=args.nrep,
            criterion=args.criterion,
            max_evaluations=args.max_evaluations,
            workers=args.workers,
        ).validate()
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    try:
        bins = read_binning(args.binning)
    except (OSError, ValueError) as exc:
        print(f"error: failed reading binning curve: {exc}", file=sys.stderr)
        return 1

    rng = np.random.default_rng(args.seed)
    lines: list[str] = []
    try:
        seed = estimate_parameters(config.length, bins)
        lines.append(f"estimate: {seed}")
        oracle = SimulationOracle(
            shlex.split(args.simulator),
            bins,
            config,
            rng=rng,
            timeout_seconds=args.timeout,
        )
        scanned = best_result(omega_scan(oracle, seed, config, omega_range=args.omega_range, increments=args.increments))
        climbed = hillclimb(oracle, scanned.params, config)
        best = best_result([scanned, climbed])
        lines.append(f"hillclimb: {best.params}")
        if not best.converged:
            lines.append("hillclimb: did not converge, reporting best point found")
    except EcosimError as exc:
        _write_report(lines, args.output)
        print(f"error: estimation failed: {exc}", file=sys.stderr)
        return 1

    if not args.skip_intervals:
        threshold = args.threshold
        if threshold is None:
            threshold = best.likelihood / LIKELIHOOD_RATIO
        ci_oracle = oracle.with_config(config.with_nrep(CONFIDENCE_REPLICATES))
        try:
            omega_ci = omega_confidence_interval(
                ci_oracle,
                best.params,
                config,
                omega_range=tuple(args.omega_range),
                increments=args.increments,
                threshold=threshold,
            )
            lines.append(f"omega interval: {omega_ci}")
            sigma_ci = sigma_confidence_interval(
                ci_oracle,
                best.params,
                config,
                sigma_range=tuple(args.sigma_range),
                increments=args.increments,
                threshold=threshold,
            )
            lines.append(f"sigma interval: {sigma_ci}")
        except EcosimError as exc:
            _write_report(lines, args.output)
            print(f"error: confidence interval search failed: {exc}", file=sys.stderr)
            return 1

    if not _write_report(lines, args.output):
        return 1
    return 0


def _write_report(lines: Sequence[str], output: str | None) -> bool:
    if not lines:
        return True
    text = "\n".join(lines) + "\n"
    if not output:
        sys.stdout.write(text)
        return True
    try:
        with open(output, "w", encoding="utf-8") as handle:
            handle.write(text)
    except OSError as exc:  # pragma: no cover - error path
        print(f"error: failed writing output: {exc}", file=sys.stderr)
        return False
    return True
