"""Likelihood oracle backed by an external coalescent simulator.

The simulator is run as ``command... request_path response_path``. The
request holds one value per line, left-aligned in a 20 character field
and followed by a label. Readers take the leading tokens of each line
positionally. The response is one line ``omega sigma npop likelihood``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import subprocess
import tempfile
import threading
from typing import List, Protocol, Sequence

import numpy as np

from .binning import BinLevel, sort_bins
from .config import SearchConfig, draw_seed
from .errors import OracleUnavailableError
from .parameters import ParameterSet

logger = logging.getLogger(__name__)


class LikelihoodOracle(Protocol):
    def evaluate(self, params: ParameterSet) -> float:
        """Return the likelihood of `params` reproducing the binning curve."""
        ...


@dataclass(frozen=True)
class OracleRequest:
    bins: List[BinLevel] = field(default_factory=list)
    omega: float = 0.0
    sigma: float = 0.0
    npop: int = 1
    nu: int = 1
    nrep: int = 1
    seed: int = 1
    length: int = 1
    criterion: int = 1

    def to_text(self) -> str:
        lines = [f"{len(self.bins):<20d} numcrit"]
        for b in self.bins:
            lines.append(f"{b.crit:<20.6f} {b.level:<20d}")
        lines.extend(
            [
                f"{self.omega:<20.10g} omega",
                f"{self.sigma:<20.10g} sigma",
                f"{self.npop:<20d} npop",
                f"{self.nu:<20d} nu",
                f"{self.nrep:<20d} nrep",
                f"{self.seed:<20d} iii (random number seed)",
                f"{self.length:<20d} lengthseq (after deleting gaps, etc.)",
                f"{self.criterion:<20d} whichavg",
            ]
        )
        return "\n".join(lines) + "\n"

    @classmethod
    def from_text(cls, text: str) -> "OracleRequest":
        rows = [line.split() for line in text.splitlines() if line.strip()]
        try:
            numcrit = int(rows[0][0])
            bins = [BinLevel(crit=float(r[0]), level=int(r[1])) for r in rows[1 : 1 + numcrit]]
            if len(bins) != numcrit:
                raise ValueError("truncated bin levels")
            rest = [r[0] for r in rows[1 + numcrit :]]
            return cls(
                bins=bins,
                omega=float(rest[0]),
                sigma=float(rest[1]),
                npop=int(rest[2]),
                nu=int(rest[3]),
                nrep=int(rest[4]),
                seed=int(rest[5]),
                length=int(rest[6]),
                criterion=int(rest[7]),
            )
        except (IndexError, ValueError) as exc:
            raise ValueError(f"malformed oracle request: {exc}") from exc


def format_response(result: ParameterSet) -> str:
    return f"{result.omega:<20.10g} {result.sigma:<20.10g} {result.npop:<20d} {result.likelihood:<20.10g}\n"


def parse_response(text: str) -> ParameterSet | None:
    """Read the simulator response.

    Returns None when the simulator reported a non-positive npop or
    likelihood. Unreadable output raises `OracleUnavailableError`.
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise OracleUnavailableError("simulator response is empty")
    tokens = lines[-1].split()
    try:
        omega = float(tokens[0])
        sigma = float(tokens[1])
        npop = int(float(tokens[2]))
        likelihood = float(tokens[3])
    except (IndexError, ValueError) as exc:
        raise OracleUnavailableError(f"malformed simulator response: {lines[-1]!r}") from exc
    if npop <= 0 or likelihood <= 0.0:
        return None
    return ParameterSet(omega=omega, sigma=sigma, npop=npop, likelihood=likelihood)


class SimulationOracle:
    """Run the simulator once per evaluation in a private temporary directory."""

    def __init__(
        self,
        command: Sequence[str] | str,
        bins: Sequence[BinLevel],
        config: SearchConfig,
        *,
        rng: np.random.Generator | None = None,
        timeout_seconds: float | None = None,
        workdir: str | Path | None = None,
    ) -> None:
        self.command = [command] if isinstance(command, str) else [str(c) for c in command]
        if not self.command:
            raise ValueError("command must not be empty")
        self.bins = sort_bins(bins)
        self.config = config.validate()
        self.rng = rng if rng is not None else np.random.default_rng(0)
        self.timeout_seconds = timeout_seconds
        self.workdir = None if workdir is None else str(workdir)
        self._rng_lock = threading.Lock()

    def with_config(self, config: SearchConfig) -> "SimulationOracle":
        """Copy sharing the command and seed stream, with other settings."""
        out = SimulationOracle(
            self.command,
            self.bins,
            config,
            rng=self.rng,
            timeout_seconds=self.timeout_seconds,
            workdir=self.workdir,
        )
        out._rng_lock = self._rng_lock
        return out

    def next_seed(self) -> int:
        with self._rng_lock:
            return draw_seed(self.rng)

    def request_for(self, params: ParameterSet) -> OracleRequest:
        return OracleRequest(
            bins=list(self.bins),
            omega=float(params.omega),
            sigma=float(params.sigma),
            npop=int(params.npop),
            nu=self.config.nu,
            nrep=self.config.nrep,
            seed=self.next_seed(),
            length=self.config.length,
            criterion=self.config.criterion,
        )

    def run(self, params: ParameterSet) -> ParameterSet | None:
        request = self.request_for(params)
        try:
            with tempfile.TemporaryDirectory(prefix="ecosim_oracle_", dir=self.workdir) as td:
                td_path = Path(td)
                inp = td_path / "request.dat"
                outp = td_path / "response.dat"
                inp.write_text(request.to_text(), encoding="utf-8")
                proc = subprocess.run(
                    self.command + [str(inp), str(outp)],
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    timeout=self.timeout_seconds,
                    check=False,
                )
                if proc.returncode != 0:
                    raise OracleUnavailableError(
                        f"simulator exited with status {proc.returncode}: {str(proc.stderr or '').strip()}"
                    )
                if not outp.exists():
                    raise OracleUnavailableError("simulator did not write a response")
                text = outp.read_text(encoding="utf-8")
        except subprocess.TimeoutExpired as exc:
            raise OracleUnavailableError(f"simulator timed out after {exc.timeout} s") from exc
        except OSError as exc:
            raise OracleUnavailableError(f"failed to run simulator: {exc}") from exc

        result = parse_response(text)
        if result is None:
            logger.warning("simulator returned no usable result for %s", params)
        else:
            logger.debug("oracle %s -> %.6g", params, result.likelihood)
        return result

    def evaluate(self, params: ParameterSet) -> float:
        result = self.run(params)
        return 0.0 if result is None else float(result.likelihood)
