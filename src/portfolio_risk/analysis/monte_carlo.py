"""Monte Carlo Value-at-Risk.

Correlated normal returns come from the Cholesky factor of the correlation
matrix:  C = L L^T,  r = (Z L^T) * sigma * sqrt(h),  P&L = r . exposure.

Trials are split into a fixed number of partitions. Partition i draws from
its own generator seeded with SeedSequence(seed, spawn_key=(i,)), so results
depend only on the seed and partition count, not on how many threads run them.
"""

import logging
import math
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date

import numpy as np

from portfolio_risk.analysis.cancellation import CancellationToken
from portfolio_risk.analysis.correlation import CorrelationMatrixBuilder
from portfolio_risk.analysis.volatility import VolatilityEstimator
from portfolio_risk.config import TRADING_DAYS_PER_YEAR, RiskConfig
from portfolio_risk.errors import ComputationTimeoutError
from portfolio_risk.models.portfolio import Portfolio
from portfolio_risk.models.risk import DataWarning, VaRResult, WarningCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationInputs:
    """Everything the simulation needs, resolved before the first trial."""

    symbols: list[str]
    exposures: np.ndarray
    annual_vols: np.ndarray
    correlation: np.ndarray
    warnings: list[DataWarning] = field(default_factory=list)

    @property
    def daily_vols(self) -> np.ndarray:
        return self.annual_vols / math.sqrt(TRADING_DAYS_PER_YEAR)


def cholesky_factor(corr: np.ndarray) -> np.ndarray:
    """Lower-triangular L with L L^T = corr, repairing non-PSD input."""
    try:
        return np.linalg.cholesky(corr)
    except np.linalg.LinAlgError:
        pass

    # Clip negative eigenvalues, then restore the unit diagonal.
    vals, vecs = np.linalg.eigh((corr + corr.T) / 2)
    vals = np.clip(vals, 1e-8, None)
    repaired = vecs @ np.diag(vals) @ vecs.T
    d = np.sqrt(np.diag(repaired))
    repaired = repaired / np.outer(d, d)
    try:
        return np.linalg.cholesky(repaired)
    except np.linalg.LinAlgError:
        return np.linalg.cholesky(repaired + 1e-6 * np.eye(len(corr)))


def partition_sizes(iterations: int, partitions: int) -> list[int]:
    base, extra = divmod(iterations, partitions)
    return [base + (1 if i < extra else 0) for i in range(partitions)]


def percentile_rank(confidence: float, iterations: int) -> int:
    """Zero-indexed rank floor((1 - c) * N) of the VaR outcome in sorted P&L."""
    k = math.floor((1.0 - confidence) * iterations + 1e-9)
    return min(max(k, 0), iterations - 1)


def value_at_risk(sorted_pnl: np.ndarray, confidence: float) -> float:
    k = percentile_rank(confidence, len(sorted_pnl))
    return max(-float(sorted_pnl[k]), 0.0)


def expected_shortfall(sorted_pnl: np.ndarray, confidence: float) -> float:
    k = percentile_rank(confidence, len(sorted_pnl))
    return max(-float(np.mean(sorted_pnl[: k + 1])), 0.0)


def _simulate_partition(
    index: int,
    size: int,
    seed_seq: np.random.SeedSequence,
    chol: np.ndarray,
    scale: np.ndarray,
    exposures: np.ndarray,
    chunk_size: int,
    token: CancellationToken | None,
) -> np.ndarray:
    rng = np.random.default_rng(seed_seq)
    out = np.empty(size)
    done = 0
    while done < size:
        if token is not None:
            token.raise_if_cancelled(f"simulation partition {index}")
        n = min(chunk_size, size - done)
        z = rng.standard_normal(size=(n, len(exposures)))
        returns = (z @ chol.T) * scale
        out[done : done + n] = returns @ exposures
        done += n
    return out


def simulate_pnl(
    inputs: SimulationInputs,
    horizon_days: int,
    iterations: int,
    seed: int,
    partitions: int,
    executor: ThreadPoolExecutor,
    chunk_size: int = 10_000,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Simulated portfolio P&L for ``iterations`` trials, in partition order."""
    chol = cholesky_factor(inputs.correlation)
    scale = inputs.daily_vols * math.sqrt(horizon_days)
    sizes = partition_sizes(iterations, partitions)

    futures = [
        executor.submit(
            _simulate_partition,
            i,
            size,
            np.random.SeedSequence(seed, spawn_key=(i,)),
            chol,
            scale,
            inputs.exposures,
            chunk_size,
            token,
        )
        for i, size in enumerate(sizes)
        if size > 0
    ]

    timeout = token.remaining() if token is not None else None
    done, pending = wait(futures, timeout=timeout, return_when=FIRST_EXCEPTION)
    failed = [f for f in done if f.exception() is not None]
    if pending or failed:
        if token is not None:
            token.cancel()
        for f in pending:
            f.cancel()
        if failed:
            raise failed[0].exception()
        raise ComputationTimeoutError("simulation did not finish before its deadline")

    return np.concatenate([f.result() for f in futures])


class MonteCarloVaREngine:
    def __init__(
        self,
        volatility: VolatilityEstimator,
        correlation: CorrelationMatrixBuilder,
        config: RiskConfig,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.volatility = volatility
        self.correlation = correlation
        self.config = config
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.max_workers, thread_name_prefix="mc"
        )

    def resolve_inputs(
        self, portfolio: Portfolio, as_of: date | None = None
    ) -> SimulationInputs:
        exposure = portfolio.exposure_by_symbol()
        symbols = list(exposure)
        vols = self.volatility.estimate_many(symbols, as_of=as_of)

        warnings = [
            DataWarning(
                code=WarningCode.DEFAULT_VOLATILITY,
                symbol=s,
                message=f"default volatility {v.annualized_volatility:.2%} "
                f"({v.observations} observations)",
            )
            for s, v in vols.items()
            if v.is_estimate
        ]
        errors = {v.source_error for v in vols.values() if v.source_error}

        if len(symbols) > 1:
            matrix = self.correlation.build(symbols, as_of=as_of)
            corr = matrix.reordered(symbols)
            if matrix.source_error:
                errors.add(matrix.source_error)
            warnings.extend(
                DataWarning(
                    code=WarningCode.ZERO_CORRELATION,
                    symbol=s,
                    message="insufficient history, correlations set to 0.0",
                )
                for s in matrix.degraded_symbols
            )
        else:
            corr = np.eye(len(symbols))

        warnings.extend(
            DataWarning(code=WarningCode.GATEWAY_FAILURE, message=e)
            for e in sorted(errors)
        )
        return SimulationInputs(
            symbols=symbols,
            exposures=np.array([exposure[s] for s in symbols], dtype=float),
            annual_vols=np.array(
                [vols[s].annualized_volatility for s in symbols], dtype=float
            ),
            correlation=corr,
            warnings=warnings,
        )

    def compute(
        self,
        portfolio: Portfolio,
        confidence_levels: list[float] | None = None,
        horizon_days: int | None = None,
        iterations: int | None = None,
        seed: int | None = None,
        cancel_token: CancellationToken | None = None,
        as_of: date | None = None,
    ) -> tuple[VaRResult, list[DataWarning]]:
        levels = sorted(set(confidence_levels or self.config.confidence_levels))
        horizon = self.config.horizon_days if horizon_days is None else horizon_days
        n = self.config.iterations if iterations is None else iterations
        for c in levels:
            if not 0.0 < c < 1.0:
                raise ValueError(f"confidence level must be in (0, 1), got {c}")
        if horizon < 1:
            raise ValueError("horizon must be at least one day")
        if n < 1:
            raise ValueError("iteration count must be positive")

        if seed is None:
            seed = self.config.seed
        if seed is None:
            seed = int(np.random.SeedSequence().entropy)

        if portfolio.is_empty or portfolio.total_value == 0:
            return (
                VaRResult(
                    var={c: 0.0 for c in levels},
                    expected_shortfall={c: 0.0 for c in levels},
                    horizon_days=horizon,
                    iterations=0,
                    seed=seed,
                    simulated=False,
                ),
                [],
            )

        logger.info(
            "Starting VaR for %s: %d iterations, %d-day horizon",
            portfolio.id,
            n,
            horizon,
        )
        started = time.perf_counter()
        inputs = self.resolve_inputs(portfolio, as_of)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("VaR computation")

        pnl = simulate_pnl(
            inputs,
            horizon_days=horizon,
            iterations=n,
            seed=seed,
            partitions=self.config.partitions,
            executor=self._executor,
            chunk_size=self.config.chunk_size,
            token=cancel_token,
        )
        pnl.sort()

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("VaR for %s completed in %.0fms", portfolio.id, elapsed_ms)
        return (
            VaRResult(
                var={c: value_at_risk(pnl, c) for c in levels},
                expected_shortfall={c: expected_shortfall(pnl, c) for c in levels},
                horizon_days=horizon,
                iterations=n,
                seed=seed,
                elapsed_ms=elapsed_ms,
            ),
            inputs.warnings,
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
