import logging
from datetime import date

import numpy as np
import pandas as pd

from portfolio_risk.analysis.cache import StatisticsCache
from portfolio_risk.analysis.returns import daily_returns, history_window
from portfolio_risk.config import RiskConfig
from portfolio_risk.data.gateway import MarketDataGateway
from portfolio_risk.errors import GatewayError
from portfolio_risk.models.risk import CorrelationMatrix

logger = logging.getLogger(__name__)


def pairwise_correlation(
    returns_map: dict[str, pd.Series],
    symbols: list[str],
    min_periods: int,
) -> np.ndarray:
    """Pearson correlation for every pair, 0.0 where a pair has too little overlap.

    Result is symmetric with an exact 1.0 diagonal and values in [-1, 1].
    """
    n = len(symbols)
    corr = np.eye(n)
    present = [s for s in symbols if s in returns_map]
    if len(present) >= 2:
        frame = pd.concat({s: returns_map[s] for s in present}, axis=1)
        pc = frame.corr(method="pearson", min_periods=min_periods)
        idx = {s: i for i, s in enumerate(symbols)}
        for a_pos, a in enumerate(present):
            for b in present[a_pos + 1 :]:
                value = pc.at[a, b]
                if pd.isna(value):
                    value = 0.0
                i, j = idx[a], idx[b]
                corr[i, j] = corr[j, i] = float(np.clip(value, -1.0, 1.0))
    np.fill_diagonal(corr, 1.0)
    return corr


class CorrelationMatrixBuilder:
    def __init__(
        self,
        gateway: MarketDataGateway,
        cache: StatisticsCache,
        config: RiskConfig,
    ) -> None:
        self.gateway = gateway
        self.cache = cache
        self.config = config

    def build(
        self,
        symbols: list[str],
        lookback_days: int | None = None,
        as_of: date | None = None,
    ) -> CorrelationMatrix:
        lookback = lookback_days or self.config.lookback_days
        as_of = as_of or date.today()
        ordered = sorted(set(symbols))
        key = ("correlation", tuple(ordered), lookback, as_of)

        cached = self.cache.get(key)
        if cached is not None:
            return cached

        if len(ordered) < 2:
            return self.cache.get_or_compute(
                key, lambda: self._identity(ordered, lookback, as_of, [])
            )

        # Fetch inside the computation: concurrent misses share one round trip
        # and a GatewayError reaches every waiter without being cached.
        try:
            return self.cache.get_or_compute(
                key, lambda: self._compute(ordered, lookback, as_of)
            )
        except GatewayError as e:
            logger.warning(
                "Price history unavailable, assuming zero correlation: %s", e
            )
            return self._identity(ordered, lookback, as_of, ordered, error=str(e))

    def _compute(
        self, symbols: list[str], lookback: int, as_of: date
    ) -> CorrelationMatrix:
        start, end = history_window(as_of, lookback)
        closes = self.gateway.get_daily_closes_batch(symbols, start, end)
        returns_map: dict[str, pd.Series] = {}
        degraded: list[str] = []
        for s in symbols:
            r = daily_returns(closes.get(s), lookback)
            if len(r) >= self.config.min_observations:
                returns_map[s] = r
            else:
                degraded.append(s)

        if degraded:
            logger.warning(
                "Insufficient history for %s; correlations set to 0.0",
                ", ".join(degraded),
            )

        corr = pairwise_correlation(returns_map, symbols, self.config.min_observations)
        logger.info("Built %dx%d correlation matrix", len(symbols), len(symbols))
        return CorrelationMatrix(
            symbols=symbols,
            matrix=corr.tolist(),
            as_of=as_of,
            lookback_days=lookback,
            degraded_symbols=degraded,
        )

    @staticmethod
    def _identity(
        symbols: list[str],
        lookback: int,
        as_of: date,
        degraded: list[str],
        error: str | None = None,
    ) -> CorrelationMatrix:
        n = len(symbols)
        return CorrelationMatrix(
            symbols=symbols,
            matrix=np.eye(n).tolist(),
            as_of=as_of,
            lookback_days=lookback,
            degraded_symbols=degraded,
            source_error=error,
        )
