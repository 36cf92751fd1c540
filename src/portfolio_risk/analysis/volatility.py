import logging
import math
from datetime import date

import pandas as pd

from portfolio_risk.analysis.cache import StatisticsCache
from portfolio_risk.analysis.returns import daily_returns, history_window
from portfolio_risk.config import TRADING_DAYS_PER_YEAR, RiskConfig
from portfolio_risk.data.gateway import MarketDataGateway
from portfolio_risk.errors import GatewayError
from portfolio_risk.models.risk import VolatilitySnapshot

logger = logging.getLogger(__name__)


def annualized_volatility(returns: pd.Series) -> float:
    return float(returns.std(ddof=1)) * math.sqrt(TRADING_DAYS_PER_YEAR)


class VolatilityEstimator:
    def __init__(
        self,
        gateway: MarketDataGateway,
        cache: StatisticsCache,
        config: RiskConfig,
    ) -> None:
        self.gateway = gateway
        self.cache = cache
        self.config = config

    def estimate(
        self,
        symbol: str,
        lookback_days: int | None = None,
        as_of: date | None = None,
    ) -> VolatilitySnapshot:
        return self.estimate_many([symbol], lookback_days, as_of)[symbol]

    def estimate_many(
        self,
        symbols: list[str],
        lookback_days: int | None = None,
        as_of: date | None = None,
    ) -> dict[str, VolatilitySnapshot]:
        """Resolve volatility for every symbol, fetching uncached ones in one batch."""
        lookback = lookback_days or self.config.lookback_days
        as_of = as_of or date.today()
        unique = list(dict.fromkeys(symbols))

        results: dict[str, VolatilitySnapshot] = {}
        missing: list[str] = []
        for s in unique:
            cached = self.cache.get(self._key(s, lookback, as_of))
            if cached is not None:
                results[s] = cached
            else:
                missing.append(s)

        if not missing:
            return results

        # One single-flight computation per batch of misses: concurrent callers
        # missing the same symbols wait on a single gateway fetch.
        batch_key = ("volatility-batch", tuple(missing), lookback, as_of)
        try:
            fetched = self.cache.get_or_compute(
                batch_key, lambda: self._fetch_batch(missing, lookback, as_of)
            )
        except GatewayError as e:
            logger.warning("Price history unavailable, using default volatility: %s", e)
            for s in missing:
                results[s] = self._fallback(s, lookback, 0, error=str(e))
            return results

        results.update(fetched)
        return results

    def _fetch_batch(
        self, symbols: list[str], lookback: int, as_of: date
    ) -> dict[str, VolatilitySnapshot]:
        start, end = history_window(as_of, lookback)
        closes = self.gateway.get_daily_closes_batch(symbols, start, end)
        snapshots = {}
        for s in symbols:
            snapshots[s] = self._snapshot(s, closes.get(s), lookback)
            self.cache.put(self._key(s, lookback, as_of), snapshots[s])
        return snapshots

    def _snapshot(
        self, symbol: str, closes: pd.Series | None, lookback: int
    ) -> VolatilitySnapshot:
        returns = daily_returns(closes, lookback)
        n = len(returns)
        if n < self.config.min_observations:
            logger.warning(
                "Only %d return observations for %s (need %d), using default "
                "volatility %.2f",
                n,
                symbol,
                self.config.min_observations,
                self.config.default_volatility,
            )
            return self._fallback(symbol, lookback, n)

        return VolatilitySnapshot(
            symbol=symbol,
            lookback_days=lookback,
            annualized_volatility=annualized_volatility(returns),
            observations=n,
        )

    def _fallback(
        self, symbol: str, lookback: int, n: int, error: str | None = None
    ) -> VolatilitySnapshot:
        return VolatilitySnapshot(
            symbol=symbol,
            lookback_days=lookback,
            annualized_volatility=self.config.default_volatility,
            observations=n,
            is_estimate=True,
            source_error=error,
        )

    @staticmethod
    def _key(symbol: str, lookback: int, as_of: date) -> tuple:
        return ("volatility", symbol, lookback, as_of)
