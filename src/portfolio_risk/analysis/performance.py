import logging
import math
from datetime import date

import numpy as np
import pandas as pd
from pydantic import BaseModel

from portfolio_risk.analysis.monte_carlo import SimulationInputs
from portfolio_risk.analysis.returns import daily_returns, history_window
from portfolio_risk.config import TRADING_DAYS_PER_YEAR, RiskConfig
from portfolio_risk.data.gateway import MarketDataGateway
from portfolio_risk.models.portfolio import Portfolio

logger = logging.getLogger(__name__)


class PerformanceFigures(BaseModel):
    portfolio_volatility: float | None = None
    sharpe_ratio: float | None = None
    sortino_ratio: float | None = None
    beta: float | None = None
    observations: int = 0


def parametric_volatility(inputs: SimulationInputs) -> float | None:
    """Annualized portfolio volatility sqrt(w' D C D w) from exposures."""
    total = float(inputs.exposures.sum())
    if total <= 0:
        return None
    w = inputs.exposures / total
    cov = np.outer(inputs.annual_vols, inputs.annual_vols) * inputs.correlation
    return math.sqrt(max(float(w @ cov @ w), 0.0))


def weighted_returns(
    returns_map: dict[str, pd.Series], exposure: dict[str, float]
) -> pd.Series:
    """Daily portfolio returns over the dates all holdings share."""
    symbols = [s for s in exposure if s in returns_map]
    total = sum(exposure[s] for s in symbols)
    if not symbols or total <= 0:
        return pd.Series(dtype=float)
    frame = pd.concat({s: returns_map[s] for s in symbols}, axis=1, join="inner")
    weights = np.array([exposure[s] / total for s in symbols])
    return frame.dot(weights)


def sharpe_ratio(returns: pd.Series, risk_free_rate: float) -> float | None:
    std = float(returns.std(ddof=1))
    if len(returns) < 2 or std == 0 or math.isnan(std):
        return None
    excess = float(returns.mean()) * TRADING_DAYS_PER_YEAR - risk_free_rate
    return excess / (std * math.sqrt(TRADING_DAYS_PER_YEAR))


def sortino_ratio(returns: pd.Series, risk_free_rate: float) -> float | None:
    downside = returns[returns < 0]
    if len(returns) < 2 or len(downside) < 2:
        return None
    dd = float(np.sqrt((downside**2).mean()))
    if dd == 0:
        return None
    excess = float(returns.mean()) * TRADING_DAYS_PER_YEAR - risk_free_rate
    return excess / (dd * math.sqrt(TRADING_DAYS_PER_YEAR))


def beta(returns: pd.Series, benchmark: pd.Series, min_obs: int) -> float | None:
    """Cov(portfolio, benchmark) / Var(benchmark) over aligned dates."""
    aligned = pd.concat([returns, benchmark], axis=1, join="inner").dropna()
    if len(aligned) < min_obs:
        return None
    var = float(aligned.iloc[:, 1].var(ddof=1))
    if var == 0 or math.isnan(var):
        return None
    cov = float(aligned.iloc[:, 0].cov(aligned.iloc[:, 1]))
    return cov / var


class PerformanceAnalyzer:
    """Volatility, Sharpe, Sortino and beta for a portfolio.

    Gateway failures propagate as GatewayError; callers decide how to degrade.
    """

    def __init__(self, gateway: MarketDataGateway, config: RiskConfig) -> None:
        self.gateway = gateway
        self.config = config

    def portfolio_returns(
        self,
        portfolio: Portfolio,
        lookback_days: int | None = None,
        as_of: date | None = None,
        benchmark_symbol: str | None = None,
    ) -> tuple[pd.Series, pd.Series | None]:
        lookback = lookback_days or self.config.lookback_days
        as_of = as_of or date.today()
        exposure = portfolio.exposure_by_symbol()
        symbols = list(exposure)
        if benchmark_symbol and benchmark_symbol not in symbols:
            symbols.append(benchmark_symbol)

        start, end = history_window(as_of, lookback)
        closes = self.gateway.get_daily_closes_batch(symbols, start, end)
        returns_map = {
            s: r
            for s in symbols
            if len(r := daily_returns(closes.get(s), lookback))
            >= self.config.min_observations
        }
        bench = returns_map.get(benchmark_symbol) if benchmark_symbol else None
        return weighted_returns(returns_map, exposure), bench

    def analyze(
        self,
        portfolio: Portfolio,
        inputs: SimulationInputs | None = None,
        as_of: date | None = None,
        benchmark_symbol: str | None = None,
    ) -> PerformanceFigures:
        benchmark_symbol = benchmark_symbol or self.config.benchmark_symbol
        if portfolio.is_empty or portfolio.total_value <= 0:
            return PerformanceFigures()

        returns, bench = self.portfolio_returns(
            portfolio, as_of=as_of, benchmark_symbol=benchmark_symbol
        )
        if len(returns) < self.config.min_observations:
            logger.warning(
                "Only %d aligned portfolio returns for %s; ratios unavailable",
                len(returns),
                portfolio.id,
            )
            returns = pd.Series(dtype=float)

        rf = self.config.risk_free_rate
        return PerformanceFigures(
            portfolio_volatility=parametric_volatility(inputs) if inputs else None,
            sharpe_ratio=sharpe_ratio(returns, rf) if len(returns) else None,
            sortino_ratio=sortino_ratio(returns, rf) if len(returns) else None,
            beta=(
                beta(returns, bench, self.config.min_observations)
                if bench is not None and len(returns)
                else None
            ),
            observations=len(returns),
        )
