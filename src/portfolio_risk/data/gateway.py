from datetime import date
from typing import Protocol

import pandas as pd

from portfolio_risk.models.portfolio import Holding, SecurityTags
from portfolio_risk.models.risk import RiskMetrics


class HoldingsStore(Protocol):
    """Read-only source of portfolio holdings."""

    def get_holdings(self, portfolio_id: str) -> list[Holding]:
        """Return a snapshot of the portfolio's holdings.

        Raises InputUnavailableError if the portfolio does not exist.
        """
        ...


class RiskMetricsStore(Protocol):
    """Persists results keyed by (portfolio id, as-of date)."""

    def save_risk_metrics(self, metrics: RiskMetrics) -> None: ...

    def get_risk_metrics(self, portfolio_id: str, as_of: date) -> RiskMetrics | None: ...


class MarketDataGateway(Protocol):
    """Protocol for price history and security reference data."""

    def get_daily_closes(self, symbol: str, start: date, end: date) -> pd.Series:
        """Closing prices indexed by date, ascending. Empty if unknown."""
        ...

    def get_daily_closes_batch(
        self, symbols: list[str], start: date, end: date
    ) -> dict[str, pd.Series]:
        """Closing price series for several symbols in one round trip."""
        ...

    def get_security_tags(self, symbols: list[str]) -> dict[str, SecurityTags]:
        """Sector, asset class and issuer for each known symbol."""
        ...

    def get_current_prices(self, symbols: list[str]) -> dict[str, float]:
        """Latest price per known symbol."""
        ...
