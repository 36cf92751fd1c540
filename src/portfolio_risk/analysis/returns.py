from datetime import date, timedelta

import pandas as pd

from portfolio_risk.config import TRADING_DAYS_PER_YEAR


def history_window(as_of: date, lookback_days: int) -> tuple[date, date]:
    """Calendar range that covers ``lookback_days`` trading days before as_of."""
    calendar_days = int(lookback_days * 365 / TRADING_DAYS_PER_YEAR) + 10
    return as_of - timedelta(days=calendar_days), as_of


def daily_returns(closes: pd.Series | None, lookback_days: int) -> pd.Series:
    """Simple daily returns over the last ``lookback_days`` observations."""
    if closes is None or closes.empty:
        return pd.Series(dtype=float)
    s = pd.to_numeric(closes, errors="coerce").dropna().sort_index()
    s = s[s > 0]
    returns = s.pct_change().dropna()
    return returns.tail(lookback_days)
