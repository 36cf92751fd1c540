import logging
from datetime import date, timedelta

import pandas as pd
import yfinance as yf

from portfolio_risk.models.portfolio import SecurityTags

logger = logging.getLogger(__name__)

QUOTE_TYPE_ASSET_CLASS = {
    "EQUITY": "Equity",
    "ETF": "ETF",
    "MUTUALFUND": "Mutual Fund",
    "BOND": "Fixed Income",
    "CRYPTOCURRENCY": "Crypto",
    "CURRENCY": "Cash",
    "MONEYMARKET": "Cash",
    "FUTURE": "Commodity",
    "INDEX": "Index",
}


class YFinanceClient:
    def __init__(self, ticker: str) -> None:
        self.ticker_symbol = ticker.upper()
        self._ticker: yf.Ticker | None = None

    @property
    def ticker(self) -> yf.Ticker:
        if self._ticker is None:
            self._ticker = yf.Ticker(self.ticker_symbol)
        return self._ticker

    def get_info(self) -> dict:
        try:
            return dict(self.ticker.info)
        except Exception:
            logger.warning("Failed to fetch info for %s", self.ticker_symbol)
            return {}

    def get_closes(self, start: date, end: date) -> pd.Series:
        # yfinance treats ``end`` as exclusive
        df = self.ticker.history(
            start=start.isoformat(),
            end=(end + timedelta(days=1)).isoformat(),
            interval="1d",
            auto_adjust=True,
        )
        if df.empty or "Close" not in df:
            logger.warning("Empty history for %s", self.ticker_symbol)
            return pd.Series(dtype=float, name=self.ticker_symbol)
        closes = df["Close"].rename(self.ticker_symbol)
        closes.index = pd.DatetimeIndex(closes.index).tz_localize(None).normalize()
        return closes

    def get_tags(self) -> SecurityTags | None:
        info = self.get_info()
        if not info:
            return None
        quote_type = str(info.get("quoteType") or "").upper()
        return SecurityTags(
            symbol=self.ticker_symbol,
            sector=info.get("sector") or info.get("category"),
            asset_class=QUOTE_TYPE_ASSET_CLASS.get(quote_type),
            issuer=info.get("longName") or info.get("shortName"),
        )

    def get_last_price(self) -> float | None:
        info = self.get_info()
        price = info.get("currentPrice") or info.get("regularMarketPrice")
        return float(price) if price else None


class YFinanceGateway:
    """MarketDataGateway backed by Yahoo Finance.

    Transport errors on price history propagate so a ResilientGateway can
    retry them; reference data is best effort.
    """

    def __init__(self) -> None:
        self._clients: dict[str, YFinanceClient] = {}

    def _client(self, symbol: str) -> YFinanceClient:
        key = symbol.upper()
        if key not in self._clients:
            self._clients[key] = YFinanceClient(key)
        return self._clients[key]

    def get_daily_closes(self, symbol: str, start: date, end: date) -> pd.Series:
        return self._client(symbol).get_closes(start, end).rename(symbol)

    def get_daily_closes_batch(
        self, symbols: list[str], start: date, end: date
    ) -> dict[str, pd.Series]:
        if not symbols:
            return {}
        df = yf.download(
            symbols,
            start=start.isoformat(),
            end=(end + timedelta(days=1)).isoformat(),
            interval="1d",
            auto_adjust=True,
            progress=False,
            group_by="column",
        )
        if df is None or df.empty:
            logger.warning("Empty history for %s", ", ".join(symbols))
            return {}

        closes = df["Close"]
        if isinstance(closes, pd.Series):
            closes = closes.to_frame(name=symbols[0])
        closes.index = pd.DatetimeIndex(closes.index).tz_localize(None).normalize()

        result: dict[str, pd.Series] = {}
        for symbol in symbols:
            if symbol not in closes:
                continue
            series = closes[symbol].dropna().rename(symbol)
            if not series.empty:
                result[symbol] = series
        missing = set(symbols) - set(result)
        if missing:
            logger.warning("No history for %s", ", ".join(sorted(missing)))
        return result

    def get_security_tags(self, symbols: list[str]) -> dict[str, SecurityTags]:
        tags: dict[str, SecurityTags] = {}
        for symbol in symbols:
            t = self._client(symbol).get_tags()
            if t is not None:
                tags[symbol] = t.model_copy(update={"symbol": symbol})
        return tags

    def get_current_prices(self, symbols: list[str]) -> dict[str, float]:
        prices: dict[str, float] = {}
        for symbol in symbols:
            price = self._client(symbol).get_last_price()
            if price is not None:
                prices[symbol] = price
        return prices
