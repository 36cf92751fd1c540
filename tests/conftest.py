import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import numpy as np
import pandas as pd
import pytest

from portfolio_risk.errors import InputUnavailableError
from portfolio_risk.models.portfolio import Holding, SecurityTags
from portfolio_risk.models.risk import RiskMetrics

AS_OF = date(2024, 6, 28)


def closes_from_returns(returns: np.ndarray, end: date = AS_OF, start_price=100.0):
    index = pd.bdate_range(end=pd.Timestamp(end), periods=len(returns) + 1)
    prices = start_price * np.cumprod(np.concatenate([[1.0], 1.0 + returns]))
    return pd.Series(prices, index=index, dtype=float)


class FakeGateway:
    """In-memory MarketDataGateway with switchable failures."""

    def __init__(self) -> None:
        self.closes: dict[str, pd.Series] = {}
        self.tags: dict[str, SecurityTags] = {}
        self.prices: dict[str, float] = {}
        self.failures_left = 0
        self.always_fail = False
        self.delay = 0.0
        self.calls: list[str] = []

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.delay:
            time.sleep(self.delay)
        if self.always_fail:
            raise ConnectionError(f"{name} unavailable")
        if self.failures_left > 0:
            self.failures_left -= 1
            raise ConnectionError(f"{name} flaked")

    def get_daily_closes(self, symbol, start, end):
        self._enter("get_daily_closes")
        return self._window(symbol, start, end)

    def get_daily_closes_batch(self, symbols, start, end):
        self._enter("get_daily_closes_batch")
        return {s: self._window(s, start, end) for s in symbols if s in self.closes}

    def get_security_tags(self, symbols):
        self._enter("get_security_tags")
        return {s: self.tags[s] for s in symbols if s in self.tags}

    def get_current_prices(self, symbols):
        self._enter("get_current_prices")
        return {s: self.prices[s] for s in symbols if s in self.prices}

    def _window(self, symbol, start, end):
        s = self.closes.get(symbol, pd.Series(dtype=float))
        if s.empty:
            return s
        return s[(s.index >= pd.Timestamp(start)) & (s.index <= pd.Timestamp(end))]


class FakeStore:
    """In-memory HoldingsStore and RiskMetricsStore."""

    def __init__(self) -> None:
        self.portfolios: dict[str, list[Holding]] = {}
        self.saved: dict[tuple[str, date], RiskMetrics] = {}
        self.calls = 0

    def get_holdings(self, portfolio_id):
        self.calls += 1
        if portfolio_id not in self.portfolios:
            raise InputUnavailableError(f"portfolio not found: {portfolio_id}")
        return list(self.portfolios[portfolio_id])

    def save_risk_metrics(self, metrics):
        self.saved[(metrics.portfolio_id, metrics.as_of)] = metrics

    def get_risk_metrics(self, portfolio_id, as_of):
        return self.saved.get((portfolio_id, as_of))


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def make_closes():
    """Geometric random walk closes ending on AS_OF."""

    def _make(n=300, vol=0.20, seed=0, end=AS_OF, drift=0.0):
        rng = np.random.default_rng(seed)
        daily = rng.normal(drift / 252, vol / np.sqrt(252), size=n)
        return closes_from_returns(daily, end)

    return _make


@pytest.fixture
def make_correlated():
    """Two close series with target vols and return correlation rho."""

    def _make(n=1000, vols=(0.20, 0.15), rho=0.3, seed=0, end=AS_OF):
        rng = np.random.default_rng(seed)
        z = rng.standard_normal(size=(n, 2))
        chol = np.linalg.cholesky(np.array([[1.0, rho], [rho, 1.0]]))
        r = (z @ chol.T) * (np.array(vols) / np.sqrt(252))
        return closes_from_returns(r[:, 0], end), closes_from_returns(r[:, 1], end)

    return _make


@pytest.fixture
def tech_holdings() -> list[Holding]:
    return [
        Holding(
            symbol="AAPL",
            quantity=100,
            current_price=200.0,
            sector="Technology",
            asset_class="Equity",
            issuer="Apple Inc.",
        ),
        Holding(
            symbol="MSFT",
            quantity=50,
            current_price=400.0,
            sector="Technology",
            asset_class="Equity",
            issuer="Microsoft Corp.",
        ),
    ]


@pytest.fixture
def run_concurrently():
    """Call fn from n threads released together; return every result."""

    def run(fn, n: int = 4) -> list:
        barrier = threading.Barrier(n)

        def task():
            barrier.wait()
            return fn()

        with ThreadPoolExecutor(max_workers=n) as pool:
            futures = [pool.submit(task) for _ in range(n)]
            return [f.result() for f in futures]

    return run
