from datetime import date

import numpy as np
import pandas as pd

from portfolio_risk.analysis.cache import StatisticsCache
from portfolio_risk.analysis.correlation import (
    CorrelationMatrixBuilder,
    pairwise_correlation,
)
from portfolio_risk.config import RiskConfig
from portfolio_risk.data.resilient import ResilientGateway, RetryPolicy

AS_OF = date(2024, 6, 28)


def _builder(gateway):
    return CorrelationMatrixBuilder(gateway, StatisticsCache(3600), RiskConfig())


class TestPairwiseCorrelation:
    def test_perfect_and_inverse(self):
        base = pd.Series(np.random.default_rng(0).normal(size=100))
        corr = pairwise_correlation(
            {"A": base, "B": base * 2, "C": -base}, ["A", "B", "C"], 30
        )
        assert corr[0, 1] == 1.0 or abs(corr[0, 1] - 1.0) < 1e-12
        assert abs(corr[0, 2] + 1.0) < 1e-12
        assert np.all(np.diag(corr) == 1.0)

    def test_missing_symbol_zero(self):
        base = pd.Series(np.random.default_rng(0).normal(size=100))
        corr = pairwise_correlation({"A": base, "B": base}, ["A", "B", "X"], 30)
        assert corr[0, 2] == 0.0
        assert corr[2, 1] == 0.0
        assert corr[2, 2] == 1.0

    def test_insufficient_overlap_zero(self):
        a = pd.Series(np.arange(50.0), index=range(50))
        b = pd.Series(np.arange(50.0), index=range(40, 90))
        corr = pairwise_correlation({"A": a, "B": b}, ["A", "B"], 30)
        assert corr[0, 1] == 0.0


class TestCorrelationMatrixBuilder:
    def test_symmetric_unit_diagonal(self, fake_gateway, make_closes):
        for i, s in enumerate(["A", "B", "C", "D"]):
            fake_gateway.closes[s] = make_closes(seed=i)
        m = _builder(fake_gateway).build(["D", "B", "A", "C"], as_of=AS_OF)
        arr = m.as_array()
        assert m.symbols == ["A", "B", "C", "D"]
        assert np.allclose(arr, arr.T)
        assert np.all(np.diag(arr) == 1.0)
        assert np.all((arr >= -1.0) & (arr <= 1.0))
        assert not m.is_degraded

    def test_recovers_target_correlation(self, fake_gateway, make_correlated):
        a, b = make_correlated(n=1000, rho=0.3)
        fake_gateway.closes.update({"A": a, "B": b})
        m = _builder(fake_gateway).build(["A", "B"], lookback_days=1000, as_of=AS_OF)
        assert abs(m.value("A", "B") - 0.3) < 0.12

    def test_short_history_degraded(self, fake_gateway, make_closes):
        fake_gateway.closes["A"] = make_closes(seed=1)
        fake_gateway.closes["B"] = make_closes(seed=2)
        fake_gateway.closes["NEW"] = make_closes(n=5)
        m = _builder(fake_gateway).build(["A", "B", "NEW"], as_of=AS_OF)
        assert m.degraded_symbols == ["NEW"]
        assert m.value("A", "NEW") == 0.0
        assert m.value("NEW", "NEW") == 1.0

    def test_reordered(self, fake_gateway, make_correlated):
        a, b = make_correlated(n=300, rho=0.5)
        fake_gateway.closes.update({"A": a, "B": b})
        m = _builder(fake_gateway).build(["B", "A"], as_of=AS_OF)
        arr = m.reordered(["B", "A"])
        assert arr[0, 1] == m.value("B", "A")

    def test_single_symbol_identity(self, fake_gateway):
        m = _builder(fake_gateway).build(["A"], as_of=AS_OF)
        assert m.matrix == [[1.0]]
        assert fake_gateway.calls == []

    def test_cached(self, fake_gateway, make_closes):
        fake_gateway.closes["A"] = make_closes(seed=1)
        fake_gateway.closes["B"] = make_closes(seed=2)
        builder = _builder(fake_gateway)
        first = builder.build(["A", "B"], as_of=AS_OF)
        second = builder.build(["B", "A"], as_of=AS_OF)
        assert first is second
        assert len(fake_gateway.calls) == 1

    def test_gateway_failure_identity(self, fake_gateway):
        fake_gateway.always_fail = True
        resilient = ResilientGateway(
            fake_gateway, policy=RetryPolicy(max_attempts=2, sleep=lambda d: None)
        )
        m = _builder(resilient).build(["A", "B"], as_of=AS_OF)
        assert m.matrix == [[1.0, 0.0], [0.0, 1.0]]
        assert m.degraded_symbols == ["A", "B"]
        assert "2 attempt(s)" in m.source_error
        resilient.close()

    def test_concurrent_misses_share_one_fetch(
        self, fake_gateway, make_closes, run_concurrently
    ):
        fake_gateway.closes["A"] = make_closes(seed=1)
        fake_gateway.closes["B"] = make_closes(seed=2)
        fake_gateway.delay = 0.3
        builder = _builder(fake_gateway)

        results = run_concurrently(lambda: builder.build(["A", "B"], as_of=AS_OF))

        assert fake_gateway.calls == ["get_daily_closes_batch"]
        assert all(m is results[0] for m in results)

    def test_concurrent_gateway_failure_not_cached(
        self, fake_gateway, make_closes, run_concurrently
    ):
        fake_gateway.closes["A"] = make_closes(seed=1)
        fake_gateway.closes["B"] = make_closes(seed=2)
        fake_gateway.always_fail = True
        fake_gateway.delay = 0.3
        resilient = ResilientGateway(
            fake_gateway, policy=RetryPolicy(max_attempts=1, sleep=lambda d: None)
        )
        builder = _builder(resilient)

        results = run_concurrently(lambda: builder.build(["A", "B"], as_of=AS_OF))
        assert len(fake_gateway.calls) == 1
        assert all(m.source_error is not None for m in results)

        fake_gateway.always_fail = False
        fake_gateway.delay = 0.0
        m = builder.build(["A", "B"], as_of=AS_OF)
        assert m.source_error is None
        resilient.close()
