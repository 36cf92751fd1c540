import math

import pytest

from portfolio_risk.analysis.cancellation import CancellationToken
from portfolio_risk.analysis.stress import StressTestRunner, recovery_days
from portfolio_risk.config import RiskConfig
from portfolio_risk.errors import ComputationTimeoutError
from portfolio_risk.models.portfolio import Holding, Portfolio, SecurityTags
from portfolio_risk.models.risk import ScenarioDefinition


def _portfolio() -> Portfolio:
    return Portfolio(
        id="p1",
        holdings=(
            Holding(symbol="SPY", quantity=100, current_price=500.0, asset_class="ETF"),
            Holding(symbol="TLT", quantity=500, current_price=100.0),
        ),
    )


class TestRecoveryDays:
    def test_explicit_days_win(self):
        s = ScenarioDefinition(id="x", recovery_days=400, annual_recovery_rate=0.1)
        assert recovery_days(s, 100_000, 20_000) == 400

    def test_derived_from_rate(self):
        s = ScenarioDefinition(id="x", annual_recovery_rate=0.10)
        expected = math.ceil(math.log(1 / 0.8) / math.log(1.1) * 252)
        assert recovery_days(s, 100_000, 20_000) == expected

    def test_no_loss_no_recovery(self):
        s = ScenarioDefinition(id="x", annual_recovery_rate=0.10)
        assert recovery_days(s, 100_000, -5_000) == 0

    def test_total_loss_undefined(self):
        s = ScenarioDefinition(id="x", annual_recovery_rate=0.10)
        assert recovery_days(s, 100_000, 100_000) is None

    def test_no_rate_undefined(self):
        assert recovery_days(ScenarioDefinition(id="x"), 100, 10) is None


class TestStressTestRunner:
    def test_total_wipeout(self):
        runner = StressTestRunner(RiskConfig())
        scenario = ScenarioDefinition(id="wipeout", default_shock=-1.0)
        result = runner.run(_portfolio(), [scenario])
        assert result.max_drawdown == 100_000.0
        assert result.worst_scenario_id == "wipeout"
        assert result.scenarios[0].loss_pct == 100.0
        assert result.recovery_days is None
        runner.shutdown()

    def test_shock_precedence(self):
        runner = StressTestRunner(RiskConfig())
        scenario = ScenarioDefinition(
            id="mixed",
            symbol_shocks={"SPY": -0.5},
            asset_class_shocks={"ETF": -0.9, "Bond": 0.1},
            default_shock=-0.2,
        )
        tags = {"TLT": SecurityTags(symbol="TLT", asset_class="Bond")}
        r = runner.apply(_portfolio(), scenario, tags)
        # SPY by symbol (-25k), TLT by tagged asset class (+5k)
        assert r.loss == pytest.approx(20_000.0)
        r = runner.apply(_portfolio(), scenario, {})
        # TLT untagged falls to default (-10k)
        assert r.loss == pytest.approx(35_000.0)
        runner.shutdown()

    def test_worst_scenario_selected(self):
        runner = StressTestRunner(RiskConfig())
        scenarios = [
            ScenarioDefinition(id="2008", event="GFC", default_shock=-0.4),
            ScenarioDefinition(id="2020", event="COVID", default_shock=-0.3),
            ScenarioDefinition(id="1987", event="Black Monday", default_shock=-0.2),
        ]
        result = runner.run(_portfolio(), scenarios)
        assert result.worst_scenario_id == "2008"
        assert result.max_drawdown == pytest.approx(40_000.0)
        assert result.losses == pytest.approx(
            {"2008": 40_000.0, "2020": 30_000.0, "1987": 20_000.0}
        )
        assert [s.scenario_id for s in result.scenarios] == ["2008", "2020", "1987"]
        runner.shutdown()

    def test_all_gains_zero_drawdown(self):
        runner = StressTestRunner(RiskConfig())
        result = runner.run(
            _portfolio(), [ScenarioDefinition(id="rally", default_shock=0.1)]
        )
        assert result.max_drawdown == 0.0
        assert result.worst_scenario_id is None
        assert result.recovery_days == 0
        runner.shutdown()

    def test_no_scenarios(self):
        result = StressTestRunner(RiskConfig()).run(_portfolio(), [])
        assert result.scenarios == []
        assert result.max_drawdown == 0.0

    def test_empty_portfolio(self):
        runner = StressTestRunner(RiskConfig())
        result = runner.run(
            Portfolio(id="e"), [ScenarioDefinition(id="x", default_shock=-0.5)]
        )
        assert result.max_drawdown == 0.0
        assert result.scenarios[0].loss_pct is None
        runner.shutdown()

    def test_cancelled(self):
        token = CancellationToken()
        token.cancel()
        runner = StressTestRunner(RiskConfig())
        with pytest.raises(ComputationTimeoutError):
            runner.run(
                _portfolio(),
                [ScenarioDefinition(id="x", default_shock=-0.5)],
                cancel_token=token,
            )
        runner.shutdown()
