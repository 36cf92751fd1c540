"""Entry point for risk computations over stored portfolios."""

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import TypeVar

from portfolio_risk.analysis.aggregator import RiskMetricsAggregator
from portfolio_risk.analysis.cache import StatisticsCache
from portfolio_risk.analysis.cancellation import CancellationToken
from portfolio_risk.analysis.concentration import ConcentrationAnalyzer
from portfolio_risk.analysis.correlation import CorrelationMatrixBuilder
from portfolio_risk.analysis.monte_carlo import MonteCarloVaREngine
from portfolio_risk.analysis.performance import PerformanceAnalyzer, beta
from portfolio_risk.analysis.stress import StressTestRunner
from portfolio_risk.analysis.volatility import VolatilityEstimator
from portfolio_risk.config import RiskConfig, ScenarioLibrary
from portfolio_risk.data.gateway import (
    HoldingsStore,
    MarketDataGateway,
    RiskMetricsStore,
)
from portfolio_risk.data.resilient import ResilientGateway, RetryPolicy
from portfolio_risk.errors import (
    GatewayError,
    InputUnavailableError,
    MarketDataUnavailableError,
    RiskEngineError,
)
from portfolio_risk.models.portfolio import Portfolio, SecurityTags
from portfolio_risk.models.risk import (
    ComplianceViolation,
    ComponentStatus,
    ComputationState,
    DataWarning,
    RiskMetrics,
    ScenarioDefinition,
    WarningCode,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

VAR = "value_at_risk"
STRESS = "stress_test"
CONCENTRATION = "concentration"
PERFORMANCE = "performance"


class RiskAnalyticsService:
    """Resolves portfolios and runs the risk engines over them.

    The store and gateway are owned by the caller; this class only wraps them
    with timeouts and retries.
    """

    def __init__(
        self,
        store: HoldingsStore,
        gateway: MarketDataGateway,
        config: RiskConfig | None = None,
        scenarios: ScenarioLibrary | None = None,
        results: RiskMetricsStore | None = None,
        cache: StatisticsCache | None = None,
    ) -> None:
        self.config = config or RiskConfig()
        self.scenarios = scenarios or ScenarioLibrary()
        self.results = results
        self.data = ResilientGateway(
            gateway,
            store,
            RetryPolicy.from_config(self.config),
            max_workers=self.config.max_workers,
        )
        self.cache = cache or StatisticsCache(self.config.cache_ttl_seconds)

        self.volatility = VolatilityEstimator(self.data, self.cache, self.config)
        self.correlation = CorrelationMatrixBuilder(self.data, self.cache, self.config)
        self.var_engine = MonteCarloVaREngine(
            self.volatility, self.correlation, self.config
        )
        self.stress_runner = StressTestRunner(self.config)
        self.concentration = ConcentrationAnalyzer(self.config)
        self.performance = PerformanceAnalyzer(self.data, self.config)
        self.aggregator = RiskMetricsAggregator()
        self._executor = ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="risk-service"
        )

    # --- Inputs ---

    def load_portfolio(self, portfolio_id: str) -> Portfolio:
        try:
            holdings = self.data.get_holdings(portfolio_id)
        except GatewayError as e:
            raise InputUnavailableError(
                f"portfolio {portfolio_id} could not be loaded: {e}"
            ) from e
        return Portfolio(id=portfolio_id, holdings=tuple(holdings))

    def resolve_tags(
        self, portfolio: Portfolio
    ) -> tuple[dict[str, SecurityTags], list[DataWarning], str | None]:
        """Fetch tags in one batch for symbols whose holdings lack them."""
        needed = list(
            dict.fromkeys(
                h.symbol
                for h in portfolio.holdings
                if not (h.sector and h.asset_class and h.issuer)
            )
        )
        if not needed:
            return {}, [], None
        try:
            return self.data.get_security_tags(needed), [], None
        except GatewayError as e:
            logger.warning("Security tags unavailable for %s: %s", portfolio.id, e)
            warning = DataWarning(
                code=WarningCode.GATEWAY_FAILURE,
                message=f"security tags unavailable: {e}",
            )
            return {}, [warning], str(e)

    def resolve_scenarios(self, scenario_ids: list[str]) -> list[ScenarioDefinition]:
        scenarios = []
        for sid in scenario_ids:
            scenario = self.scenarios.get(sid)
            if scenario is None:
                raise InputUnavailableError(f"unknown stress scenario: {sid}")
            scenarios.append(scenario)
        return scenarios

    # --- Operations ---

    def compute_value_at_risk(
        self,
        portfolio_id: str,
        confidence_level: float = 0.95,
        horizon_days: int = 1,
        iteration_count: int | None = None,
        cancel_token: CancellationToken | None = None,
        as_of: date | None = None,
    ) -> float:
        """VaR amount at one confidence level.

        Raises MarketDataUnavailableError when price history could not be
        fetched. Short history on individual symbols is only logged.
        """
        portfolio = self.load_portfolio(portfolio_id)
        result, warnings = self.var_engine.compute(
            portfolio,
            [confidence_level],
            horizon_days=horizon_days,
            iterations=iteration_count,
            cancel_token=cancel_token,
            as_of=as_of,
        )
        failures = [
            w.message for w in warnings if w.code == WarningCode.GATEWAY_FAILURE
        ]
        if failures:
            raise MarketDataUnavailableError("value at risk", failures)
        for w in warnings:
            logger.warning("VaR input degraded: %s %s", w.symbol or "", w.message)
        return result.var[confidence_level]

    def run_stress_tests(
        self,
        portfolio_id: str,
        scenario_ids: list[str],
        cancel_token: CancellationToken | None = None,
        as_of: date | None = None,
    ) -> RiskMetrics:
        scenarios = self.resolve_scenarios(scenario_ids)
        portfolio = self.load_portfolio(portfolio_id)
        status = ComponentStatus(name=STRESS)

        tags: dict[str, SecurityTags] = {}
        warnings: list[DataWarning] = []
        if any(s.asset_class_shocks for s in scenarios):
            tags, warnings, error = self.resolve_tags(portfolio)
            if error:
                status = status.fail(f"security tags unavailable: {error}")

        stress = self.stress_runner.run(portfolio, scenarios, tags, cancel_token)
        if status.state == ComputationState.PENDING:
            status = status.complete()
        return self.aggregator.aggregate(
            portfolio,
            as_of or date.today(),
            stress=stress,
            components=[status],
            warnings=warnings,
        )

    def analyze_concentration(
        self, portfolio_id: str, as_of: date | None = None
    ) -> RiskMetrics:
        portfolio = self.load_portfolio(portfolio_id)
        status = ComponentStatus(name=CONCENTRATION)
        tags, warnings, error = self.resolve_tags(portfolio)
        report, more = self.concentration.analyze(portfolio, tags)
        status = (
            status.fail(f"security tags unavailable: {error}")
            if error
            else status.complete()
        )
        return self.aggregator.aggregate(
            portfolio,
            as_of or date.today(),
            concentration=report,
            components=[status],
            warnings=warnings + more,
        )

    def check_compliance(self, portfolio_id: str) -> list[ComplianceViolation]:
        return self.analyze_concentration(portfolio_id).compliance_violations

    def calculate_portfolio_beta(
        self,
        portfolio_id: str,
        benchmark_symbol: str,
        period_days: int,
        as_of: date | None = None,
    ) -> float | None:
        """Beta vs the benchmark, or None when history is too short."""
        portfolio = self.load_portfolio(portfolio_id)
        if portfolio.is_empty or portfolio.total_value <= 0:
            return None
        returns, bench = self.performance.portfolio_returns(
            portfolio,
            lookback_days=period_days,
            as_of=as_of,
            benchmark_symbol=benchmark_symbol,
        )
        if bench is None:
            return None
        return beta(returns, bench, self.config.min_observations)

    async def compute_risk_metrics(
        self,
        portfolio_id: str,
        scenario_ids: list[str] | None = None,
        cancel_token: CancellationToken | None = None,
        as_of: date | None = None,
    ) -> RiskMetrics:
        """Run every engine concurrently and merge the results.

        Only portfolio resolution is fatal; any other failure is recorded as a
        failed component and leaves its figures unset.
        """
        as_of = as_of or date.today()
        loop = asyncio.get_running_loop()
        portfolio = await loop.run_in_executor(
            self._executor, self.load_portfolio, portfolio_id
        )
        scenarios = self.resolve_scenarios(
            self.scenarios.ids() if scenario_ids is None else scenario_ids
        )
        tags, tag_warnings, tag_error = await loop.run_in_executor(
            self._executor, self.resolve_tags, portfolio
        )

        def run_var():
            return self.var_engine.compute(
                portfolio, cancel_token=cancel_token, as_of=as_of
            )

        def run_performance():
            inputs = self.var_engine.resolve_inputs(portfolio, as_of)
            return self.performance.analyze(portfolio, inputs, as_of), []

        def run_stress():
            return self.stress_runner.run(portfolio, scenarios, tags, cancel_token), []

        def run_concentration():
            return self.concentration.analyze(portfolio, tags)

        jobs: list[tuple[str, Callable]] = [
            (VAR, run_var),
            (PERFORMANCE, run_performance),
            (CONCENTRATION, run_concentration),
        ]
        if scenarios:
            jobs.append((STRESS, run_stress))

        outcomes = await asyncio.gather(
            *[
                loop.run_in_executor(self._executor, self._guarded, name, fn)
                for name, fn in jobs
            ]
        )

        values: dict[str, object] = {}
        components: list[ComponentStatus] = []
        warnings = list(tag_warnings)
        for name, (value, status, found) in zip([n for n, _ in jobs], outcomes):
            if tag_error and name in (CONCENTRATION, STRESS) and value is not None:
                status = status.fail(f"security tags unavailable: {tag_error}")
            if name == VAR and any(w.code == WarningCode.GATEWAY_FAILURE for w in found):
                status = status.fail("price history unavailable, defaults used")
                value = None
            values[name] = value
            components.append(status)
            warnings.extend(found)

        metrics = self.aggregator.aggregate(
            portfolio,
            as_of,
            var=values.get(VAR),
            stress=values.get(STRESS),
            concentration=values.get(CONCENTRATION),
            performance=values.get(PERFORMANCE),
            components=components,
            warnings=warnings,
        )
        if self.results is not None:
            await loop.run_in_executor(
                self._executor, self.results.save_risk_metrics, metrics
            )
        return metrics

    @staticmethod
    def _guarded(
        name: str, fn: Callable[[], tuple[T, list[DataWarning]]]
    ) -> tuple[T | None, ComponentStatus, list[DataWarning]]:
        status = ComponentStatus(name=name)
        try:
            value, warnings = fn()
        except (RiskEngineError, ValueError) as e:
            logger.error("%s failed: %s", name, e)
            return None, status.fail(str(e)), []
        return value, status.complete(), warnings

    def close(self) -> None:
        self.var_engine.shutdown()
        self.stress_runner.shutdown()
        self.data.close()
        self._executor.shutdown(wait=False)
