import logging
import math
from concurrent.futures import ThreadPoolExecutor

from portfolio_risk.analysis.cancellation import CancellationToken
from portfolio_risk.config import TRADING_DAYS_PER_YEAR, RiskConfig
from portfolio_risk.errors import ComputationTimeoutError
from portfolio_risk.models.portfolio import Portfolio, SecurityTags
from portfolio_risk.models.risk import (
    ScenarioDefinition,
    ScenarioResult,
    StressTestResult,
)

logger = logging.getLogger(__name__)


def recovery_days(
    scenario: ScenarioDefinition, total_value: float, loss: float
) -> int | None:
    """Trading days to regain the pre-shock value.

    None when recovery is undefined: nothing left to grow, or no recovery
    rate supplied by the scenario.
    """
    if loss <= 0:
        return 0
    if scenario.recovery_days is not None:
        return scenario.recovery_days
    remaining = total_value - loss
    if remaining <= 0 or scenario.annual_recovery_rate is None:
        return None
    years = math.log(total_value / remaining) / math.log1p(
        scenario.annual_recovery_rate
    )
    return math.ceil(years * TRADING_DAYS_PER_YEAR)


class StressTestRunner:
    def __init__(
        self,
        config: RiskConfig,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.config = config
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.max_workers, thread_name_prefix="stress"
        )

    def apply(
        self,
        portfolio: Portfolio,
        scenario: ScenarioDefinition,
        tags: dict[str, SecurityTags],
    ) -> ScenarioResult:
        pnl = 0.0
        for h in portfolio.holdings:
            tag = tags.get(h.symbol)
            asset_class = h.asset_class or (tag.asset_class if tag else None)
            pnl += scenario.shock_for(h.symbol, asset_class) * h.market_value

        loss = -pnl
        total = portfolio.total_value
        return ScenarioResult(
            scenario_id=scenario.id,
            event=scenario.event,
            loss=loss,
            loss_pct=(loss / total) * 100 if total > 0 else None,
            recovery_days=recovery_days(scenario, total, loss),
        )

    def run(
        self,
        portfolio: Portfolio,
        scenarios: list[ScenarioDefinition],
        tags: dict[str, SecurityTags] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> StressTestResult:
        """Evaluate scenarios concurrently; the aggregate is the worst one."""
        if not scenarios:
            return StressTestResult()
        tags = tags or {}
        logger.info(
            "Running %d stress scenario(s) for %s", len(scenarios), portfolio.id
        )

        def evaluate(scenario: ScenarioDefinition) -> ScenarioResult:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(f"scenario {scenario.id}")
            return self.apply(portfolio, scenario, tags)

        futures = [self._executor.submit(evaluate, s) for s in scenarios]
        results: list[ScenarioResult] = []
        try:
            for f in futures:
                timeout = cancel_token.remaining() if cancel_token else None
                results.append(f.result(timeout=timeout))
        except TimeoutError as e:
            for f in futures:
                f.cancel()
            raise ComputationTimeoutError("stress run exceeded its deadline") from e
        except ComputationTimeoutError:
            for f in futures:
                f.cancel()
            raise

        worst = max(results, key=lambda r: r.loss)
        max_drawdown = max(worst.loss, 0.0)
        return StressTestResult(
            scenarios=results,
            worst_scenario_id=worst.scenario_id if max_drawdown > 0 else None,
            max_drawdown=max_drawdown,
            recovery_days=worst.recovery_days if max_drawdown > 0 else 0,
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
