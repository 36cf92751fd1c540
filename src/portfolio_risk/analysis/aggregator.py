from datetime import date

from portfolio_risk.analysis.performance import PerformanceFigures
from portfolio_risk.models.portfolio import Portfolio
from portfolio_risk.models.risk import (
    ComponentStatus,
    ConcentrationReport,
    DataWarning,
    RiskMetrics,
    StressTestResult,
    VaRResult,
)


class RiskMetricsAggregator:
    """Merges engine outputs into one immutable RiskMetrics record.

    Any engine output may be None (not requested, or failed); its fields are
    then left unset so a missing figure is never confused with a zero.
    """

    def aggregate(
        self,
        portfolio: Portfolio,
        as_of: date,
        *,
        var: VaRResult | None = None,
        stress: StressTestResult | None = None,
        concentration: ConcentrationReport | None = None,
        performance: PerformanceFigures | None = None,
        components: list[ComponentStatus] | None = None,
        warnings: list[DataWarning] | None = None,
    ) -> RiskMetrics:
        fields: dict = {
            "portfolio_id": portfolio.id,
            "as_of": as_of,
            "total_value": portfolio.total_value,
            "components": components or [],
            "warnings": self._dedupe(warnings or []),
        }

        if var is not None:
            fields.update(
                value_at_risk=var.var,
                expected_shortfall=var.expected_shortfall,
                var_95=var.at(0.95),
                var_99=var.at(0.99),
                var_horizon_days=var.horizon_days,
                calculation_method=var.method,
                num_simulations=var.iterations,
                calculation_time_ms=round(var.elapsed_ms, 3),
            )

        if performance is not None:
            fields.update(
                portfolio_volatility=performance.portfolio_volatility,
                sharpe_ratio=performance.sharpe_ratio,
                sortino_ratio=performance.sortino_ratio,
                beta=performance.beta,
            )

        if stress is not None:
            fields.update(
                max_drawdown=stress.max_drawdown,
                recovery_time_days=stress.recovery_days,
                worst_scenario_id=stress.worst_scenario_id,
                scenario_losses=stress.losses,
            )

        if concentration is not None:
            fields.update(
                concentration_applicable=concentration.applicable,
                sector_concentration=concentration.sector,
                asset_class_concentration=concentration.asset_class,
                issuer_concentration=concentration.issuer,
                largest_position_pct=concentration.largest_position_pct,
                compliance_violations=concentration.violations,
                is_compliant=not concentration.violations,
            )

        return RiskMetrics(**fields)

    @staticmethod
    def _dedupe(warnings: list[DataWarning]) -> list[DataWarning]:
        seen: set[tuple] = set()
        out: list[DataWarning] = []
        for w in warnings:
            key = (w.code, w.symbol, w.message)
            if key not in seen:
                seen.add(key)
                out.append(w)
        return out
