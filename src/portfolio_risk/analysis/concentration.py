import logging

from portfolio_risk.config import UNKNOWN_BUCKET, RiskConfig
from portfolio_risk.models.portfolio import Holding, Portfolio, SecurityTags
from portfolio_risk.models.risk import (
    ComplianceViolation,
    ConcentrationReport,
    DataWarning,
    WarningCode,
)

logger = logging.getLogger(__name__)

DIMENSIONS = ("sector", "asset_class", "issuer")


def _resolve(h: Holding, tag: SecurityTags | None, dimension: str) -> str:
    value = getattr(h, dimension) or (getattr(tag, dimension) if tag else None)
    if value:
        return value
    # An untagged security is its own issuer.
    return h.symbol if dimension == "issuer" else UNKNOWN_BUCKET


def group_percentages(values: dict[str, float], total: float) -> dict[str, float]:
    ordered = sorted(values.items(), key=lambda kv: (-kv[1], kv[0]))
    return {k: (v / total) * 100 for k, v in ordered}


class ConcentrationAnalyzer:
    def __init__(self, config: RiskConfig) -> None:
        self.config = config

    def analyze(
        self,
        portfolio: Portfolio,
        tags: dict[str, SecurityTags] | None = None,
        limits: dict[str, float] | None = None,
    ) -> tuple[ConcentrationReport, list[DataWarning]]:
        tags = tags or {}
        limits = self.config.concentration_limits if limits is None else limits
        total = portfolio.total_value

        if total <= 0:
            warnings = []
            if not portfolio.is_empty:
                logger.warning(
                    "Portfolio %s has non-positive total value; "
                    "concentration not applicable",
                    portfolio.id,
                )
                warnings.append(
                    DataWarning(
                        code=WarningCode.DEGENERATE_PORTFOLIO,
                        message=f"total value {total:.2f}",
                    )
                )
            return ConcentrationReport(total_value=total, applicable=False), warnings

        sums: dict[str, dict[str, float]] = {d: {} for d in DIMENSIONS}
        untagged: list[str] = []
        for h in portfolio.holdings:
            tag = tags.get(h.symbol)
            if not (h.sector or (tag and tag.sector)) and h.symbol not in untagged:
                untagged.append(h.symbol)
            for d in DIMENSIONS:
                group = _resolve(h, tag, d)
                sums[d][group] = sums[d].get(group, 0.0) + h.market_value

        pct = {d: group_percentages(sums[d], total) for d in DIMENSIONS}
        exposure = portfolio.exposure_by_symbol()
        largest = max(exposure.values()) / total * 100

        report = ConcentrationReport(
            total_value=total,
            sector=pct["sector"],
            asset_class=pct["asset_class"],
            issuer=pct["issuer"],
            largest_position_pct=largest,
            violations=self.violations(pct, limits),
        )
        warnings = [
            DataWarning(
                code=WarningCode.MISSING_TAGS,
                symbol=s,
                message=f"no sector for {s}, grouped under {UNKNOWN_BUCKET}",
            )
            for s in untagged
        ]
        return report, warnings

    @staticmethod
    def violations(
        pct: dict[str, dict[str, float]], limits: dict[str, float]
    ) -> list[ComplianceViolation]:
        found: list[ComplianceViolation] = []
        for dimension, limit in limits.items():
            for group, value in pct.get(dimension, {}).items():
                if value > limit:
                    found.append(
                        ComplianceViolation(
                            dimension=dimension,
                            group=group,
                            concentration_pct=value,
                            limit_pct=limit,
                            message=(
                                f"{dimension} '{group}' at {value:.2f}% "
                                f"exceeds {limit:.2f}% limit"
                            ),
                        )
                    )
        for v in found:
            logger.warning("Concentration limit exceeded: %s", v.message)
        return sorted(
            found, key=lambda v: (-v.concentration_pct, v.dimension, v.group)
        )
