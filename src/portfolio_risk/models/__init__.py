from portfolio_risk.models.portfolio import Holding, Portfolio, SecurityTags
from portfolio_risk.models.risk import (
    ComplianceViolation,
    ComponentStatus,
    ComputationState,
    ConcentrationReport,
    CorrelationMatrix,
    DataWarning,
    RiskMetrics,
    ScenarioDefinition,
    ScenarioResult,
    StressTestResult,
    VaRResult,
    VolatilitySnapshot,
    WarningCode,
)

__all__ = [
    "ComplianceViolation",
    "ComponentStatus",
    "ComputationState",
    "ConcentrationReport",
    "CorrelationMatrix",
    "DataWarning",
    "Holding",
    "Portfolio",
    "RiskMetrics",
    "ScenarioDefinition",
    "ScenarioResult",
    "SecurityTags",
    "StressTestResult",
    "VaRResult",
    "VolatilitySnapshot",
    "WarningCode",
]
