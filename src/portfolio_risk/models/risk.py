from datetime import UTC, date, datetime
from enum import StrEnum

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator


class ComputationState(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ComponentStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    state: ComputationState = ComputationState.PENDING
    reason: str | None = None

    def complete(self) -> "ComponentStatus":
        return self.model_copy(update={"state": ComputationState.COMPLETED})

    def fail(self, reason: str) -> "ComponentStatus":
        return self.model_copy(
            update={"state": ComputationState.FAILED, "reason": reason}
        )


class WarningCode(StrEnum):
    DEFAULT_VOLATILITY = "default_volatility"
    ZERO_CORRELATION = "zero_correlation"
    MISSING_TAGS = "missing_tags"
    GATEWAY_FAILURE = "gateway_failure"
    DEGENERATE_PORTFOLIO = "degenerate_portfolio"


class DataWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: WarningCode
    symbol: str | None = None
    message: str = ""


class VolatilitySnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    lookback_days: int
    annualized_volatility: float
    observations: int = 0
    is_estimate: bool = False
    source_error: str | None = None


class CorrelationMatrix(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbols: list[str] = []
    matrix: list[list[float]] = []
    as_of: date | None = None
    lookback_days: int = 0
    degraded_symbols: list[str] = []
    source_error: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "CorrelationMatrix":
        n = len(self.symbols)
        if len(self.matrix) != n or any(len(row) != n for row in self.matrix):
            raise ValueError("correlation matrix must be square over its symbols")
        return self

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded_symbols)

    def as_array(self) -> np.ndarray:
        return np.array(self.matrix, dtype=float).reshape(
            len(self.symbols), len(self.symbols)
        )

    def value(self, a: str, b: str) -> float:
        i = self.symbols.index(a)
        j = self.symbols.index(b)
        return self.matrix[i][j]

    def reordered(self, symbols: list[str]) -> np.ndarray:
        """Return the matrix as an array in the given symbol order."""
        idx = [self.symbols.index(s) for s in symbols]
        return self.as_array()[np.ix_(idx, idx)]


class ScenarioDefinition(BaseModel):
    """A historical or hypothetical shock. Shocks are returns: -1.0 wipes out."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    event: str | None = None
    symbol_shocks: dict[str, float] = {}
    asset_class_shocks: dict[str, float] = {}
    default_shock: float = 0.0
    recovery_days: int | None = Field(default=None, ge=0)
    annual_recovery_rate: float | None = Field(default=None, gt=0.0)

    @model_validator(mode="after")
    def _check_shocks(self) -> "ScenarioDefinition":
        shocks = [
            self.default_shock,
            *self.symbol_shocks.values(),
            *self.asset_class_shocks.values(),
        ]
        if any(s < -1.0 for s in shocks):
            raise ValueError(f"scenario {self.id}: shocks cannot be below -100%")
        return self

    def shock_for(self, symbol: str, asset_class: str | None) -> float:
        if symbol in self.symbol_shocks:
            return self.symbol_shocks[symbol]
        if asset_class is not None and asset_class in self.asset_class_shocks:
            return self.asset_class_shocks[asset_class]
        return self.default_shock


class ScenarioResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    scenario_id: str
    event: str | None = None
    loss: float
    loss_pct: float | None = None
    recovery_days: int | None = None


class StressTestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    scenarios: list[ScenarioResult] = []
    worst_scenario_id: str | None = None
    max_drawdown: float = 0.0
    recovery_days: int | None = None

    @property
    def losses(self) -> dict[str, float]:
        return {s.scenario_id: s.loss for s in self.scenarios}


class ComplianceViolation(BaseModel):
    model_config = ConfigDict(frozen=True)

    dimension: str
    group: str
    concentration_pct: float
    limit_pct: float
    message: str = ""


class ConcentrationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_value: float = 0.0
    applicable: bool = True
    sector: dict[str, float] = {}
    asset_class: dict[str, float] = {}
    issuer: dict[str, float] = {}
    largest_position_pct: float | None = None
    violations: list[ComplianceViolation] = []


class VaRResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    var: dict[float, float] = {}
    expected_shortfall: dict[float, float] = {}
    horizon_days: int = 1
    iterations: int = 0
    seed: int | None = None
    method: str = "monte_carlo"
    elapsed_ms: float = 0.0
    simulated: bool = True

    def at(self, confidence: float) -> float | None:
        return self.var.get(confidence)


class RiskMetrics(BaseModel):
    """Immutable result of one risk computation, cacheable by (portfolio, as-of)."""

    model_config = ConfigDict(frozen=True)

    portfolio_id: str
    as_of: date
    calculated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    total_value: float = 0.0

    value_at_risk: dict[float, float] = {}
    expected_shortfall: dict[float, float] = {}
    var_95: float | None = None
    var_99: float | None = None
    var_horizon_days: int | None = None
    calculation_method: str | None = None
    num_simulations: int | None = None
    calculation_time_ms: float | None = None

    portfolio_volatility: float | None = None
    sharpe_ratio: float | None = None
    sortino_ratio: float | None = None
    beta: float | None = None

    max_drawdown: float | None = None
    recovery_time_days: int | None = None
    worst_scenario_id: str | None = None
    scenario_losses: dict[str, float] = {}

    concentration_applicable: bool = True
    sector_concentration: dict[str, float] = {}
    asset_class_concentration: dict[str, float] = {}
    issuer_concentration: dict[str, float] = {}
    largest_position_pct: float | None = None

    compliance_violations: list[ComplianceViolation] = []
    is_compliant: bool | None = None

    components: list[ComponentStatus] = []
    warnings: list[DataWarning] = []

    @property
    def num_violations(self) -> int:
        return len(self.compliance_violations)

    def component(self, name: str) -> ComponentStatus | None:
        for c in self.components:
            if c.name == name:
                return c
        return None
