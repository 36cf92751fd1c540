import json
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from portfolio_risk.models.risk import ScenarioDefinition

TRADING_DAYS_PER_YEAR = 252

UNKNOWN_BUCKET = "Unknown"

DEFAULT_CONFIDENCE_LEVELS: list[float] = [0.95, 0.99]

DEFAULT_CONCENTRATION_LIMITS: dict[str, float] = {
    "sector": 30.0,
}


class RiskConfig(BaseModel):
    confidence_levels: list[float] = Field(
        default_factory=lambda: DEFAULT_CONFIDENCE_LEVELS.copy()
    )
    iterations: int = Field(default=10_000, ge=1)
    horizon_days: int = Field(default=1, ge=1)
    seed: int | None = None  # None = fresh OS entropy per run
    partitions: int = Field(default=8, ge=1)
    max_workers: int = Field(default=4, ge=1)
    chunk_size: int = Field(default=10_000, ge=1)

    cache_ttl_seconds: float = Field(default=24 * 3600, gt=0)
    lookback_days: int = Field(default=252, ge=2)
    min_observations: int = Field(default=30, ge=2)
    default_volatility: float = Field(default=0.20, ge=0.0)

    # dimension ("sector", "asset_class", "issuer") -> max percent of portfolio
    concentration_limits: dict[str, float] = Field(
        default_factory=lambda: DEFAULT_CONCENTRATION_LIMITS.copy()
    )

    risk_free_rate: float = 0.0
    benchmark_symbol: str | None = None

    gateway_timeout: float = Field(default=10.0, gt=0)
    gateway_retries: int = Field(default=3, ge=1)
    retry_backoff: float = Field(default=0.5, ge=0.0)

    @field_validator("confidence_levels")
    @classmethod
    def _check_levels(cls, levels: list[float]) -> list[float]:
        for c in levels:
            if not 0.0 < c < 1.0:
                raise ValueError(f"confidence level must be in (0, 1), got {c}")
        return sorted(set(levels))

    @field_validator("concentration_limits")
    @classmethod
    def _check_limits(cls, limits: dict[str, float]) -> dict[str, float]:
        allowed = {"sector", "asset_class", "issuer"}
        for key, value in limits.items():
            if key not in allowed:
                raise ValueError(f"unknown concentration dimension: {key}")
            if value <= 0:
                raise ValueError(f"limit for {key} must be positive")
        return limits


class ScenarioLibrary:
    """Named stress scenarios, supplied by the caller as JSON."""

    def __init__(self, scenarios: list[ScenarioDefinition] | None = None) -> None:
        self._scenarios: dict[str, ScenarioDefinition] = {}
        for s in scenarios or []:
            self.add(s)

    def add(self, scenario: ScenarioDefinition) -> None:
        self._scenarios[scenario.id] = scenario

    def get(self, scenario_id: str) -> ScenarioDefinition | None:
        return self._scenarios.get(scenario_id)

    def ids(self) -> list[str]:
        return list(self._scenarios)

    def __len__(self) -> int:
        return len(self._scenarios)

    @classmethod
    def from_json(cls, path: Path) -> "ScenarioLibrary":
        """Load a file holding either a list of scenarios or {"scenarios": [...]}."""
        raw = json.loads(Path(path).read_text())
        items = raw["scenarios"] if isinstance(raw, dict) else raw
        return cls([ScenarioDefinition.model_validate(item) for item in items])
