from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class SecurityTags(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    sector: str | None = None
    asset_class: str | None = None
    issuer: str | None = None


class Holding(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    account: str = ""
    quantity: float
    purchase_price: float = 0.0
    current_price: float = Field(ge=0.0)
    sector: str | None = None
    asset_class: str | None = None
    issuer: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def gain_loss_pct(self) -> float | None:
        if self.purchase_price <= 0:
            return None
        return (self.current_price / self.purchase_price - 1.0) * 100

    def tags(self) -> SecurityTags:
        return SecurityTags(
            symbol=self.symbol,
            sector=self.sector,
            asset_class=self.asset_class,
            issuer=self.issuer,
        )


class Portfolio(BaseModel):
    """Snapshot of a portfolio's holdings at computation time."""

    model_config = ConfigDict(frozen=True)

    id: str
    holdings: tuple[Holding, ...] = ()

    @model_validator(mode="after")
    def _unique_positions(self) -> "Portfolio":
        seen: set[tuple[str, str]] = set()
        for h in self.holdings:
            key = (h.symbol, h.account)
            if key in seen:
                raise ValueError(
                    f"duplicate holding {h.symbol} in account {h.account!r}"
                )
            seen.add(key)
        return self

    @property
    def total_value(self) -> float:
        return sum(h.market_value for h in self.holdings)

    @property
    def symbols(self) -> list[str]:
        return list(dict.fromkeys(h.symbol for h in self.holdings))

    @property
    def is_empty(self) -> bool:
        return not self.holdings

    def exposure_by_symbol(self) -> dict[str, float]:
        exposure: dict[str, float] = {}
        for h in self.holdings:
            exposure[h.symbol] = exposure.get(h.symbol, 0.0) + h.market_value
        return exposure
