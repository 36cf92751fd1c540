from portfolio_risk.models.risk import ComputationState


def fmt_pct(value: float | None, decimals: int = 2, signed: bool = False) -> str:
    if value is None:
        return "N/A"
    if signed:
        return f"{value:+.{decimals}f}%"
    return f"{value:.{decimals}f}%"


def fmt_number(value: float | None, decimals: int = 2) -> str:
    if value is None:
        return "N/A"
    return f"{value:,.{decimals}f}"


def fmt_money(value: float | None) -> str:
    if value is None:
        return "N/A"
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def fmt_confidence(level: float) -> str:
    """0.95 -> '95%', 0.975 -> '97.5%'."""
    return f"{level * 100:g}%"


def fmt_days(value: int | None) -> str:
    if value is None:
        return "N/A"
    return f"{value:,d} day" + ("" if value == 1 else "s")


def state_color(state: ComputationState) -> str:
    colors = {
        ComputationState.COMPLETED: "green",
        ComputationState.PENDING: "yellow",
        ComputationState.FAILED: "red",
    }
    return colors.get(state, "white")


def share_bar(pct: float, width: int = 20) -> str:
    filled = round(max(0.0, min(pct, 100.0)) / 100 * width)
    return "█" * filled + "░" * (width - filled)
