from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from portfolio_risk.models.risk import ComplianceViolation, RiskMetrics
from portfolio_risk.output.formatters import (
    fmt_confidence,
    fmt_days,
    fmt_money,
    fmt_number,
    fmt_pct,
    share_bar,
    state_color,
)


class RiskReportRenderer:
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render(self, metrics: RiskMetrics) -> None:
        self.render_header(metrics)
        if metrics.value_at_risk:
            self._render_var(metrics)
        if metrics.portfolio_volatility is not None or metrics.beta is not None:
            self._render_performance(metrics)
        if metrics.scenario_losses:
            self._render_stress(metrics)
        if metrics.sector_concentration or not metrics.concentration_applicable:
            self.render_concentration(metrics)
        if metrics.is_compliant is not None:
            self.render_violations(metrics.compliance_violations)
        if metrics.components:
            self._render_components(metrics)
        self._render_warnings(metrics)

    def render_header(self, metrics: RiskMetrics) -> None:
        self.console.print()
        self.console.print(
            Panel(
                f"[bold]{metrics.portfolio_id}[/bold]  as of "
                f"{metrics.as_of.isoformat()}  |  {fmt_money(metrics.total_value)}",
                title="Portfolio Risk",
                style="cyan",
            )
        )

    def _render_var(self, metrics: RiskMetrics) -> None:
        horizon = fmt_days(metrics.var_horizon_days)
        table = Table(title=f"Value at Risk ({horizon})", show_header=True)
        table.add_column("Confidence", style="cyan")
        table.add_column("VaR", justify="right")
        table.add_column("Expected Shortfall", justify="right")
        table.add_column("% of Value", justify="right")
        for level, var in sorted(metrics.value_at_risk.items()):
            pct = var / metrics.total_value * 100 if metrics.total_value > 0 else None
            table.add_row(
                fmt_confidence(level),
                fmt_money(var),
                fmt_money(metrics.expected_shortfall.get(level)),
                fmt_pct(pct),
            )
        self.console.print(table)
        self.console.print(
            f"[dim]{metrics.calculation_method}, "
            f"{fmt_number(metrics.num_simulations, 0)} paths, "
            f"{fmt_number(metrics.calculation_time_ms, 1)} ms[/dim]"
        )

    def _render_performance(self, metrics: RiskMetrics) -> None:
        table = Table(title="Performance", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        vol = metrics.portfolio_volatility
        table.add_row("Volatility (ann.)", fmt_pct(vol * 100 if vol is not None else None))
        table.add_row("Sharpe", fmt_number(metrics.sharpe_ratio))
        table.add_row("Sortino", fmt_number(metrics.sortino_ratio))
        table.add_row("Beta", fmt_number(metrics.beta))
        self.console.print(table)

    def _render_stress(self, metrics: RiskMetrics) -> None:
        table = Table(title="Stress Scenarios", show_header=True)
        table.add_column("Scenario", style="cyan")
        table.add_column("Loss", justify="right")
        table.add_column("% of Value", justify="right")
        for sid, loss in sorted(
            metrics.scenario_losses.items(), key=lambda kv: kv[1], reverse=True
        ):
            pct = loss / metrics.total_value * 100 if metrics.total_value > 0 else None
            style = "bold red" if sid == metrics.worst_scenario_id else ""
            table.add_row(Text(sid, style=style), fmt_money(loss), fmt_pct(pct))
        self.console.print(table)
        self.console.print(
            f"Max drawdown: [bold]{fmt_money(metrics.max_drawdown)}[/bold]  "
            f"Recovery: {fmt_days(metrics.recovery_time_days)}"
        )

    def render_concentration(self, metrics: RiskMetrics) -> None:
        if not metrics.concentration_applicable:
            self.console.print(
                "[yellow]Concentration not applicable: portfolio has no value[/yellow]"
            )
            return
        for title, groups in (
            ("Sector", metrics.sector_concentration),
            ("Asset Class", metrics.asset_class_concentration),
            ("Issuer", metrics.issuer_concentration),
        ):
            if not groups:
                continue
            table = Table(title=f"{title} Concentration", show_header=True)
            table.add_column(title, style="cyan")
            table.add_column("Weight", justify="right")
            table.add_column("")
            for name, pct in groups.items():
                table.add_row(name, fmt_pct(pct), share_bar(pct))
            self.console.print(table)
        self.console.print(
            f"Largest position: {fmt_pct(metrics.largest_position_pct)}"
        )

    def render_violations(self, violations: list[ComplianceViolation]) -> None:
        if not violations:
            self.console.print("[green]Compliant: no concentration limits breached[/green]")
            return
        table = Table(title="Compliance Violations", show_header=True)
        table.add_column("Dimension", style="cyan")
        table.add_column("Group")
        table.add_column("Weight", justify="right")
        table.add_column("Limit", justify="right")
        for v in violations:
            table.add_row(
                v.dimension,
                Text(v.group, style="red"),
                fmt_pct(v.concentration_pct),
                fmt_pct(v.limit_pct),
            )
        self.console.print(table)

    def _render_components(self, metrics: RiskMetrics) -> None:
        table = Table(title="Components", show_header=True)
        table.add_column("Component", style="cyan")
        table.add_column("State")
        table.add_column("Reason")
        for c in metrics.components:
            table.add_row(
                c.name,
                Text(c.state.value, style=state_color(c.state)),
                c.reason or "",
            )
        self.console.print(table)

    def _render_warnings(self, metrics: RiskMetrics) -> None:
        for w in metrics.warnings:
            prefix = f"{w.symbol}: " if w.symbol else ""
            self.console.print(f"[yellow]! {prefix}{w.message}[/yellow]")
