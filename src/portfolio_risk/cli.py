import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import date, timedelta
from pathlib import Path

from rich.console import Console

from portfolio_risk.analysis.cancellation import CancellationToken
from portfolio_risk.config import RiskConfig, ScenarioLibrary
from portfolio_risk.db import DEFAULT_DB_PATH, RiskDB
from portfolio_risk.errors import RiskEngineError
from portfolio_risk.output.formatters import fmt_confidence, fmt_money, fmt_number
from portfolio_risk.output.renderer import RiskReportRenderer
from portfolio_risk.service import RiskAnalyticsService

logger = logging.getLogger(__name__)
console = Console()


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database path (default: $PORTFOLIO_RISK_DB or data/)",
    )
    common.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON",
    )
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    engine = argparse.ArgumentParser(add_help=False)
    engine.add_argument(
        "--source",
        choices=["db", "yfinance"],
        default="db",
        help="Where price history and security tags come from",
    )
    engine.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Valuation date (YYYY-MM-DD, default today)",
    )
    engine.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Abort the computation after this many seconds",
    )

    simulation = argparse.ArgumentParser(add_help=False)
    simulation.add_argument("--iterations", type=int, default=None)
    simulation.add_argument("--seed", type=int, default=None)
    simulation.add_argument("--horizon", type=int, default=None, help="Days")

    p = argparse.ArgumentParser(
        prog="portfolio-risk",
        description="Portfolio risk analytics",
    )
    sub = p.add_subparsers(dest="command")

    # --- var ---
    var = sub.add_parser(
        "var",
        help="Monte Carlo value at risk",
        parents=[common, engine, simulation],
    )
    var.add_argument("portfolio_id")
    var.add_argument("--confidence", type=float, default=0.95)

    # --- stress ---
    stress = sub.add_parser(
        "stress", help="Run stress scenarios", parents=[common, engine]
    )
    stress.add_argument("portfolio_id")
    stress.add_argument(
        "--scenarios",
        type=Path,
        required=True,
        help="JSON file with scenario definitions",
    )
    stress.add_argument(
        "--scenario",
        action="append",
        dest="scenario_ids",
        default=None,
        help="Scenario id to run (repeatable, default all)",
    )

    # --- concentration / compliance ---
    for name, help_text in (
        ("concentration", "Sector, asset class and issuer exposure"),
        ("compliance", "Check concentration limits"),
    ):
        cmd = sub.add_parser(name, help=help_text, parents=[common, engine])
        cmd.add_argument("portfolio_id")
        cmd.add_argument(
            "--limit",
            action="append",
            default=None,
            metavar="DIMENSION=PCT",
            help="Concentration limit, e.g. sector=25 (repeatable)",
        )

    # --- beta ---
    beta = sub.add_parser(
        "beta", help="Portfolio beta vs a benchmark", parents=[common, engine]
    )
    beta.add_argument("portfolio_id")
    beta.add_argument("--benchmark", default="SPY")
    beta.add_argument("--period", type=int, default=252, help="Trading days")

    # --- metrics ---
    metrics = sub.add_parser(
        "metrics",
        help="Full risk report",
        parents=[common, engine, simulation],
    )
    metrics.add_argument("portfolio_id")
    metrics.add_argument("--scenarios", type=Path, default=None)
    metrics.add_argument("--benchmark", default=None)
    metrics.add_argument(
        "--no-save",
        action="store_true",
        help="Do not store the result in the database",
    )

    # --- import-holdings ---
    imp = sub.add_parser(
        "import-holdings",
        help="Import holdings from Google Sheets",
        parents=[common],
    )
    imp.add_argument("portfolio_id")
    imp.add_argument("--sheets-id", default=None, help="Google Sheets ID")
    imp.add_argument(
        "--credentials",
        default=None,
        help="Path to Google service account JSON",
    )
    imp.add_argument("--range", default="A:J", dest="range_name")

    # --- import-prices ---
    prices = sub.add_parser(
        "import-prices",
        help="Download daily closes and tags from Yahoo Finance",
        parents=[common],
    )
    prices.add_argument("symbols", nargs="*", help="Default: all held symbols")
    prices.add_argument("--days", type=int, default=400, help="Calendar days")

    return p


def _open_db(args: argparse.Namespace) -> RiskDB:
    path = args.db or Path(os.environ.get("PORTFOLIO_RISK_DB", DEFAULT_DB_PATH))
    return RiskDB(path)


def _build_config(args: argparse.Namespace) -> RiskConfig:
    overrides: dict = {}
    for arg, field in (
        ("iterations", "iterations"),
        ("seed", "seed"),
        ("horizon", "horizon_days"),
        ("benchmark", "benchmark_symbol"),
    ):
        value = getattr(args, arg, None)
        if value is not None:
            overrides[field] = value
    if getattr(args, "limit", None):
        overrides["concentration_limits"] = _parse_limits(args.limit)
    return RiskConfig(**overrides)


def _parse_limits(items: list[str]) -> dict[str, float]:
    limits: dict[str, float] = {}
    for item in items:
        dimension, sep, pct = item.partition("=")
        if not sep:
            raise ValueError(f"invalid limit {item!r}, expected DIMENSION=PCT")
        limits[dimension.strip()] = float(pct)
    return limits


def _build_service(
    args: argparse.Namespace, db: RiskDB, scenarios: ScenarioLibrary | None = None
) -> RiskAnalyticsService:
    if args.source == "yfinance":
        from portfolio_risk.data.yfinance_client import YFinanceGateway

        gateway = YFinanceGateway()
    else:
        gateway = db
    return RiskAnalyticsService(
        db,
        gateway,
        config=_build_config(args),
        scenarios=scenarios,
        results=db,
    )


def _token(args: argparse.Namespace) -> CancellationToken | None:
    return CancellationToken(args.timeout) if args.timeout else None


def _run_var(args: argparse.Namespace, db: RiskDB) -> None:
    service = _build_service(args, db)
    try:
        with console.status("[cyan]Simulating portfolio P&L..."):
            var = service.compute_value_at_risk(
                args.portfolio_id,
                confidence_level=args.confidence,
                horizon_days=service.config.horizon_days,
                cancel_token=_token(args),
                as_of=args.as_of,
            )
    finally:
        service.close()

    if args.json:
        console.print_json(
            json.dumps(
                {
                    "portfolio_id": args.portfolio_id,
                    "confidence_level": args.confidence,
                    "horizon_days": service.config.horizon_days,
                    "value_at_risk": var,
                }
            )
        )
        return
    console.print(
        f"{fmt_confidence(args.confidence)} "
        f"{service.config.horizon_days}-day VaR for "
        f"[bold]{args.portfolio_id}[/bold]: [bold red]{fmt_money(var)}[/bold red]"
    )


def _run_stress(args: argparse.Namespace, db: RiskDB) -> None:
    library = ScenarioLibrary.from_json(args.scenarios)
    service = _build_service(args, db, library)
    try:
        with console.status("[cyan]Applying stress scenarios..."):
            metrics = service.run_stress_tests(
                args.portfolio_id,
                args.scenario_ids or library.ids(),
                cancel_token=_token(args),
                as_of=args.as_of,
            )
    finally:
        service.close()
    _emit(args, metrics)


def _run_concentration(args: argparse.Namespace, db: RiskDB) -> None:
    service = _build_service(args, db)
    try:
        metrics = service.analyze_concentration(args.portfolio_id, as_of=args.as_of)
    finally:
        service.close()
    _emit(args, metrics)


def _run_compliance(args: argparse.Namespace, db: RiskDB) -> None:
    service = _build_service(args, db)
    try:
        violations = service.check_compliance(args.portfolio_id)
    finally:
        service.close()

    if args.json:
        console.print_json(
            json.dumps([v.model_dump(mode="json") for v in violations])
        )
    else:
        RiskReportRenderer(console).render_violations(violations)
    if violations:
        sys.exit(2)


def _run_beta(args: argparse.Namespace, db: RiskDB) -> None:
    service = _build_service(args, db)
    try:
        value = service.calculate_portfolio_beta(
            args.portfolio_id, args.benchmark, args.period, as_of=args.as_of
        )
    finally:
        service.close()

    if args.json:
        console.print_json(
            json.dumps(
                {
                    "portfolio_id": args.portfolio_id,
                    "benchmark": args.benchmark,
                    "period_days": args.period,
                    "beta": value,
                }
            )
        )
        return
    console.print(
        f"Beta of [bold]{args.portfolio_id}[/bold] vs {args.benchmark}: "
        f"[bold]{fmt_number(value)}[/bold]"
    )


def _run_metrics(args: argparse.Namespace, db: RiskDB) -> None:
    library = ScenarioLibrary.from_json(args.scenarios) if args.scenarios else None
    service = _build_service(args, db, library)
    if args.no_save:
        service.results = None
    try:
        with console.status("[cyan]Computing risk metrics..."):
            metrics = asyncio.run(
                service.compute_risk_metrics(
                    args.portfolio_id,
                    cancel_token=_token(args),
                    as_of=args.as_of,
                )
            )
    finally:
        service.close()
    _emit(args, metrics)


def _run_import_holdings(args: argparse.Namespace, db: RiskDB) -> None:
    from portfolio_risk.data.sheets_client import SheetsHoldingsReader

    sheets_id = args.sheets_id or os.environ.get("GOOGLE_SHEETS_ID")
    credentials = args.credentials or os.environ.get("GOOGLE_CREDENTIALS")
    if not sheets_id or not credentials:
        console.print(
            "[red]Sheets ID and credentials are required "
            "(--sheets-id/--credentials or GOOGLE_SHEETS_ID/GOOGLE_CREDENTIALS)[/red]"
        )
        sys.exit(1)

    reader = SheetsHoldingsReader(credentials, sheets_id)
    with console.status("[cyan]Reading holdings from Google Sheets..."):
        holdings = reader.read_holdings(args.range_name)
    if not holdings:
        console.print("[yellow]No holdings found in sheet[/yellow]")
        return
    count = db.upsert_holdings(args.portfolio_id, holdings)
    console.print(f"[green]Imported {count} holding(s) into {args.portfolio_id}[/green]")


def _run_import_prices(args: argparse.Namespace, db: RiskDB) -> None:
    from portfolio_risk.data.yfinance_client import YFinanceGateway

    symbols = args.symbols
    if not symbols:
        symbols = sorted(
            {h.symbol for pid in db.list_portfolios() for h in db.get_holdings(pid)}
        )
    if not symbols:
        console.print("[yellow]No symbols to import[/yellow]")
        return

    gateway = YFinanceGateway()
    end = date.today()
    start = end - timedelta(days=args.days)
    with console.status(f"[cyan]Downloading {len(symbols)} price histories..."):
        closes = gateway.get_daily_closes_batch(symbols, start, end)
    total = sum(db.upsert_prices(symbol, series) for symbol, series in closes.items())

    with console.status("[cyan]Fetching security tags..."):
        tags = gateway.get_security_tags(symbols)
    db.upsert_securities(list(tags.values()))

    console.print(
        f"[green]Stored {total} close(s) for {len(closes)} symbol(s), "
        f"tags for {len(tags)}[/green]"
    )
    missing = sorted(set(symbols) - set(closes))
    if missing:
        console.print(f"[yellow]No history for: {', '.join(missing)}[/yellow]")


def _emit(args: argparse.Namespace, metrics) -> None:
    if args.json:
        console.print_json(metrics.model_dump_json())
    else:
        RiskReportRenderer(console).render(metrics)


COMMANDS = {
    "var": _run_var,
    "stress": _run_stress,
    "concentration": _run_concentration,
    "compliance": _run_compliance,
    "beta": _run_beta,
    "metrics": _run_metrics,
    "import-holdings": _run_import_holdings,
    "import-prices": _run_import_prices,
}


def main() -> None:
    from dotenv import load_dotenv

    load_dotenv()

    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    db = _open_db(args)
    try:
        COMMANDS[args.command](args, db)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(1)
    except (RiskEngineError, ValueError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
