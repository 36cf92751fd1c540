from datetime import date
from pathlib import Path

import pytest

from portfolio_risk.cli import _build_config, _parse_limits, build_parser


class TestParser:
    def test_var_options(self):
        args = build_parser().parse_args(
            [
                "var",
                "p1",
                "--confidence",
                "0.99",
                "--iterations",
                "5000",
                "--seed",
                "3",
                "--as-of",
                "2024-06-28",
                "--json",
            ]
        )
        assert args.command == "var"
        assert args.portfolio_id == "p1"
        assert args.confidence == 0.99
        assert args.as_of == date(2024, 6, 28)
        assert args.source == "db"
        assert args.json

        config = _build_config(args)
        assert config.iterations == 5000
        assert config.seed == 3

    def test_stress_requires_scenarios(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["stress", "p1"])

    def test_stress_scenario_ids(self):
        args = build_parser().parse_args(
            [
                "stress",
                "p1",
                "--scenarios",
                "s.json",
                "--scenario",
                "2008",
                "--scenario",
                "2020",
            ]
        )
        assert args.scenarios == Path("s.json")
        assert args.scenario_ids == ["2008", "2020"]

    def test_compliance_limits(self):
        args = build_parser().parse_args(
            ["compliance", "p1", "--limit", "sector=25", "--limit", "issuer=10"]
        )
        config = _build_config(args)
        assert config.concentration_limits == {"sector": 25.0, "issuer": 10.0}

    def test_metrics_benchmark(self):
        args = build_parser().parse_args(
            ["metrics", "p1", "--benchmark", "SPY", "--source", "yfinance"]
        )
        assert _build_config(args).benchmark_symbol == "SPY"
        assert args.source == "yfinance"


class TestParseLimits:
    def test_valid(self):
        assert _parse_limits(["sector=30", " asset_class = 50"]) == {
            "sector": 30.0,
            "asset_class": 50.0,
        }

    def test_invalid(self):
        with pytest.raises(ValueError):
            _parse_limits(["sector"])
