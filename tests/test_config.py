import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from portfolio_risk.config import RiskConfig, ScenarioLibrary
from portfolio_risk.models.risk import ScenarioDefinition


class TestRiskConfig:
    def test_defaults(self):
        c = RiskConfig()
        assert c.confidence_levels == [0.95, 0.99]
        assert c.iterations == 10_000
        assert c.concentration_limits == {"sector": 30.0}
        assert c.seed is None

    def test_levels_sorted_unique(self):
        c = RiskConfig(confidence_levels=[0.99, 0.9, 0.99])
        assert c.confidence_levels == [0.9, 0.99]

    @pytest.mark.parametrize("level", [0.0, 1.0, 1.5, -0.1])
    def test_invalid_level(self, level):
        with pytest.raises(ValidationError):
            RiskConfig(confidence_levels=[level])

    def test_invalid_limits(self):
        with pytest.raises(ValidationError):
            RiskConfig(concentration_limits={"country": 10.0})
        with pytest.raises(ValidationError):
            RiskConfig(concentration_limits={"sector": 0.0})

    def test_iterations_positive(self):
        with pytest.raises(ValidationError):
            RiskConfig(iterations=0)


class TestScenarioLibrary:
    def test_add_and_get(self):
        lib = ScenarioLibrary([ScenarioDefinition(id="2008", default_shock=-0.4)])
        lib.add(ScenarioDefinition(id="2020", default_shock=-0.3))
        assert lib.ids() == ["2008", "2020"]
        assert len(lib) == 2
        assert lib.get("2008").default_shock == -0.4
        assert lib.get("1929") is None

    def test_from_json_list(self, tmp_path: Path):
        path = tmp_path / "scenarios.json"
        path.write_text(
            json.dumps(
                [
                    {
                        "id": "1987",
                        "event": "Black Monday",
                        "default_shock": -0.2,
                        "recovery_days": 400,
                    }
                ]
            )
        )
        lib = ScenarioLibrary.from_json(path)
        assert lib.get("1987").recovery_days == 400

    def test_from_json_object(self, tmp_path: Path):
        path = tmp_path / "scenarios.json"
        path.write_text(
            json.dumps(
                {
                    "scenarios": [
                        {"id": "a", "asset_class_shocks": {"Equity": -0.3}},
                        {"id": "b", "symbol_shocks": {"SPY": -0.1}},
                    ]
                }
            )
        )
        assert ScenarioLibrary.from_json(path).ids() == ["a", "b"]

    def test_from_json_invalid_shock(self, tmp_path: Path):
        path = tmp_path / "scenarios.json"
        path.write_text(json.dumps([{"id": "bad", "default_shock": -2.0}]))
        with pytest.raises(ValidationError):
            ScenarioLibrary.from_json(path)
