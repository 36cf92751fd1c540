from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from portfolio_risk.db import RiskDB
from portfolio_risk.errors import InputUnavailableError
from portfolio_risk.models.portfolio import Holding, SecurityTags
from portfolio_risk.models.risk import (
    ComponentStatus,
    ComputationState,
    RiskMetrics,
)


class TestRiskDB:
    def _make_db(self, tmp_path: Path) -> RiskDB:
        return RiskDB(tmp_path / "test.db")

    def test_schema_creation(self, tmp_path: Path) -> None:
        db = self._make_db(tmp_path)
        tables = db.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        ).fetchall()
        names = {r["name"] for r in tables}
        assert {"portfolios", "holdings", "securities", "prices", "risk_metrics"} <= names
        db.close()

    def test_holdings_roundtrip(self, tmp_path: Path) -> None:
        db = self._make_db(tmp_path)
        db.upsert_holdings(
            "p1",
            [
                Holding(symbol="AAPL", account="ira", quantity=10, current_price=190.0),
                Holding(symbol="AAPL", quantity=5, current_price=190.0, sector="Tech"),
            ],
        )
        holdings = db.get_holdings("p1")
        assert [(h.account, h.symbol) for h in holdings] == [("", "AAPL"), ("ira", "AAPL")]
        assert holdings[0].sector == "Tech"
        db.close()

    def test_upsert_updates_quantity(self, tmp_path: Path) -> None:
        db = self._make_db(tmp_path)
        db.upsert_holdings(
            "p1", [Holding(symbol="A", quantity=1, current_price=1.0, sector="X")]
        )
        db.upsert_holdings("p1", [Holding(symbol="A", quantity=3, current_price=2.0)])
        (h,) = db.get_holdings("p1")
        assert h.quantity == 3
        assert h.current_price == 2.0
        # tag kept when the update carries none
        assert h.sector == "X"
        db.close()

    def test_unknown_portfolio(self, tmp_path: Path) -> None:
        db = self._make_db(tmp_path)
        with pytest.raises(InputUnavailableError):
            db.get_holdings("nope")
        db.create_portfolio("empty")
        assert db.get_holdings("empty") == []
        assert db.list_portfolios() == ["empty"]
        db.close()

    def test_prices_window(self, tmp_path: Path) -> None:
        db = self._make_db(tmp_path)
        idx = pd.bdate_range("2024-01-01", periods=10)
        db.upsert_prices("A", pd.Series(range(100, 110), index=idx, dtype=float))
        db.upsert_prices("B", pd.Series(range(10), index=idx, dtype=float))

        closes = db.get_daily_closes_batch(
            ["A", "B", "C"], date(2024, 1, 3), date(2024, 1, 9)
        )
        assert set(closes) == {"A", "B"}
        assert list(closes["A"]) == [102.0, 103.0, 104.0, 105.0, 106.0]
        assert closes["A"].index.is_monotonic_increasing

        single = db.get_daily_closes("C", date(2024, 1, 1), date(2024, 2, 1))
        assert single.empty
        db.close()

    def test_current_prices_latest_close(self, tmp_path: Path) -> None:
        db = self._make_db(tmp_path)
        idx = pd.bdate_range("2024-01-01", periods=3)
        db.upsert_prices("A", pd.Series([1.0, 2.0, 3.0], index=idx))
        assert db.get_current_prices(["A", "Z"]) == {"A": 3.0}
        db.close()

    def test_security_tags(self, tmp_path: Path) -> None:
        db = self._make_db(tmp_path)
        db.upsert_securities(
            [SecurityTags(symbol="AAPL", sector="Technology", asset_class="Equity")]
        )
        tags = db.get_security_tags(["AAPL", "MSFT"])
        assert list(tags) == ["AAPL"]
        assert tags["AAPL"].sector == "Technology"
        assert tags["AAPL"].issuer is None
        assert db.get_security_tags([]) == {}
        db.close()

    def test_risk_metrics_roundtrip(self, tmp_path: Path) -> None:
        db = self._make_db(tmp_path)
        metrics = RiskMetrics(
            portfolio_id="p1",
            as_of=date(2024, 6, 28),
            total_value=1000.0,
            value_at_risk={0.95: 12.5, 0.99: 20.0},
            var_95=12.5,
            components=[ComponentStatus(name="value_at_risk").complete()],
        )
        db.save_risk_metrics(metrics)
        loaded = db.get_risk_metrics("p1", date(2024, 6, 28))
        assert loaded is not None
        assert loaded.value_at_risk == {0.95: 12.5, 0.99: 20.0}
        assert loaded.components[0].state == ComputationState.COMPLETED
        assert db.get_risk_metrics("p1", date(2024, 6, 27)) is None
        db.close()

    def test_status_summary(self, tmp_path: Path) -> None:
        db = self._make_db(tmp_path)
        db.upsert_holdings("p1", [Holding(symbol="A", quantity=1, current_price=1.0)])
        summary = db.get_status_summary()
        assert summary["portfolios"] == 1
        assert summary["holdings"] == 1
        assert summary["prices"] == 0
        db.close()
