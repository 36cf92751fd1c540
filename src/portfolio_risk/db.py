import logging
import sqlite3
import threading
from datetime import UTC, date, datetime
from pathlib import Path

import pandas as pd

from portfolio_risk.errors import InputUnavailableError
from portfolio_risk.models.portfolio import Holding, SecurityTags
from portfolio_risk.models.risk import RiskMetrics

logger = logging.getLogger(__name__)

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS portfolios (
    id TEXT PRIMARY KEY,
    name TEXT DEFAULT '',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS holdings (
    portfolio_id TEXT NOT NULL REFERENCES portfolios(id) ON DELETE CASCADE,
    account TEXT NOT NULL DEFAULT '',
    symbol TEXT NOT NULL,
    quantity REAL NOT NULL,
    purchase_price REAL NOT NULL DEFAULT 0.0,
    current_price REAL NOT NULL,
    sector TEXT,
    asset_class TEXT,
    issuer TEXT,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (portfolio_id, account, symbol)
);

CREATE TABLE IF NOT EXISTS securities (
    symbol TEXT PRIMARY KEY,
    sector TEXT,
    asset_class TEXT,
    issuer TEXT,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS prices (
    symbol TEXT NOT NULL,
    price_date TEXT NOT NULL,
    close REAL NOT NULL,
    PRIMARY KEY (symbol, price_date)
);

CREATE TABLE IF NOT EXISTS risk_metrics (
    portfolio_id TEXT NOT NULL,
    as_of TEXT NOT NULL,
    calculated_at TEXT NOT NULL,
    payload TEXT NOT NULL,
    PRIMARY KEY (portfolio_id, as_of)
);
"""

DEFAULT_DB_PATH = Path("data") / "portfolio_risk.db"


def _now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


class RiskDB:
    """SQLite store for holdings, reference data, prices and results.

    Serves as both a HoldingsStore and a MarketDataGateway. The connection is
    opened lazily and shared across threads behind a lock.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(
                    str(self.db_path), check_same_thread=False
                )
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._conn.execute("PRAGMA foreign_keys=ON")
                self._init_schema()
            return self._conn

    def _init_schema(self) -> None:
        cursor = self.conn.executescript(SCHEMA_SQL)
        cursor.close()
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # --- Portfolios / holdings ---

    def create_portfolio(self, portfolio_id: str, name: str = "") -> None:
        with self._lock:
            self.conn.execute(
                "INSERT OR IGNORE INTO portfolios (id, name) VALUES (?, ?)",
                (portfolio_id, name),
            )
            self.conn.commit()

    def list_portfolios(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute("SELECT id FROM portfolios ORDER BY id").fetchall()
        return [r["id"] for r in rows]

    def upsert_holdings(self, portfolio_id: str, holdings: list[Holding]) -> int:
        self.create_portfolio(portfolio_id)
        with self._lock:
            self.conn.executemany(
                """INSERT INTO holdings
                (portfolio_id, account, symbol, quantity, purchase_price,
                 current_price, sector, asset_class, issuer, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (portfolio_id, account, symbol) DO UPDATE SET
                    quantity = excluded.quantity,
                    purchase_price = excluded.purchase_price,
                    current_price = excluded.current_price,
                    sector = COALESCE(excluded.sector, sector),
                    asset_class = COALESCE(excluded.asset_class, asset_class),
                    issuer = COALESCE(excluded.issuer, issuer),
                    updated_at = excluded.updated_at""",
                [
                    (
                        portfolio_id,
                        h.account,
                        h.symbol,
                        h.quantity,
                        h.purchase_price,
                        h.current_price,
                        h.sector,
                        h.asset_class,
                        h.issuer,
                        _now(),
                    )
                    for h in holdings
                ],
            )
            self.conn.commit()
        logger.info("Stored %d holding(s) for %s", len(holdings), portfolio_id)
        return len(holdings)

    def get_holdings(self, portfolio_id: str) -> list[Holding]:
        with self._lock:
            exists = self.conn.execute(
                "SELECT 1 FROM portfolios WHERE id = ?", (portfolio_id,)
            ).fetchone()
            if not exists:
                raise InputUnavailableError(f"portfolio not found: {portfolio_id}")
            rows = self.conn.execute(
                """SELECT account, symbol, quantity, purchase_price, current_price,
                    sector, asset_class, issuer
                FROM holdings WHERE portfolio_id = ?
                ORDER BY account, symbol""",
                (portfolio_id,),
            ).fetchall()
        return [Holding(**dict(r)) for r in rows]

    # --- Reference data ---

    def upsert_securities(self, tags: list[SecurityTags]) -> None:
        with self._lock:
            self.conn.executemany(
                """INSERT OR REPLACE INTO securities
                (symbol, sector, asset_class, issuer, updated_at)
                VALUES (?, ?, ?, ?, ?)""",
                [(t.symbol, t.sector, t.asset_class, t.issuer, _now()) for t in tags],
            )
            self.conn.commit()

    def get_security_tags(self, symbols: list[str]) -> dict[str, SecurityTags]:
        if not symbols:
            return {}
        placeholders = ",".join("?" * len(symbols))
        with self._lock:
            rows = self.conn.execute(
                f"SELECT symbol, sector, asset_class, issuer FROM securities "
                f"WHERE symbol IN ({placeholders})",
                symbols,
            ).fetchall()
        return {r["symbol"]: SecurityTags(**dict(r)) for r in rows}

    # --- Prices ---

    def upsert_prices(self, symbol: str, closes: pd.Series) -> int:
        rows = [
            (symbol, pd.Timestamp(d).date().isoformat(), float(v))
            for d, v in closes.dropna().items()
        ]
        with self._lock:
            self.conn.executemany(
                "INSERT OR REPLACE INTO prices (symbol, price_date, close) "
                "VALUES (?, ?, ?)",
                rows,
            )
            self.conn.commit()
        return len(rows)

    def get_daily_closes(self, symbol: str, start: date, end: date) -> pd.Series:
        return self.get_daily_closes_batch([symbol], start, end).get(
            symbol, pd.Series(dtype=float, name=symbol)
        )

    def get_daily_closes_batch(
        self, symbols: list[str], start: date, end: date
    ) -> dict[str, pd.Series]:
        if not symbols:
            return {}
        placeholders = ",".join("?" * len(symbols))
        with self._lock:
            rows = self.conn.execute(
                f"""SELECT symbol, price_date, close FROM prices
                WHERE symbol IN ({placeholders})
                    AND price_date >= ? AND price_date <= ?
                ORDER BY symbol, price_date""",
                [*symbols, start.isoformat(), end.isoformat()],
            ).fetchall()

        grouped: dict[str, tuple[list, list]] = {}
        for r in rows:
            dates, values = grouped.setdefault(r["symbol"], ([], []))
            dates.append(r["price_date"])
            values.append(r["close"])
        return {
            s: pd.Series(values, index=pd.DatetimeIndex(dates), name=s, dtype=float)
            for s, (dates, values) in grouped.items()
        }

    def get_current_prices(self, symbols: list[str]) -> dict[str, float]:
        if not symbols:
            return {}
        placeholders = ",".join("?" * len(symbols))
        with self._lock:
            rows = self.conn.execute(
                f"""SELECT p.symbol, p.close FROM prices p
                JOIN (
                    SELECT symbol, MAX(price_date) AS last_date FROM prices
                    WHERE symbol IN ({placeholders}) GROUP BY symbol
                ) latest
                ON p.symbol = latest.symbol AND p.price_date = latest.last_date""",
                symbols,
            ).fetchall()
        return {r["symbol"]: r["close"] for r in rows}

    # --- Results ---

    def save_risk_metrics(self, metrics: RiskMetrics) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT OR REPLACE INTO risk_metrics
                (portfolio_id, as_of, calculated_at, payload)
                VALUES (?, ?, ?, ?)""",
                (
                    metrics.portfolio_id,
                    metrics.as_of.isoformat(),
                    metrics.calculated_at.isoformat(),
                    metrics.model_dump_json(),
                ),
            )
            self.conn.commit()

    def get_risk_metrics(self, portfolio_id: str, as_of: date) -> RiskMetrics | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT payload FROM risk_metrics WHERE portfolio_id = ? AND as_of = ?",
                (portfolio_id, as_of.isoformat()),
            ).fetchone()
        return RiskMetrics.model_validate_json(row["payload"]) if row else None

    def get_status_summary(self) -> dict:
        with self._lock:
            counts = {
                table: self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in (
                    "portfolios",
                    "holdings",
                    "securities",
                    "prices",
                    "risk_metrics",
                )
            }
        return counts
