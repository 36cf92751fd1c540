import logging
import re

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from pydantic import ValidationError

from portfolio_risk.models.portfolio import Holding

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]

SYMBOL_FIELDS = ["ticker", "symbol", "stock"]
QUANTITY_FIELDS = ["shares", "quantity", "qty", "units"]
PRICE_FIELDS = ["price", "current price", "last price", "last"]
VALUE_FIELDS = ["market value", "value", "market_value", "total"]
COST_FIELDS = ["avg cost", "cost per share", "purchase price", "cost"]
ACCOUNT_FIELDS = ["account", "acct", "portfolio"]
SECTOR_FIELDS = ["sector", "industry"]
ASSET_CLASS_FIELDS = ["asset class", "asset_class", "class", "type"]
ISSUER_FIELDS = ["issuer", "company", "name"]


class SheetsHoldingsReader:
    """Reads holdings rows from a Google Sheet for import into the store.

    Column headers are matched loosely; rows that cannot be priced are skipped.
    """

    def __init__(self, credentials_path: str, sheet_id: str) -> None:
        self.sheet_id = sheet_id
        creds = Credentials.from_service_account_file(credentials_path, scopes=SCOPES)
        self._service = build("sheets", "v4", credentials=creds)

    def read_holdings(self, range_name: str = "A:J") -> list[Holding]:
        result = (
            self._service.spreadsheets()
            .values()
            .get(spreadsheetId=self.sheet_id, range=range_name)
            .execute()
        )
        return parse_rows(result.get("values", []))


def parse_rows(rows: list[list[str]]) -> list[Holding]:
    if not rows:
        return []

    header = [c.strip().lower() for c in rows[0]]
    holdings: list[Holding] = []
    for i, row in enumerate(rows[1:], start=2):
        try:
            h = parse_row(header, row)
        except ValidationError as e:
            logger.debug("Skipping messy row %d: %s", i, e)
            continue
        if h:
            holdings.append(h)
    return holdings


def parse_row(header: list[str], row: list[str]) -> Holding | None:
    if len(row) < 2:
        return None

    data: dict[str, str] = {}
    for i, val in enumerate(row):
        if i < len(header):
            data[header[i]] = val.strip()

    symbol = _find_field(data, SYMBOL_FIELDS)
    if not symbol:
        return None
    symbol = re.sub(r"[^A-Za-z0-9.\-]", "", symbol).upper()
    if not symbol:
        return None

    quantity = _parse_number(_find_field(data, QUANTITY_FIELDS))
    if quantity is None or quantity == 0:
        return None

    price = _parse_number(_find_field(data, PRICE_FIELDS))
    if price is None:
        value = _parse_number(_find_field(data, VALUE_FIELDS))
        if value is None:
            return None
        price = value / quantity
    cost = _parse_number(_find_field(data, COST_FIELDS))

    return Holding(
        symbol=symbol,
        account=_find_field(data, ACCOUNT_FIELDS) or "",
        quantity=quantity,
        purchase_price=cost or 0.0,
        current_price=price,
        sector=_find_field(data, SECTOR_FIELDS),
        asset_class=_find_field(data, ASSET_CLASS_FIELDS),
        issuer=_find_field(data, ISSUER_FIELDS),
    )


def _find_field(data: dict[str, str], candidates: list[str]) -> str | None:
    for key in candidates:
        if key in data and data[key]:
            return data[key]
    return None


def _parse_number(val: str | None) -> float | None:
    if not val:
        return None
    cleaned = re.sub(r"[,$\s]", "", val)
    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = "-" + cleaned[1:-1]
    try:
        return float(cleaned)
    except ValueError:
        return None
