from unittest.mock import MagicMock

from portfolio_risk.data.yfinance_client import YFinanceClient, YFinanceGateway


class TestYFinanceClient:
    def _client(self, info: dict) -> YFinanceClient:
        client = YFinanceClient("aapl")
        client._ticker = MagicMock(info=info)
        return client

    def test_tags_from_info(self):
        tags = self._client(
            {"sector": "Technology", "quoteType": "EQUITY", "longName": "Apple Inc."}
        ).get_tags()
        assert tags.symbol == "AAPL"
        assert tags.sector == "Technology"
        assert tags.asset_class == "Equity"
        assert tags.issuer == "Apple Inc."

    def test_fund_category_as_sector(self):
        tags = self._client(
            {"category": "Large Blend", "quoteType": "ETF", "shortName": "SPDR"}
        ).get_tags()
        assert tags.sector == "Large Blend"
        assert tags.asset_class == "ETF"
        assert tags.issuer == "SPDR"

    def test_no_info(self):
        assert self._client({}).get_tags() is None

    def test_last_price(self):
        assert self._client({"regularMarketPrice": 12.5}).get_last_price() == 12.5
        assert self._client({}).get_last_price() is None


class TestYFinanceGateway:
    def test_tags_keyed_by_requested_symbol(self):
        gateway = YFinanceGateway()
        client = YFinanceClient("brk-b")
        client._ticker = MagicMock(info={"sector": "Financial Services"})
        gateway._clients["BRK-B"] = client
        tags = gateway.get_security_tags(["brk-b"])
        assert tags["brk-b"].symbol == "brk-b"
        assert tags["brk-b"].asset_class is None

    def test_empty_batch(self):
        assert YFinanceGateway().get_daily_closes_batch([], None, None) == {}
