"""Timeout and bounded retry around market data and holdings collaborators."""

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import date
from typing import TypeVar

import pandas as pd

from portfolio_risk.config import RiskConfig
from portfolio_risk.data.gateway import HoldingsStore, MarketDataGateway
from portfolio_risk.errors import GatewayError, InputUnavailableError
from portfolio_risk.models.portfolio import Holding, SecurityTags

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Exponential backoff: delay = backoff * 2 ** (attempt - 1), capped."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff: float = 0.5,
        max_delay: float = 10.0,
        timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.max_delay = max_delay
        self.timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: RiskConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.gateway_retries,
            backoff=config.retry_backoff,
            timeout=config.gateway_timeout,
        )

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.backoff * 2 ** (attempt - 1))

    def wait(self, attempt: int) -> None:
        d = self.delay(attempt)
        if d > 0:
            self._sleep(d)


class ResilientGateway:
    """Wraps a gateway and holdings store with per-call timeouts and retries.

    Each call runs on a small private thread pool so a hung collaborator can
    be abandoned after ``policy.timeout`` seconds. ``InputUnavailableError`` is
    never retried: a missing portfolio will not appear on the next attempt.
    """

    def __init__(
        self,
        gateway: MarketDataGateway,
        store: HoldingsStore | None = None,
        policy: RetryPolicy | None = None,
        max_workers: int = 4,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.policy = policy or RetryPolicy()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="gateway"
        )

    def _call(self, operation: str, fn: Callable[..., T], *args) -> T:
        last_error: BaseException | None = None
        for attempt in range(1, self.policy.max_attempts + 1):
            future = self._executor.submit(fn, *args)
            try:
                return future.result(timeout=self.policy.timeout)
            except InputUnavailableError:
                raise
            except FutureTimeout as e:
                future.cancel()
                last_error = e
                logger.warning(
                    "%s timed out after %.1fs (attempt %d/%d)",
                    operation,
                    self.policy.timeout,
                    attempt,
                    self.policy.max_attempts,
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    "%s failed (attempt %d/%d): %s",
                    operation,
                    attempt,
                    self.policy.max_attempts,
                    e,
                )
            if attempt < self.policy.max_attempts:
                self.policy.wait(attempt)
        raise GatewayError(operation, self.policy.max_attempts, last_error)

    # --- HoldingsStore ---

    def get_holdings(self, portfolio_id: str) -> list[Holding]:
        if self.store is None:
            raise InputUnavailableError("no holdings store configured")
        return self._call("get_holdings", self.store.get_holdings, portfolio_id)

    # --- MarketDataGateway ---

    def get_daily_closes(self, symbol: str, start: date, end: date) -> pd.Series:
        return self._call(
            "get_daily_closes", self.gateway.get_daily_closes, symbol, start, end
        )

    def get_daily_closes_batch(
        self, symbols: list[str], start: date, end: date
    ) -> dict[str, pd.Series]:
        return self._call(
            "get_daily_closes_batch",
            self.gateway.get_daily_closes_batch,
            symbols,
            start,
            end,
        )

    def get_security_tags(self, symbols: list[str]) -> dict[str, SecurityTags]:
        return self._call(
            "get_security_tags", self.gateway.get_security_tags, symbols
        )

    def get_current_prices(self, symbols: list[str]) -> dict[str, float]:
        return self._call(
            "get_current_prices", self.gateway.get_current_prices, symbols
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
