"""Exception types raised by the risk engine."""


class RiskEngineError(Exception):
    """Base class for all risk engine errors."""


class InputUnavailableError(RiskEngineError):
    """A required input (portfolio, scenario) could not be resolved."""


class ComputationTimeoutError(RiskEngineError):
    """A computation was cancelled or ran past its deadline."""


class GatewayError(RiskEngineError):
    """A market data or storage call failed after all retries."""

    def __init__(self, operation: str, attempts: int, cause: BaseException | None):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"{operation} failed after {attempts} attempt(s): {cause}")


class MarketDataUnavailableError(RiskEngineError):
    """Price history needed for a figure could not be fetched."""

    def __init__(self, figure: str, failures: list[str]):
        self.figure = figure
        self.failures = failures
        super().__init__(f"{figure} unavailable: {'; '.join(failures)}")
