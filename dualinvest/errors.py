"""Exception types raised across the engine."""


class DualInvestError(Exception):
    """Base class for engine errors."""


class MissingCredentialsError(DualInvestError):
    """Raised before any authenticated call when API credentials are absent."""


class ExchangeError(DualInvestError):
    """Exchange rejected a request or returned an unusable response."""

    def __init__(self, message: str, code: int | None = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    def __str__(self) -> str:
        return f"[status={self.status} code={self.code}] {self.message}"


class LedgerError(DualInvestError):
    """The position ledger file exists but cannot be read."""


class InvalidHedgeTransition(DualInvestError):
    """A hedge status change that is not a single forward step."""
