"""Custom exception classes for the market simulator."""

from typing import Any, Dict, Optional


class MarketSimException(Exception):
    """Base exception for the market simulator."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidTimeframeError(MarketSimException, ValueError):
    """Exception for unknown timeframe names."""

    def __init__(self, value: Any):
        super().__init__(
            message=f"Unknown timeframe '{value}'",
            details={"timeframe": value},
        )


class SubscriptionNotFoundError(MarketSimException, KeyError):
    """Exception for operations on an unknown or closed subscription."""

    def __init__(self, subscription_id: str):
        super().__init__(
            message=f"Subscription with identifier '{subscription_id}' not found",
            details={"subscription_id": subscription_id},
        )

    def __str__(self) -> str:
        return self.message


class ProviderError(MarketSimException):
    """Exception for external data provider failures.

    Never raised out of a running stream; it is handed to the subscriber's
    error callback while the engine keeps its last committed state.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        symbol: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message=f"{provider} provider failed: {message}",
            details={"provider": provider, "symbol": symbol},
        )
        self.provider = provider
        self.symbol = symbol
        self.cause = cause
