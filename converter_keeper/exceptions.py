"""
Exception hierarchy for the converter keeper.

Each error category maps to a distinct handling policy: configuration errors
are fatal at startup, discovery errors abort the current cycle, negotiation
errors skip one opportunity, and network errors terminate the run.
"""

from typing import Optional, Dict, Any


class KeeperError(Exception):
    """Base exception for all converter keeper errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(KeeperError):
    """Raised when there are configuration-related issues."""

    pass


class ValidationError(KeeperError):
    """Raised when validation of data or configuration fails."""

    pass


class DiscoveryError(KeeperError):
    """Raised when the config index or the balance batch read fails."""

    def __init__(
        self,
        message: str,
        block_number: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.block_number = block_number


class SubgraphError(DiscoveryError):
    """Raised when a subgraph query fails or returns GraphQL errors."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.endpoint = endpoint
        self.status_code = status_code


class NegotiationError(KeeperError):
    """Raised when no acceptable trade can be negotiated for a conversion."""

    def __init__(
        self,
        message: str,
        converter: Optional[str] = None,
        token_to_receive: Optional[str] = None,
        token_to_send: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.converter = converter
        self.token_to_receive = token_to_receive
        self.token_to_send = token_to_send


class NoTradeFoundError(NegotiationError):
    """Raised when the route optimizer returns no route."""

    pass


class PriceImpactError(NegotiationError):
    """Raised when price impact stays above the threshold after all retries."""

    def __init__(
        self,
        message: str,
        price_impact: Optional[Any] = None,
        attempts: int = 0,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.price_impact = price_impact
        self.attempts = attempts


class PathValidationError(KeeperError):
    """Raised when an encoded swap path does not match the conversion tokens."""

    def __init__(
        self,
        message: str,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.expected = expected
        self.actual = actual


class ExecutionError(KeeperError):
    """Raised when a conversion or maintenance transaction fails."""

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        trx: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.phase = phase
        self.trx = trx


class NetworkError(KeeperError):
    """Raised when network or connectivity issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code
