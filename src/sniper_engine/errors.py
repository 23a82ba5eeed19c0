"""Error taxonomy shared by the clients, checks and executor."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification attached to failed outcomes and journal records."""

    HARD_BLOCK = "HARD_BLOCK"
    NO_ROUTE = "NO_ROUTE"
    USER_REJECTED = "USER_REJECTED"
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    DATA_UNAVAILABLE = "DATA_UNAVAILABLE"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    CORRUPTION = "CORRUPTION"
    FAILED = "FAILED"
    PREREQUISITE = "PREREQUISITE"


class SniperError(Exception):
    """Base error."""

    kind: ErrorKind = ErrorKind.FAILED


class TransientNetworkError(SniperError):
    """Raised when a request timed out or the upstream was temporarily unavailable."""

    kind = ErrorKind.TRANSIENT_NETWORK


class DataUnavailableError(SniperError):
    """Raised when an upstream answered but had no data for the request."""

    kind = ErrorKind.DATA_UNAVAILABLE


class DecimalsUnavailableError(DataUnavailableError):
    """Raised when token decimals cannot be resolved from any source."""


class MalformedResponseError(SniperError):
    """Raised when an upstream payload does not match the expected shape."""

    kind = ErrorKind.MALFORMED_RESPONSE


class NoRouteError(SniperError):
    """Raised when the aggregator has no route for the requested swap."""

    kind = ErrorKind.NO_ROUTE


class SigningError(SniperError):
    """Raised when the signer could not produce or submit a transaction."""


class UserRejectedError(SigningError):
    """Raised when the wallet owner declined to sign."""

    kind = ErrorKind.USER_REJECTED


class CorruptionError(SniperError):
    """Raised when on-chain data contradicts a completed trade."""

    kind = ErrorKind.CORRUPTION


class PositionStoreError(SniperError):
    """Raised when a position record cannot be written or read."""
