"""
Exception handling utilities.

Defines categorized exception types for proper error handling.
"""

import asyncio

import aiohttp
from pydantic import ValidationError


class ListenerError(Exception):
    """Base class for listener errors."""


class WalletRpcError(ListenerError):
    """Base exception for wallet/daemon RPC failures."""


class JsonRpcApiError(WalletRpcError):
    """Raised when the RPC server answers with a JSON-RPC error object."""

    def __init__(self, method: str, code: int, message: str) -> None:
        super().__init__(f"{method} failed with code {code}: {message}")
        self.method = method
        self.code = code
        self.message = message


class WalletRpcTransportError(WalletRpcError):
    """Raised on network errors, timeouts and non-200 responses."""


class MalformedRpcDataError(WalletRpcError):
    """Raised when an RPC payload cannot be parsed."""


class PaymentInvariantError(ListenerError):
    """
    Raised when recorded state contradicts the matching rules.

    Indicates a matching or concurrency defect rather than a runtime
    condition, so it is logged at CRITICAL.
    """


# Exception categories based on handling strategy

# Transient - log, skip this scope, the next signal retries
TRANSIENT = (
    WalletRpcTransportError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ConnectionError,
)

# Bad external data - fails the containing call only
MALFORMED = (
    MalformedRpcDataError,
    ValidationError,
)


def is_transient(exc: BaseException) -> bool:
    """
    Check if exception is a transient RPC failure.

    Args:
        exc: Exception to check

    Returns:
        True if the failure is expected to go away on its own
    """
    return isinstance(exc, TRANSIENT)


def is_malformed(exc: BaseException) -> bool:
    """Check if exception was caused by unparseable external data."""
    return isinstance(exc, MALFORMED)
