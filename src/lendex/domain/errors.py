"""
Exception taxonomy for the indexer and the query service.

Only ConfigurationError is fatal; every other error is caught at the seam that
owns it (scanner, decoder, sink, source) and logged.
"""
from __future__ import annotations

from typing import Any


class LendexError(Exception):
    """Base exception carrying a stable code and structured details."""

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR", details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(LendexError):
    """Bad contract address, unreachable RPC at startup, invalid settings."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "CONFIGURATION_ERROR", details)


class FetchError(LendexError):
    """An RPC call failed (transport, HTTP status, JSON-RPC error or malformed result)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "FETCH_ERROR", details)


class DecodeError(LendexError):
    """A raw log could not be turned into an Event."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "DECODE_ERROR", details)


class UnknownSignatureError(DecodeError):
    def __init__(self, topic0: str) -> None:
        super().__init__(f"Unknown event signature: {topic0}", {"topic0": topic0})
        self.code = "UNKNOWN_SIGNATURE"


class PersistenceError(LendexError):
    """Writing a single event record failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "PERSISTENCE_ERROR", details)


class LoadError(LendexError):
    """A stored record (or file) could not be read or parsed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "LOAD_ERROR", details)
