from __future__ import annotations


class TradingError(Exception):
    """Base class for failures raised by the reasoning and exchange boundaries."""


class InputError(TradingError, ValueError):
    """Missing or invalid credentials/parameters."""


class AuthError(InputError):
    """Credential is empty or was rejected by the remote service."""


class EncodingError(InputError):
    """Credential contains characters that cannot be sent in an HTTP header."""


class FormatError(TradingError, ValueError):
    """Reasoning service payload could not be parsed as a JSON object."""


class TransportError(TradingError, ConnectionError):
    """Network or HTTP failure talking to an external service."""


class ExchangeError(TransportError):
    """Exchange answered, but with a non-success business code."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code
