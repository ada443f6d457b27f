"""Exception hierarchy for the movers engine.

Only client-input problems and "no usable data" conditions ever reach a
caller. ``ProviderUnavailable`` is raised inside adapters and always absorbed
at the adapter boundary.
"""

from typing import Any, Dict


class MoversError(Exception):
    """Base exception for all engine errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Structured, trace-free representation for callers."""
        return {
            "error": self.message,
            "status": self.status_code,
            "kind": "client" if 400 <= self.status_code < 500 else "server",
        }


class ClientInputError(MoversError):
    """Raised when a request parameter is rejected before any network call."""
    status_code = 400


class MalformedInput(ClientInputError):
    """Raised when a required request parameter is missing or invalid."""
    pass


class UnsupportedConfiguration(ClientInputError):
    """Raised when a parameter has no mapping in the lookback/interval tables."""

    def __init__(self, parameter: str, value: Any) -> None:
        super().__init__(f"{parameter} '{value}' is not supported")
        self.parameter = parameter
        self.value = value


class InsufficientData(MoversError):
    """Raised when a minimum-data guarantee is violated (e.g. too few candles)."""
    status_code = 422


class NoDataAvailable(MoversError):
    """Raised when a single-record lookup finds nothing at any provider."""
    status_code = 404


class ProviderUnavailable(MoversError):
    """A single provider timed out, returned non-2xx, or sent an unparsable payload."""
    status_code = 502

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason
