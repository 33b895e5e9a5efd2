"""
errors.py - Error taxonomy shared by the client, config layer and trader.

TradingError is the base type. The others narrow where a failure came from:
- ValidationError: an operator-supplied value is out of its safe range
- ConfigurationError: startup configuration missing or invalid (fatal)
- ApiError: a broker call failed after retries or a deal was rejected
"""

from typing import Optional


class TradingError(Exception):
    """Base error for trading operations and internal invariant violations."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message


class ValidationError(TradingError):
    """An input parameter is malformed or outside its allowed range."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ConfigurationError(TradingError):
    """Required startup configuration is missing or structurally invalid."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message)
        self.config_key = config_key


class ApiError(TradingError):
    """
    A broker API call failed.

    Attributes:
        status_code: HTTP status returned by the broker, if any
        error_code: Broker error code from the response body
                    (e.g. "error.security.oauth-token-invalid")
        attempts: Number of attempts made before giving up
        transient: True when the failure is worth retrying (5xx, 429)
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
        error_code: Optional[str] = None,
        attempts: Optional[int] = None,
        transient: bool = False
    ):
        super().__init__(message, cause)
        self.status_code = status_code
        self.error_code = error_code
        self.attempts = attempts
        self.transient = transient
