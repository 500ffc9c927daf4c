"""Exception hierarchy for the shop chat agent.

Exception Hierarchy:
    ShopChatError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── ModelProviderError (fatal to the current chat session)
    ├── ToolGatewayError (recovered locally by the turn loop)
    ├── PersistenceError (logged and ignored by the turn loop)
    └── AuthorizationError
        ├── AuthorizationStateError (unknown or already redeemed state)
        └── TokenExchangeError (token endpoint rejected the code)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


class ShopChatError(Exception):
    """Base exception for all shop chat errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "MODEL_PROVIDER_ERROR")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {
            "error": self.code,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        return self.message


class ConfigurationError(ShopChatError):
    """Required configuration is missing or invalid."""


class ModelProviderError(ShopChatError):
    """The language-model provider call failed.

    Carries the HTTP status reported by the provider (if any) so the
    event emitter can classify the failure.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            details={"status_code": status_code} if status_code else None,
            cause=cause,
            recoverable=status_code in (429, 529),
        )
        self.status_code = status_code


class ToolGatewayError(ShopChatError):
    """A tool call could not be executed."""

    def __init__(
        self,
        message: str,
        tool_name: str,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            details={"tool_name": tool_name, "status_code": status_code},
            cause=cause,
            recoverable=True,
        )
        self.tool_name = tool_name
        self.status_code = status_code


class PersistenceError(ShopChatError):
    """Writing to or reading from a store failed."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, cause=cause, recoverable=True)


class AuthorizationError(ShopChatError):
    """Base class for customer authorization failures."""


class AuthorizationStateError(AuthorizationError):
    """The callback state is unknown or has already been redeemed."""

    def __init__(self, state: str):
        super().__init__(
            "Authorization state is invalid or has already been used",
            details={"state": state},
        )
        self.state = state


class TokenExchangeError(AuthorizationError):
    """The token endpoint did not return an access token."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            details={"status_code": status_code} if status_code else None,
            cause=cause,
        )
        self.status_code = status_code
