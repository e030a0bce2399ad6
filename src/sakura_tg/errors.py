"""Exception hierarchy for sakura-tg."""

from __future__ import annotations


class SakuraError(Exception):
    """Base class for every error raised by the package."""


class ConfigError(SakuraError, ValueError):
    """Raised when a configuration file cannot be loaded or validated."""


# -- Handler contract ---------------------------------------------------------


class HandlerContractError(SakuraError, TypeError):
    """Raised when an update handler does not satisfy the handler contract."""


class InvalidArity(HandlerContractError):
    """The handler does not accept exactly one positional parameter."""


class UndeclaredParameterType(HandlerContractError):
    """The handler parameter carries no usable type annotation."""


class UnsupportedParameterType(HandlerContractError):
    """The handler parameter is annotated with a non-structured type."""


# -- Transport / source -------------------------------------------------------


class TransportError(SakuraError):
    """Raised when a Bot API request cannot be completed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BotAuthError(TransportError):
    """Raised when the Bot API rejects the configured token."""


class SourceError(SakuraError):
    """A single failed ``getUpdates`` fetch."""

    def __init__(self, description: str, *, error_code: int | None = None) -> None:
        super().__init__(description)
        self.description = description
        self.error_code = error_code


# -- Dispatch -----------------------------------------------------------------


class DispatchFailure(SakuraError):
    """Raised when a handler invocation cannot be scheduled."""
