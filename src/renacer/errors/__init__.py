"""Centralized error definitions for Renacer.

This module provides a unified error hierarchy for the ritual engine. The
four engine families map to how a failure is resolved:

- ``CapabilityError``: transcription unavailable or denied; recoverable, it
  becomes a failed phase result routed through the retry policy.
- ``ValidationFailure``: too few anchors detected; recoverable via retry or an
  explicit skip where the phase allows it.
- ``PersistenceError``: store I/O failure; surfaced to the caller while the
  in-memory ledger stays authoritative.
- ``InvalidTransition``: illegal operation for the current session state;
  rejected synchronously with zero mutation.

Usage:
    from renacer.errors import RenacerError, handle_error

    try:
        sequencer.pause()
    except RenacerError as e:
        print(handle_error(e))
"""

from __future__ import annotations

from typing import Any, Optional

from renacer.errors.user_messages import (
    format_error_for_user,
    get_recovery_suggestion,
    get_user_message,
)


# =============================================================================
# Base Error
# =============================================================================


class RenacerError(Exception):
    """Base exception for all Renacer errors.

    Attributes:
        code: Error code for categorization
        user_message: User-friendly message (optional override)
        recoverable: Whether the error is potentially recoverable
        details: Additional error details for debugging
    """

    code: str = "RENACER_ERROR"
    default_message: str = "An unexpected error occurred"
    recoverable: bool = True

    def __init__(
        self,
        message: str | None = None,
        *,
        user_message: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message or self.default_message
        self._user_message = user_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Get user-friendly message."""
        if self._user_message:
            return self._user_message
        return get_user_message(self)

    @property
    def recovery_suggestion(self) -> str:
        """Get recovery suggestion."""
        return get_recovery_suggestion(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


# =============================================================================
# Capability Errors
# =============================================================================


class CapabilityError(RenacerError):
    """Transcription capability unavailable or denied."""

    code = "CAPABILITY_ERROR"
    default_message = "Transcription capability failed"
    failure_kind = "capability"


class PermissionDeniedError(CapabilityError):
    """Microphone or speech recognition permission denied."""

    code = "PERMISSION_DENIED"
    default_message = "Speech recognition permission denied"
    failure_kind = "permission_denied"


class EngineUnavailableError(CapabilityError):
    """Speech engine unavailable (offline, unsupported language)."""

    code = "ENGINE_UNAVAILABLE"
    default_message = "Speech recognition engine unavailable"
    failure_kind = "engine_unavailable"


class TranscriptionTimeoutError(CapabilityError):
    """Speech engine stopped producing transcripts."""

    code = "TRANSCRIPTION_TIMEOUT"
    default_message = "Transcription timed out"
    failure_kind = "timeout"


# =============================================================================
# Validation
# =============================================================================


class ValidationFailure(RenacerError):
    """Fewer anchors detected than the phase requires."""

    code = "VALIDATION_FAILURE"
    default_message = "Required anchors were not detected"

    def __init__(self, message: str | None = None, *, result: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.result = result


# =============================================================================
# Persistence
# =============================================================================


class PersistenceError(RenacerError):
    """Durable store read or write failed.

    When raised after a session was folded in memory, ``outcome`` carries
    the computed ``SessionOutcome`` so callers keep its points and unlocks.
    """

    code = "PERSISTENCE_ERROR"
    default_message = "Persistence operation failed"

    def __init__(self, message: str | None = None, *, key: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", None) or {}
        if key is not None:
            details.setdefault("key", key)
        super().__init__(message, details=details, **kwargs)
        self.key = key
        self.outcome: Any = None


# =============================================================================
# State Machine
# =============================================================================


class InvalidTransition(RenacerError, ValueError):
    """Raised when an operation is illegal for the current session state.

    Example:
        Calling ``abandon()`` on a COMPLETED session raises this exception
        and leaves the session untouched.
    """

    code = "INVALID_TRANSITION"
    default_message = "Invalid state transition"
    recoverable = False

    def __init__(
        self,
        message: str | None = None,
        *,
        from_state: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if from_state is not None:
            details.setdefault("from_state", from_state)
        if operation is not None:
            details.setdefault("operation", operation)
        super().__init__(message, details=details, **kwargs)
        self.from_state = from_state
        self.operation = operation


# =============================================================================
# Catalog Errors
# =============================================================================


class CatalogError(RenacerError):
    """Ritual catalog could not be loaded."""

    code = "CATALOG_ERROR"
    default_message = "Ritual catalog error"


class DefinitionNotFoundError(CatalogError, KeyError):
    """Requested ritual definition does not exist."""

    code = "DEFINITION_NOT_FOUND"
    default_message = "Ritual definition not found"

    def __str__(self) -> str:
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(RenacerError):
    """Base error for configuration issues."""

    code = "CONFIGURATION_ERROR"
    default_message = "Configuration error"
    recoverable = True


class InvalidConfigError(ConfigurationError):
    """Configuration is invalid."""

    code = "INVALID_CONFIG"
    default_message = "Invalid configuration"


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    code = "MISSING_CONFIG"
    default_message = "Missing configuration"


# =============================================================================
# Error Handler
# =============================================================================


def handle_error(error: Exception) -> str:
    """Handle an error and return a user-friendly message.

    Args:
        error: The exception to handle

    Returns:
        User-friendly error message with recovery suggestion
    """
    return format_error_for_user(error)


def is_recoverable(error: Exception) -> bool:
    """Check if an error is potentially recoverable."""
    if isinstance(error, RenacerError):
        return error.recoverable
    return False


__all__ = [
    # Base
    "RenacerError",
    # Capability
    "CapabilityError",
    "PermissionDeniedError",
    "EngineUnavailableError",
    "TranscriptionTimeoutError",
    # Validation
    "ValidationFailure",
    # Persistence
    "PersistenceError",
    # State machine
    "InvalidTransition",
    # Catalog
    "CatalogError",
    "DefinitionNotFoundError",
    # Configuration
    "ConfigurationError",
    "InvalidConfigError",
    "MissingConfigError",
    # Handlers
    "handle_error",
    "is_recoverable",
]
