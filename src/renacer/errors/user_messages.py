"""User-friendly error messages for Renacer.

This module provides human-readable error messages and recovery suggestions
for all error types, so a person in the middle of a ritual never sees a raw
technical error.

Privacy Note:
- Error messages NEVER include transcript text
- Storage paths are generalized
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Error Message Catalog
# =============================================================================

ERROR_MESSAGES: dict[str, str] = {
    # Capability errors
    "CAPABILITY_ERROR": "Voice listening is not available right now.",
    "PERMISSION_DENIED": "Microphone or speech recognition access was denied.",
    "ENGINE_UNAVAILABLE": "The speech recognizer is unavailable for this language.",
    "TRANSCRIPTION_TIMEOUT": "We stopped hearing you before the phrases were detected.",
    # Validation
    "VALIDATION_FAILURE": "Not enough of the required phrases were detected.",
    # Persistence
    "PERSISTENCE_ERROR": "Your progress couldn't be saved yet.",
    # State machine
    "INVALID_TRANSITION": "That action isn't available at this point of the ritual.",
    # Catalog
    "CATALOG_ERROR": "The ritual catalog couldn't be read.",
    "DEFINITION_NOT_FOUND": "That ritual doesn't exist.",
    # Configuration errors
    "CONFIGURATION_ERROR": "There's a configuration issue.",
    "INVALID_CONFIG": "The configuration is invalid. Check settings.",
    "MISSING_CONFIG": "Required configuration is missing.",
    # Generic
    "RENACER_ERROR": "An unexpected error occurred. Please try again.",
    "UNKNOWN_ERROR": "Something went wrong. Please try again.",
}


# =============================================================================
# Recovery Suggestions
# =============================================================================

RECOVERY_SUGGESTIONS: dict[str, str] = {
    "CAPABILITY_ERROR": "Check your microphone, then retry the phase.",
    "PERMISSION_DENIED": "Allow microphone and speech recognition access, then retry the phase.",
    "ENGINE_UNAVAILABLE": "Check the configured language: renacer config show",
    "TRANSCRIPTION_TIMEOUT": "Speak the phrases a little closer to the microphone and retry.",
    "VALIDATION_FAILURE": "Read the missing phrases aloud, slowly and clearly.",
    "PERSISTENCE_ERROR": "Check disk space and permissions of the data directory, then retry.",
    "INVALID_TRANSITION": "Check the session state before pausing, resuming or abandoning.",
    "CATALOG_ERROR": "Validate the catalog YAML file referenced by catalog_path.",
    "DEFINITION_NOT_FOUND": "List the available rituals: renacer rituals list",
    "CONFIGURATION_ERROR": "Check config: renacer config show",
    "INVALID_CONFIG": "Recreate defaults: renacer config init",
    "MISSING_CONFIG": "Add the required setting: renacer config set <key> <value>",
    "RENACER_ERROR": "If this persists, please report the issue.",
    "UNKNOWN_ERROR": "Try again. Report if the issue continues.",
}


# =============================================================================
# Helper Functions
# =============================================================================


def _error_code(error: Any) -> str:
    if hasattr(error, "code"):
        return error.code
    if isinstance(error, str):
        return error
    return type(error).__name__.upper()


def get_user_message(error: Any) -> str:
    """Get user-friendly message for an error.

    Args:
        error: The error (can be Exception or error code string)

    Returns:
        User-friendly error message
    """
    return ERROR_MESSAGES.get(_error_code(error), ERROR_MESSAGES["UNKNOWN_ERROR"])


def get_recovery_suggestion(error: Any) -> str:
    """Get recovery suggestion for an error.

    Args:
        error: The error (can be Exception or error code string)

    Returns:
        Recovery suggestion
    """
    return RECOVERY_SUGGESTIONS.get(
        _error_code(error), RECOVERY_SUGGESTIONS["UNKNOWN_ERROR"]
    )


def format_error_for_user(error: Any) -> str:
    """Format a complete user-friendly error message."""
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)

    return f"{message}\n\nSuggestion: {suggestion}"


def format_error_for_cli(error: Any) -> str:
    """Format error for CLI output.

    Args:
        error: The error to format

    Returns:
        CLI-formatted error message
    """
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)
    code = getattr(error, "code", "ERROR")

    lines = [
        f"Error [{code}]: {message}",
        "",
        f"Suggestion: {suggestion}",
    ]

    if hasattr(error, "details") and error.details:
        lines.append("")
        lines.append("Details:")
        for key, value in error.details.items():
            # Transcripts are private
            if key not in ("transcript", "text"):
                lines.append(f"  {key}: {value}")

    return "\n".join(lines)


def format_error_for_ui(error: Any) -> dict:
    """Format error for UI/frontend display."""
    return {
        "message": get_user_message(error),
        "suggestion": get_recovery_suggestion(error),
        "code": getattr(error, "code", "UNKNOWN_ERROR"),
        "recoverable": getattr(error, "recoverable", False),
    }


__all__ = [
    "ERROR_MESSAGES",
    "RECOVERY_SUGGESTIONS",
    "get_user_message",
    "get_recovery_suggestion",
    "format_error_for_user",
    "format_error_for_cli",
    "format_error_for_ui",
]
