"""
Error types raised by collaborators and user-facing error messages.

Collaborators (data store, transports, script runner) raise the typed errors
below; the executor turns them into failed trace steps. Condition evaluation
and template interpolation never raise.
"""

from dataclasses import dataclass
from typing import Any, Optional


class AutomationError(Exception):
    """Base class for automation engine errors."""


class DataStoreError(AutomationError):
    """A record could not be read, created, updated or deleted."""


class TransportError(AutomationError):
    """An email or webhook could not be delivered."""


class ScriptError(AutomationError):
    """The sandboxed script runner reported a failure."""


class TraceStateError(AutomationError):
    """Illegal status transition on a trace step."""


@dataclass
class UserFriendlyError:
    """Error message rewritten for the person who built the automation."""
    message: str
    suggestion: Optional[str] = None
    code: Optional[str] = None


def get_user_friendly_error(
    error: Any,
    action_type: Optional[str] = None,
    field_name: Optional[str] = None,
) -> UserFriendlyError:
    """
    Map a technical error message to a friendlier message with a suggestion.

    Args:
        error: Exception or error string
        action_type: Action type the error came from, if any
        field_name: Field involved in the error, if known

    Returns:
        UserFriendlyError; unknown errors keep their original message
    """
    error_message = str(error) if error else "An unexpected error occurred"
    lower = error_message.lower()

    if "table_id" in lower and "required" in lower:
        return UserFriendlyError(
            message="Please select a table for this action",
            suggestion="Make sure you've selected a table in the action configuration",
            code="MISSING_TABLE",
        )

    if "record_id" in lower and "required" in lower:
        return UserFriendlyError(
            message="Please specify which record to update or delete",
            suggestion="Use {{record_id}} to reference the triggered record, or enter a specific record ID",
            code="MISSING_RECORD_ID",
        )

    if "table" in lower and "not found" in lower:
        return UserFriendlyError(
            message="The selected table could not be found",
            suggestion="The table may have been deleted. Please select a different table or recreate the table",
            code="TABLE_NOT_FOUND",
        )

    if "record" in lower and "not found" in lower:
        return UserFriendlyError(
            message="The record could not be found",
            suggestion="The record may have been deleted. Check that the record ID is correct",
            code="RECORD_NOT_FOUND",
        )

    if "field" in lower and ("required" in lower or "missing" in lower):
        return UserFriendlyError(
            message="A required field is missing",
            suggestion=(
                f'Please provide a value for the "{field_name}" field'
                if field_name else "Check that all required fields have values"
            ),
            code="MISSING_FIELD",
        )

    if "invalid" in lower and "email" in lower:
        return UserFriendlyError(
            message="The email address format is invalid",
            suggestion="Please enter a valid email address (e.g., user@example.com)",
            code="INVALID_EMAIL",
        )

    if ("invalid" in lower and "url" in lower) or "only http" in lower:
        return UserFriendlyError(
            message="The webhook URL format is invalid",
            suggestion="Please enter a valid URL starting with http:// or https://",
            code="INVALID_URL",
        )

    if "webhook" in lower and ("timeout" in lower or "timed out" in lower):
        return UserFriendlyError(
            message="The webhook request timed out",
            suggestion="The receiving service took too long to respond. Check that the service is running and try again.",
            code="WEBHOOK_TIMEOUT",
        )

    if "webhook" in lower and ("failed" in lower or "returned" in lower):
        return UserFriendlyError(
            message="The webhook call failed",
            suggestion="Check that the webhook URL is correct and the receiving service is available.",
            code="WEBHOOK_FAILED",
        )

    if "permission" in lower or "unauthorized" in lower or "forbidden" in lower:
        return UserFriendlyError(
            message="You don't have permission to perform this action",
            suggestion="Contact your administrator to request access to this table or action",
            code="PERMISSION_DENIED",
        )

    if "network" in lower or "connection" in lower:
        return UserFriendlyError(
            message="A network error occurred",
            suggestion="The service may be temporarily unavailable. Try again later.",
            code="NETWORK_ERROR",
        )

    if "timeout" in lower or "timed out" in lower:
        return UserFriendlyError(
            message="The operation took too long to complete",
            suggestion="Try simplifying the automation or breaking it into smaller steps.",
            code="TIMEOUT",
        )

    if "foreign key" in lower or "constraint" in lower:
        return UserFriendlyError(
            message="This action would violate a data constraint",
            suggestion="Check that all related records referenced by this action exist.",
            code="CONSTRAINT_ERROR",
        )

    if "duplicate" in lower or "unique" in lower:
        return UserFriendlyError(
            message="A record with this value already exists",
            suggestion="Use a different value or update the existing record instead.",
            code="DUPLICATE_ERROR",
        )

    if action_type == "run_script":
        return UserFriendlyError(
            message=error_message,
            suggestion="Check the script for errors and make sure it only uses the available record data.",
            code="SCRIPT_ERROR",
        )

    return UserFriendlyError(
        message=error_message,
        suggestion="If this error persists, check the automation configuration",
        code="UNKNOWN_ERROR",
    )
