"""Error taxonomy for the quote & checkout wizard.

Validation problems are normally carried as data (the ``errors`` map of a
wizard session).  The exception classes below exist for the cases that must
cross a call boundary:

- ``FieldValidationError``: a single field rejected a value before any I/O
  (e.g. an attachment that is too large).
- ``AuthRequiredError``: the caller must sign in again; never retried blindly.
- ``TransientIOError``: a collaborator call failed; safe to retry.
- ``ConsistencyError``: the caller broke an ordering rule (e.g. attaching a
  file before a draft exists).  ``DraftNotReadyError`` is the expected,
  self-resolving flavour of it.
"""

from __future__ import annotations

import logging
from typing import Awaitable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QuoteWizardError(Exception):
    """Base class for all wizard errors."""

    code = "QUOTE_WIZARD_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class FieldValidationError(QuoteWizardError):
    """A value for ``field`` was rejected."""

    code = "VALIDATION_ERROR"

    def __init__(
        self, field: str, message: str, suggestion: str | None = None
    ) -> None:
        super().__init__(message)
        self.field = field
        self.suggestion = suggestion


class AttachmentRejectedError(FieldValidationError):
    """A file was refused client-side (size, type, duplicate)."""


class AuthRequiredError(QuoteWizardError):
    """The current user is not signed in (or the session expired)."""

    code = "AUTH_REQUIRED"

    def __init__(self, message: str = "Please sign in to continue your request.") -> None:
        super().__init__(message)


class TransientIOError(QuoteWizardError):
    """A collaborator call (upload, delete, submit, ...) failed."""

    code = "UPSTREAM_UNAVAILABLE"
    retryable = True

    def __init__(self, operation: str, message: str | None = None) -> None:
        super().__init__(message or f"{operation} failed. Please try again.")
        self.operation = operation


class ServiceNotFoundError(QuoteWizardError):
    """The catalog has no service with the requested slug."""

    code = "NOT_FOUND"

    def __init__(self, service_slug: str) -> None:
        super().__init__(f"Service not found: {service_slug}")
        self.service_slug = service_slug


class ConsistencyError(QuoteWizardError):
    """An operation was invoked in a state that does not allow it."""

    code = "CONFLICT"
    retryable = False


class DraftNotReadyError(ConsistencyError):
    """No draft application exists yet; retry once it has been created."""

    code = "DRAFT_NOT_READY"
    retryable = True

    def __init__(
        self, message: str = "We're still preparing your request. Please wait a moment and try again."
    ) -> None:
        super().__init__(message)


async def call_collaborator(operation: str, awaitable: Awaitable[T]) -> T:
    """Await a collaborator call, converting foreign failures.

    ``QuoteWizardError`` subclasses pass through unchanged; anything else is
    logged and re-raised as ``TransientIOError`` so raw collaborator error
    shapes never reach the controller's callers.
    """
    try:
        return await awaitable
    except QuoteWizardError:
        raise
    except Exception as exc:
        logger.warning("%s failed: %s", operation, exc, exc_info=True)
        raise TransientIOError(operation) from exc
