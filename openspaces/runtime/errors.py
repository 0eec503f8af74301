"""Error taxonomy for the workspace runtime.

Every failure that crosses a module boundary is an ``OpenSpacesError`` whose
``kind`` is one of the closed ``ErrorKind`` values, so callers branch on kind
rather than on message text:

- **Readiness** (``not_installed``, ``not_authenticated``, ``scope_required``):
  blocks all remote operations; re-detected on the next refresh.
- **Per-operation** (``not_found``, ``failed_state``, ``timeout``,
  ``cancelled``): aborts the single operation, never the whole cache.
- **Boundary** (``command_failed``, ``parse_error``, ``invalid_value``):
  tool invocation or data-format failures; the SSH config file is never
  partially written.

Concrete classes also inherit the closest builtin (``LookupError``,
``ValueError``) so generic handlers keep working.
"""

from __future__ import annotations

from typing import ClassVar

from openspaces.runtime.models.enums import ErrorKind


class OpenSpacesError(RuntimeError):
    """Base class for all typed runtime failures."""

    kind: ClassVar[ErrorKind] = ErrorKind.COMMAND_FAILED

    def __init__(self, message: str, *, stderr: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stderr = stderr


# -- Readiness -----------------------------------------------------------------


class ReadinessError(OpenSpacesError):
    """The tool is missing, unauthenticated, or lacks the required scope."""


class ToolNotInstalledError(ReadinessError):
    kind = ErrorKind.NOT_INSTALLED


class NotAuthenticatedError(ReadinessError):
    kind = ErrorKind.NOT_AUTHENTICATED


class ScopeRequiredError(ReadinessError):
    kind = ErrorKind.SCOPE_REQUIRED


# -- Tool boundary -------------------------------------------------------------


class CommandFailedError(OpenSpacesError):
    kind = ErrorKind.COMMAND_FAILED


class ResponseParseError(OpenSpacesError):
    kind = ErrorKind.PARSE_ERROR


class InvalidValueError(OpenSpacesError, ValueError):
    """A value would corrupt the SSH config file if persisted."""

    kind = ErrorKind.INVALID_VALUE


# -- Per-operation -------------------------------------------------------------


class WorkspaceNotFoundError(OpenSpacesError, LookupError):
    """The workspace vanished between the cached view and the operation."""

    kind = ErrorKind.NOT_FOUND


class FailedStateError(OpenSpacesError):
    """The remote side reports the workspace as failed; a rebuild is required."""

    kind = ErrorKind.FAILED_STATE


class WaitTimeoutError(OpenSpacesError):
    kind = ErrorKind.TIMEOUT


class WaitCancelledError(OpenSpacesError):
    """The caller explicitly aborted a poll-wait."""

    kind = ErrorKind.CANCELLED
