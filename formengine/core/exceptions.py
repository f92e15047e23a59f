"""Error taxonomy for the form runtime and the import pipeline.

Field- and row-scoped errors (validation, transform, row creation) are
recovered locally and aggregated into reports. File-level and
infrastructure-level errors (parse, job fatal) abort the surrounding
operation.
"""

from __future__ import annotations

from formengine.core.config import settings


def summarize_errors(errors: list[str], limit: int | None = None) -> str:
    """Join the first ``limit`` errors and count the remainder."""
    limit = settings.ERROR_SUMMARY_LIMIT if limit is None else limit
    shown = errors[:limit]
    summary = "; ".join(shown)
    remaining = len(errors) - len(shown)
    if remaining > 0:
        summary = f"{summary} (and {remaining} more)"
    return summary


class FormEngineError(Exception):
    """Base class for all engine errors."""


class SchemaError(FormEngineError):
    """A form fails its structural invariants. Blocks publish, not draft save."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(summarize_errors(self.errors) or "Invalid form schema")


class FieldValidationError(FormEngineError):
    """One or more field values failed their rule sets."""

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        messages = [f"{field_id}: {message}" for field_id, message in self.errors.items()]
        super().__init__(summarize_errors(messages) or "Validation failed")


class ParseError(FormEngineError):
    """Source file is unreadable, of the wrong type, or too large."""


class TransformError(FormEngineError):
    """A cell cannot be coerced into its mapped field's type."""

    def __init__(self, message: str, suggestion: str | None = None):
        self.suggestion = suggestion
        super().__init__(message)


class RowCreationError(FormEngineError):
    """Persisting a single imported row failed."""


class JobFatalError(FormEngineError):
    """Infrastructure failure that aborts a whole import job."""


class InvalidTransitionError(FormEngineError):
    """An import job was asked to move along a transition the state machine forbids."""


class ImportJobConflictError(FormEngineError):
    """Another import job is already active for the same form."""


class FormNotAcceptingSubmissionsError(FormEngineError):
    """The form is not published, has expired, or hit its submission cap."""


class ColumnMappingError(FormEngineError):
    """A column mapping targets unknown, display-only or duplicated fields."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(summarize_errors(self.errors) or "Invalid column mapping")
