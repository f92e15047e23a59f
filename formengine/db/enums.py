"""Form, submission and import enums."""

from enum import Enum


class FormStatus(str, Enum):
    """Lifecycle status of a form."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class SubmissionStatus(str, Enum):
    """Status of a form submission."""

    DRAFT = "draft"
    COMPLETED = "completed"


class ImportJobStatus(str, Enum):
    """States of the import job state machine."""

    PENDING = "pending"  # created, waiting to start
    PARSING = "parsing"  # loading and parsing the source file
    VALIDATING = "validating"  # transforming + validating rows
    IMPORTING = "importing"  # creating submissions
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_IMPORT_STATUSES


TERMINAL_IMPORT_STATUSES = frozenset(
    {ImportJobStatus.COMPLETED, ImportJobStatus.FAILED, ImportJobStatus.CANCELLED}
)

ACTIVE_IMPORT_STATUSES = frozenset(
    {
        ImportJobStatus.PENDING,
        ImportJobStatus.PARSING,
        ImportJobStatus.VALIDATING,
        ImportJobStatus.IMPORTING,
    }
)

# One-way transitions. Any non-terminal state may fail or be cancelled.
IMPORT_JOB_TRANSITIONS: dict[ImportJobStatus, frozenset[ImportJobStatus]] = {
    ImportJobStatus.PENDING: frozenset(
        {ImportJobStatus.PARSING, ImportJobStatus.FAILED, ImportJobStatus.CANCELLED}
    ),
    ImportJobStatus.PARSING: frozenset(
        {ImportJobStatus.VALIDATING, ImportJobStatus.FAILED, ImportJobStatus.CANCELLED}
    ),
    ImportJobStatus.VALIDATING: frozenset(
        {ImportJobStatus.IMPORTING, ImportJobStatus.FAILED, ImportJobStatus.CANCELLED}
    ),
    ImportJobStatus.IMPORTING: frozenset(
        {ImportJobStatus.COMPLETED, ImportJobStatus.FAILED, ImportJobStatus.CANCELLED}
    ),
    ImportJobStatus.COMPLETED: frozenset(),
    ImportJobStatus.FAILED: frozenset(),
    ImportJobStatus.CANCELLED: frozenset(),
}
