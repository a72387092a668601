"""Exception hierarchy for ncm_dashboard."""

from __future__ import annotations


class NcmDashboardError(Exception):
    """Base exception for all dashboard errors."""


class ParseError(NcmDashboardError, ValueError):
    """Uploaded file is malformed, empty or of an unsupported type."""


class ValidationError(NcmDashboardError):
    """Record draft is missing a required field."""


class PersistenceError(NcmDashboardError):
    """Create, update or delete against the document store failed."""

    def __init__(self, message: str, failed_ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.failed_ids = list(failed_ids or [])


class NotFoundError(PersistenceError):
    """Document id is not present in the collection."""


class DescriptionLookupError(NcmDashboardError):
    """NCM description could not be resolved."""


class AlreadyEditingError(NcmDashboardError):
    """Another row already holds the grid's edit session."""


class NotEditingError(NcmDashboardError):
    """Operation needs an active edit session."""


class CommitInProgressError(NcmDashboardError):
    """A commit for the current edit session is still running."""
