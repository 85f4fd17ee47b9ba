"""
Typed failures raised by the access core.
"""


class StudyAccessError(Exception):
    """Base exception for the study access API."""


class ValidationError(StudyAccessError):
    """Malformed request input, e.g. an out-of-range reporting period."""


class Forbidden(StudyAccessError):
    """Caller lacks the permission or the study/sample scope."""


class EmptyGrantSet(StudyAccessError):
    """A predicate was requested for a caller with no grants."""


class QueryError(StudyAccessError):
    """The store failed or timed out while running a statement."""


class InvalidGrant(StudyAccessError):
    """Identity claims are structurally malformed."""
