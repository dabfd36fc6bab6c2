"""Error taxonomy of the submission pipeline.

Only :class:`ValidationFailure` and :class:`StorageFailure` ever reach a
caller. Classifier problems degrade to an ``unknown`` classification and
ledger problems are retried or reconciled, so neither is raised out of
:meth:`wastewatch.services.submission.SubmissionService.submit`.
"""

from __future__ import annotations

from wastewatch.models import ErrorCode


class SubmissionError(Exception):
    """Base class for caller-visible submission failures."""

    code: ErrorCode = ErrorCode.BAD_REQUEST

    def __init__(self, message: str, *, code: ErrorCode | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationFailure(SubmissionError):
    """Missing or malformed input; nothing was persisted."""


class StorageFailure(SubmissionError):
    """Image or report write failed; nothing was partially persisted."""

    code = ErrorCode.STORAGE_FAILED


class LedgerError(RuntimeError):
    """Points total could not be updated."""


class ReportNotFound(LookupError):
    pass


class InvalidStatusTransition(ValueError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"cannot move report from {current} to {requested}")
        self.current = current
        self.requested = requested


__all__ = [
    "SubmissionError",
    "ValidationFailure",
    "StorageFailure",
    "LedgerError",
    "ReportNotFound",
    "InvalidStatusTransition",
]
