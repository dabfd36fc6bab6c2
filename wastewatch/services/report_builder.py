from __future__ import annotations

from typing import TYPE_CHECKING

from wastewatch.models import Report, ReportStatus
from wastewatch.services.points import to_label

if TYPE_CHECKING:
    from wastewatch.services.classifier import ClassificationResult
    from wastewatch.services.submission import SubmissionRequest


DEFAULT_CATEGORY = "general"


class ReportValidationError(ValueError):
    """A required report field is missing."""

    def __init__(self, field: str):
        super().__init__(f"{field} is required")
        self.field = field


def _required(value: object, field: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ReportValidationError(field)


def build_report(
    request: SubmissionRequest,
    classification: ClassificationResult,
    points: int,
    image_ref: str | None,
    username: str,
) -> Report:
    """Build an unsaved :class:`Report` in ``pending`` status.

    Raises :class:`ReportValidationError` if the user reference, image
    reference, title or location is missing. The classification may be
    ``unknown``; that never blocks creation.
    """
    _required(request.user_id, "user_id")
    _required(image_ref, "image_ref")
    _required(request.title, "title")
    _required(request.location, "location")
    if points < 0:
        raise ValueError("points must be non-negative")

    label = to_label(classification.label)
    return Report(
        user_id=request.user_id,
        username=username,
        title=request.title.strip(),
        description=(request.description or "").strip(),
        location=request.location.strip(),
        category=(request.category or "").strip().lower() or DEFAULT_CATEGORY,
        image_ref=image_ref,
        label=label.value,
        annotation=classification.annotation,
        classifier_raw=classification.raw_text or None,
        points=points,
        status=ReportStatus.PENDING,
        votes=0,
    )


__all__ = ["DEFAULT_CATEGORY", "ReportValidationError", "build_report"]
