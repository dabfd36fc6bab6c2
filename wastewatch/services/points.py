"""Points awarded per waste classification label."""

from __future__ import annotations

import re
from enum import Enum


class Label(str, Enum):
    PLASTIC = "plastic"
    BIODEGRADABLE = "biodegradable"
    OTHER = "other"
    UNKNOWN = "unknown"


class UnknownLabelError(ValueError):
    """Label outside the closed classification set."""


POINTS: dict[Label, int] = {
    Label.PLASTIC: 10,
    Label.BIODEGRADABLE: 5,
    Label.OTHER: 0,
    Label.UNKNOWN: 0,
}

ANNOTATIONS: dict[Label, str] = {
    Label.PLASTIC: "♻️",
    Label.BIODEGRADABLE: "🌿",
    Label.OTHER: "",
    Label.UNKNOWN: "",
}

_WORD_RE = re.compile(r"[a-z]+")


def to_label(label: str | Label) -> Label:
    """Return the :class:`Label` for ``label`` (case-insensitive).

    Raises :class:`UnknownLabelError` for anything outside the closed set.
    """
    if isinstance(label, Label):
        return label
    try:
        return Label(str(label).strip().lower())
    except ValueError as exc:
        raise UnknownLabelError(f"unknown label: {label!r}") from exc


def points_for(label: str | Label) -> int:
    return POINTS[to_label(label)]


def annotation_for(label: str | Label) -> str:
    return ANNOTATIONS[to_label(label)]


def normalize_label(text: str | None) -> Label:
    """Map free classifier text onto the closed label set.

    Exactly one known label must be mentioned; anything else, including
    answers naming several labels, becomes ``unknown``.
    """
    if not text:
        return Label.UNKNOWN
    words = set(_WORD_RE.findall(text.lower()))
    found = {label for label in Label if label.value in words}
    if len(found) == 1:
        return found.pop()
    return Label.UNKNOWN


__all__ = [
    "Label",
    "UnknownLabelError",
    "POINTS",
    "ANNOTATIONS",
    "to_label",
    "points_for",
    "annotation_for",
    "normalize_label",
]
