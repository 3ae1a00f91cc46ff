"""Bookmark record schema: field catalogue, validation and display defaults."""
import math
import time as _time
from typing import Any, Dict, List, Optional

from video_bookmarks.errors import ValidationError


# Record field -> database column
FIELD_COLUMNS: Dict[str, str] = {
    "subjectId": "subject_id",
    "subjectTitle": "subject_title",
    "time": "time",
    "timeLabel": "time_label",
    "note": "note",
    "subtitle": "subtitle",
    "tags": "tags",
    "color": "color",
    "addedAt": "added_at",
    "imageData": "image_data",
}

IMMUTABLE_FIELDS = ("id", "addedAt", "imageData")

DEFAULT_COLOR = "#ffd54f"
DEFAULT_CAPTURE_COLOR = "yellow"

# Keys written by the original browser extension export
LEGACY_KEYS = {
    "videoId": "subjectId",
    "videoTitle": "subjectTitle",
    "title": "subjectTitle",
}


def validate_tags(tags: Any) -> None:
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise ValidationError("'tags' must be a list of strings")


def validate_new_record(record: Any) -> None:
    """Check that a record may enter the store.

    Only ``subjectId`` is mandatory. No defaults are filled in here.

    Raises:
        ValidationError: If the record is not a dict or lacks a non-empty subjectId,
            or carries tags that are not a list of strings
    """
    if not isinstance(record, dict):
        raise ValidationError(f"Bookmark must be an object, got {type(record).__name__}")

    subject_id = record.get("subjectId")
    if not isinstance(subject_id, str) or not subject_id.strip():
        raise ValidationError("Bookmark requires a non-empty 'subjectId'")

    if record.get("tags") is not None:
        validate_tags(record["tags"])


def validate_patch(patch: Any) -> None:
    """Check that a partial update only touches mutable fields.

    Raises:
        ValidationError: If the patch is not a dict, changes an immutable
            field or blanks out subjectId, or if tags is not a list of strings
    """
    if not isinstance(patch, dict):
        raise ValidationError(f"Patch must be an object, got {type(patch).__name__}")

    touched = [name for name in IMMUTABLE_FIELDS if name in patch]
    if touched:
        raise ValidationError(f"Cannot change immutable field(s): {', '.join(touched)}")

    if "subjectId" in patch:
        subject_id = patch["subjectId"]
        if not isinstance(subject_id, str) or not subject_id.strip():
            raise ValidationError("'subjectId' cannot be set to an empty value")

    if patch.get("tags") is not None:
        validate_tags(patch["tags"])


def normalize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Map keys used by older exports onto the current field names.

    Returns a new dict; the current key wins when both are present.
    """
    normalized = dict(record)
    for legacy, current in LEGACY_KEYS.items():
        if legacy in normalized:
            value = normalized.pop(legacy)
            normalized.setdefault(current, value)
    return normalized


def now_ms() -> int:
    return int(_time.time() * 1000)


def format_time(seconds: Any) -> str:
    """Render a position in seconds as ``m:ss``."""
    try:
        total = float(seconds or 0)
    except (TypeError, ValueError):
        total = 0.0
    if math.isnan(total) or total < 0:
        total = 0.0
    minutes = int(total // 60)
    secs = int(total % 60)
    return f"{minutes}:{secs:02d}"


def time_label(record: Dict[str, Any]) -> str:
    return record.get("timeLabel") or format_time(record.get("time") or 0)


def default_subject_title(subject_id: Any) -> str:
    return f"Video {subject_id}"


def subject_title(record: Dict[str, Any]) -> str:
    return record.get("subjectTitle") or default_subject_title(record.get("subjectId"))


def display_color(record: Dict[str, Any]) -> str:
    return record.get("color") or DEFAULT_COLOR


def new_bookmark(
    subject_id: str,
    time: int,
    subject_title: Optional[str] = None,
    note: str = "",
    subtitle: str = "",
    color: str = DEFAULT_CAPTURE_COLOR,
    tags: Optional[List[str]] = None,
    image_data: Optional[str] = None,
    added_at: Optional[int] = None,
) -> Dict[str, Any]:
    """Build a record the way the capture side does.

    Args:
        subject_id: Video identifier
        time: Position in seconds
        subject_title: Video title, left absent when unknown
        note: Free-text note
        subtitle: Transcript text visible at ``time``
        color: Marker color token
        tags: Optional tag list
        image_data: Optional screenshot as a data URI
        added_at: Creation time in epoch milliseconds (defaults to now)

    Returns:
        Record dict without an ``id``
    """
    record: Dict[str, Any] = {
        "subjectId": subject_id,
        "time": time,
        "timeLabel": format_time(time),
        "note": note,
        "subtitle": subtitle,
        "color": color,
        "addedAt": added_at if added_at is not None else now_ms(),
    }
    if subject_title:
        record["subjectTitle"] = subject_title
    if tags is not None:
        record["tags"] = list(tags)
    if image_data:
        record["imageData"] = image_data

    validate_new_record(record)
    return record
