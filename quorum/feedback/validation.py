"""Field-level checks for inbound feedback.

Fields are checked in a fixed order and the first violation is returned,
naming the offending field. Anything the ordered checks do not cover is
left to the FeedbackEntry model.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from quorum.results import failure, from_validation_error, success
from quorum.schemas.feedback import ExpertiseLevel, FeedbackEntry
from quorum.schemas.result import ErrorCode, Result

# Fields a caller may not change through update()
IMMUTABLE_FIELDS = ("id", "validation_id", "expert_id", "is_native_validator")


def _missing(field: str) -> Result:
    return failure(
        ErrorCode.MISSING_REQUIRED_FIELD,
        f"Missing required field: {field}",
        {"field": field},
    )


def _invalid(field: str, value: Any, expected: str) -> Result:
    return failure(
        ErrorCode.INVALID_DATA,
        f"Invalid value for {field}: expected {expected}",
        {"field": field, "value": value},
    )


def _in_range(value: Any, low: float, high: float) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return not math.isnan(value) and low <= value <= high


def check_fields(data: Mapping[str, Any]) -> Result:
    """Run the ordered field checks over raw feedback data.

    Returns:
        A successful Result (no payload) or the first violation.
    """
    expert_id = data.get("expert_id")
    if expert_id is None or (isinstance(expert_id, str) and not expert_id.strip()):
        return _missing("expert_id")
    if not isinstance(expert_id, str):
        return _invalid("expert_id", expert_id, "a string")

    for field in ("approved", "is_native_validator"):
        if data.get(field) is None:
            return _missing(field)
        if not isinstance(data[field], bool):
            return _invalid(field, data[field], "a boolean")

    level = data.get("expertise_level")
    if level is not None and level not in {lvl.value for lvl in ExpertiseLevel}:
        return _invalid(
            "expertise_level", level, "one of " + ", ".join(lvl.value for lvl in ExpertiseLevel),
        )

    score = data.get("score")
    if score is not None and not _in_range(score, 0, 10):
        return _invalid("score", score, "a number between 0 and 10")

    confidence = data.get("confidence")
    if confidence is not None and not _in_range(confidence, 0, 1):
        return _invalid("confidence", confidence, "a number between 0 and 1")

    return success()


def as_mapping(entry: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    """Normalize a model or mapping into a plain dict for checking."""
    if isinstance(entry, BaseModel):
        return entry.model_dump()
    return dict(entry)


def build_entry(validation_id: str, data: Mapping[str, Any]) -> Result:
    """Check *data* and build a FeedbackEntry bound to *validation_id*.

    The id and timestamp are always generated here; caller-supplied
    values for them are ignored.
    """
    checked = check_fields(data)
    if not checked.success:
        return checked
    fields = {k: v for k, v in data.items() if k not in ("id", "validation_id", "timestamp")}
    try:
        entry = FeedbackEntry(validation_id=validation_id, **fields)
    except ValidationError as e:
        return from_validation_error(e)
    return success(entry)


def apply_patch(entry: FeedbackEntry, patch: Mapping[str, Any]) -> Result:
    """Merge *patch* into *entry*, keeping identity fields, and re-validate.

    Returns:
        Result carrying the replacement FeedbackEntry with a fresh timestamp.
    """
    merged = entry.model_dump(exclude={"timestamp"})
    merged.update({k: v for k, v in patch.items() if k not in (*IMMUTABLE_FIELDS, "timestamp")})
    checked = check_fields(merged)
    if not checked.success:
        return checked
    try:
        updated = FeedbackEntry(**merged)
    except ValidationError as e:
        return from_validation_error(e)
    return success(updated)
