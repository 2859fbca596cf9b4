from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from .models import VISIT_STATUSES, VISIT_STATUS_NOT_VISITED, VISIT_STATUS_VISITED, SAMPLE_KINDS, SAMPLE_KIND_CUSTOMER
from .time_utils import WEEKDAYS


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def coerce_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for client input.

    Rejects booleans, floats, decimals and scientific notation; accepts ints
    and plain digit strings (with optional leading minus).
    """
    if value is None:
        raise ValidationError(f"{field} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def clean_report_date(value: Any, field: str = "date") -> str:
    """
    Require a zero-padded YYYY-MM-DD calendar date.

    "2026-1-5" parses with strptime but is refused: the stored string is the
    uniqueness key of a rep's daily report.
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")
    if parsed.strftime("%Y-%m-%d") != value:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")
    return value


def parse_json_list(value: Any, field: str) -> list:
    """
    Accept a list, a JSON-encoded list (multipart form fields), or None.
    """
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValidationError(f"{field} must be a JSON array")
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be an array")
    return value


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def clean_visits(raw: Any) -> list[dict]:
    """
    Normalize the visits array of a report submission.

    Rules:
    - at least one visit
    - customer_id is an integer
    - status is visited / not_visited
    - reason is required when not_visited
    - duration_minutes, when given, is a non-negative integer (kept for visited only)
    """
    visits = parse_json_list(raw, "visits")
    if not visits:
        raise ValidationError("visits must be a non-empty array")

    cleaned = []
    seen_customers: set[int] = set()
    for index, v in enumerate(visits):
        if not isinstance(v, dict):
            raise ValidationError(f"visits[{index}] must be an object")

        customer_id = coerce_int(v.get("customer_id"), f"visits[{index}].customer_id", minimum=1)
        if customer_id in seen_customers:
            raise ValidationError(f"visits[{index}]: customer {customer_id} listed twice")
        seen_customers.add(customer_id)

        status = v.get("status")
        if status not in VISIT_STATUSES:
            raise ValidationError(f"visits[{index}].status must be visited or not_visited")

        reason = _clean_text(v.get("reason"))
        if status == VISIT_STATUS_NOT_VISITED and not reason:
            raise ValidationError(f"visits[{index}].reason is required when not visited")

        duration = v.get("duration_minutes")
        if duration is not None:
            duration = coerce_int(duration, f"visits[{index}].duration_minutes", minimum=0)
        if status != VISIT_STATUS_VISITED:
            duration = None

        cleaned.append({
            "customer_id": customer_id,
            "status": status,
            "reason": reason,
            "notes": _clean_text(v.get("notes")),
            "duration_minutes": duration,
        })
    return cleaned


def clean_samples(raw: Any) -> list[dict]:
    """
    Normalize the desired sample list of a report submission.

    Each entry: optional id (existing sample), product_id, quantity >= 1,
    kind customer/personal, customer_id required iff kind == customer.
    """
    samples = parse_json_list(raw, "samples")
    cleaned = []
    seen_ids: set[int] = set()
    errors = []

    for index, s in enumerate(samples):
        if not isinstance(s, dict):
            errors.append({"index": index, "errors": ["must be an object"]})
            continue

        entry_errors = []
        entry: dict[str, Any] = {"index": index}

        try:
            entry["id"] = coerce_int(s["id"], "id", minimum=1) if s.get("id") is not None else None
        except ValidationError as e:
            entry_errors.append(str(e))
        else:
            if entry["id"] is not None:
                if entry["id"] in seen_ids:
                    entry_errors.append(f"sample {entry['id']} listed twice")
                seen_ids.add(entry["id"])

        for field, minimum in (("product_id", 1), ("quantity", 1)):
            try:
                entry[field] = coerce_int(s.get(field), field, minimum=minimum)
            except ValidationError as e:
                entry_errors.append(str(e))

        kind = s.get("kind")
        if kind not in SAMPLE_KINDS:
            entry_errors.append("kind must be customer or personal")
        entry["kind"] = kind

        entry["customer_id"] = None
        if kind == SAMPLE_KIND_CUSTOMER:
            try:
                entry["customer_id"] = coerce_int(s.get("customer_id"), "customer_id", minimum=1)
            except ValidationError as e:
                entry_errors.append(str(e))

        entry["notes"] = _clean_text(s.get("notes"))

        if entry_errors:
            errors.append({"index": index, "errors": entry_errors})
        else:
            cleaned.append(entry)

    if errors:
        raise ValidationError("Some samples are invalid", details={"invalid_samples": errors})
    return cleaned


def clean_id_list(raw: Any, field: str) -> list[int]:
    values = parse_json_list(raw, field)
    ids = []
    for index, value in enumerate(values):
        ids.append(coerce_int(value, f"{field}[{index}]", minimum=1))
    return list(dict.fromkeys(ids))


def clean_attachment_refs(raw: Any, field: str) -> list[str]:
    refs = parse_json_list(raw, field)
    cleaned = []
    for ref in refs:
        if not isinstance(ref, str) or not ref.strip():
            raise ValidationError(f"{field} must contain non-empty strings")
        cleaned.append(ref.strip())
    return list(dict.fromkeys(cleaned))


def clean_visit_plan_days(raw: Any) -> list[dict]:
    """
    Validate a weekly visit plan: weekday names only, each day at most once.
    """
    days = parse_json_list(raw, "days")
    cleaned = []
    seen: set[str] = set()
    for index, entry in enumerate(days):
        if not isinstance(entry, dict):
            raise ValidationError(f"days[{index}] must be an object")
        day = entry.get("day")
        if day not in WEEKDAYS:
            raise ValidationError(f"days[{index}].day must be a weekday name")
        if day in seen:
            raise ValidationError(f"days[{index}]: {day} appears more than once")
        seen.add(day)
        customer_ids = clean_id_list(entry.get("customer_ids"), f"days[{index}].customer_ids")
        cleaned.append({"day": day, "customer_ids": customer_ids})
    return cleaned
