"""
Request payload validation helpers shared by the service layer.

Every helper raises ``ValidationError`` with a field-level ``details``
dict so blueprints can return a structured 422 without extra work.
"""

from shopfloor.core.exceptions import ValidationError
from shopfloor.utils.helpers import parse_datetime


def require_fields(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) in (None, "", [])]
    if missing:
        raise ValidationError(
            f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required",
            details={f: "required" for f in missing},
        )


def int_field(data: dict, field: str, *, minimum: int | None = None, default=None):
    """Return ``data[field]`` as an int, enforcing ``minimum``."""
    value = data.get(field, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={field: "integer"})
    try:
        value = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", details={field: "integer"}) from exc
    if minimum is not None and value < minimum:
        raise ValidationError(
            f"{field} must be >= {minimum}", details={field: f"min {minimum}"},
        )
    return value


def quantity(value, field: str = "completed_quantity") -> int:
    """Validate a progress quantity: a non-negative integer."""
    if value is None:
        raise ValidationError(f"{field} is required", details={field: "required"})
    return int_field({field: value}, field, minimum=0)


def str_field(data: dict, field: str, *, max_length: int, default=None, required=False):
    value = data.get(field, default)
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    value = str(value).strip()
    if required and not value:
        raise ValidationError(f"{field} is required", details={field: "required"})
    if len(value) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters",
            details={field: f"max {max_length}"},
        )
    return value


def choice_field(data: dict, field: str, choices, *, default=None):
    value = data.get(field, default)
    if value is None:
        return None
    if value not in choices:
        raise ValidationError(
            f"Invalid {field}: {value}. Must be one of {sorted(choices)}",
            details={field: "invalid"},
        )
    return value


def datetime_field(data: dict, field: str, *, required=False):
    raw = data.get(field)
    if raw in (None, ""):
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    parsed = parse_datetime(raw)
    if parsed is None:
        raise ValidationError(
            f"{field} must be an ISO-8601 date", details={field: "invalid date"},
        )
    return parsed


def id_list_field(data: dict, field: str):
    """Return a list of int ids, or None if the field is absent."""
    if field not in data:
        return None
    raw = data.get(field) or []
    if not isinstance(raw, list):
        raise ValidationError(f"{field} must be a list of ids", details={field: "list"})
    ids = []
    for item in raw:
        if isinstance(item, bool):
            raise ValidationError(f"{field} must be a list of ids", details={field: "list"})
        try:
            ids.append(int(item))
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"{field} must be a list of ids", details={field: "list"},
            ) from exc
    return ids
