# ======================================
# validation.py - booking field helpers
# ======================================
from errors import ValidationError

# also the CSV column order
BOOKING_FIELDS = ("firstName", "lastName", "phone", "email", "date", "time", "table")


def _is_blank(value):
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def missing_fields(record):
    """Return the required fields that are absent or blank in ``record``."""
    if not isinstance(record, dict):
        return list(BOOKING_FIELDS)
    return [name for name in BOOKING_FIELDS if _is_blank(record.get(name))]


def normalize_date(value):
    """Cut a datetime string such as ``2024-05-01T00:00:00Z`` down to its date."""
    return str(value).strip().split("T")[0]


def coerce_table(value):
    if isinstance(value, bool):
        raise ValidationError("table must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError("table must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("table must be an integer")


def clean_fields(payload):
    """Pick the known booking fields out of ``payload`` and normalize them.

    Unknown keys are dropped. Fields that are not present are left out so
    the result can be used for partial updates too.
    """
    fields = {}
    for name in BOOKING_FIELDS:
        if name not in payload:
            continue
        value = payload[name]
        if isinstance(value, str):
            value = value.strip()
        if name == "date" and not _is_blank(value):
            value = normalize_date(value)
        elif name == "table" and not _is_blank(value):
            value = coerce_table(value)
        fields[name] = value
    return fields


def slot_of(record):
    return record.get("date"), record.get("time"), record.get("table")
