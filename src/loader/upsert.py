# src/loader/upsert.py
import enum, logging

from loader.records import digits

log = logging.getLogger()


class Decision(enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


def folded(value):
    return ("" if value is None else str(value)).strip().casefold()


def digits_only(value):
    return digits(None if value is None else str(value))


# (warehouse column, record attribute, normalizer); mls and price_sq_feet are not compared
COMPARED_FIELDS = [
    ("class", "class_", folded),
    ("property_type", "property_type", folded),
    ("status", "status", folded),
    ("price", "price", digits_only),
    ("county", "county", folded),
    ("address", "address", folded),
    ("city", "city", folded),
    ("zip", "zip", folded),
    ("beds", "beds", folded),
    ("baths", "baths", folded),
    ("half_baths", "half_baths", folded),
    ("garage", "garage", folded),
    ("sq_feet", "sq_feet", folded),
    ("list_agent", "list_agent", folded),
    ("list_office", "list_office", folded),
]


def changed_fields(existing, record):
    return [
        column
        for column, attr, normalize in COMPARED_FIELDS
        if normalize(existing.get(column)) != normalize(getattr(record, attr))
    ]


def latest(rows):
    return max(rows, key=lambda r: str(r.get("last_updt_ts") or ""))


def decide(record, existing_rows):
    if not existing_rows:
        return Decision.INSERT
    if len(existing_rows) > 1:
        log.warning("MLS %s matched %d existing rows; comparing against the most recent", record.mls, len(existing_rows))
    diff = changed_fields(latest(existing_rows), record)
    if diff:
        log.debug("MLS %s changed: %s", record.mls, ", ".join(diff))
        return Decision.UPDATE
    return Decision.SKIP
