from typing import Any, Dict, Tuple

from errors import EmptyUpdate, InvalidFieldValue, InvalidIdentifier, MissingRequiredField
from records import FIELDS_BY_NAME, INT_MAX, MUTABLE_FIELDS, REQUIRED_FIELDS, is_blank, lookup


def build_delete_key(record_id: Any) -> int:
    """Validate a path identifier: a positive integer that fits the id column, or its digits."""
    if isinstance(record_id, bool):
        raise InvalidIdentifier(record_id)
    if isinstance(record_id, int):
        value = record_id
    elif isinstance(record_id, str) and record_id.strip().isdecimal():
        value = int(record_id.strip())
    else:
        raise InvalidIdentifier(record_id)
    if not 0 < value <= INT_MAX:
        raise InvalidIdentifier(record_id)
    return value


def build_create_payload(body: Dict[str, Any]) -> Dict[str, Any]:
    """Return column values for a new broken car.

    Required fields are checked in declaration order, so the first missing one is
    the one reported. Unknown keys are dropped.
    """
    if not isinstance(body, dict):
        raise InvalidFieldValue("body", "must be a JSON object")
    values: Dict[str, Any] = {}
    for name in REQUIRED_FIELDS:
        present, raw = lookup(body, FIELDS_BY_NAME[name])
        if not present or is_blank(raw):
            raise MissingRequiredField(name)
    for name in MUTABLE_FIELDS:
        spec = FIELDS_BY_NAME[name]
        present, raw = lookup(body, spec)
        if not present or raw is None:
            continue
        values[spec.column] = spec.parse(name, raw)
    values.setdefault("is_active", True)
    return values


def build_update_payload(record_id: Any, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    """Return (id, changes) holding only the fields present in ``body``.

    ``null`` clears an optional field; required fields cannot be cleared. ``id`` and
    ``createdDate`` are never part of the change set.
    """
    key = build_delete_key(record_id)
    if not isinstance(body, dict):
        raise InvalidFieldValue("body", "must be a JSON object")
    changes: Dict[str, Any] = {}
    for name in MUTABLE_FIELDS:
        spec = FIELDS_BY_NAME[name]
        present, raw = lookup(body, spec)
        if not present:
            continue
        if raw is None:
            if not spec.nullable:
                raise InvalidFieldValue(name, "cannot be null")
            changes[spec.column] = None
            continue
        value = spec.parse(name, raw)
        if spec.required and value == "":
            raise InvalidFieldValue(name, "cannot be empty")
        changes[spec.column] = value
    if not changes:
        raise EmptyUpdate()
    return key, changes
