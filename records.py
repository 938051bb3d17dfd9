import base64
import binascii
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple

from errors import InvalidFieldValue

# Integer columns are 32-bit signed, price is Numeric(12, 2)
INT_MIN = -(2 ** 31)
INT_MAX = 2 ** 31 - 1
PRICE_LIMIT = Decimal(10) ** 10

# ------------------------------------------------------------------------------------------------
# Helpers: parsing values (query strings arrive as text, JSON bodies as native types)
# ------------------------------------------------------------------------------------------------
def is_blank(x: Any) -> bool:
    return x is None or (isinstance(x, str) and x.strip() == "")


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    return None


def as_int(name: str, value: Any) -> int:
    out = _to_int(value)
    if out is None:
        raise InvalidFieldValue(name, "must be an integer")
    if not INT_MIN <= out <= INT_MAX:
        raise InvalidFieldValue(name, "is out of range")
    return out


def as_decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidFieldValue(name, "must be a number")
    try:
        out = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidFieldValue(name, "must be a number")
    if not out.is_finite():
        raise InvalidFieldValue(name, "must be a number")
    if abs(out) >= PRICE_LIMIT:
        raise InvalidFieldValue(name, "is out of range")
    return out


def as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    if v in ("1", "true", "t", "yes", "y", "on"):
        return True
    if v in ("0", "false", "f", "no", "n", "off"):
        return False
    raise InvalidFieldValue(name, "must be a boolean (true/false)")


def as_date(name: str, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        try:
            if len(s) <= 10:
                return date.fromisoformat(s)
            return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise InvalidFieldValue(name, "must be an ISO date (YYYY-MM-DD)")


def as_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidFieldValue(name, "must be a string")
    return value.strip()


def as_blob(name: str, value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise InvalidFieldValue(name, "must be a base64 string")
    try:
        return base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidFieldValue(name, "must be a base64 string")


# ------------------------------------------------------------------------------------------------
# Broken car fields: API name <-> column name, parser and capabilities
# ------------------------------------------------------------------------------------------------
@dataclass(frozen=True)
class Field:
    name: str
    column: str
    parse: Callable[[str, Any], Any]
    filterable: bool = False
    sortable: bool = False
    mutable: bool = False
    required: bool = False
    nullable: bool = True
    aliases: Tuple[str, ...] = ()


FIELDS: Tuple[Field, ...] = (
    Field("id", "id", as_int, sortable=True, nullable=False),
    Field("color", "color", as_str, filterable=True, sortable=True, mutable=True, required=True, nullable=False),
    Field("description", "description", as_str, filterable=True, sortable=True, mutable=True, required=True, nullable=False),
    Field("year", "year", as_int, filterable=True, sortable=True, mutable=True, required=True, nullable=False),
    Field("price", "price", as_decimal, filterable=True, sortable=True, mutable=True),
    Field("firstBrokenDate", "first_broken_date", as_date, filterable=True, sortable=True, mutable=True,
          aliases=("first_broken_date",)),
    Field("createdDate", "created_date", as_date, filterable=True, sortable=True),
    Field("bodyId", "body_id", as_int, filterable=True, sortable=True, mutable=True, required=True, nullable=False,
          aliases=("body_id",)),
    Field("modelId", "model_id", as_int, filterable=True, sortable=True, mutable=True, required=True, nullable=False,
          aliases=("model_id",)),
    Field("image", "image", as_str, mutable=True),
    Field("blob", "blob", as_blob, mutable=True),
    Field("isActive", "is_active", as_bool, filterable=True, sortable=True, mutable=True, nullable=False,
          aliases=("is_active",)),
    Field("bodyName", "body_name", as_str, filterable=True, sortable=True),
    Field("modelName", "model_name", as_str, filterable=True, sortable=True),
)

FIELDS_BY_NAME: Dict[str, Field] = {f.name: f for f in FIELDS}
FILTER_FIELDS = tuple(f.name for f in FIELDS if f.filterable)
SORT_FIELDS = frozenset(f.name for f in FIELDS if f.sortable)
MUTABLE_FIELDS = tuple(f.name for f in FIELDS if f.mutable)
REQUIRED_FIELDS = tuple(f.name for f in FIELDS if f.required)
# Fields that also accept <name>From / <name>To range filters
DATE_RANGE_FIELDS = ("firstBrokenDate", "createdDate")


def lookup(body: Dict[str, Any], field: Field) -> Tuple[bool, Optional[Any]]:
    """Return (present, value) for a field, checking the API name first, then aliases."""
    for key in (field.name,) + field.aliases:
        if key in body:
            return True, body[key]
    return False, None
