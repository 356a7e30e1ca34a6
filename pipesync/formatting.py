"""Conversion of record values to cell values and back.

Pull side
    :func:`format_value` turns whatever the API returns for a field (option
    ids, contact arrays, money objects, addresses, booleans) into the text
    shown in the sheet.

Push side
    :func:`to_iso_date`, :func:`split_multi_value`, :func:`to_option_ids` and
    :func:`to_option_id` turn edited cells back into the representation the
    API accepts.  Coercion never fails the push: values that cannot be
    converted are sent as they are and the API decides.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import re
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from pipesync.errors import ValueCoercionError
from pipesync.field_catalog import OptionMap, is_date_like
from pipesync.value_path import root_key

logger = logging.getLogger(__name__)

YES = "Yes"
NO = "No"
LIST_SEPARATOR = ", "
ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SHEETS_EPOCH = _dt.date(1899, 12, 30)
DATE_INPUT_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d.%m.%Y",
    "%d-%m-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
)
_MONEY = re.compile(r"^\s*(-?[\d.,]+)\s*([A-Za-z]{3})?\s*$")

OptionResolver = Callable[[str], Optional[Any]]


# ---------------------------------------------------------------------------
# Pull side
# ---------------------------------------------------------------------------


def _label_for(options: Optional[Mapping[str, str]], value: Any) -> Optional[str]:
    if not options:
        return None
    return options.get(str(value).strip())


def _format_list(items: Sequence[Any], options: Optional[Mapping[str, str]]) -> Any:
    if not items:
        return ""
    if all(isinstance(item, Mapping) for item in items):
        if all("value" in item for item in items):
            for item in items:
                if item.get("primary"):
                    return _scalar_text(item.get("value"))
            return _scalar_text(items[0].get("value"))
        if all("label" in item for item in items):
            return LIST_SEPARATOR.join(str(item.get("label", "")) for item in items)
        if all("name" in item for item in items):
            return LIST_SEPARATOR.join(str(item.get("name", "")) for item in items)
        return json.dumps(list(items), sort_keys=True, default=str)
    labels = []
    for item in items:
        if isinstance(item, Mapping):
            labels.append(str(format_value(item, "", None)))
            continue
        label = _label_for(options, item)
        labels.append(label if label is not None else str(_scalar_text(item)))
    return LIST_SEPARATOR.join(labels)


def _format_mapping(value: Mapping[str, Any], options: Optional[Mapping[str, str]]) -> Any:
    if "value" in value and value.get("currency"):
        return f"{_scalar_text(value['value'])} {value['currency']}"
    if "value" in value and value.get("until"):
        return f"{_scalar_text(value['value'])} - {value['until']}"
    if value.get("formatted_address"):
        return value["formatted_address"]
    if "id" in value:
        label = _label_for(options, value["id"])
        if label is not None:
            return label
    for key in ("label", "name", "title"):
        if value.get(key) not in (None, ""):
            return value[key]
    if "value" in value:
        return _scalar_text(value["value"])
    if not value:
        return ""
    return json.dumps(dict(value), sort_keys=True, default=str)


def _scalar_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return YES if value else NO
    return value


def format_value(value: Any, path: str, option_map: Optional[OptionMap] = None) -> Any:
    """Return the cell representation of ``value`` read from field ``path``.

    Numbers and plain strings are returned untouched so the sheet keeps their
    type; structured values are flattened to text.
    """

    if value is None:
        return ""
    if isinstance(value, bool):
        return YES if value else NO

    key = root_key(path) if path else ""
    if key and is_date_like(key) and isinstance(value, (str, int, float)):
        return value

    options = (option_map or {}).get(key) if key else None
    if isinstance(value, (list, tuple)):
        return _format_list(list(value), options)
    if isinstance(value, Mapping):
        return _format_mapping(value, options)

    if options:
        label = _label_for(options, value)
        if label is not None:
            return label
        if isinstance(value, str) and "," in value:
            parts = [part.strip() for part in value.split(",") if part.strip()]
            return LIST_SEPARATOR.join(_label_for(options, part) or part for part in parts)
    return value


# ---------------------------------------------------------------------------
# Push side
# ---------------------------------------------------------------------------


def parse_date(value: Any) -> str:
    """Return ``value`` as ``YYYY-MM-DD`` or raise :class:`ValueCoercionError`."""

    if isinstance(value, _dt.datetime):
        return value.date().isoformat()
    if isinstance(value, _dt.date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Spreadsheet serial date.
        return (SHEETS_EPOCH + _dt.timedelta(days=int(value))).isoformat()
    text = str(value).strip()
    if ISO_DATE.match(text):
        return text
    if not any(char.isdigit() for char in text):
        raise ValueCoercionError(f"Not a date: {text!r}")
    try:
        return _dt.datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    for pattern in DATE_INPUT_FORMATS:
        try:
            return _dt.datetime.strptime(text, pattern).date().isoformat()
        except ValueError:
            continue
    raise ValueCoercionError(f"Unrecognised date: {text!r}")


def to_iso_date(value: Any) -> Any:
    """Normalise a date cell to ``YYYY-MM-DD``, passing unparseable input through."""

    try:
        return parse_date(value)
    except ValueCoercionError as exc:
        logger.debug("Leaving date value as entered: %s", exc)
        return value


def split_multi_value(value: Any) -> List[Any]:
    """Split a multi-select cell into its items.

    Accepts lists, JSON array text and comma separated text.
    """

    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [item for item in value if item not in (None, "")]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return [value]
    text = str(value).strip()
    if not text:
        return []
    if text.startswith("[") and text.endswith("]"):
        try:
            parsed = json.loads(text)
        except ValueError:
            text = text[1:-1]
        else:
            if isinstance(parsed, list):
                return [item for item in parsed if item not in (None, "")]
    return [part.strip().strip("\"'") for part in text.split(",") if part.strip()]


def _as_number(text: str) -> Optional[Any]:
    try:
        number = float(text)
    except ValueError:
        return None
    if number.is_integer():
        return int(number)
    return number


def to_option_id(value: Any, resolve: OptionResolver) -> Any:
    """Map a single option label to its id; numbers stand for ids already."""

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value) if float(value).is_integer() else value
    label = str(value).strip()
    option_id = resolve(label)
    if option_id is not None:
        return option_id
    number = _as_number(label)
    if number is not None:
        return number
    logger.warning("Unknown option label %r; sending it unchanged", label)
    return label


def to_option_ids(values: Sequence[Any], resolve: OptionResolver) -> List[Any]:
    return [to_option_id(value, resolve) for value in values]


def to_boolean(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"yes", "true", "1"}:
        return True
    if text in {"no", "false", "0"}:
        return False
    return value


def to_number(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    text = str(value).strip().replace(",", "")
    number = _as_number(text)
    return value if number is None else number


def parse_money(value: Any) -> Tuple[Any, Optional[str]]:
    """Split ``"1500 EUR"`` into ``(1500, "EUR")``; the currency is optional."""

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value, None
    match = _MONEY.match(str(value))
    if not match:
        return value, None
    amount = to_number(match.group(1))
    currency = match.group(2).upper() if match.group(2) else None
    return amount, currency


__all__ = [
    "NO",
    "YES",
    "format_value",
    "parse_date",
    "parse_money",
    "split_multi_value",
    "to_boolean",
    "to_iso_date",
    "to_number",
    "to_option_id",
    "to_option_ids",
]
