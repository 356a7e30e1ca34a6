"""Grid abstraction over the spreadsheet that hosts a synced sheet.

:class:`GridHost` is the narrow surface the synchroniser needs: cell values,
notes, backgrounds, borders, bold text, list validation, conditional
formatting rules and column widths.  Row and column indices are zero based;
row ``0`` is the header row.

Two implementations are provided.  :class:`MemoryGrid` keeps everything in
Python structures and is used by the tests and for dry runs.
:class:`SheetsGrid` talks to the Google Sheets API through
``googleapiclient`` and groups formatting requests into a single
``spreadsheets.batchUpdate`` call inside :meth:`GridHost.batch`.
"""
from __future__ import annotations

import contextlib
import copy
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from pipesync.errors import ConfigurationError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
MAX_RETRY_ATTEMPTS = 5
BACKOFF_SCHEDULE = (1, 2, 4, 8, 16)
MAX_BATCH_ROWS = 500

Cell = Tuple[int, int]


# ---------------------------------------------------------------------------
# General helpers
# ---------------------------------------------------------------------------


def column_letter(index: int) -> str:
    """Return the A1 column letter of a zero based column index."""

    if index < 0:
        raise ValueError("Column index must be >= 0")
    index += 1
    label = ""
    while index:
        index, remainder = divmod(index - 1, 26)
        label = chr(65 + remainder) + label
    return label


def column_index(letter: str) -> int:
    """Return the zero based index of an A1 column letter."""

    text = (letter or "").strip().upper()
    if not text or not text.isalpha() or not text.isascii():
        raise ValueError(f"Invalid column letter: {letter!r}")
    index = 0
    for char in text:
        index = index * 26 + (ord(char) - 64)
    return index - 1


@dataclass(frozen=True)
class ConditionalRule:
    """A ``text equals`` conditional format applied to one column."""

    column: int
    text: str
    background: Optional[str] = None
    font_color: Optional[str] = None
    bold: bool = False
    start_row: int = 1
    end_row: Optional[int] = None
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)


def _normalise_color(color: Optional[str]) -> Optional[str]:
    return color.upper() if color else None


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class GridHost(ABC):
    """Spreadsheet operations used by the writer, tracker, detector and engine."""

    title: str

    @abstractmethod
    def read_values(self) -> List[List[Any]]:
        """Return the used range as a rectangular list of rows."""

    @abstractmethod
    def write_values(self, values: Sequence[Sequence[Any]]) -> None:
        """Write ``values`` starting at the top-left cell."""

    @abstractmethod
    def write_block(self, start_row: int, start_column: int, values: Sequence[Sequence[Any]]) -> None:
        """Write a rectangular block of ``values`` anchored at a cell."""

    @abstractmethod
    def clear(self) -> None:
        """Remove values, formats, notes, validation and conditional rules."""

    @abstractmethod
    def set_value(self, row: int, column: int, value: Any) -> None: ...

    @abstractmethod
    def get_note(self, row: int, column: int) -> Optional[str]: ...

    @abstractmethod
    def set_note(self, row: int, column: int, note: Optional[str]) -> None: ...

    @abstractmethod
    def get_background(self, row: int, column: int) -> Optional[str]: ...

    @abstractmethod
    def set_background(self, column: int, start_row: int, end_row: Optional[int], color: Optional[str]) -> None: ...

    @abstractmethod
    def get_border(self, row: int, column: int) -> Optional[str]: ...

    @abstractmethod
    def set_border(self, column: int, start_row: int, end_row: Optional[int], color: Optional[str]) -> None: ...

    @abstractmethod
    def is_bold(self, row: int, column: int) -> bool: ...

    @abstractmethod
    def set_bold(self, row: int, column: int, bold: bool) -> None: ...

    @abstractmethod
    def get_validation(self, row: int, column: int) -> Optional[Tuple[str, ...]]: ...

    @abstractmethod
    def set_validation(
        self,
        column: int,
        start_row: int,
        end_row: Optional[int],
        values: Optional[Sequence[str]],
    ) -> None: ...

    @abstractmethod
    def get_conditional_rules(self) -> List[ConditionalRule]: ...

    @abstractmethod
    def set_conditional_rules(self, rules: Sequence[ConditionalRule]) -> None: ...

    @abstractmethod
    def set_column_width(self, column: int, width: int) -> None: ...

    def get_value(self, row: int, column: int) -> Any:
        values = self.read_values()
        if row < len(values) and column < len(values[row]):
            return values[row][column]
        return ""

    def row_count(self) -> int:
        return len(self.read_values())

    def column_count(self) -> int:
        values = self.read_values()
        return max((len(row) for row in values), default=0)

    @contextlib.contextmanager
    def batch(self) -> Iterator["GridHost"]:
        """Group formatting calls; the default implementation applies them immediately."""

        yield self


# ---------------------------------------------------------------------------
# In-memory grid
# ---------------------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


class MemoryGrid(GridHost):
    """Grid kept entirely in memory."""

    def __init__(self, values: Optional[Sequence[Sequence[Any]]] = None, title: str = "Sheet1") -> None:
        self.title = title
        self._values: List[List[Any]] = [list(row) for row in values or []]
        self._notes: Dict[Cell, str] = {}
        self._backgrounds: Dict[Cell, str] = {}
        self._borders: Dict[Cell, str] = {}
        self._bold: Set[Cell] = set()
        self._validation: Dict[Cell, Tuple[str, ...]] = {}
        self._rules: List[ConditionalRule] = []
        self._widths: Dict[int, int] = {}

    # values -----------------------------------------------------------
    def read_values(self) -> List[List[Any]]:
        rows = [list(row) for row in self._values]
        while rows and all(_is_empty(cell) for cell in rows[-1]):
            rows.pop()
        width = 0
        for row in rows:
            for index in range(len(row) - 1, -1, -1):
                if not _is_empty(row[index]):
                    width = max(width, index + 1)
                    break
        return [(row + [""] * width)[:width] for row in rows]

    def write_values(self, values: Sequence[Sequence[Any]]) -> None:
        self.write_block(0, 0, values)

    def write_block(self, start_row: int, start_column: int, values: Sequence[Sequence[Any]]) -> None:
        for row_offset, row in enumerate(values):
            for column_offset, value in enumerate(row):
                self.set_value(start_row + row_offset, start_column + column_offset, "" if value is None else value)

    def clear(self) -> None:
        self._values = []
        self._notes.clear()
        self._backgrounds.clear()
        self._borders.clear()
        self._bold.clear()
        self._validation.clear()
        self._rules = []

    def get_value(self, row: int, column: int) -> Any:
        if row < len(self._values) and column < len(self._values[row]):
            return self._values[row][column]
        return ""

    def set_value(self, row: int, column: int, value: Any) -> None:
        while len(self._values) <= row:
            self._values.append([])
        target = self._values[row]
        while len(target) <= column:
            target.append("")
        target[column] = value

    def _rows(self, start_row: int, end_row: Optional[int]) -> range:
        if end_row is None:
            end_row = max(len(self._values), start_row + 1)
        return range(start_row, end_row)

    # formatting -------------------------------------------------------
    def get_note(self, row: int, column: int) -> Optional[str]:
        return self._notes.get((row, column))

    def set_note(self, row: int, column: int, note: Optional[str]) -> None:
        if note:
            self._notes[(row, column)] = note
        else:
            self._notes.pop((row, column), None)

    def get_background(self, row: int, column: int) -> Optional[str]:
        return self._backgrounds.get((row, column))

    def set_background(self, column: int, start_row: int, end_row: Optional[int], color: Optional[str]) -> None:
        for row in self._rows(start_row, end_row):
            if color:
                self._backgrounds[(row, column)] = _normalise_color(color)
            else:
                self._backgrounds.pop((row, column), None)

    def get_border(self, row: int, column: int) -> Optional[str]:
        return self._borders.get((row, column))

    def set_border(self, column: int, start_row: int, end_row: Optional[int], color: Optional[str]) -> None:
        for row in self._rows(start_row, end_row):
            if color:
                self._borders[(row, column)] = _normalise_color(color)
            else:
                self._borders.pop((row, column), None)

    def is_bold(self, row: int, column: int) -> bool:
        return (row, column) in self._bold

    def set_bold(self, row: int, column: int, bold: bool) -> None:
        if bold:
            self._bold.add((row, column))
        else:
            self._bold.discard((row, column))

    def get_validation(self, row: int, column: int) -> Optional[Tuple[str, ...]]:
        return self._validation.get((row, column))

    def set_validation(
        self,
        column: int,
        start_row: int,
        end_row: Optional[int],
        values: Optional[Sequence[str]],
    ) -> None:
        for row in self._rows(start_row, end_row):
            if values:
                self._validation[(row, column)] = tuple(values)
            else:
                self._validation.pop((row, column), None)

    def get_conditional_rules(self) -> List[ConditionalRule]:
        return list(self._rules)

    def set_conditional_rules(self, rules: Sequence[ConditionalRule]) -> None:
        self._rules = list(rules)

    def set_column_width(self, column: int, width: int) -> None:
        self._widths[column] = width

    def column_width(self, column: int) -> Optional[int]:
        return self._widths.get(column)

    # structural edits -------------------------------------------------
    def _shift(self, predicate: Callable[[int], bool], delta: int, removed: Optional[int] = None) -> None:
        def move(cells: Dict[Cell, Any]) -> Dict[Cell, Any]:
            moved: Dict[Cell, Any] = {}
            for (row, column), value in cells.items():
                if column == removed:
                    continue
                moved[(row, column + delta if predicate(column) else column)] = value
            return moved

        self._notes = move(self._notes)
        self._backgrounds = move(self._backgrounds)
        self._borders = move(self._borders)
        self._validation = move(self._validation)
        self._bold = set(move({cell: True for cell in self._bold}))
        self._widths = {
            (column + delta if predicate(column) else column): width
            for column, width in self._widths.items()
            if column != removed
        }
        self._rules = [
            replace(rule, column=rule.column + delta) if predicate(rule.column) else rule
            for rule in self._rules
            if rule.column != removed
        ]

    def insert_column(self, index: int) -> None:
        """Insert an empty column before ``index``, shifting cells right."""

        for row in self._values:
            if len(row) > index:
                row.insert(index, "")
        self._shift(lambda column: column >= index, 1)

    def delete_column(self, index: int) -> None:
        """Delete column ``index`` with its formatting, shifting cells left."""

        for row in self._values:
            if len(row) > index:
                del row[index]
        self._shift(lambda column: column > index, -1, removed=index)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(
            {
                "values": self.read_values(),
                "notes": self._notes,
                "backgrounds": self._backgrounds,
                "borders": self._borders,
                "bold": sorted(self._bold),
                "validation": self._validation,
                "rules": self._rules,
                "widths": self._widths,
            }
        )


# ---------------------------------------------------------------------------
# Google Sheets grid
# ---------------------------------------------------------------------------


_SIMPLE_TITLE_RE = re.compile(r"^[A-Za-z0-9_]+$")
_REQUIRED_CREDENTIAL_FIELDS = ("type", "private_key", "client_email", "token_uri")


def _quote_title(title: str) -> str:
    """Return a worksheet title safely formatted for A1 notation."""

    normalised = (title or "").strip()
    if not normalised:
        return "''"
    if _SIMPLE_TITLE_RE.fullmatch(normalised):
        return normalised
    escaped = normalised.replace("'", "''")
    return f"'{escaped}'"


def _a1_range(title: str, range_spec: str) -> str:
    return f"{_quote_title(title)}!{range_spec}"


def _http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None) or getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status or 0)
    except (TypeError, ValueError):
        return 0


def _call_with_retry(func: Callable[[], Any], description: str) -> Any:
    """Execute ``func`` applying exponential backoff for retriable errors."""

    attempt = 0
    while True:
        try:
            return func()
        except HttpError as exc:  # pragma: no cover - network interaction
            status = _http_status(exc)
            if status not in {429, 500, 502, 503, 504} or attempt >= MAX_RETRY_ATTEMPTS - 1:
                raise
            delay = BACKOFF_SCHEDULE[min(attempt, len(BACKOFF_SCHEDULE) - 1)]
            attempt += 1
            logger.warning(
                "Sheets API %s error (%s). Retrying in %ss (%d/%d)",
                description,
                status,
                delay,
                attempt,
                MAX_RETRY_ATTEMPTS,
            )
            time.sleep(delay)


def _hex_to_color(color: str) -> Dict[str, float]:
    text = color.lstrip("#")
    red, green, blue = (int(text[index:index + 2], 16) for index in (0, 2, 4))
    return {"red": red / 255, "green": green / 255, "blue": blue / 255}


def _color_to_hex(color: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not color:
        return None
    channels = [round(float(color.get(name, 0)) * 255) for name in ("red", "green", "blue")]
    if channels == [255, 255, 255]:
        return None
    return "#" + "".join(f"{channel:02X}" for channel in channels)


def load_service_account(path: str) -> Dict[str, Any]:
    """Read and minimally validate a service account key file."""

    target = Path(path).expanduser()
    if not target.exists():
        raise ConfigurationError(f"Credentials file not found: {target}")
    try:
        with target.open("r", encoding="utf-8-sig") as handle:
            payload = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Credentials file could not be read: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError("Credentials file must contain a JSON object")
    missing = [name for name in _REQUIRED_CREDENTIAL_FIELDS if not payload.get(name)]
    if missing or payload.get("type") != "service_account":
        raise ConfigurationError(f"Credentials file is missing fields: {', '.join(missing) or 'type'}")
    payload["private_key"] = str(payload["private_key"]).replace("\\n", "\n")
    return payload


def build_sheets_service(credential_path: str):
    """Return an authenticated Sheets API client using a service account."""

    info = load_service_account(credential_path)
    credentials = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


class SheetsGrid(GridHost):
    """Grid backed by one worksheet of a Google spreadsheet."""

    def __init__(self, service, spreadsheet_id: str, title: str, *, sheet_id: Optional[int] = None) -> None:
        self.service = service
        self.spreadsheet_id = spreadsheet_id
        self.title = title
        self._sheet_id = sheet_id
        self._pending: Optional[List[Dict[str, Any]]] = None
        self._metadata: Optional[Dict[str, Any]] = None
        self._cells: Optional[Dict[Cell, Dict[str, Any]]] = None

    # plumbing ---------------------------------------------------------
    @property
    def sheet_id(self) -> int:
        if self._sheet_id is None:
            request = self.service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id, fields="sheets.properties"
            )
            metadata = _call_with_retry(request.execute, "spreadsheets.get")
            wanted = self.title.strip().lower()
            for sheet in metadata.get("sheets", []):
                props = sheet.get("properties", {})
                if str(props.get("title", "")).strip().lower() == wanted:
                    self._sheet_id = int(props.get("sheetId", 0))
                    break
            else:
                raise ConfigurationError(f"Worksheet {self.title!r} not found in spreadsheet")
        return self._sheet_id

    def _invalidate(self) -> None:
        self._metadata = None
        self._cells = None

    def _submit(self, requests: Sequence[Dict[str, Any]]) -> None:
        if not requests:
            return
        if self._pending is not None:
            self._pending.extend(requests)
            return
        request = self.service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id, body={"requests": list(requests)}
        )
        _call_with_retry(request.execute, "spreadsheets.batchUpdate")
        self._invalidate()

    @contextlib.contextmanager
    def batch(self) -> Iterator["GridHost"]:
        if self._pending is not None:
            yield self
            return
        self._pending = []
        try:
            yield self
        finally:
            pending, self._pending = self._pending, None
        self._submit(pending)

    def _range(self, column: int, start_row: int, end_row: Optional[int], width: int = 1) -> Dict[str, Any]:
        grid_range: Dict[str, Any] = {
            "sheetId": self.sheet_id,
            "startRowIndex": start_row,
            "startColumnIndex": column,
            "endColumnIndex": column + width,
        }
        if end_row is not None:
            grid_range["endRowIndex"] = end_row
        return grid_range

    def _load_metadata(self) -> Dict[str, Any]:
        if self._metadata is None:
            request = self.service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                ranges=[_quote_title(self.title)],
                includeGridData=True,
                fields=(
                    "sheets(properties(sheetId,title),conditionalFormats,"
                    "data(startRow,startColumn,rowData(values(note,dataValidation,"
                    "userEnteredFormat(backgroundColor,borders,textFormat)))))"
                ),
            )
            result = _call_with_retry(request.execute, "spreadsheets.get")
            sheets = result.get("sheets") or [{}]
            self._metadata = sheets[0]
        return self._metadata

    def _cell(self, row: int, column: int) -> Dict[str, Any]:
        if self._cells is None:
            cells: Dict[Cell, Dict[str, Any]] = {}
            for block in self._load_metadata().get("data", []):
                start_row = int(block.get("startRow", 0))
                start_column = int(block.get("startColumn", 0))
                for row_offset, row_data in enumerate(block.get("rowData", []) or []):
                    for column_offset, cell in enumerate(row_data.get("values", []) or []):
                        if cell:
                            cells[(start_row + row_offset, start_column + column_offset)] = cell
            self._cells = cells
        return self._cells.get((row, column), {})

    # values -----------------------------------------------------------
    def read_values(self) -> List[List[Any]]:
        request = self.service.spreadsheets().values().batchGet(
            spreadsheetId=self.spreadsheet_id,
            ranges=[_quote_title(self.title)],
            majorDimension="ROWS",
        )
        result = _call_with_retry(request.execute, "values.batchGet")
        value_ranges = result.get("valueRanges") or [{}]
        rows = [list(row) for row in value_ranges[0].get("values", [])]
        width = max((len(row) for row in rows), default=0)
        return [row + [""] * (width - len(row)) for row in rows]

    def write_values(self, values: Sequence[Sequence[Any]]) -> None:
        self.write_block(0, 0, values)

    def write_block(self, start_row: int, start_column: int, values: Sequence[Sequence[Any]]) -> None:
        rows = [["" if value is None else value for value in row] for row in values]
        column = column_letter(start_column)
        for offset in range(0, len(rows), MAX_BATCH_ROWS):
            chunk = rows[offset:offset + MAX_BATCH_ROWS]
            anchor = f"{column}{start_row + offset + 1}"
            request = self.service.spreadsheets().values().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={
                    "valueInputOption": "RAW",
                    "data": [{"range": _a1_range(self.title, anchor), "values": chunk}],
                },
            )
            _call_with_retry(request.execute, "values.batchUpdate")

    def clear(self) -> None:
        request = self.service.spreadsheets().values().clear(
            spreadsheetId=self.spreadsheet_id, range=_quote_title(self.title), body={}
        )
        _call_with_retry(request.execute, "values.clear")
        requests: List[Dict[str, Any]] = [
            {
                "updateCells": {
                    "range": {"sheetId": self.sheet_id},
                    "fields": "userEnteredFormat,note,dataValidation",
                }
            }
        ]
        rule_count = len(self._load_metadata().get("conditionalFormats", []) or [])
        requests.extend(
            {"deleteConditionalFormatRule": {"sheetId": self.sheet_id, "index": index}}
            for index in range(rule_count - 1, -1, -1)
        )
        # Applied immediately so later reads inside a batch see a clean sheet.
        request = self.service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id, body={"requests": requests}
        )
        _call_with_retry(request.execute, "spreadsheets.batchUpdate")
        self._invalidate()

    def set_value(self, row: int, column: int, value: Any) -> None:
        cell = f"{column_letter(column)}{row + 1}"
        request = self.service.spreadsheets().values().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={
                "valueInputOption": "RAW",
                "data": [{"range": _a1_range(self.title, cell), "values": [["" if value is None else value]]}],
            },
        )
        _call_with_retry(request.execute, "values.batchUpdate")

    # formatting -------------------------------------------------------
    def get_note(self, row: int, column: int) -> Optional[str]:
        return self._cell(row, column).get("note") or None

    def set_note(self, row: int, column: int, note: Optional[str]) -> None:
        self._submit(
            [
                {
                    "updateCells": {
                        "range": self._range(column, row, row + 1),
                        "rows": [{"values": [{"note": note} if note else {}]}],
                        "fields": "note",
                    }
                }
            ]
        )

    def get_background(self, row: int, column: int) -> Optional[str]:
        fmt = self._cell(row, column).get("userEnteredFormat", {})
        return _color_to_hex(fmt.get("backgroundColor"))

    def set_background(self, column: int, start_row: int, end_row: Optional[int], color: Optional[str]) -> None:
        cell: Dict[str, Any] = {}
        if color:
            cell = {"userEnteredFormat": {"backgroundColor": _hex_to_color(color)}}
        self._submit(
            [
                {
                    "repeatCell": {
                        "range": self._range(column, start_row, end_row),
                        "cell": cell,
                        "fields": "userEnteredFormat.backgroundColor",
                    }
                }
            ]
        )

    def get_border(self, row: int, column: int) -> Optional[str]:
        borders = self._cell(row, column).get("userEnteredFormat", {}).get("borders", {})
        left = borders.get("left") or {}
        if not left or left.get("style") in (None, "NONE"):
            return None
        return _color_to_hex(left.get("color")) or "#FFFFFF"

    def set_border(self, column: int, start_row: int, end_row: Optional[int], color: Optional[str]) -> None:
        if color:
            border = {"style": "SOLID", "color": _hex_to_color(color)}
        else:
            border = {"style": "NONE"}
        self._submit(
            [
                {
                    "updateBorders": {
                        "range": self._range(column, start_row, end_row),
                        "left": border,
                        "right": border,
                    }
                }
            ]
        )

    def is_bold(self, row: int, column: int) -> bool:
        text_format = self._cell(row, column).get("userEnteredFormat", {}).get("textFormat", {})
        return bool(text_format.get("bold"))

    def set_bold(self, row: int, column: int, bold: bool) -> None:
        self._submit(
            [
                {
                    "repeatCell": {
                        "range": self._range(column, row, row + 1),
                        "cell": {"userEnteredFormat": {"textFormat": {"bold": bold}}},
                        "fields": "userEnteredFormat.textFormat.bold",
                    }
                }
            ]
        )

    def get_validation(self, row: int, column: int) -> Optional[Tuple[str, ...]]:
        condition = self._cell(row, column).get("dataValidation", {}).get("condition", {})
        if condition.get("type") != "ONE_OF_LIST":
            return None
        return tuple(str(item.get("userEnteredValue", "")) for item in condition.get("values", []))

    def set_validation(
        self,
        column: int,
        start_row: int,
        end_row: Optional[int],
        values: Optional[Sequence[str]],
    ) -> None:
        request: Dict[str, Any] = {"range": self._range(column, start_row, end_row)}
        if values:
            request["rule"] = {
                "condition": {
                    "type": "ONE_OF_LIST",
                    "values": [{"userEnteredValue": value} for value in values],
                },
                "showCustomUi": True,
                "strict": True,
            }
        self._submit([{"setDataValidation": request}])

    def get_conditional_rules(self) -> List[ConditionalRule]:
        rules: List[ConditionalRule] = []
        for payload in self._load_metadata().get("conditionalFormats", []) or []:
            grid_range = (payload.get("ranges") or [{}])[0]
            start_column = int(grid_range.get("startColumnIndex", -1))
            end_column = grid_range.get("endColumnIndex")
            column = start_column if end_column is not None and int(end_column) - start_column == 1 else -1
            boolean = payload.get("booleanRule") or {}
            condition = boolean.get("condition") or {}
            text = ""
            if condition.get("type") == "TEXT_EQ" and condition.get("values"):
                text = str(condition["values"][0].get("userEnteredValue", ""))
            fmt = boolean.get("format") or {}
            text_format = fmt.get("textFormat") or {}
            end_row = grid_range.get("endRowIndex")
            rules.append(
                ConditionalRule(
                    column=column,
                    text=text,
                    background=_color_to_hex(fmt.get("backgroundColor")),
                    font_color=_color_to_hex(text_format.get("foregroundColor")),
                    bold=bool(text_format.get("bold")),
                    start_row=int(grid_range.get("startRowIndex", 0)),
                    end_row=int(end_row) if end_row is not None else None,
                    raw=payload,
                )
            )
        return rules

    def _rule_payload(self, rule: ConditionalRule) -> Dict[str, Any]:
        if rule.raw is not None:
            return rule.raw
        fmt: Dict[str, Any] = {}
        if rule.background:
            fmt["backgroundColor"] = _hex_to_color(rule.background)
        text_format: Dict[str, Any] = {}
        if rule.font_color:
            text_format["foregroundColor"] = _hex_to_color(rule.font_color)
        if rule.bold:
            text_format["bold"] = True
        if text_format:
            fmt["textFormat"] = text_format
        return {
            "ranges": [self._range(rule.column, rule.start_row, rule.end_row)],
            "booleanRule": {
                "condition": {"type": "TEXT_EQ", "values": [{"userEnteredValue": rule.text}]},
                "format": fmt,
            },
        }

    def set_conditional_rules(self, rules: Sequence[ConditionalRule]) -> None:
        existing = len(self._load_metadata().get("conditionalFormats", []) or [])
        requests: List[Dict[str, Any]] = [
            {"deleteConditionalFormatRule": {"sheetId": self.sheet_id, "index": index}}
            for index in range(existing - 1, -1, -1)
        ]
        requests.extend(
            {"addConditionalFormatRule": {"rule": self._rule_payload(rule), "index": index}}
            for index, rule in enumerate(rules)
        )
        self._submit(requests)
        if self._metadata is not None:
            # Keep later reads inside a batch consistent with the queued rules.
            self._metadata["conditionalFormats"] = [self._rule_payload(rule) for rule in rules]

    def set_column_width(self, column: int, width: int) -> None:
        self._submit(
            [
                {
                    "updateDimensionProperties": {
                        "range": {
                            "sheetId": self.sheet_id,
                            "dimension": "COLUMNS",
                            "startIndex": column,
                            "endIndex": column + 1,
                        },
                        "properties": {"pixelSize": width},
                        "fields": "pixelSize",
                    }
                }
            ]
        )


__all__ = [
    "ConditionalRule",
    "GridHost",
    "MemoryGrid",
    "SheetsGrid",
    "build_sheets_service",
    "column_index",
    "column_letter",
    "load_service_account",
]
