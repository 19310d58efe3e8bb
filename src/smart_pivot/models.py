"""Data models shared by the engine, the I/O layer and the CLI."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from numbers import Integral
from typing import Any, Union

import pandas as pd

from smart_pivot import AGGREGATORS

Scalar = Union[str, int, float, bool, None]
Record = Mapping[str, Scalar]
Cell = Union[int, float, str]

# Cap on preview records kept per sheet.
PREVIEW_ROWS = 5


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


def _to_string_list(values: Sequence[Any] | None, field_name: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise TypeError(f"{field_name} must be a sequence of strings")
    normalized: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise TypeError(f"{field_name} items must be strings")
        normalized.append(item)
    return normalized


def _check_aggregator(aggregator: Any) -> str:
    if not isinstance(aggregator, str):
        raise TypeError("aggregator must be a string")
    if aggregator not in AGGREGATORS:
        raise ValueError(
            f"Unknown aggregator: {aggregator!r}. Use {', '.join(AGGREGATORS)}."
        )
    return aggregator


def _move(items: list[Any], old_index: int, new_index: int) -> list[Any] | None:
    """Return a copy of *items* with one element moved, or ``None`` if out of range."""
    size = len(items)
    if not (0 <= old_index < size and 0 <= new_index < size) or old_index == new_index:
        return None
    moved = list(items)
    moved.insert(new_index, moved.pop(old_index))
    return moved


# ── Cells ────────────────────────────────────────────────────────


class Percentage(str):
    """Display string for a percent-of-grand-total cell (e.g. ``"12.34% "``).

    Compares equal to its display text; the unrounded percent-points are kept
    on :attr:`value` so exporters can tell these cells apart from plain text.
    """

    value: float

    def __new__(cls, text: str, value: float) -> Percentage:
        obj = super().__new__(cls, text)
        obj.value = value
        return obj

    def __reduce__(self) -> tuple[Any, ...]:
        return (Percentage, (str(self), self.value))


# ── Pivot configuration ──────────────────────────────────────────


@dataclass
class ValueSpec:
    """One aggregated value column: *field* reduced with *aggregator*."""

    field: str
    aggregator: str = "count"

    def __post_init__(self) -> None:
        if not isinstance(self.field, str):
            raise TypeError("field must be a string")
        self.aggregator = _check_aggregator(self.aggregator)

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "aggregator": self.aggregator}


def _to_value_specs(values: Sequence[Any] | None) -> list[ValueSpec]:
    if values is None:
        return []
    if isinstance(values, (str, Mapping)):
        raise TypeError("values must be a sequence of value specs")
    specs: list[ValueSpec] = []
    for item in values:
        if isinstance(item, ValueSpec):
            specs.append(item)
        elif isinstance(item, Mapping):
            if "field" not in item:
                raise ValueError("values items must have a 'field'")
            specs.append(ValueSpec(item["field"], item.get("aggregator", "count")))
        else:
            raise TypeError("values items must be value specs")
    return specs


@dataclass
class PivotConfig:
    """Declarative pivot layout.

    ``rows`` group output rows, ``columns`` split each row group further and
    ``values`` list the aggregations computed per cell. Editing helpers never
    touch ``self``; each returns a fresh config.
    """

    rows: list[str] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    values: list[ValueSpec] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.rows = _to_string_list(self.rows, "rows")
        self.columns = _to_string_list(self.columns, "columns")
        self.values = _to_value_specs(self.values)

    def _replace(self, **changes: Any) -> PivotConfig:
        payload: dict[str, Any] = {
            "rows": list(self.rows),
            "columns": list(self.columns),
            "values": [ValueSpec(v.field, v.aggregator) for v in self.values],
        }
        payload.update(changes)
        return PivotConfig(**payload)

    # ── Editing ──────────────────────────────────────────────────

    def toggle_row(self, name: str) -> PivotConfig:
        if name in self.rows:
            return self._replace(rows=[r for r in self.rows if r != name])
        return self._replace(rows=[*self.rows, name])

    def toggle_column(self, name: str) -> PivotConfig:
        if name in self.columns:
            return self._replace(columns=[c for c in self.columns if c != name])
        return self._replace(columns=[*self.columns, name])

    def add_row(self, name: str) -> PivotConfig:
        """Append *name* to rows unless it is already a row or column field."""
        if name in self.rows or name in self.columns:
            return self._replace()
        return self._replace(rows=[*self.rows, name])

    def add_column(self, name: str) -> PivotConfig:
        """Append *name* to columns unless it is already a row or column field."""
        if name in self.columns or name in self.rows:
            return self._replace()
        return self._replace(columns=[*self.columns, name])

    def add_value(self, name: str, aggregator: str = "count") -> PivotConfig:
        return self._replace(values=[*self.values, ValueSpec(name, aggregator)])

    def remove_value(self, index: int) -> PivotConfig:
        if not 0 <= index < len(self.values):
            return self._replace()
        return self._replace(values=[v for i, v in enumerate(self.values) if i != index])

    def set_aggregator(self, index: int, aggregator: str) -> PivotConfig:
        aggregator = _check_aggregator(aggregator)
        if not 0 <= index < len(self.values):
            return self._replace()
        values = list(self.values)
        values[index] = ValueSpec(values[index].field, aggregator)
        return self._replace(values=values)

    def move_row(self, old_index: int, new_index: int) -> PivotConfig:
        moved = _move(self.rows, old_index, new_index)
        return self._replace() if moved is None else self._replace(rows=moved)

    def move_column(self, old_index: int, new_index: int) -> PivotConfig:
        moved = _move(self.columns, old_index, new_index)
        return self._replace() if moved is None else self._replace(columns=moved)

    def move_value(self, old_index: int, new_index: int) -> PivotConfig:
        moved = _move(self.values, old_index, new_index)
        return self._replace() if moved is None else self._replace(values=moved)

    # ── Serialization ────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": list(self.rows),
            "columns": list(self.columns),
            "values": [v.to_dict() for v in self.values],
        }

    @classmethod
    def from_dict(cls, doc: Any) -> PivotConfig:
        """Build a config from a saved JSON document.

        Raises
        ------
        ValueError
            If *doc* is not an object, ``rows``/``values`` are not arrays,
            ``columns`` is present but not an array, or any value entry is
            malformed.
        """
        if not isinstance(doc, dict):
            raise ValueError("Invalid configuration file: expected a JSON object")
        rows = doc.get("rows")
        values = doc.get("values")
        columns = doc.get("columns", [])
        if not isinstance(rows, list) or not isinstance(values, list):
            raise ValueError("Invalid configuration file: 'rows' and 'values' must be arrays")
        if not isinstance(columns, list):
            raise ValueError("Invalid configuration file: 'columns' must be an array")
        for item in values:
            if not isinstance(item, dict) or not isinstance(item.get("field"), str):
                raise ValueError(
                    "Invalid configuration file: 'values' entries need a string 'field'"
                )
        try:
            return cls(rows=rows, columns=columns, values=values)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid configuration file: {exc}") from exc


# ── Pivot result ─────────────────────────────────────────────────


@dataclass
class PivotResult:
    """Headers plus a grid of cells, one header per grid column."""

    headers: list[str] = field(default_factory=list)
    data: list[list[Cell]] = field(default_factory=list)

    @property
    def width(self) -> int:
        return len(self.headers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "headers": list(self.headers),
            "data": [[str(c) if isinstance(c, Percentage) else c for c in row] for row in self.data],
        }

    def to_dataframe(self) -> pd.DataFrame:
        """Return the grid as a DataFrame; duplicate headers are kept as-is."""
        frame = pd.DataFrame(self.to_dict()["data"], columns=range(len(self.headers)))
        frame.columns = pd.Index(self.headers)
        return frame


# ── Ingested workbook ────────────────────────────────────────────


@dataclass
class SheetInfo:
    """Summary of one non-empty sheet offered for selection."""

    name: str
    row_count: int = 0
    preview: list[dict[str, Scalar]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.row_count = _to_non_negative_int(self.row_count, "row_count")


@dataclass
class WorkbookData:
    """A parsed workbook: per-sheet summaries plus the full row sets."""

    file_name: str
    sheets: list[SheetInfo] = field(default_factory=list)
    raw_sheets: dict[str, list[dict[str, Scalar]]] = field(default_factory=dict)

    @property
    def sheet_names(self) -> list[str]:
        return [s.name for s in self.sheets]


# ── Audit trail ──────────────────────────────────────────────────


@dataclass
class RunManifest:
    """Audit-trail manifest for a single pivot run."""

    tool: str = "smart-pivot"
    version: str = ""
    input_path: str = ""
    output_dir: str = ""
    created_at_utc: str = ""
    sheets: list[str] = field(default_factory=list)
    rows_in: int = 0
    result_rows: int = 0
    result_columns: int = 0
    sha256: str = ""
    status: str = "success"
    error_code: int | None = None
    error_message: str = ""

    def __post_init__(self) -> None:
        self.sheets = _to_string_list(self.sheets, "sheets")
        self.rows_in = _to_non_negative_int(self.rows_in, "rows_in")
        self.result_rows = _to_non_negative_int(self.result_rows, "result_rows")
        self.result_columns = _to_non_negative_int(self.result_columns, "result_columns")
        if self.error_code is not None:
            self.error_code = _to_non_negative_int(self.error_code, "error_code")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "version": self.version,
            "input_path": self.input_path,
            "output_dir": self.output_dir,
            "created_at_utc": self.created_at_utc,
            "sheets": list(self.sheets),
            "rows_in": self.rows_in,
            "result_rows": self.result_rows,
            "result_columns": self.result_columns,
            "sha256": self.sha256,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
