"""I/O helpers — load workbooks, persist pivot configs, write JSON artifacts."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Callable, Literal, cast
from zipfile import BadZipFile

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from smart_pivot.models import (
    PREVIEW_ROWS,
    PivotConfig,
    PivotResult,
    Record,
    Scalar,
    SheetInfo,
    WorkbookData,
)

CONFIG_FILE_NAME = "smart_pivot_config.json"
RESULT_FILE_NAME = "pivot_result.json"
CSV_SHEET_NAME = "Sheet1"

_EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")

# ── Loading ──────────────────────────────────────────────────────


def _read_csv(path: Path, delimiter: str | None) -> pd.DataFrame:
    last_exc: Exception | None = None
    sep = delimiter if delimiter else None
    engine: Literal["c", "python"] = "c" if delimiter else "python"
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            return pd.read_csv(
                path,
                sep=sep,
                engine=engine,
                encoding=encoding,
                encoding_errors="strict",
            )
        except (UnicodeDecodeError, pd.errors.ParserError) as exc:
            last_exc = exc
    raise ValueError(f"Could not read CSV {path} (decode or parse failed)") from last_exc


def _read_frames(path: Path, delimiter: str | None) -> dict[str, pd.DataFrame]:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return {CSV_SHEET_NAME: _read_csv(path, delimiter)}

    read_excel = cast(Callable[..., dict[str, pd.DataFrame]], getattr(pd, "read_excel"))
    if suffix in _EXCEL_SUFFIXES:
        try:
            return read_excel(path, sheet_name=None, engine="openpyxl")
        except (BadZipFile, InvalidFileException, KeyError, ValueError) as exc:
            raise ValueError(f"Could not read workbook {path}: {exc}") from exc

    if suffix == ".xls":
        try:
            return read_excel(path, sheet_name=None, engine="xlrd")
        except ImportError as exc:
            raise ValueError(
                "Unsupported .xls input unless 'xlrd' is installed. "
                "Either convert to .xlsx or add dependency: pip install xlrd"
            ) from exc

    raise ValueError(f"Unsupported file type: {suffix!r}. Use .csv, .xlsx, or .xls")


def to_scalar(value: Any) -> Scalar:
    """Normalise one spreadsheet cell to ``str | int | float | bool | None``."""
    if value is None or isinstance(value, (str, bool)):
        return value
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    item = getattr(value, "item", None)
    if callable(item):
        converted = item()
        if converted is not value:
            return to_scalar(converted)
    if isinstance(value, (int, float)):
        return value
    return str(value)


def _frame_records(df: pd.DataFrame) -> list[dict[str, Scalar]]:
    df = df.dropna(how="all")
    names = [str(c) for c in df.columns]
    return [
        {name: to_scalar(val) for name, val in zip(names, row_vals)}
        for row_vals in df.itertuples(index=False, name=None)
    ]


def load_workbook_data(path: Path, delimiter: str | None = None) -> WorkbookData:
    """Parse a CSV or Excel file into per-sheet row sets.

    Sheets left with no rows once blank rows are dropped are skipped.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    ValueError
        If the extension is not supported, or the file cannot be parsed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    frames = _read_frames(path, delimiter)

    sheets: list[SheetInfo] = []
    raw_sheets: dict[str, list[dict[str, Scalar]]] = {}
    for name, df in frames.items():
        records = _frame_records(df)
        if not records:
            continue
        sheet_name = str(name)
        raw_sheets[sheet_name] = records
        sheets.append(
            SheetInfo(name=sheet_name, row_count=len(records), preview=records[:PREVIEW_ROWS])
        )
    return WorkbookData(file_name=path.name, sheets=sheets, raw_sheets=raw_sheets)


def merge_sheets(workbook: WorkbookData, selected: Sequence[str] | None = None) -> list[Record]:
    """Concatenate the selected sheets' rows; no selection means every sheet."""
    names = list(selected) if selected else workbook.sheet_names
    rows: list[Record] = []
    for name in names:
        rows.extend(workbook.raw_sheets.get(name, []))
    return rows


# ── Pivot configs ────────────────────────────────────────────────


def save_config(path: Path, config: PivotConfig) -> Path:
    """Write *config* as ``{rows, columns, values}`` JSON and return the path."""
    return write_json(path, config.to_dict())


def load_config(path: Path) -> PivotConfig:
    """Read a saved pivot config.

    Raises
    ------
    ValueError
        If the file cannot be read, is not JSON, or fails validation.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read configuration {path}: {exc}") from exc
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid configuration file: {path} is not valid JSON") from exc
    return PivotConfig.from_dict(doc)


# ── Writing ──────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: Path, data: Any) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
        default=_json_default,
    ) + "\n"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    tmp_path.replace(path)
    return path


def write_result_json(out_dir: Path, result: PivotResult) -> Path:
    """Write ``pivot_result.json`` into *out_dir* and return the path."""
    return write_json(Path(out_dir) / RESULT_FILE_NAME, result.to_dict())
