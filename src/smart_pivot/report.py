"""Excel export — writes a pivot result to pivot_analysis.xlsx."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from openpyxl import Workbook
from openpyxl.cell.cell import Cell as SheetCell
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from smart_pivot.models import Percentage, PivotResult

# ── Style constants ──────────────────────────────────────────────

HEADER_FONT = Font(name="Calibri", bold=True, size=11, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
HEADER_ALIGN = Alignment(horizontal="center", vertical="center", wrap_text=True)
VALUE_FONT = Font(name="Calibri", size=11)
RIGHT_ALIGN = Alignment(horizontal="right")

DECIMAL_FMT = '#,##0.00'
INT_FMT = '#,##0'

DEFAULT_FILE_NAME = "pivot_analysis.xlsx"
DEFAULT_SHEET_NAME = "Pivot Analysis"

_AUTO_WIDTH_SAMPLE_ROWS = 300


# ── Helpers ──────────────────────────────────────────────────────


def _style_header(ws: Worksheet, ncols: int) -> None:
    for c in range(1, ncols + 1):
        cell = ws.cell(row=1, column=c)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGN


def _auto_width(ws: Worksheet) -> None:
    max_row = min(ws.max_row, _AUTO_WIDTH_SAMPLE_ROWS + 1)  # include header row
    for c_idx in range(1, ws.max_column + 1):
        letter = get_column_letter(c_idx)
        width = 0
        for row in ws.iter_rows(min_row=1, max_row=max_row, min_col=c_idx, max_col=c_idx):
            cell = row[0]
            width = max(width, len(str(cell.value or "")))
        width += 4
        ws.column_dimensions[letter].width = min(width, 40)


def _write_cell(ws: Worksheet, row: int, column: int, value: Any) -> SheetCell:
    if isinstance(value, Percentage):
        cell = ws.cell(row=row, column=column, value=str(value))
        cell.alignment = RIGHT_ALIGN
        return cell

    cell = ws.cell(row=row, column=column, value=value)
    if isinstance(value, str) and value.startswith("="):
        # Keep the text verbatim instead of letting openpyxl store a formula.
        cell.data_type = "s"
    elif isinstance(value, bool):
        pass
    elif isinstance(value, int):
        cell.number_format = INT_FMT
    elif isinstance(value, float):
        cell.number_format = DECIMAL_FMT
    return cell


# ── Public API ───────────────────────────────────────────────────


def write_pivot_workbook(
    out_dir: Path,
    result: PivotResult,
    *,
    file_name: str = DEFAULT_FILE_NAME,
    sheet_name: str = DEFAULT_SHEET_NAME,
) -> Path:
    """Write *result* as one sheet (headers in row 1, data below) and return the path."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    report_path = out_dir / file_name

    wb = Workbook()
    ws = wb.active
    if ws is None:
        ws = wb.create_sheet()
    ws.title = sheet_name

    if not result.headers:
        ws.cell(row=1, column=1, value="No data").font = VALUE_FONT
        ws.column_dimensions["A"].width = 18
    else:
        for c_idx, header in enumerate(result.headers, 1):
            _write_cell(ws, 1, c_idx, header)
        for r_idx, row_vals in enumerate(result.data, 2):
            for c_idx, val in enumerate(row_vals, 1):
                _write_cell(ws, r_idx, c_idx, val)
        _style_header(ws, len(result.headers))
        ws.freeze_panes = "A2"
        if result.data:
            ws.auto_filter.ref = ws.dimensions
        _auto_width(ws)

    tmp_path = out_dir / f"{Path(file_name).stem}.tmp.xlsx"
    wb.save(tmp_path)
    tmp_path.replace(report_path)
    return report_path
