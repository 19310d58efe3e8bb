"""Rasterize a pivot result into a PNG snapshot."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Union

from PIL import Image, ImageDraw, ImageFont

from smart_pivot.models import Percentage, PivotResult

CANVAS_WIDTH_MIN = 1280
CANVAS_HEIGHT_MIN = 720
COL_WIDTH = 220
TITLE_HEIGHT = 96
TOP_MARGIN = 36
BOTTOM_MARGIN = 36
SIDE_MARGIN = 48
HEADER_HEIGHT = 56
ROW_HEIGHT = 40
TABLE_GAP = 24

DEFAULT_FILE_NAME = "pivot_analysis.png"

Font = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]


def format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Percentage):
        return str(value).strip()
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        return f"{value:,.2f}"
    if isinstance(value, int):
        return f"{value:,}"
    return str(value)


def _trim_text(text: str, *, max_width: float, draw: ImageDraw.ImageDraw, font: Font) -> str:
    if draw.textlength(text, font=font) <= max_width:
        return text
    trimmed = text
    while trimmed and draw.textlength(f"{trimmed}...", font=font) > max_width:
        trimmed = trimmed[:-1]
    return f"{trimmed}..." if trimmed else "..."


def _visible_grid(
    result: PivotResult, *, max_rows: int, max_cols: int
) -> tuple[list[str], list[list[str]]]:
    headers = [h.strip() for h in result.headers[:max_cols]]
    ncols = max(1, len(headers))
    if not headers:
        headers = [""]
    rows = [
        [format_cell(v) for v in row[:ncols]] + [""] * (ncols - len(row[:ncols]))
        for row in result.data[:max_rows]
    ]
    if not rows:
        rows = [["(no rows)"] + [""] * (ncols - 1)]
    return headers, rows


def render_pivot_png(
    result: PivotResult,
    output_path: Path,
    *,
    title: str | None = None,
    max_rows: int = 50,
    max_cols: int = 12,
) -> Path:
    """Draw the first *max_rows* x *max_cols* of *result* and save it as PNG."""
    headers, rows = _visible_grid(result, max_rows=max_rows, max_cols=max_cols)

    ncols = len(headers)
    table_width = COL_WIDTH * ncols
    canvas_width = max(CANVAS_WIDTH_MIN, table_width + SIDE_MARGIN * 2)
    table_height = HEADER_HEIGHT + ROW_HEIGHT * len(rows)
    canvas_height = max(
        CANVAS_HEIGHT_MIN,
        TOP_MARGIN + TITLE_HEIGHT + TABLE_GAP + table_height + BOTTOM_MARGIN,
    )

    fonts: dict[str, Font] = {
        "title": ImageFont.load_default(size=36),
        "subtitle": ImageFont.load_default(size=20),
        "header": ImageFont.load_default(size=18),
        "cell": ImageFont.load_default(size=17),
    }

    image = Image.new("RGB", (canvas_width, canvas_height), "#EDF3FA")
    draw = ImageDraw.Draw(image)

    title_top = TOP_MARGIN
    title_bottom = title_top + TITLE_HEIGHT
    draw.rounded_rectangle(
        (SIDE_MARGIN, title_top, canvas_width - SIDE_MARGIN, title_bottom),
        radius=16,
        fill="#1F4C7A",
        outline="#2A5E92",
        width=2,
    )
    draw.text(
        (SIDE_MARGIN + 24, title_top + 34),
        title or "Pivot Analysis",
        font=fonts["title"],
        fill="#F2F8FF",
        anchor="lm",
    )
    draw.text(
        (SIDE_MARGIN + 26, title_top + 72),
        f"{len(result.data)} rows x {len(result.headers)} columns",
        font=fonts["subtitle"],
        fill="#D5E4F4",
        anchor="lm",
    )

    table_top = title_bottom + TABLE_GAP
    table_left = SIDE_MARGIN
    table_right = table_left + table_width
    header_bottom = table_top + HEADER_HEIGHT

    draw.rounded_rectangle(
        (table_left, table_top, table_right, table_top + table_height),
        radius=12,
        fill="#FFFFFF",
        outline="#B7CBE0",
        width=2,
    )
    draw.rectangle((table_left, table_top, table_right, header_bottom), fill="#2D608F")

    for col_idx, header in enumerate(headers):
        x1 = table_left + (col_idx * COL_WIDTH)
        x2 = x1 + COL_WIDTH
        if col_idx > 0:
            draw.line((x1, table_top, x1, table_top + table_height), fill="#D7E3EF", width=1)
        header_text = _trim_text(
            header, max_width=COL_WIDTH - 20, draw=draw, font=fonts["header"]
        )
        draw.text(
            ((x1 + x2) // 2, table_top + (HEADER_HEIGHT // 2)),
            header_text,
            font=fonts["header"],
            fill="#F2F8FF",
            anchor="mm",
        )

    for row_idx, row in enumerate(rows):
        y1 = header_bottom + (row_idx * ROW_HEIGHT)
        y2 = y1 + ROW_HEIGHT
        if row_idx % 2 == 0:
            draw.rectangle((table_left, y1, table_right, y2), fill="#F8FBFF")
        draw.line((table_left, y2, table_right, y2), fill="#D7E3EF", width=1)

        for col_idx, value in enumerate(row):
            x1 = table_left + (col_idx * COL_WIDTH)
            text = _trim_text(value, max_width=COL_WIDTH - 20, draw=draw, font=fonts["cell"])
            draw.text(
                (x1 + 10, y1 + (ROW_HEIGHT // 2)),
                text,
                font=fonts["cell"],
                fill="#1C2F44",
                anchor="lm",
            )

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    image.save(output_path, format="PNG", optimize=False, compress_level=9)
    return output_path
