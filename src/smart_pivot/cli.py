"""CLI entry point for smart-pivot."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table as RichTable

from smart_pivot import __version__
from smart_pivot.engine import compute_pivot, get_fields
from smart_pivot.io import (
    load_config,
    load_workbook_data,
    merge_sheets,
    save_config,
    write_json,
    write_result_json,
)
from smart_pivot.models import PivotConfig, PivotResult, RunManifest, WorkbookData
from smart_pivot.render import DEFAULT_FILE_NAME as PNG_FILE_NAME
from smart_pivot.render import format_cell, render_pivot_png
from smart_pivot.report import write_pivot_workbook
from smart_pivot.utils import parse_value_option, sha256_file, utcnow_iso

app = typer.Typer(
    name="spivot",
    help="smart-pivot — Cross-tabulate spreadsheet rows into pivot tables.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {escape(msg)}")


# ── Helpers ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"smart-pivot v{__version__}")
        raise typer.Exit()


def _build_config(
    config_path: Path | None,
    rows: Sequence[str],
    columns: Sequence[str],
    values: Sequence[str],
) -> PivotConfig:
    """Start from the saved config (if any) and append the CLI layout options."""
    config = load_config(config_path) if config_path else PivotConfig()
    for name in rows:
        config = config.add_row(name)
    for name in columns:
        config = config.add_column(name)
    for raw in values:
        field_name, aggregator = parse_value_option(raw)
        config = config.add_value(field_name, aggregator)
    return config


def _resolve_sheets(workbook: WorkbookData, requested: Sequence[str]) -> list[str]:
    if not requested:
        return workbook.sheet_names
    unknown = [name for name in requested if name not in workbook.raw_sheets]
    if unknown:
        available = ", ".join(workbook.sheet_names) or "none"
        raise ValueError(f"Unknown sheet(s): {', '.join(unknown)} (available: {available})")
    return list(dict.fromkeys(requested))


def _unknown_fields(config: PivotConfig, fields: Sequence[str]) -> list[str]:
    referenced = [*config.rows, *config.columns, *(v.field for v in config.values)]
    known = set(fields)
    return [name for name in dict.fromkeys(referenced) if name not in known]


def _result_table(result: PivotResult, limit: int) -> RichTable:
    tbl = RichTable(title="Pivot Analysis", show_lines=False)
    for header in result.headers:
        tbl.add_column(escape(header.strip()))
    for row in result.data[:limit]:
        tbl.add_row(*(escape(format_cell(v)) for v in row))
    return tbl


def _write_manifest(
    out_dir: Path,
    input_file: Path,
    created_at: str,
    *,
    sheets: Sequence[str] = (),
    rows_in: int = 0,
    result: PivotResult | None = None,
    status: str = "success",
    error_code: int | None = None,
    error_message: str = "",
) -> Path:
    sha256 = ""
    try:
        sha256 = sha256_file(input_file)
    except OSError:
        pass

    manifest = RunManifest(
        version=__version__,
        input_path=str(input_file.resolve()),
        output_dir=str(out_dir.resolve()),
        created_at_utc=created_at,
        sheets=list(sheets),
        rows_in=rows_in,
        result_rows=len(result.data) if result else 0,
        result_columns=result.width if result else 0,
        sha256=sha256,
        status=status,
        error_code=error_code,
        error_message=error_message,
    )
    return write_json(out_dir / "run_manifest.json", manifest.to_dict())


def _fail(
    out_dir: Path,
    input_file: Path,
    created_at: str,
    *,
    message: str,
    sheets: Sequence[str] = (),
    rows_in: int = 0,
    error_code: int = 2,
) -> NoReturn:
    manifest_path = _write_manifest(
        out_dir,
        input_file,
        created_at,
        sheets=sheets,
        rows_in=rows_in,
        status="failed",
        error_code=error_code,
        error_message=message,
    )
    _err(message)
    console.print(f"  Manifest -> {manifest_path}")
    raise typer.Exit(code=error_code)


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """smart-pivot CLI."""


# ── sheets command ───────────────────────────────────────────────


@app.command()
def sheets(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to CSV or XLSX input file.",
        exists=True, readable=True,
    ),
) -> None:
    """List the non-empty sheets of a workbook with their row counts."""
    try:
        workbook = load_workbook_data(input_file)
    except (FileNotFoundError, ValueError, OSError) as exc:
        _err(str(exc))
        raise typer.Exit(code=2)

    if not workbook.sheets:
        _err(f"No sheets with data in {input_file.name}")
        raise typer.Exit(code=2)

    tbl = RichTable(title=escape(workbook.file_name), show_lines=True)
    tbl.add_column("Sheet", style="bold")
    tbl.add_column("Rows", justify="right")
    tbl.add_column("Fields")
    for info in workbook.sheets:
        fields = get_fields(info.preview)
        tbl.add_row(escape(info.name), f"{info.row_count:,}", escape(", ".join(fields)))
    console.print(tbl)


# ── fields command ───────────────────────────────────────────────


@app.command()
def fields(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to CSV or XLSX input file.",
        exists=True, readable=True,
    ),
    sheet: list[str] | None = typer.Option(
        None, "--sheet", "-s",
        help="Sheet to include (repeatable). Default: every non-empty sheet.",
    ),
) -> None:
    """Print the fields available for pivoting, one per line."""
    try:
        workbook = load_workbook_data(input_file)
        selected = _resolve_sheets(workbook, sheet or [])
    except (FileNotFoundError, ValueError, OSError) as exc:
        _err(str(exc))
        raise typer.Exit(code=2)

    for name in get_fields(merge_sheets(workbook, selected)):
        console.print(name, markup=False, highlight=False)


# ── pivot command ────────────────────────────────────────────────


@app.command()
def pivot(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to CSV or XLSX input file.",
        exists=True, readable=True,
    ),
    sheet: list[str] | None = typer.Option(
        None, "--sheet", "-s",
        help="Sheet to include (repeatable). Default: every non-empty sheet.",
    ),
    config_path: Path | None = typer.Option(
        None, "--config", "-c",
        help="Saved pivot config (JSON with rows, columns, values).",
    ),
    row: list[str] | None = typer.Option(
        None, "--row", "-r",
        help="Group rows by this field (repeatable, order = nesting).",
    ),
    column: list[str] | None = typer.Option(
        None, "--column", "-k",
        help="Split columns by this field (repeatable).",
    ),
    value: list[str] | None = typer.Option(
        None, "--value", "-v",
        help=(
            "Aggregate a field: field[:aggregator] with aggregator one of "
            "sum, count, average, min, max, percentage (default count)."
        ),
    ),
    save_config_path: Path | None = typer.Option(
        None, "--save-config",
        help="Write the effective pivot config to this JSON file.",
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for exports + manifest.",
    ),
    xlsx: bool = typer.Option(
        True, "--xlsx/--no-xlsx",
        help="Export pivot_analysis.xlsx.",
    ),
    png: bool = typer.Option(
        False, "--png",
        help="Export a PNG snapshot of the table.",
    ),
    as_json: bool = typer.Option(
        False, "--json",
        help="Export pivot_result.json.",
    ),
    limit: int = typer.Option(
        20, "--limit", "-n",
        min=1,
        help="Maximum rows shown in the console table.",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
) -> None:
    """Compute a pivot table from a spreadsheet and export it."""
    echo = _printer(quiet)
    created_at = utcnow_iso()
    out_dir.mkdir(parents=True, exist_ok=True)

    try:
        config = _build_config(config_path, row or [], column or [], value or [])
    except ValueError as exc:
        _fail(out_dir, input_file, created_at, message=str(exc))

    if not quiet:
        console.print(Panel(
            f"[bold]smart-pivot[/bold] v{__version__}\n"
            f"Input:  {escape(str(input_file))}\nOutput: {escape(str(out_dir))}",
            title="Pivot Start", border_style="blue",
        ))
        if config_path:
            console.print(f"  Using config: {escape(str(config_path))}")

    # ── Load ─────────────────────────────────────────────────────
    echo("[blue]>[/blue] Loading input file …")
    try:
        workbook = load_workbook_data(input_file)
        selected = _resolve_sheets(workbook, sheet or [])
    except (FileNotFoundError, ValueError, OSError) as exc:
        _fail(out_dir, input_file, created_at, message=str(exc))

    rows = merge_sheets(workbook, selected)
    echo(f"  {len(rows):,} rows from {len(selected)} sheet(s): {escape(', '.join(selected))}")

    try:
        if not rows:
            _fail(
                out_dir,
                input_file,
                created_at,
                message="Input has 0 rows; nothing to pivot.",
                sheets=selected,
            )

        if not quiet:
            for name in _unknown_fields(config, get_fields(rows)):
                console.print(
                    f"  [yellow]![/yellow] Field {escape(repr(name))} not in the first row; "
                    "treated as empty"
                )

        # ── Compute ──────────────────────────────────────────────
        echo("[blue]>[/blue] Computing pivot …")
        result = compute_pivot(rows, config)
        echo(f"  {len(result.data):,} rows x {result.width} columns")
        if not quiet and result.headers:
            console.print(_result_table(result, limit))
            if len(result.data) > limit:
                console.print(f"  … {len(result.data) - limit:,} more rows")

        # ── Export ───────────────────────────────────────────────
        try:
            if xlsx:
                report_path = write_pivot_workbook(out_dir, result)
                echo(f"  Workbook -> {report_path}")
            if png:
                png_path = render_pivot_png(result, out_dir / PNG_FILE_NAME)
                echo(f"  Image    -> {png_path}")
            if as_json:
                json_path = write_result_json(out_dir, result)
                echo(f"  JSON     -> {json_path}")
            if save_config_path:
                saved = save_config(save_config_path, config)
                echo(f"  Config   -> {saved}")
        except (OSError, ValueError) as exc:
            _fail(
                out_dir,
                input_file,
                created_at,
                message=f"Could not write outputs: {exc}",
                sheets=selected,
                rows_in=len(rows),
            )

        manifest_path = _write_manifest(
            out_dir,
            input_file,
            created_at,
            sheets=selected,
            rows_in=len(rows),
            result=result,
        )
        echo(f"  Manifest -> {manifest_path}")

        if not quiet:
            console.print(Panel(
                f"[green]Done[/green] — {len(rows):,} rows -> "
                f"{len(result.data):,} pivot rows",
                title="Pivot Complete", border_style="green",
            ))
    except typer.Exit:
        raise
    except Exception as exc:
        _fail(
            out_dir,
            input_file,
            created_at,
            message=f"Unexpected internal error: {exc}",
            sheets=selected,
            rows_in=len(rows),
            error_code=1,
        )
