"""Pivot engine — pure functions, no side effects."""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from numbers import Real
from typing import Any

from smart_pivot import EMPTY_LABEL, KEY_SEPARATOR, TOTAL_KEY
from smart_pivot.models import Cell, Percentage, PivotConfig, PivotResult, Record, ValueSpec

# ── Scalar coercion ──────────────────────────────────────────────


_DECIMAL_RE = re.compile(
    r"^[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|Infinity)$"
)
_RADIX_RE = re.compile(r"^0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")


def _as_float(number: Real) -> float:
    try:
        return float(number)
    except OverflowError:
        return math.inf if number > 0 else -math.inf


def to_number(value: Any) -> float:
    """Coerce a cell value to a float, treating anything unusable as ``0.0``.

    Booleans count as 1/0, numeric strings (decimal, exponent, ``0x``/``0o``/
    ``0b`` literals, ``Infinity``) parse after trimming, and ``None``, NaN and
    any other text become 0. Integers too large for a float become infinite.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, Real):
        number = _as_float(value)
        return 0.0 if number != number else number
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return 0.0
        if _RADIX_RE.match(token):
            return _as_float(int(token, 0))
        if _DECIMAL_RE.match(token):
            return float(token.replace("Infinity", "inf"))
    return 0.0


def _is_blank(value: Any) -> bool:
    if value is None or value is False or value == "":
        return True
    if isinstance(value, Real) and not isinstance(value, bool):
        return value == 0 or value != value
    return False


def _float_text(value: float) -> str:
    """Shortest round-trip spelling; exponent form only below 1e-6 or from 1e21 up."""
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    k = len(digits)
    n = int(exponent) + k
    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return f"{sign}{digits[:n]}.{digits[n:]}"
    if -6 < n <= 0:
        return f"{sign}0.{'0' * -n}{digits}"
    power = n - 1
    mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
    return f"{sign}{mantissa}e{'+' if power >= 0 else '-'}{abs(power)}"


def _display(value: Any) -> str:
    if value is True:
        return "true"
    if isinstance(value, float):
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        return _float_text(value)
    return str(value)


def _key_parts(record: Record, names: Sequence[str]) -> list[str]:
    parts: list[str] = []
    for name in names:
        value = record.get(name)
        parts.append(EMPTY_LABEL if _is_blank(value) else _display(value))
    return parts


def _round2(value: float) -> Cell:
    scaled = value * 100 + 0.5
    if not math.isfinite(scaled):
        return value
    rounded = math.floor(scaled) / 100
    return int(rounded) if rounded.is_integer() else rounded


def _format_percent(value: float) -> Percentage:
    if math.isnan(value):
        text = "NaN"
    elif math.isinf(value):
        text = "Infinity" if value > 0 else "-Infinity"
    else:
        text = str(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    return Percentage(f"{text}% ", value)


def _utf16_order(key: str) -> bytes:
    return key.encode("utf-16-be", "surrogatepass")


# ── Field discovery ──────────────────────────────────────────────


def get_fields(rows: Sequence[Record]) -> list[str]:
    """Return the field names of the first record, in their natural order.

    Later records are not scanned, so a field that first appears after row 1
    is never offered.
    """
    if not rows:
        return []
    return list(rows[0].keys())


# ── Headers ──────────────────────────────────────────────────────


def value_label(spec: ValueSpec, *, split: bool) -> str:
    """Label for one value spec; percentage wording depends on a column split."""
    if spec.aggregator == "percentage":
        return f"% {spec.field} " if split else f"% of Grand Total({spec.field})"
    return f"{spec.aggregator.upper()} ({spec.field})"


def build_headers(config: PivotConfig, col_keys: Sequence[str]) -> list[str]:
    headers = list(config.rows)
    if config.columns:
        for col_key in col_keys:
            for spec in config.values:
                headers.append(f"{col_key} - {value_label(spec, split=True)} ")
    else:
        headers.extend(value_label(spec, split=False) for spec in config.values)
    return headers


# ── Aggregation ──────────────────────────────────────────────────


@dataclass
class _RowGroup:
    key: str
    parts: list[str]
    buckets: dict[str, list[Record]] = field(default_factory=dict)


def _grand_totals(rows: Sequence[Record], values: Sequence[ValueSpec]) -> dict[str, float]:
    totals: dict[str, float] = {}
    for spec in values:
        if spec.aggregator != "percentage":
            continue
        total = sum(to_number(record.get(spec.field)) for record in rows)
        totals[spec.field] = total if total and total == total else 1
    return totals


def _aggregate(
    bucket: Sequence[Record], spec: ValueSpec, grand_totals: dict[str, float]
) -> Cell:
    if not bucket:
        return 0

    numbers = [to_number(record.get(spec.field)) for record in bucket]
    agg = spec.aggregator
    if agg == "sum":
        result = sum(numbers)
    elif agg == "count":
        result = len(bucket)
    elif agg == "average":
        result = sum(numbers) / (len(numbers) or 1)
    elif agg == "max":
        result = max(numbers)
    elif agg == "min":
        result = min(numbers)
    elif agg == "percentage":
        return _format_percent(sum(numbers) / grand_totals[spec.field] * 100)
    else:
        result = 0
    return _round2(result)


def compute_pivot(rows: Sequence[Record], config: PivotConfig) -> PivotResult:
    """Cross-tabulate *rows* according to *config*.

    Row groups keep the order their key is first seen; column keys are sorted.
    Every data row has exactly one cell per header. Never raises on malformed
    values: non-numeric data counts as 0 and missing keys as ``"(Empty)"``.
    """
    if not rows:
        return PivotResult()

    groups: list[_RowGroup] = []
    by_key: dict[str, _RowGroup] = {}
    seen_col_keys: set[str] = set()

    for record in rows:
        parts = _key_parts(record, config.rows)
        row_key = KEY_SEPARATOR.join(parts) if config.rows else TOTAL_KEY
        col_key = (
            KEY_SEPARATOR.join(_key_parts(record, config.columns))
            if config.columns
            else TOTAL_KEY
        )
        seen_col_keys.add(col_key)

        group = by_key.get(row_key)
        if group is None:
            group = _RowGroup(key=row_key, parts=parts)
            by_key[row_key] = group
            groups.append(group)
        group.buckets.setdefault(col_key, []).append(record)

    col_keys = sorted(seen_col_keys, key=_utf16_order)
    headers = build_headers(config, col_keys)
    grand_totals = _grand_totals(rows, config.values)

    data: list[list[Cell]] = []
    iter_keys = col_keys if config.columns else [TOTAL_KEY]
    for group in groups:
        row: list[Cell] = list(group.parts) if config.rows else []
        for col_key in iter_keys:
            bucket = group.buckets.get(col_key, [])
            for spec in config.values:
                row.append(_aggregate(bucket, spec, grand_totals))
        data.append(row)

    return PivotResult(headers=headers, data=data)
