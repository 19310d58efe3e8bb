from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from openpyxl import Workbook

from smart_pivot.io import (
    load_config,
    load_workbook_data,
    merge_sheets,
    save_config,
    to_scalar,
    write_json,
    write_result_json,
)
from smart_pivot.models import Percentage, PivotConfig, PivotResult, ValueSpec


def _write_xlsx(path: Path, sheets: dict[str, list[list[object]]]) -> Path:
    wb = Workbook()
    default = wb.active
    if default is not None:
        wb.remove(default)
    for name, rows in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(row)
    wb.save(path)
    return path


# ── Loading ──────────────────────────────────────────────────────


def test_load_csv_sniffs_delimiter_and_names_single_sheet(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    csv_path = tmp_path / "data.csv"
    csv_path.write_text("a;b\n1;2\n", encoding="utf-8")
    expected = pd.DataFrame({"a": [1], "b": ["x"]})

    calls: list[dict[str, object]] = []

    def _fake_read_csv(path: Path, **kwargs: object) -> pd.DataFrame:
        calls.append({"path": path, **kwargs})
        return expected

    monkeypatch.setattr(pd, "read_csv", _fake_read_csv)

    workbook = load_workbook_data(csv_path)

    assert len(calls) == 1
    assert calls[0]["sep"] is None
    assert calls[0]["engine"] == "python"
    assert calls[0]["encoding"] == "utf-8-sig"
    assert workbook.file_name == "data.csv"
    assert workbook.sheet_names == ["Sheet1"]
    assert workbook.raw_sheets["Sheet1"] == [{"a": 1, "b": "x"}]


def test_load_csv_retries_encoding_then_fails_with_value_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    csv_path = tmp_path / "data.csv"
    csv_path.write_bytes(b"x")
    encodings: list[str] = []

    def _fake_read_csv(path: Path, **kwargs: object) -> pd.DataFrame:
        del path
        encoding = kwargs.get("encoding")
        assert isinstance(encoding, str)
        encodings.append(encoding)
        raise UnicodeDecodeError("utf-8", b"x", 0, 1, "bad")

    monkeypatch.setattr(pd, "read_csv", _fake_read_csv)

    with pytest.raises(ValueError, match="Could not read CSV"):
        load_workbook_data(csv_path)
    assert encodings == ["utf-8-sig", "utf-8", "latin-1"]


def test_load_csv_with_explicit_delimiter_reads_real_file(tmp_path: Path) -> None:
    csv_path = tmp_path / "sales.csv"
    csv_path.write_text("region,amt\neast,10\nwest,\n", encoding="utf-8")

    workbook = load_workbook_data(csv_path, delimiter=",")

    assert workbook.raw_sheets["Sheet1"] == [
        {"region": "east", "amt": 10.0},
        {"region": "west", "amt": None},
    ]


def test_load_xlsx_reads_every_sheet_with_openpyxl(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    xlsx_path = tmp_path / "data.xlsx"
    xlsx_path.write_bytes(b"x")
    frames = {"Sales": pd.DataFrame({"a": ["1"]}), "Empty": pd.DataFrame({"a": []})}
    calls: list[dict[str, object]] = []

    def _fake_read_excel(path: Path, **kwargs: object) -> dict[str, pd.DataFrame]:
        calls.append({"path": path, **kwargs})
        return frames

    monkeypatch.setattr(pd, "read_excel", _fake_read_excel)

    workbook = load_workbook_data(xlsx_path)

    assert calls[0]["sheet_name"] is None
    assert calls[0]["engine"] == "openpyxl"
    assert workbook.sheet_names == ["Sales"]


def test_load_xlsx_normalises_cells_and_skips_blank_rows(tmp_path: Path) -> None:
    path = _write_xlsx(
        tmp_path / "book.xlsx",
        {
            "Sales": [
                ["region", "amt", "when", "ok"],
                ["east", 10, datetime(2024, 1, 5), True],
                [None, None, None, None],
                ["west", None, None, False],
            ],
            "Headers only": [["region", "amt"]],
            "Blank": [],
            "Extra": [["region", "amt"], ["north", 2.5]],
        },
    )

    workbook = load_workbook_data(path)

    assert workbook.sheet_names == ["Sales", "Extra"]
    sales = workbook.raw_sheets["Sales"]
    assert sales[0]["region"] == "east"
    assert sales[0]["amt"] == 10
    assert sales[0]["when"] == "2024-01-05T00:00:00"
    assert sales[1] == {"region": "west", "amt": None, "when": None, "ok": False}
    assert workbook.sheets[0].row_count == 2
    assert len(workbook.sheets[0].preview) == 2


def test_load_xlsx_preview_is_capped(tmp_path: Path) -> None:
    rows = [["n"]] + [[i] for i in range(1, 9)]
    path = _write_xlsx(tmp_path / "many.xlsx", {"Data": rows})

    workbook = load_workbook_data(path)

    assert workbook.sheets[0].row_count == 8
    assert [r["n"] for r in workbook.sheets[0].preview] == [1, 2, 3, 4, 5]


def test_load_corrupt_xlsx_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a zip file")

    with pytest.raises(ValueError, match="Could not read workbook"):
        load_workbook_data(path)


def test_load_rejects_missing_and_unsupported_files(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_workbook_data(tmp_path / "missing.xlsx")

    other = tmp_path / "data.txt"
    other.write_text("x", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported file type"):
        load_workbook_data(other)


def test_xls_without_xlrd_raises_hint(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "old.xls"
    path.write_bytes(b"x")

    def _fake_read_excel(path: Path, **kwargs: object) -> dict[str, pd.DataFrame]:
        raise ImportError("Missing optional dependency 'xlrd'")

    monkeypatch.setattr(pd, "read_excel", _fake_read_excel)

    with pytest.raises(ValueError, match="xlrd"):
        load_workbook_data(path)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, None),
        (np.nan, None),
        (pd.NA, None),
        (pd.NaT, None),
        (np.int64(3), 3),
        (np.float64(1.5), 1.5),
        (np.bool_(True), True),
        ("text", "text"),
        (pd.Timestamp("2024-02-01 10:30"), "2024-02-01T10:30:00"),
        (datetime(2024, 1, 1), "2024-01-01T00:00:00"),
    ],
)
def test_to_scalar(raw: object, expected: object) -> None:
    value = to_scalar(raw)

    assert value == expected
    assert type(value) is type(expected)


def test_merge_sheets_follows_selection_order(tmp_path: Path) -> None:
    path = _write_xlsx(
        tmp_path / "book.xlsx",
        {"A": [["k"], ["a1"]], "B": [["k"], ["b1"], ["b2"]]},
    )
    workbook = load_workbook_data(path)

    assert [r["k"] for r in merge_sheets(workbook)] == ["a1", "b1", "b2"]
    assert [r["k"] for r in merge_sheets(workbook, ["B", "A"])] == ["b1", "b2", "a1"]
    assert [r["k"] for r in merge_sheets(workbook, ["Nope", "A"])] == ["a1"]


# ── Configs ──────────────────────────────────────────────────────


def test_save_and_load_config(tmp_path: Path) -> None:
    config = PivotConfig(
        rows=["region"], columns=["product"], values=[ValueSpec("amt", "percentage")]
    )

    path = save_config(tmp_path / "smart_pivot_config.json", config)

    assert json.loads(path.read_text(encoding="utf-8"))["values"] == [
        {"aggregator": "percentage", "field": "amt"}
    ]
    assert load_config(path) == config


def test_load_config_rejects_invalid_documents(tmp_path: Path) -> None:
    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{rows: []", encoding="utf-8")
    bad_shape = tmp_path / "shape.json"
    bad_shape.write_text(json.dumps({"rows": {}, "values": []}), encoding="utf-8")

    with pytest.raises(ValueError, match="not valid JSON"):
        load_config(bad_json)
    with pytest.raises(ValueError, match="must be arrays"):
        load_config(bad_shape)
    with pytest.raises(ValueError, match="Cannot read configuration"):
        load_config(tmp_path / "missing.json")


# ── Writing ──────────────────────────────────────────────────────


def test_write_json_is_sorted_and_atomic(tmp_path: Path) -> None:
    path = write_json(tmp_path / "nested" / "out.json", {"b": np.int64(2), "a": tmp_path})

    text = path.read_text(encoding="utf-8")
    assert text.endswith("\n")
    assert list(json.loads(text)) == ["a", "b"]
    assert json.loads(text)["b"] == 2
    assert not (tmp_path / "nested" / "out.json.tmp").exists()


def test_write_json_rejects_unknown_objects(tmp_path: Path) -> None:
    with pytest.raises(TypeError, match="not JSON serializable"):
        write_json(tmp_path / "out.json", {"x": object()})


def test_write_result_json(tmp_path: Path) -> None:
    result = PivotResult(
        headers=["region", "% of Grand Total(amt)"],
        data=[["east", Percentage("42.86% ", 42.857)]],
    )

    path = write_result_json(tmp_path, result)

    assert path == tmp_path / "pivot_result.json"
    assert json.loads(path.read_text(encoding="utf-8")) == {
        "data": [["east", "42.86% "]],
        "headers": ["region", "% of Grand Total(amt)"],
    }
