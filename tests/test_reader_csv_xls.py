from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path
from typing import Any

import polars as pl
import pytest
import xlrd

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from sheetflow.errors import XlsxReadError  # noqa: E402
from sheetflow.io.reader import EnumSourceFormat, SheetReader, sniff_format  # noqa: E402
from sheetflow.io.reader.sniff import C_MAGIC_OLE2, sniff_bytes  # noqa: E402

################################################################################
# #region Sniffing


def test_sniff_ignores_file_extension(tmp_path: Path) -> None:
    path_zip_named_csv = tmp_path / "data.csv"
    path_zip_named_csv.write_bytes(b"PK\x03\x04rest")
    path_ole_named_xlsx = tmp_path / "data.xlsx"
    path_ole_named_xlsx.write_bytes(C_MAGIC_OLE2 + b"\x00" * 8)
    path_text_named_xls = tmp_path / "data.xls"
    path_text_named_xls.write_text("a,b\n", encoding="utf-8")

    assert sniff_format(path_zip_named_csv) == EnumSourceFormat.XLSX
    assert sniff_format(path_ole_named_xlsx) == EnumSourceFormat.XLS
    assert sniff_format(path_text_named_xls) == EnumSourceFormat.CSV
    assert sniff_bytes(b"") == EnumSourceFormat.CSV


# #endregion
################################################################################
# #region Csv


def test_csv_read_with_charset_and_delimiter(tmp_path: Path) -> None:
    path = tmp_path / "latin.xlsx"
    path.write_bytes("name;city\n José ;Málaga\n;Sevilla\n".encode("latin-1"))
    l_started: list[tuple[str, int]] = []

    l_rows = SheetReader(
        charset="latin-1",
        delimiter=";",
        sheets=5,
        callback_sheet_start=lambda name, idx: l_started.append((name, idx)),
    ).read(path)

    assert l_rows == [["name", "city"], ["José", "Málaga"], [None, "Sevilla"]]
    assert l_started == [("latin", 0)]


def test_csv_stop_and_filters(tmp_path: Path) -> None:
    path = tmp_path / "rows.csv"
    path.write_text("\n".join(f"{_i},v{_i}" for _i in range(10)), encoding="utf-8")
    l_seen: list[dict[int, Any]] = []

    SheetReader(dict, row_filter=lambda row: row.row_index % 2 == 0).read_then(
        path, lambda rec: l_seen.append(rec) or len(l_seen) < 2
    )

    assert l_seen == [{0: "0", 1: "v0"}, {0: "2", 1: "v2"}]


def test_custom_trim_function_applies_to_text_cells(tmp_path: Path) -> None:
    path = tmp_path / "trim.csv"
    path.write_text("..id..,  a b  \n", encoding="utf-8")

    l_rows = SheetReader(fn_trim=lambda text: text.strip(". ").upper()).read(path)
    l_rows_off = SheetReader(fn_trim=str.upper, if_trim=False).read(path)

    assert l_rows == [["ID", "A B"]]
    assert l_rows_off == [["..id..", "  a b  "]]


def test_callback_defaults_are_not_filled_with_context(tmp_path: Path) -> None:
    path = tmp_path / "defaults.csv"
    path.write_text("a\nb\n", encoding="utf-8")
    l_buffer: list[Any] = []
    l_contexts: list[Any] = []

    SheetReader().read_then(path, lambda values, acc=l_buffer: acc.append(values))
    SheetReader().read_then(path, lambda values, ctx, extra=None: l_contexts.append(ctx))

    assert l_buffer == [["a"], ["b"]]
    assert [_ctx.row_index for _ctx in l_contexts] == [0, 1]


def test_csv_decode_failure_is_a_read_failure(tmp_path: Path) -> None:
    path = tmp_path / "bad.csv"
    path.write_bytes(b"ok\n\xff\xfe\xfa\n")

    with pytest.raises(XlsxReadError, match="Fail to read csv file: bad.csv"):
        SheetReader(charset="utf-8").read(path)


def test_read_frame_uses_first_row_as_header(tmp_path: Path) -> None:
    path = tmp_path / "frame.csv"
    path.write_text("id,name,name\n1,a,x\n2,b\n", encoding="utf-8")

    df = SheetReader().read_frame(path)

    assert isinstance(df, pl.DataFrame)
    assert df.columns == ["id", "name", "name_2"]
    assert df.height == 2
    assert df["name_2"].to_list() == ["x", None]

    df_raw = SheetReader().read_frame(path, if_header=False)
    assert df_raw.columns == ["column_1", "column_2", "column_3"]
    assert df_raw.height == 3


# #endregion
################################################################################
# #region Xls


class FakeCell:
    def __init__(self, ctype: int, value: Any) -> None:
        self.ctype = ctype
        self.value = value


class FakeSheet:
    def __init__(self, rows: list[list[FakeCell]]) -> None:
        self.rows = rows
        self.nrows = len(rows)

    def row(self, idx: int) -> list[FakeCell]:
        return self.rows[idx]


class FakeBook:
    datemode = 0

    def __init__(self, sheets: dict[str, FakeSheet]) -> None:
        self.sheets = sheets
        self.l_unloaded: list[int] = []
        self.is_released = False

    def sheet_names(self) -> list[str]:
        return list(self.sheets)

    def sheet_by_index(self, idx: int) -> FakeSheet:
        return list(self.sheets.values())[idx]

    def unload_sheet(self, idx: int) -> None:
        self.l_unloaded.append(idx)

    def release_resources(self) -> None:
        self.is_released = True


@pytest.fixture()
def fake_book(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> tuple[Path, FakeBook]:
    book = FakeBook(
        {
            "Intro": FakeSheet([[FakeCell(xlrd.XL_CELL_TEXT, "skip me")]]),
            "Data": FakeSheet(
                [
                    [
                        FakeCell(xlrd.XL_CELL_TEXT, " name "),
                        FakeCell(xlrd.XL_CELL_EMPTY, ""),
                        FakeCell(xlrd.XL_CELL_NUMBER, 3.0),
                    ],
                    [],
                    [
                        FakeCell(xlrd.XL_CELL_DATE, 45293.5),
                        FakeCell(xlrd.XL_CELL_BOOLEAN, 1),
                        FakeCell(xlrd.XL_CELL_ERROR, 0x07),
                        FakeCell(xlrd.XL_CELL_NUMBER, 1.25),
                    ],
                ]
            ),
        }
    )
    l_opened: list[dict[str, Any]] = []

    def open_workbook(filename: str, **kwargs: Any) -> FakeBook:
        l_opened.append(kwargs)
        return book

    monkeypatch.setattr(xlrd, "open_workbook", open_workbook)
    path = tmp_path / "legacy.bin"
    path.write_bytes(C_MAGIC_OLE2 + b"\x00" * 504)
    return path, book


def test_xls_decoder_converts_cell_types(fake_book: tuple[Path, FakeBook]) -> None:
    path, book = fake_book
    l_contexts: list[tuple[str, int, int]] = []

    def on_row(values: list[Any], context: Any) -> None:
        l_contexts.append((context.sheet_name, context.sheet_index, context.row_index))
        l_values.append(values)

    l_values: list[list[Any]] = []
    SheetReader(sheet_names="Data").read_then(path, on_row)

    assert l_values == [
        ["name", None, 3],
        [dt.datetime(2024, 1, 2, 12, 0), True, "#DIV/0!", 1.25],
    ]
    assert l_contexts == [("Data", 1, 0), ("Data", 1, 2)]
    assert book.l_unloaded == [1]
    assert book.is_released


def test_xls_resources_released_on_early_stop(fake_book: tuple[Path, FakeBook]) -> None:
    path, book = fake_book
    l_values: list[Any] = []

    SheetReader(if_read_all_sheets=True).read_then(
        path, lambda values: l_values.append(values) or False
    )

    assert l_values == [["skip me"]]
    assert book.is_released


def test_xls_decode_failure_is_wrapped(
    fake_book: tuple[Path, FakeBook], monkeypatch: pytest.MonkeyPatch
) -> None:
    path, book = fake_book

    def broken_sheet(idx: int) -> FakeSheet:
        raise xlrd.XLRDError("corrupt sheet")

    monkeypatch.setattr(book, "sheet_by_index", broken_sheet)

    with pytest.raises(XlsxReadError, match="Fail to read xls file: legacy.bin") as exc_info:
        SheetReader().read(path)

    assert isinstance(exc_info.value.__cause__, xlrd.XLRDError)
    assert book.is_released


# #endregion
################################################################################
