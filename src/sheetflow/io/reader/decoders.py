"""
Streaming row decoders.

Each decoder walks one file and pushes events to a :class:`RowSink`:
``on_sheet_start`` for every selected sheet, ``on_row`` for every non-empty
row and ``on_row_error`` when a single row cannot be decoded. Anything else
that goes wrong (a broken container, an unreadable stream) propagates and
is fatal for the whole read.

Sheet selection happens here because only the decoder knows sheet names and
their order; CSV sources are a single sheet at index 0 and ignore selection.
"""

from __future__ import annotations

import csv
import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from ..._optional_deps import require_module
from .sniff import EnumSourceFormat
from .spec import SpecReadConfig, SpecReadContext, SpecRowView

################################################################################
# #region RowSink


class RowSink(Protocol):
    def on_sheet_start(self, sheet_name: str, sheet_index: int) -> None: ...

    def on_row(self, row: SpecRowView) -> None: ...

    def on_row_error(self, exc: Exception, context: SpecReadContext) -> None: ...


# #endregion
################################################################################
# #region XlsxDecoder


class XlsxDecoder:
    """
    ``.xlsx`` decoder over ``openpyxl`` read-only worksheets.

    Rows are parsed lazily, one at a time; the shared string table lives
    inside the workbook and is dropped by ``close()`` in every exit path.
    Formula cells yield their cached value. A cell the library cannot parse
    (say a dangling shared-string index) breaks the sheet stream, so it is a
    read failure rather than a row failure.
    """

    source_format = EnumSourceFormat.XLSX

    def __init__(self, config: SpecReadConfig, sink: RowSink):
        self.config = config
        self.sink = sink

    @staticmethod
    def _iter_cells(cells: tuple[Any, ...]) -> Iterator[tuple[int, Any]]:
        for _cell in cells:
            # padding cells (EmptyCell) carry no column and a None value
            if _cell.value is None:
                continue
            yield _cell.column - 1, _cell.value

    def _decode_sheet(self, ws: Any, sheet_name: str, sheet_index: int) -> None:
        # stored dimensions may be stale; iterate what the sheet really holds
        ws.reset_dimensions()
        # missing rows come back as empty tuples, so positions are row numbers
        for _row_idx, _cells in enumerate(ws.iter_rows(min_row=1)):
            dict_cells = dict(self._iter_cells(_cells))
            if dict_cells:
                self.sink.on_row(SpecRowView(sheet_name, sheet_index, _row_idx, dict_cells))

    def decode(self, path: os.PathLike[str] | str) -> None:
        openpyxl = require_module("openpyxl", feature="SheetReader (.xlsx)")
        # a file object skips openpyxl's extension check; the content was sniffed
        with open(path, "rb") as fh:
            wb = openpyxl.load_workbook(fh, read_only=True, data_only=True)
            try:
                for _idx, ws in enumerate(wb.worksheets):
                    if not self.config.is_sheet_selected(_idx, ws.title):
                        continue
                    self.sink.on_sheet_start(ws.title, _idx)
                    self._decode_sheet(ws, ws.title, _idx)
            finally:
                wb.close()


# #endregion
################################################################################
# #region XlsDecoder


class XlsDecoder:
    """Legacy ``.xls`` decoder backed by ``xlrd``; sheets are loaded one at a time."""

    source_format = EnumSourceFormat.XLS

    def __init__(self, config: SpecReadConfig, sink: RowSink):
        self.config = config
        self.sink = sink

    def _iter_cells(self, xlrd: Any, book: Any, cells: list[Any]) -> Iterator[tuple[int, Any]]:
        for _col_idx, _cell in enumerate(cells):
            n_ctype = _cell.ctype
            if n_ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                continue
            if n_ctype == xlrd.XL_CELL_NUMBER:
                f_value = float(_cell.value)
                yield _col_idx, int(f_value) if f_value.is_integer() else f_value
            elif n_ctype == xlrd.XL_CELL_DATE:
                yield _col_idx, xlrd.xldate.xldate_as_datetime(_cell.value, book.datemode)
            elif n_ctype == xlrd.XL_CELL_BOOLEAN:
                yield _col_idx, bool(_cell.value)
            elif n_ctype == xlrd.XL_CELL_ERROR:
                yield _col_idx, xlrd.biffh.error_text_from_code.get(_cell.value, "#ERR")
            else:
                yield _col_idx, _cell.value

    def decode(self, path: os.PathLike[str] | str) -> None:
        xlrd = require_module("xlrd", feature="SheetReader (.xls)")
        book = xlrd.open_workbook(os.fspath(path), on_demand=True)
        try:
            for _idx, _name in enumerate(book.sheet_names()):
                if not self.config.is_sheet_selected(_idx, _name):
                    continue
                self.sink.on_sheet_start(_name, _idx)
                sheet = book.sheet_by_index(_idx)
                for _row_idx in range(sheet.nrows):
                    try:
                        dict_cells = dict(self._iter_cells(xlrd, book, sheet.row(_row_idx)))
                    except Exception as e:
                        self.sink.on_row_error(e, SpecReadContext(_name, _idx, _row_idx))
                        continue
                    if dict_cells:
                        self.sink.on_row(SpecRowView(_name, _idx, _row_idx, dict_cells))
                book.unload_sheet(_idx)
        finally:
            book.release_resources()


# #endregion
################################################################################
# #region CsvDecoder


class CsvDecoder:
    """Delimited text decoder; the whole file is sheet 0 named after the file stem."""

    source_format = EnumSourceFormat.CSV

    def __init__(self, config: SpecReadConfig, sink: RowSink, *, sheet_name: str | None = None):
        self.config = config
        self.sink = sink
        self.sheet_name = sheet_name

    def decode(self, path: os.PathLike[str] | str) -> None:
        c_sheet_name = self.sheet_name or Path(path).stem
        self.sink.on_sheet_start(c_sheet_name, 0)
        with open(path, newline="", encoding=self.config.charset) as fh:
            for _row_idx, _values in enumerate(
                csv.reader(fh, delimiter=self.config.delimiter)
            ):
                dict_cells = {
                    _col_idx: _value for _col_idx, _value in enumerate(_values) if _value != ""
                }
                if dict_cells:
                    self.sink.on_row(SpecRowView(c_sheet_name, 0, _row_idx, dict_cells))
        logger.debug(f"Decoded csv `{c_sheet_name}`")


# #endregion
################################################################################

DICT_DECODERS_BY_FORMAT: dict[EnumSourceFormat, type[XlsxDecoder | XlsDecoder | CsvDecoder]] = {
    EnumSourceFormat.XLSX: XlsxDecoder,
    EnumSourceFormat.XLS: XlsDecoder,
    EnumSourceFormat.CSV: CsvDecoder,
}
