from __future__ import annotations

import datetime as dt
import io
import os
import shutil
from collections.abc import Mapping
from pathlib import Path
from types import TracebackType
from typing import Any, Protocol

import xlsxwriter
import xlsxwriter.format
import xlsxwriter.worksheet

from .conf import C_SUFFIX_XLSX
from .spec import EnumCellContentType, SpecCellFormat, SpecRow
from .util import convert_cell_value

################################################################################
# #region DocumentProtocols


class Document(Protocol):
    """The spreadsheet engine the builder drives; it never encodes bytes itself."""

    def create_sheet(self, name: str) -> Any: ...

    def append_row(self, sheet: Any, row: SpecRow, row_idx: int) -> None: ...

    def set_column_widths(self, sheet: Any, widths: Mapping[int, float]) -> None: ...

    def freeze_panes(self, height_rows: int) -> None: ...

    def serialize(self, path: os.PathLike[str] | str) -> Path: ...

    def close(self) -> None: ...


class DocumentFactory(Protocol):
    suffix: str

    def create_document(self) -> Document: ...


# #endregion
################################################################################
# #region XlsxDocument


class XlsxDocument:
    """
    An in-progress ``.xlsx`` workbook held in memory.

    Backed by :class:`xlsxwriter.Workbook` in ``constant_memory`` mode, so
    rows of each sheet are flushed to xlsxwriter's own temp storage as they
    are written and only the current row is kept in memory. The package is
    assembled into an in-memory buffer on :meth:`serialize` / :meth:`to_bytes`.

    Rows must be appended in ascending order per sheet, and once a new sheet
    is created the previous one can no longer receive rows. Column widths and
    freeze panes may still be set until the document is serialized.
    """

    def __init__(self, *, dir_temp: os.PathLike[str] | str | None = None):
        self._buffer: io.BytesIO | None = io.BytesIO()
        dict_options: dict[str, Any] = {
            "constant_memory": True,
            # NaN/Inf are converted to strings before they reach the workbook.
            "nan_inf_to_errors": False,
            "remove_timezone": True,
        }
        if dir_temp is not None:
            dict_options["tmpdir"] = Path(dir_temp).as_posix()
        self.wb = xlsxwriter.Workbook(self._buffer, dict_options)
        self._format_cache: dict[SpecCellFormat, xlsxwriter.format.Format] = {}
        self._existing_sheet_names: set[str] = set()
        self.is_closed = False

    def __enter__(self) -> "XlsxDocument":
        return self

    def __exit__(
        self, exc_type: type | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        self.close()

    @property
    def sheet_names(self) -> list[str]:
        return [_ws.get_name() for _ws in self.wb.worksheets()]

    def _create_format_cached(self, spec: SpecCellFormat) -> xlsxwriter.format.Format:
        fmt = self._format_cache.get(spec)
        if fmt is None:
            fmt = self.wb.add_format(spec.to_xlsxwriter())
            self._format_cache[spec] = fmt
        return fmt

    def _create_unique_sheet_name(self, name: str) -> str:
        if name not in self._existing_sheet_names:
            self._existing_sheet_names.add(name)
            return name

        # deterministic bump: name__2, name__3 ...
        c_base_name = name[:28]
        i = 2
        c_candidate_name = f"{c_base_name}__{i}"[:31]
        while c_candidate_name in self._existing_sheet_names:
            i += 1
            c_candidate_name = f"{c_base_name}__{i}"[:31]
        self._existing_sheet_names.add(c_candidate_name)
        return c_candidate_name

    def _ensure_open(self) -> None:
        if self.is_closed:
            raise RuntimeError("Document is closed.")

    def create_sheet(self, name: str) -> xlsxwriter.worksheet.Worksheet:
        self._ensure_open()
        return self.wb.add_worksheet(self._create_unique_sheet_name(name))

    def append_row(
        self, sheet: xlsxwriter.worksheet.Worksheet, row: SpecRow, row_idx: int
    ) -> None:
        for _cell in row.cells:
            obj_value = convert_cell_value(_cell.content)
            cfg_fmt = (
                None if _cell.style is None else self._create_format_cached(_cell.style)
            )
            if obj_value is None:
                if cfg_fmt is not None:
                    sheet.write_blank(row_idx, _cell.col, None, cfg_fmt)
                continue
            if _cell.content_type == EnumCellContentType.FORMULA:
                sheet.write_formula(row_idx, _cell.col, str(obj_value), cfg_fmt)
            elif isinstance(obj_value, bool):
                sheet.write_boolean(row_idx, _cell.col, obj_value, cfg_fmt)
            elif isinstance(obj_value, (int, float)):
                sheet.write_number(row_idx, _cell.col, obj_value, cfg_fmt)
            elif isinstance(obj_value, (dt.date, dt.time)):
                sheet.write_datetime(row_idx, _cell.col, obj_value, cfg_fmt)
            else:
                sheet.write_string(row_idx, _cell.col, str(obj_value), cfg_fmt)

    def set_column_widths(
        self, sheet: xlsxwriter.worksheet.Worksheet, widths: Mapping[int, float]
    ) -> None:
        for _col_idx, _width in sorted(widths.items()):
            sheet.set_column(first_col=_col_idx, last_col=_col_idx, width=_width)

    def freeze_panes(self, height_rows: int) -> None:
        if height_rows <= 0:
            return
        for _ws in self.wb.worksheets():
            _ws.freeze_panes(height_rows, 0)

    def _close_workbook(self) -> io.BytesIO:
        self._ensure_open()
        assert self._buffer is not None
        buf = self._buffer
        self.wb.close()
        self.is_closed = True
        self._buffer = None
        buf.seek(0)
        return buf

    def serialize(self, path: os.PathLike[str] | str) -> Path:
        """Assemble the workbook and stream it to ``path``. Closes the document."""
        path_out = Path(path)
        buf = self._close_workbook()
        with open(path_out, "wb") as fh:
            shutil.copyfileobj(buf, fh)
        return path_out

    def save(self, path: os.PathLike[str] | str) -> Path:
        return self.serialize(path)

    def to_bytes(self) -> bytes:
        """Assemble the workbook and return its bytes. Closes the document."""
        return self._close_workbook().getvalue()

    def close(self) -> None:
        # releases xlsxwriter's per-sheet temp files; output is discarded
        if self.is_closed:
            return
        self._close_workbook()


class XlsxDocumentFactory:
    suffix = C_SUFFIX_XLSX

    def __init__(self, *, dir_temp: os.PathLike[str] | str | None = None):
        self.dir_temp = dir_temp

    def create_document(self) -> XlsxDocument:
        return XlsxDocument(dir_temp=self.dir_temp)


# #endregion
################################################################################
