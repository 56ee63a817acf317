# "Facts/Plans" flowing through the streaming XLSX write pipeline.

from __future__ import annotations

import datetime as dt
from collections.abc import Sequence
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import StrEnum
from pathlib import Path
from typing import Any

from .util import estimate_width_len


################################################################################
# #region CellFormatSpecification
@dataclass(frozen=True, slots=True)
class SpecCellFormat:
    # field names mirror XlsxWriter format property keys
    font_name: str | None = None
    font_size: int | None = None
    bold: bool | None = None
    italic: bool | None = None

    align: str | None = None
    valign: str | None = None
    border: int | None = None
    text_wrap: bool | None = None

    num_format: str | None = None
    bg_color: str | None = None
    font_color: str | None = None

    def with_(self, **kwargs: Any) -> "SpecCellFormat":
        return replace(self, **kwargs)

    def merge(self, other: "SpecCellFormat") -> "SpecCellFormat":
        # right-hand non-None fields win
        data = {
            k: (
                getattr(other, k) if getattr(other, k) is not None else getattr(self, k)
            )
            for k in self.__dataclass_fields__
        }
        return SpecCellFormat(**data)

    def to_xlsxwriter(self) -> dict[str, Any]:
        return {
            k: getattr(self, k)
            for k in self.__dataclass_fields__
            if getattr(self, k) is not None
        }


# #endregion
################################################################################
# #region RowSpecification
class EnumCellContentType(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    FORMULA = "formula"
    BOOL = "bool"


def infer_content_type(value: Any) -> EnumCellContentType:
    if isinstance(value, bool):
        return EnumCellContentType.BOOL
    if isinstance(value, (int, float, Decimal)):
        return EnumCellContentType.NUMBER
    if isinstance(value, (dt.date, dt.time)):
        return EnumCellContentType.DATE
    return EnumCellContentType.TEXT


@dataclass(slots=True)
class SpecCell:
    col: int
    content: Any
    content_type: EnumCellContentType = EnumCellContentType.TEXT
    num_format: str | None = None
    is_header: bool = False
    row: int = -1  # set by the builder on append
    style: SpecCellFormat | None = None  # set by the style resolver


@dataclass(slots=True)
class SpecRow:
    cells: list[SpecCell]
    index: int = -1  # set by the builder on append
    is_from_template: bool = False
    widths_by_col: dict[int, int] = field(default_factory=dict)

    @classmethod
    def from_values(
        cls,
        values: Sequence[Any],
        *,
        is_header: bool = False,
        num_formats: dict[int, str] | None = None,
    ) -> "SpecRow":
        """Build a row from plain python values, inferring content types and widths."""
        dict_num_formats = num_formats or {}
        l_cells: list[SpecCell] = []
        dict_widths: dict[int, int] = {}
        for _col_idx, _value in enumerate(values):
            l_cells.append(
                SpecCell(
                    col=_col_idx,
                    content=_value,
                    content_type=infer_content_type(_value),
                    num_format=dict_num_formats.get(_col_idx),
                    is_header=is_header,
                )
            )
            if n_width := estimate_width_len(_value):
                dict_widths[_col_idx] = n_width
        return cls(cells=l_cells, widths_by_col=dict_widths)

    @property
    def width(self) -> int:
        return max((_cell.col for _cell in self.cells), default=-1) + 1


# #endregion
################################################################################
# #region WriteOptions
@dataclass(frozen=True, slots=True)
class SpecAutofitPolicy:
    if_enabled: bool = True
    width_cell_min: int = 8
    width_cell_max: int = 60
    width_cell_padding: int = 2

    def derive_width(self, width_observed: int) -> float:
        n_min = max(1, int(self.width_cell_min))
        n_max = min(255, max(n_min, int(self.width_cell_max)))
        n_pad = max(0, int(self.width_cell_padding))
        return min(n_max, max(n_min, width_observed + n_pad))


@dataclass(frozen=True, slots=True)
class SpecStreamWriteOptions:
    size_queue: int = 1_024
    capacity_rows_per_file: int = 0  # 0 -> single workbook
    if_fixed_titles: bool = False
    rows_per_sheet_max: int = 1_048_576
    sheet_name: str = "Sheet"
    seconds_queue_timeout: float = 3_600.0
    seconds_poll_interval: float = 0.05
    autofit: SpecAutofitPolicy = field(default_factory=SpecAutofitPolicy)
    prefix_temp_file: str = "s_t_r_p"
    dir_temp: Path | None = None

    def __post_init__(self) -> None:
        if self.size_queue < 1:
            raise ValueError(f"size_queue must be >= 1, got {self.size_queue}")
        if self.capacity_rows_per_file < 0:
            raise ValueError(
                f"capacity_rows_per_file must be >= 0, got {self.capacity_rows_per_file}"
            )
        if self.rows_per_sheet_max < 1:
            raise ValueError(
                f"rows_per_sheet_max must be >= 1, got {self.rows_per_sheet_max}"
            )
        if self.seconds_queue_timeout <= 0 or self.seconds_poll_interval <= 0:
            raise ValueError("Queue timeout and poll interval must be positive.")

    def with_(self, **kwargs: Any) -> "SpecStreamWriteOptions":
        return replace(self, **kwargs)


# #endregion
################################################################################
# #region ExportSpecification
@dataclass(frozen=True, slots=True)
class SpecExportJob:
    """A sealed chunk. Ownership of ``document`` moves to whoever runs the job."""

    document: Any
    sheet: Any
    widths_by_col: dict[int, int]
    height_titles_frozen: int


@dataclass(slots=True)
class SpecExportTask:
    path: Path
    future: Future[Path] | None = None

    def is_done(self) -> bool:
        return self.future is None or self.future.done()


@dataclass(slots=True)
class SpecStreamReport:
    rows_appended: int = 0
    sheets_created: int = 0
    chunks_sealed: int = 0
    seconds_elapsed: float = 0.0
    warnings: list[str] = field(default_factory=list)

    def warn(self, msg: str) -> None:
        self.warnings.append(str(msg))


# #endregion
################################################################################
