# "Facts/Plans" flowing through the streaming read pipeline.

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any


################################################################################
# #region RowView
@dataclass(slots=True)
class SpecRowView:
    """
    One decoded row as delivered by a decoder.

    ``cells`` maps 0-based column index to value and only holds cells present
    in the source, so gaps between columns are preserved. ``values`` is the
    dense form with ``None`` filling the gaps.
    """

    sheet_name: str
    sheet_index: int
    row_index: int  # 0-based
    cells: dict[int, Any] = field(default_factory=dict)

    @property
    def width(self) -> int:
        return max(self.cells, default=-1) + 1

    @property
    def values(self) -> list[Any]:
        l_values: list[Any] = [None] * self.width
        for _col_idx, _value in self.cells.items():
            l_values[_col_idx] = _value
        return l_values

    def get(self, col: int, default: Any = None) -> Any:
        return self.cells.get(col, default)

    def is_empty(self) -> bool:
        return not self.cells


@dataclass(frozen=True, slots=True)
class SpecRowContext:
    sheet_name: str
    sheet_index: int
    row_index: int


@dataclass(frozen=True, slots=True)
class SpecReadContext:
    """Where a row failed; ``row`` is None when the failure happened while decoding it."""

    sheet_name: str
    sheet_index: int
    row_index: int
    row: SpecRowView | None = None

    @property
    def row_context(self) -> SpecRowContext:
        return SpecRowContext(self.sheet_name, self.sheet_index, self.row_index)


# #endregion
################################################################################
# #region ReadConfig
TypeExceptionHandler = Callable[[Exception, SpecReadContext], bool]
TypeSheetStartCallback = Callable[[str, int], None]


def _normalize_selection(values: Any, item_type: type) -> frozenset[Any]:
    if values is None:
        return frozenset()
    if isinstance(values, item_type):
        return frozenset((values,))
    if isinstance(values, Iterable):
        return frozenset(values)
    raise TypeError(
        f"Expected {item_type.__name__} or an iterable of them, got {type(values).__name__}"
    )


@dataclass(frozen=True, slots=True)
class SpecReadConfig:
    target: Any = None
    sheet_indices: frozenset[int] = frozenset((0,))
    sheet_names: frozenset[str] = frozenset()
    if_read_all_sheets: bool = False
    row_filter: Callable[[SpecRowView], bool] | None = None
    record_filter: Callable[[Any], bool] | None = None
    charset: str = "utf-8"
    if_trim: bool = True
    fn_trim: Callable[[str], str] | None = None
    delimiter: str = ","
    exception_handler: TypeExceptionHandler | None = None
    callback_sheet_start: TypeSheetStartCallback | None = None

    def __post_init__(self) -> None:
        if len(self.delimiter) != 1:
            raise ValueError(f"delimiter must be one character, got {self.delimiter!r}")
        if any(_idx < 0 for _idx in self.sheet_indices):
            raise ValueError(f"Sheet indices must be >= 0, got {sorted(self.sheet_indices)}")

    @classmethod
    def build(
        cls,
        *,
        sheets: int | Iterable[int] | None = None,
        sheet_names: str | Iterable[str] | None = None,
        **kwargs: Any,
    ) -> "SpecReadConfig":
        set_indices = _normalize_selection(sheets, int)
        return cls(
            sheet_indices=set_indices or frozenset((0,)),
            sheet_names=_normalize_selection(sheet_names, str),
            **kwargs,
        )

    def is_sheet_selected(self, index: int, name: str) -> bool:
        # precedence: all sheets > names > indices
        if self.if_read_all_sheets:
            return True
        if self.sheet_names:
            return name in self.sheet_names
        return index in self.sheet_indices

    def trim(self, value: Any) -> Any:
        """Apply ``fn_trim`` (default ``str.strip``) to text cells; other values pass through."""
        if not self.if_trim or not isinstance(value, str):
            return value
        return value.strip() if self.fn_trim is None else self.fn_trim(value)


# #endregion
################################################################################
