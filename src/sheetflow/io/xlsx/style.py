from collections.abc import Mapping
from dataclasses import dataclass

from .conf import C_COLOR_BAND_DEFAULT, DEFAULT_XLSX_FORMATS
from .spec import EnumCellContentType, SpecCellFormat, SpecRow


@dataclass(slots=True)
class SpecBandingState:
    """Per-consumer banding toggle; flipped once per styled row."""

    is_odd: bool = False

    def toggle(self) -> bool:
        self.is_odd = not self.is_odd
        return self.is_odd


class StyleResolver:
    """
    Resolve the cell format of header and body cells.

    Resolution is a pure function of ``(col_idx, content_type, num_format,
    is_header, is_odd)``; the only moving part is the banding toggle, which
    the caller owns and passes in (see :class:`SpecBandingState`). Rows
    alternate between two style sets: the plain one and one tinted with
    ``color_band``. Pass ``color_band=None`` to disable banding.

    Not thread-safe: call it from the single consumer thread.
    """

    def __init__(
        self,
        *,
        fmt_text: SpecCellFormat | None = None,
        fmt_number: SpecCellFormat | None = None,
        fmt_date: SpecCellFormat | None = None,
        fmt_header: SpecCellFormat | None = None,
        fmts_by_col: Mapping[int, SpecCellFormat] | None = None,
        color_band: str | None = C_COLOR_BAND_DEFAULT,
    ):
        self.fmt_text = DEFAULT_XLSX_FORMATS["text"] if fmt_text is None else fmt_text
        self.fmt_number = (
            DEFAULT_XLSX_FORMATS["number"] if fmt_number is None else fmt_number
        )
        self.fmt_date = DEFAULT_XLSX_FORMATS["date"] if fmt_date is None else fmt_date
        self.fmt_header = (
            DEFAULT_XLSX_FORMATS["header"] if fmt_header is None else fmt_header
        )
        self.fmts_by_col = dict(fmts_by_col or {})
        self.color_band = color_band
        self._cache: dict[
            tuple[int | None, EnumCellContentType, str | None, bool, bool],
            SpecCellFormat,
        ] = {}

    def _select_base(self, content_type: EnumCellContentType) -> SpecCellFormat:
        if content_type == EnumCellContentType.NUMBER:
            return self.fmt_number
        if content_type == EnumCellContentType.DATE:
            return self.fmt_date
        return self.fmt_text

    def resolve_cell(
        self,
        col_idx: int,
        content_type: EnumCellContentType,
        num_format: str | None,
        *,
        is_header: bool,
        is_odd: bool,
    ) -> SpecCellFormat:
        # header styles ignore column overrides, so they share one cache slot
        n_col_key = col_idx if (not is_header and col_idx in self.fmts_by_col) else None
        tup_key = (n_col_key, content_type, num_format, is_header, is_odd)
        if (fmt_cached := self._cache.get(tup_key)) is not None:
            return fmt_cached

        if is_header:
            fmt_cell = self.fmt_header
        else:
            fmt_cell = self._select_base(content_type)
            if n_col_key is not None:
                fmt_cell = fmt_cell.merge(self.fmts_by_col[n_col_key])
            if num_format:
                fmt_cell = fmt_cell.with_(num_format=num_format)
        if is_odd and self.color_band:
            fmt_cell = fmt_cell.with_(bg_color=self.color_band)

        self._cache[tup_key] = fmt_cell
        return fmt_cell

    def resolve_row(self, row: SpecRow, state: SpecBandingState) -> None:
        """Flip the banding toggle once and assign a style to every cell of ``row``."""
        if row.is_from_template:
            return
        b_is_odd = state.toggle()
        for _cell in row.cells:
            _cell.style = self.resolve_cell(
                _cell.col,
                _cell.content_type,
                _cell.num_format,
                is_header=_cell.is_header,
                is_odd=b_is_odd,
            )
