import datetime as dt
import math
from collections.abc import Generator, Mapping
from typing import Any

# kept local to avoid a conf -> spec -> util import cycle
_N_LEN_SHEET_NAME_MAX = 31
_TUP_SHEET_NAME_ILLEGAL = ("*", ":", "?", "/", "\\", "[", "]")

################################################################################
# #region WidthEstimation


def estimate_width_len(value: Any) -> int:
    """Estimate display string length for column width calculation.

    Notes
    -----
    - Excel column width is not strictly character count; this is a pragmatic
      heuristic good enough for most reports.
    - Non-ASCII characters (CJK in particular) render roughly 1.6x wider.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return len("FALSE")
    if isinstance(value, dt.datetime):
        return len("yyyy-mm-dd hh:mm:ss")
    if isinstance(value, dt.date):
        return len("yyyy-mm-dd")
    if isinstance(value, float):
        if not math.isfinite(value):
            return len(str(value))
        if value.is_integer():
            return len(str(int(value)))
        return len(f"{value:.4f}")

    s = str(value)
    if not s:
        return 0
    n_ascii = sum(1 for _chr in s if ord(_chr) < 128)
    n_non_ascii = len(s) - n_ascii
    return n_ascii + int(1.6 * n_non_ascii)


def merge_widths(widths: dict[int, int], observed: Mapping[int, int]) -> None:
    """Merge observed widths into ``widths`` in place, keeping the larger per column."""
    for _col_idx, _width in observed.items():
        n_width_prev = widths.get(_col_idx)
        if n_width_prev is None or _width > n_width_prev:
            widths[_col_idx] = _width


# #endregion
################################################################################
# #region SheetNames


def normalize_sheet_name(name: str, *, replace_to: str = "_") -> str:
    for ch in _TUP_SHEET_NAME_ILLEGAL:
        name = name.replace(ch, replace_to)
    name = name.strip() or "Sheet"
    return name[:_N_LEN_SHEET_NAME_MAX]


def make_sheet_name(base_name: str, part_idx_1based: int) -> str:
    """Sequential sheet name ``"<base> (<n>)"`` kept within Excel's 31-char limit."""
    c_sheet_name_suffix = f" ({part_idx_1based})"
    n_len_base_name_max = _N_LEN_SHEET_NAME_MAX - len(c_sheet_name_suffix)
    c_sheet_name_base = base_name[: max(1, n_len_base_name_max)]
    return f"{c_sheet_name_base}{c_sheet_name_suffix}"


# #endregion
################################################################################
# #region CellValueConversion


def convert_cell_value(value: Any) -> Any:
    """Coerce a python value into something xlsxwriter writes natively."""
    if value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "NaN"
        return "Inf" if value > 0 else "-Inf"
    if isinstance(value, (bool, int, float, str, dt.date, dt.time)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return str(value)


# #endregion
################################################################################
# #region RowChunks


def generate_row_chunks(
    height_df: int, size_rows_chunk: int
) -> Generator[tuple[int, int], None, None]:
    """Yield ``(offset, length)`` windows covering ``height_df`` rows."""
    if size_rows_chunk < 1:
        raise ValueError(f"size_rows_chunk must be >= 1, got {size_rows_chunk}")
    n_row_cursor = 0
    while n_row_cursor < height_df:
        n_rows_per_chunk = min(size_rows_chunk, height_df - n_row_cursor)
        yield n_row_cursor, n_rows_per_chunk
        n_row_cursor += n_rows_per_chunk


def calculate_row_chunk_size(*, width_df: int) -> int:
    """
    Return an appropriate row chunk size based on dataframe width.

    Wider dataframes (with more columns) use smaller row chunks to limit the
    total amount of data materialized at once.
    """
    if width_df >= 8_000:
        return 1_000
    if width_df >= 2_000:
        return 2_000
    return 10_000


# #endregion
################################################################################
