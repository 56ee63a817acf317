from __future__ import annotations

import inspect
import os
import shutil
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, BinaryIO

from loguru import logger

from ..._optional_deps import require_module
from ...errors import StopReading, XlsxReadError
from ..xlsx.export import create_temp_file, delete_temp_files
from .decoders import DICT_DECODERS_BY_FORMAT
from .mapping import TypeRowMapper, create_row_mapper
from .sniff import EnumSourceFormat, sniff_format
from .spec import (
    SpecReadConfig,
    SpecReadContext,
    SpecRowContext,
    SpecRowView,
    TypeExceptionHandler,
    TypeSheetStartCallback,
)

TypeSource = os.PathLike[str] | str | bytes | bytearray | BinaryIO


################################################################################
# #region DefaultCallbacks
def log_and_continue(exc: Exception, context: SpecReadContext) -> bool:
    logger.warning(
        f"Failed to read row {context.row_index} of sheet `{context.sheet_name}`: {exc}"
    )
    return False


def log_sheet_start(sheet_name: str, sheet_index: int) -> None:
    logger.info(f"Start read excel, sheet: {sheet_name}, index: {sheet_index}")


def count_positional_params(func: Callable[..., Any]) -> int:
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return 1
    n_positional = 0
    for _param in sig.parameters.values():
        if _param.kind == inspect.Parameter.VAR_POSITIONAL:
            return 2
        # parameters with defaults are never filled by the dispatcher
        if (
            _param.kind
            in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
            and _param.default is inspect.Parameter.empty
        ):
            n_positional += 1
    return n_positional


# #endregion
################################################################################
# #region RowDispatcher
class _RowDispatcher:
    """Per-row protocol: trim, row filter, mapper, record filter, callback."""

    def __init__(
        self,
        config: SpecReadConfig,
        mapper: TypeRowMapper,
        callback: Callable[..., Any],
        *,
        if_with_context: bool,
    ):
        self.config = config
        self.mapper = mapper
        self.callback = callback
        self.if_with_context = if_with_context
        self.exception_handler = config.exception_handler or log_and_continue
        self.callback_sheet_start = config.callback_sheet_start or log_sheet_start
        self.n_rows_delivered = 0

    def on_sheet_start(self, sheet_name: str, sheet_index: int) -> None:
        self.callback_sheet_start(sheet_name, sheet_index)

    def on_row(self, row: SpecRowView) -> None:
        try:
            if self.config.if_trim:
                row.cells = {_k: self.config.trim(_v) for _k, _v in row.cells.items()}
            if self.config.row_filter is not None and not self.config.row_filter(row):
                return
            obj_record = self.mapper(row)
            if self.config.record_filter is not None and not self.config.record_filter(
                obj_record
            ):
                return
            if self.if_with_context:
                ctx = SpecRowContext(row.sheet_name, row.sheet_index, row.row_index)
                obj_result = self.callback(obj_record, ctx)
            else:
                obj_result = self.callback(obj_record)
        except StopReading:
            raise
        except Exception as e:
            self.on_row_error(
                e, SpecReadContext(row.sheet_name, row.sheet_index, row.row_index, row)
            )
            return
        self.n_rows_delivered += 1
        # only an explicit False stops; None from plain consumers continues
        if obj_result is False:
            raise StopReading()

    def on_row_error(self, exc: Exception, context: SpecReadContext) -> None:
        if self.exception_handler(exc, context):
            logger.info(
                f"Read aborted by exception handler at row {context.row_index} "
                f"of sheet `{context.sheet_name}`"
            )
            raise StopReading() from exc


# #endregion
################################################################################
# #region SheetReader
class SheetReader:
    """
    Stream rows out of ``.xlsx``, ``.xls`` or delimited text files.

    The format is picked by sniffing the leading bytes, never from the file
    name. Each row goes through: trim (``fn_trim``, default ``str.strip``),
    ``row_filter`` on the raw :class:`SpecRowView`, the record mapper built
    from ``target`` (see :func:`create_row_mapper`), ``record_filter`` on the
    record, and finally the delivery callback.

    Sheet selection precedence: ``if_read_all_sheets``, then ``sheet_names``,
    then ``sheets`` (indices, default ``{0}``). CSV input is always one sheet.

    Any exception raised while decoding or processing one row is handed to
    ``exception_handler(exc, SpecReadContext)``: returning ``False`` skips the
    row, returning ``True`` ends the read cleanly. The default logs a warning
    and continues. A broken container surfaces as :class:`XlsxReadError`.

    Example::

        reader = SheetReader(Order, sheets=1, row_filter=lambda row: row.row_index > 0)
        orders = reader.read("orders.xlsx")
    """

    def __init__(
        self,
        target: Any = None,
        *,
        sheets: int | Iterable[int] | None = None,
        sheet_names: str | Iterable[str] | None = None,
        if_read_all_sheets: bool = False,
        row_filter: Callable[[SpecRowView], bool] | None = None,
        record_filter: Callable[[Any], bool] | None = None,
        charset: str = "utf-8",
        if_trim: bool = True,
        delimiter: str = ",",
        exception_handler: TypeExceptionHandler | None = None,
        callback_sheet_start: TypeSheetStartCallback | None = None,
        fn_trim: Callable[[str], str] | None = None,
    ):
        self.config = SpecReadConfig.build(
            target=target,
            sheets=sheets,
            sheet_names=sheet_names,
            if_read_all_sheets=if_read_all_sheets,
            row_filter=row_filter,
            record_filter=record_filter,
            charset=charset,
            if_trim=if_trim,
            delimiter=delimiter,
            exception_handler=exception_handler,
            callback_sheet_start=callback_sheet_start,
            fn_trim=fn_trim,
        )
        self.mapper = create_row_mapper(target)

    ############################################################
    # #region SourceHandling
    @staticmethod
    def _get_source_name(source: TypeSource) -> str:
        if isinstance(source, (str, os.PathLike)):
            return Path(source).name
        if isinstance(source, (bytes, bytearray)):
            return "<bytes>"
        return Path(str(getattr(source, "name", "<stream>"))).name

    @contextmanager
    def _open_source(self, source: TypeSource) -> Iterator[Path]:
        if isinstance(source, (str, os.PathLike)):
            yield Path(source)
            return
        # in-memory sources are spooled to a temp file, removed afterwards
        path_tmp = create_temp_file("sheetflow_read", ".tmp")
        try:
            with open(path_tmp, "wb") as fh_dst:
                if isinstance(source, (bytes, bytearray)):
                    fh_dst.write(source)
                elif hasattr(source, "read"):
                    shutil.copyfileobj(source, fh_dst)
                else:
                    raise TypeError(f"Unsupported read source: {type(source).__name__}")
            yield path_tmp
        finally:
            delete_temp_files([path_tmp])

    # #endregion
    ############################################################
    # #region Read
    def _run(self, source: TypeSource, dispatcher: _RowDispatcher) -> None:
        c_name = self._get_source_name(source)
        t0 = time.perf_counter()
        with self._open_source(source) as path:
            try:
                cfg_format = sniff_format(path)
            except OSError as e:
                raise XlsxReadError(
                    f"Fail to get file magic: {c_name}", source_name=c_name
                ) from e

            if cfg_format == EnumSourceFormat.CSV:
                decoder = DICT_DECODERS_BY_FORMAT[cfg_format](
                    self.config, dispatcher, sheet_name=Path(c_name).stem or None
                )
            else:
                decoder = DICT_DECODERS_BY_FORMAT[cfg_format](self.config, dispatcher)
            try:
                decoder.decode(path)
            except StopReading:
                logger.debug(f"Stopped reading `{c_name}` early")
            except XlsxReadError:
                raise
            except Exception as e:
                raise XlsxReadError(
                    f"Fail to read {cfg_format} file: {c_name}", source_name=c_name
                ) from e
        n_ms = (time.perf_counter() - t0) * 1000
        logger.info(
            f"Read {cfg_format} `{c_name}`: {dispatcher.n_rows_delivered} rows, "
            f"takes {n_ms:.0f} ms"
        )

    def read(self, source: TypeSource) -> list[Any]:
        """Collect every delivered record into a list."""
        l_records: list[Any] = []
        self.read_then(source, l_records.append, with_context=False)
        return l_records

    def read_then(
        self,
        source: TypeSource,
        callback: Callable[..., Any],
        *,
        with_context: bool | None = None,
    ) -> None:
        """
        Deliver records one by one to ``callback``.

        ``callback(record)`` or ``callback(record, SpecRowContext)``; the
        context form is picked when the callable takes two positional
        parameters, or forced with ``with_context``. Returning exactly
        ``False`` stops the whole read, across all selected sheets.
        """
        b_with_context = (
            count_positional_params(callback) >= 2
            if with_context is None
            else with_context
        )
        self._run(
            source,
            _RowDispatcher(
                self.config, self.mapper, callback, if_with_context=b_with_context
            ),
        )

    def read_frame(self, source: TypeSource, *, if_header: bool = True) -> Any:
        """
        Collect raw row values into a ``polars.DataFrame``.

        Filters and the exception handler still apply; the record mapper does
        not. With ``if_header`` the first delivered row names the columns.
        """
        pl = require_module("polars", feature="SheetReader.read_frame")
        l_rows: list[list[Any]] = []
        self._run(
            source,
            _RowDispatcher(
                self.config,
                create_row_mapper(None),
                l_rows.append,
                if_with_context=False,
            ),
        )

        l_header: list[Any] = l_rows.pop(0) if (if_header and l_rows) else []
        n_width = max((len(_r) for _r in l_rows), default=0)
        n_width = max(n_width, len(l_header))
        l_columns = _build_column_names(l_header, n_width)
        l_data = [_r + [None] * (n_width - len(_r)) for _r in l_rows]
        return pl.DataFrame(
            l_data, schema=l_columns, orient="row", infer_schema_length=None, strict=False
        )

    # #endregion
    ############################################################


def _build_column_names(header: list[Any], width: int) -> list[str]:
    l_names: list[str] = []
    set_seen: set[str] = set()
    for _idx in range(width):
        obj_value = header[_idx] if _idx < len(header) else None
        c_name = f"column_{_idx + 1}" if obj_value in (None, "") else str(obj_value)
        c_unique = c_name
        n_dup = 1
        while c_unique in set_seen:
            n_dup += 1
            c_unique = f"{c_name}_{n_dup}"
        set_seen.add(c_unique)
        l_names.append(c_unique)
    return l_names


# #endregion
################################################################################
