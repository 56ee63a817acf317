from __future__ import annotations

import itertools
import queue
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any, Self

from loguru import logger

from ..._optional_deps import require_module
from ...errors import StopWriting, XlsxBuildError, XlsxRejectedError
from .builder import ChunkedSheetBuilder
from .conf import DEFAULT_STREAM_WRITE_OPTIONS
from .document import Document, DocumentFactory, XlsxDocumentFactory
from .export import ExportScheduler
from .spec import (
    EnumCellContentType,
    SpecCell,
    SpecRow,
    SpecStreamReport,
    SpecStreamWriteOptions,
)
from .style import SpecBandingState, StyleResolver
from .util import calculate_row_chunk_size, estimate_width_len, generate_row_chunks

_N_THREAD_IDS = itertools.count(1)

################################################################################
# #region QueueMessages
# The queue carries a tagged union; End travels behind every row already
# enqueued, so the consumer sees it only after all of them.


@dataclass(frozen=True, slots=True)
class _MsgRow:
    row: SpecRow


@dataclass(frozen=True, slots=True)
class _MsgTitles:
    rows: tuple[SpecRow, ...]


@dataclass(frozen=True, slots=True)
class _MsgEnd:
    pass


_MSG_END = _MsgEnd()
_TypeQueueMessage = _MsgRow | _MsgTitles | _MsgEnd

# #endregion
################################################################################
# #region XlsxStreamWriter


class XlsxStreamWriter:
    """
    Stream rows from any number of producer threads into ``.xlsx`` workbooks.

    Producers call :meth:`append`; one dedicated consumer thread drains a
    bounded queue and is the only code touching the workbook. When a sheet
    reaches ``rows_per_sheet_max`` rows a new sheet ``"<name> (<n>)"`` is
    opened; when a workbook reaches ``capacity_rows_per_file`` rows it is
    sealed and exported to a temp file (inline, or on ``executor``) and a
    fresh workbook is started. With ``if_fixed_titles`` the title rows are
    repeated and frozen at the top of every sheet.

    Finish with exactly one of :meth:`build`, :meth:`build_as_paths`,
    :meth:`build_as_zip` or :meth:`cancel`::

        from sheetflow.io.xlsx import XlsxStreamWriter

        writer = XlsxStreamWriter(size_queue=256, capacity_rows_per_file=100_000)
        writer.start("Orders")
        writer.append_titles([["id", "customer", "amount"]])
        for row in rows:
            writer.append(row)
        paths = writer.build_as_paths()

    Any failure on the consumer side faults the whole stream: the queue is
    discarded, temp files are deleted, further :meth:`append` calls raise
    :class:`XlsxRejectedError`, and ``build*`` raise :class:`XlsxBuildError`.

    Parameters
    ----------
    options:
        Full write options; defaults to ``SpecStreamWriteOptions()``.
    size_queue, capacity_rows_per_file, if_fixed_titles:
        Shortcuts overriding the matching fields of ``options``.
    executor:
        Pool used to export sealed chunks in the background. The writer never
        shuts it down.
    callback_path:
        Called with each chunk path once the file is persisted.
    style_resolver:
        Cell style resolution; defaults to :class:`StyleResolver`.
    document_factory:
        Spreadsheet engine; defaults to xlsxwriter-backed documents.
    """

    def __init__(
        self,
        *,
        options: SpecStreamWriteOptions | None = None,
        size_queue: int | None = None,
        capacity_rows_per_file: int | None = None,
        if_fixed_titles: bool | None = None,
        executor: Executor | None = None,
        callback_path: Callable[[Path], None] | None = None,
        style_resolver: StyleResolver | None = None,
        document_factory: DocumentFactory | None = None,
    ):
        cfg_options = DEFAULT_STREAM_WRITE_OPTIONS if options is None else options
        dict_overrides: dict[str, Any] = {
            k: v
            for k, v in {
                "size_queue": size_queue,
                "capacity_rows_per_file": capacity_rows_per_file,
                "if_fixed_titles": if_fixed_titles,
            }.items()
            if v is not None
        }
        self.options = cfg_options.with_(**dict_overrides) if dict_overrides else cfg_options

        self.style_resolver = StyleResolver() if style_resolver is None else style_resolver
        self.document_factory = (
            XlsxDocumentFactory(dir_temp=self.options.dir_temp)
            if document_factory is None
            else document_factory
        )
        self.scheduler = ExportScheduler(
            executor=executor,
            callback_path=callback_path,
            autofit=self.options.autofit,
            suffix=self.document_factory.suffix,
            prefix=self.options.prefix_temp_file,
            dir_temp=self.options.dir_temp,
        )
        self.builder = ChunkedSheetBuilder(
            self.document_factory, self.scheduler, options=self.options
        )

        self._queue: queue.Queue[_TypeQueueMessage] = queue.Queue(
            maxsize=self.options.size_queue
        )
        self._state_banding = SpecBandingState()
        self._thread_receive: threading.Thread | None = None
        self._event_stop = threading.Event()  # termination requested
        self._event_cancel = threading.Event()
        self._event_fault = threading.Event()
        self._exc_fault: BaseException | None = None
        self._lock_accept = threading.Lock()  # serializes accept+enqueue against End
        self._is_titles_sent = False
        self._is_finished = False
        self._t0 = 0.0
        self._report = SpecStreamReport()

    def __enter__(self) -> Self:
        if self._thread_receive is None:
            self.start()
        return self

    def __exit__(
        self, exc_type: type | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        if not self._is_finished:
            self.cancel()

    ############################################################
    # #region Properties
    @property
    def is_faulted(self) -> bool:
        return self._event_fault.is_set()

    @property
    def is_started(self) -> bool:
        return self._thread_receive is not None

    def report(self) -> SpecStreamReport:
        self._report.rows_appended = self.builder.rows_total
        self._report.sheets_created = self.builder.sheets_total
        self._report.chunks_sealed = self.builder.chunks_sealed
        if self._t0:
            self._report.seconds_elapsed = time.perf_counter() - self._t0
        return self._report

    # #endregion
    ############################################################
    # #region Producer
    def start(self, sheet_name: str | None = None) -> Self:
        if self._thread_receive is not None:
            raise XlsxRejectedError("Stream writer already started.")
        logger.info("Start building xlsx stream")
        self._t0 = time.perf_counter()
        self.builder.start(sheet_name)
        self._thread_receive = threading.Thread(
            target=self._receive,
            name=f"sheetflow-exec-{next(_N_THREAD_IDS)}",
            daemon=True,
        )
        self._thread_receive.start()
        return self

    def _check_accepting(self) -> None:
        if self._event_fault.is_set():
            logger.error(
                "Received a termination command, an exception occurred while processing"
            )
            raise XlsxRejectedError(
                "Received a termination command: the stream is faulted."
            ) from self._exc_fault
        if self._event_stop.is_set():
            logger.error("Received a termination command, the stream is already closed")
            raise XlsxRejectedError(
                "Received a termination command: the stream is already closed."
            )
        if self._thread_receive is None:
            raise XlsxRejectedError("Stream writer is not started; call start() first.")

    def _put(self, msg: _TypeQueueMessage) -> None:
        # bounded wait in small slices so a fault, cancel or close unblocks producers
        f_deadline = time.monotonic() + self.options.seconds_queue_timeout
        while True:
            try:
                self._queue.put(msg, timeout=self.options.seconds_poll_interval)
                return
            except queue.Full:
                if self._event_fault.is_set() or self._event_cancel.is_set():
                    raise XlsxRejectedError(
                        "Stream terminated while waiting for queue space."
                    ) from self._exc_fault
                if not isinstance(msg, _MsgEnd) and self._event_stop.is_set():
                    raise XlsxRejectedError("Stream closed while waiting for queue space.")
                if time.monotonic() >= f_deadline:
                    exc = XlsxBuildError(
                        "Put row to queue failure, timeout "
                        f"{self.options.seconds_queue_timeout:.0f}s."
                    )
                    # the consumer notices the fault and releases on its own thread
                    self._set_fault(exc)
                    raise exc

    def _enqueue(self, msg: _TypeQueueMessage) -> None:
        # accepting and enqueueing are one step with respect to termination:
        # End is only ever put under the same lock, so no row lands behind it
        with self._lock_accept:
            self._check_accepting()
            self._put(msg)

    @staticmethod
    def _coerce_row(row: SpecRow | Sequence[Any], *, is_header: bool = False) -> SpecRow:
        if isinstance(row, SpecRow):
            return row
        return SpecRow.from_values(row, is_header=is_header)

    def append(self, row: SpecRow | Sequence[Any] | None) -> None:
        """Enqueue one row; blocks while the queue is full (bounded by the timeout)."""
        if row is None:
            self._check_accepting()
            logger.warning("This row is None and will be discarded")
            return
        self._enqueue(_MsgRow(self._coerce_row(row)))

    def append_titles(self, rows: Iterable[SpecRow | Sequence[Any]]) -> None:
        """Cache ``rows`` as the title block and append them right away."""
        tup_titles = tuple(self._coerce_row(_r, is_header=True) for _r in rows)
        with self._lock_accept:
            if self._is_titles_sent:
                raise XlsxRejectedError("Title rows are already set.")
            self._check_accepting()
            self._put(_MsgTitles(tup_titles))
            self._is_titles_sent = True

    def append_frame(self, df: Any, *, if_write_header: bool = True) -> None:
        """
        Stream a polars DataFrame in row chunks.

        The column names become the title block when ``if_write_header`` is
        set and no title rows were appended yet; otherwise they are skipped.
        Numeric and temporal columns keep their native cell types.
        """
        pl = require_module("polars", feature="XlsxStreamWriter.append_frame")
        df_custom = df if isinstance(df, pl.DataFrame) else pl.DataFrame(df)

        if if_write_header:
            with self._lock_accept:
                b_titles_free = not self._is_titles_sent
            if b_titles_free:
                self.append_titles([list(df_custom.columns)])

        l_content_types = [
            EnumCellContentType.NUMBER
            if _dtype.is_numeric()
            else EnumCellContentType.BOOL
            if _dtype == pl.Boolean
            else EnumCellContentType.DATE
            if _dtype.is_temporal() and _dtype != pl.Duration
            else EnumCellContentType.TEXT
            for _dtype in df_custom.dtypes
        ]
        n_rows_chunk = calculate_row_chunk_size(width_df=df_custom.width)
        for _offset, _length in generate_row_chunks(df_custom.height, n_rows_chunk):
            for _row_val in df_custom.slice(_offset, _length).iter_rows():
                l_cells: list[SpecCell] = []
                dict_widths: dict[int, int] = {}
                for _col_idx, _value in enumerate(_row_val):
                    cfg_type = l_content_types[_col_idx]
                    if cfg_type == EnumCellContentType.TEXT and _value is not None:
                        _value = str(_value)
                    l_cells.append(
                        SpecCell(col=_col_idx, content=_value, content_type=cfg_type)
                    )
                    if n_width := estimate_width_len(_value):
                        dict_widths[_col_idx] = n_width
                self.append(SpecRow(cells=l_cells, widths_by_col=dict_widths))

    # #endregion
    ############################################################
    # #region Consumer
    def _get(self) -> _TypeQueueMessage:
        f_deadline = time.monotonic() + self.options.seconds_queue_timeout
        while True:
            if self._event_cancel.is_set() or self._event_fault.is_set():
                raise StopWriting()
            try:
                return self._queue.get(timeout=self.options.seconds_poll_interval)
            except queue.Empty:
                if time.monotonic() >= f_deadline:
                    raise XlsxBuildError(
                        "Get row failure, timeout "
                        f"{self.options.seconds_queue_timeout:.0f}s."
                    ) from None

    def _consume(self, row: SpecRow) -> None:
        if not row.is_from_template:
            self.style_resolver.resolve_row(row, self._state_banding)
        self.builder.append(row)

    def _receive(self) -> None:
        exc_fault: BaseException | None = None
        try:
            while not isinstance(msg := self._get(), _MsgEnd):
                if isinstance(msg, _MsgTitles):
                    self.builder.set_titles(msg.rows)
                    for _row in msg.rows:
                        self._consume(_row)
                else:
                    self._consume(msg.row)
            logger.info(f"Total size: {self.builder.rows_total}")
        except StopWriting:
            logger.debug("Consumer stopped by cancel() or a producer fault")
        except Exception as e:
            logger.error(f"An exception occurred while processing: {e}")
            exc_fault = e
        if exc_fault is not None or self._event_fault.is_set():
            # released before the flag is raised, so a failed build* finds nothing left
            self._discard_queue()
            self._release()
            if exc_fault is not None:
                self._set_fault(exc_fault)

    def _set_fault(self, exc: BaseException) -> None:
        if self._exc_fault is None:
            self._exc_fault = exc
        self._event_fault.set()

    def _fail(self, exc: BaseException) -> None:
        # only called once the consumer has exited
        self._set_fault(exc)
        self._discard_queue()
        self._release()

    def _discard_queue(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    # #endregion
    ############################################################
    # #region Finalization
    def _raise_if_faulted(self) -> None:
        if self._event_fault.is_set():
            raise XlsxBuildError(
                "An exception occurred while processing"
            ) from self._exc_fault

    def _wait_drained(self) -> None:
        with self._lock_accept:
            self._raise_if_faulted()
            if self._thread_receive is None:
                raise XlsxRejectedError("Stream writer is not started; call start() first.")
            if self._event_stop.is_set():
                raise XlsxRejectedError("The stream is already closed.")
            self._event_stop.set()
            try:
                self._put(_MSG_END)
            except XlsxRejectedError:
                self._raise_if_faulted()
                raise
        # the consumer exits right after it has processed End
        while self._thread_receive.is_alive():
            self._thread_receive.join(timeout=self.options.seconds_poll_interval)
            self._raise_if_faulted()
        self._raise_if_faulted()

    def _log_success(self) -> None:
        n_ms = (time.perf_counter() - self._t0) * 1000
        logger.info(f"Build xlsx success, takes {n_ms:.0f} ms")

    def build(self) -> Document:
        """Finish the stream and return the in-memory workbook (nothing is written to disk)."""
        self._wait_drained()
        try:
            document = self.builder.finish_document()
        except Exception as e:
            self._fail(e)
            self._raise_if_faulted()
            raise
        self._is_finished = True
        self._log_success()
        return document

    def _flush_and_join(self) -> None:
        self._wait_drained()
        try:
            self.builder.seal_chunk()
            self.scheduler.join()
        except Exception as e:
            self._fail(e)
            self._raise_if_faulted()
            raise

    def build_as_paths(self) -> list[Path]:
        """Finish the stream, export the last chunk and return every chunk path."""
        self._flush_and_join()
        self._is_finished = True
        self._log_success()
        return self.scheduler.paths_existing()

    def build_as_zip(self, name: str) -> Path:
        """Finish the stream and pack every chunk into one zip archive."""
        self._flush_and_join()
        try:
            path_zip = self.scheduler.package_zip(name)
        except Exception as e:
            self._fail(e)
            self._raise_if_faulted()
            raise
        self._is_finished = True
        self._log_success()
        return path_zip

    def cancel(self) -> None:
        """Abort the stream and delete everything produced so far; a no-op once built."""
        if self._is_finished:
            logger.debug("Xlsx stream already finished, cancel() ignored")
            return
        self._event_stop.set()
        self._event_cancel.set()
        if self._thread_receive is not None and self._thread_receive.is_alive():
            self._thread_receive.join()
        self._discard_queue()
        self._release()
        self._is_finished = True
        logger.info("Xlsx stream cancelled")

    def _release(self) -> None:
        try:
            self.builder.release()
        except Exception as e:
            logger.warning(f"Failed to release workbook: {e}")
        self.scheduler.discard()

    # #endregion
    ############################################################


# #endregion
################################################################################
