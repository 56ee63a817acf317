from collections.abc import Iterable

from loguru import logger

from .conf import N_NROWS_XLSX_MAX
from .document import Document, DocumentFactory
from .export import ExportScheduler
from .spec import SpecExportJob, SpecExportTask, SpecRow, SpecStreamWriteOptions
from .util import make_sheet_name, merge_widths, normalize_sheet_name


class ChunkedSheetBuilder:
    """
    Append rows to a growing document, rolling sheets and chunks at their limits.

    Only one thread may drive a builder: it owns the current document, the
    current sheet and every counter below without any locking. A sealed
    document is handed to the :class:`ExportScheduler` and never touched again.

    Limits are checked *before* a row is written, so a chunk holding exactly
    ``capacity_rows_per_file`` rows is only sealed once another row arrives
    (or by an explicit :meth:`seal_chunk`). Title rows count towards both the
    sheet row limit and the chunk capacity.
    """

    def __init__(
        self,
        document_factory: DocumentFactory,
        scheduler: ExportScheduler,
        *,
        options: SpecStreamWriteOptions,
    ):
        if options.rows_per_sheet_max > N_NROWS_XLSX_MAX:
            raise ValueError(
                f"rows_per_sheet_max={options.rows_per_sheet_max} exceeds the "
                f"Excel limit of {N_NROWS_XLSX_MAX} rows."
            )
        self.document_factory = document_factory
        self.scheduler = scheduler
        self.options = options
        self.sheet_name = normalize_sheet_name(options.sheet_name)

        self.document: Document | None = None
        self.sheet = None
        self.titles: tuple[SpecRow, ...] | None = None
        self.widths_by_col: dict[int, int] = {}

        self.n_rows_sheet = 0
        self.n_rows_document = 0
        self.n_sheets_document = 0

        self.rows_total = 0
        self.sheets_total = 0
        self.chunks_sealed = 0

    @property
    def height_titles_frozen(self) -> int:
        if self.options.if_fixed_titles and self.titles:
            return len(self.titles)
        return 0

    def start(self, sheet_name: str | None = None) -> None:
        if self.document is not None:
            raise RuntimeError("Builder already started.")
        if sheet_name:
            self.sheet_name = normalize_sheet_name(sheet_name)
        self._open_document()

    def set_titles(self, rows: Iterable[SpecRow]) -> None:
        if self.titles is not None:
            raise ValueError("Title rows are already set and cannot be replaced.")
        tup_titles = tuple(rows)
        if self.options.if_fixed_titles:
            n_titles = len(tup_titles)
            if n_titles >= self.options.rows_per_sheet_max:
                raise ValueError(
                    f"{n_titles} fixed title rows leave no room in a sheet of "
                    f"{self.options.rows_per_sheet_max} rows."
                )
            n_capacity = self.options.capacity_rows_per_file
            if n_capacity > 0 and n_titles >= n_capacity:
                raise ValueError(
                    f"{n_titles} fixed title rows leave no room in a chunk of "
                    f"{n_capacity} rows."
                )
        self.titles = tup_titles

    def append(self, row: SpecRow) -> None:
        if self.document is None:
            raise RuntimeError("Builder is not started or its document was released.")
        n_capacity = self.options.capacity_rows_per_file
        if n_capacity > 0 and self.n_rows_document >= n_capacity:
            self.seal_chunk()
            self._open_document()
        if self.n_rows_sheet >= self.options.rows_per_sheet_max:
            self._roll_sheet()

        n_row_idx = self.n_rows_sheet
        row.index = n_row_idx
        for _cell in row.cells:
            _cell.row = n_row_idx
        self._write(row)
        self.rows_total += 1

    def _write(self, row: SpecRow) -> None:
        assert self.document is not None
        self.document.append_row(self.sheet, row, self.n_rows_sheet)
        self.n_rows_sheet += 1
        self.n_rows_document += 1
        merge_widths(self.widths_by_col, row.widths_by_col)

    def _emit_titles(self) -> None:
        if not self.height_titles_frozen:
            return
        assert self.titles is not None
        # re-emitted verbatim: the cached rows keep their styles and indices
        for _row in self.titles:
            self._write(_row)

    def _apply_widths(self) -> None:
        assert self.document is not None
        cfg_autofit = self.options.autofit
        if not (cfg_autofit.if_enabled and self.widths_by_col):
            return
        self.document.set_column_widths(
            self.sheet,
            {
                _col: cfg_autofit.derive_width(_width)
                for _col, _width in self.widths_by_col.items()
            },
        )

    def _open_document(self) -> None:
        self.document = self.document_factory.create_document()
        self.n_sheets_document = 0
        self.n_rows_sheet = 0
        self.n_rows_document = 0
        self.widths_by_col = {}
        self.sheet = self.document.create_sheet(self.sheet_name)
        self.sheets_total += 1
        self._emit_titles()

    def _roll_sheet(self) -> None:
        assert self.document is not None
        self._apply_widths()
        self.n_sheets_document += 1
        self.widths_by_col = {}
        self.n_rows_sheet = 0
        c_sheet_name = make_sheet_name(self.sheet_name, self.n_sheets_document)
        self.sheet = self.document.create_sheet(c_sheet_name)
        self.sheets_total += 1
        logger.debug(f"Sheet limit reached, continue on sheet `{c_sheet_name}`")
        self._emit_titles()

    def seal_chunk(self) -> SpecExportTask:
        """Hand the current document to the scheduler; the builder forgets it."""
        if self.document is None:
            raise RuntimeError("No document to seal.")
        job = SpecExportJob(
            document=self.document,
            sheet=self.sheet,
            widths_by_col=dict(self.widths_by_col),
            height_titles_frozen=self.height_titles_frozen,
        )
        self.document = None
        self.sheet = None
        self.widths_by_col = {}
        self.chunks_sealed += 1
        logger.debug(
            f"Sealed chunk #{self.chunks_sealed} with {self.n_rows_document} rows"
        )
        return self.scheduler.submit(job)

    def finish_document(self) -> Document:
        """Finalize widths and title freezing, then give the document to the caller."""
        if self.document is None:
            raise RuntimeError("No document to finish.")
        self._apply_widths()
        self.document.freeze_panes(self.height_titles_frozen)
        document = self.document
        self.document = None
        self.sheet = None
        return document

    def release(self) -> None:
        if self.document is not None:
            document = self.document
            self.document = None
            self.sheet = None
            document.close()
