from __future__ import annotations

import math
import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from sheetflow.io.xlsx.builder import ChunkedSheetBuilder  # noqa: E402
from sheetflow.io.xlsx.export import ExportScheduler  # noqa: E402
from sheetflow.io.xlsx.spec import SpecRow, SpecStreamWriteOptions  # noqa: E402


class RecordingDocument:
    def __init__(self) -> None:
        self.sheets: list[dict[str, Any]] = []
        self.height_frozen = 0
        self.is_closed = False

    def create_sheet(self, name: str) -> dict[str, Any]:
        sheet = {"name": name, "rows": [], "widths": {}}
        self.sheets.append(sheet)
        return sheet

    def append_row(self, sheet: dict[str, Any], row: SpecRow, row_idx: int) -> None:
        sheet["rows"].append((row_idx, [_cell.content for _cell in row.cells]))

    def set_column_widths(self, sheet: dict[str, Any], widths: dict[int, float]) -> None:
        sheet["widths"] = dict(widths)

    def freeze_panes(self, height_rows: int) -> None:
        self.height_frozen = height_rows

    def serialize(self, path: Path) -> Path:
        Path(path).write_text(repr(self.sheets), encoding="utf-8")
        self.is_closed = True
        return Path(path)

    def close(self) -> None:
        self.is_closed = True

    @property
    def n_rows(self) -> int:
        return sum(len(_sheet["rows"]) for _sheet in self.sheets)


class RecordingFactory:
    suffix = ".txt"

    def __init__(self) -> None:
        self.documents: list[RecordingDocument] = []

    def create_document(self) -> RecordingDocument:
        document = RecordingDocument()
        self.documents.append(document)
        return document


def _make_builder(
    tmp_path: Path, **kwargs: Any
) -> tuple[ChunkedSheetBuilder, RecordingFactory, ExportScheduler]:
    factory = RecordingFactory()
    scheduler = ExportScheduler(suffix=factory.suffix, dir_temp=tmp_path)
    options = SpecStreamWriteOptions(dir_temp=tmp_path, **kwargs)
    builder = ChunkedSheetBuilder(factory, scheduler, options=options)
    return builder, factory, scheduler


@pytest.mark.parametrize(("n_rows", "n_capacity"), [(10, 4), (8, 4), (1, 3), (7, 1)])
def test_chunk_count_is_ceil_of_rows_over_capacity(
    tmp_path: Path, n_rows: int, n_capacity: int
) -> None:
    builder, factory, scheduler = _make_builder(tmp_path, capacity_rows_per_file=n_capacity)
    builder.start("Data")
    for _idx in range(n_rows):
        builder.append(SpecRow.from_values([_idx]))
    builder.seal_chunk()

    assert builder.chunks_sealed == math.ceil(n_rows / n_capacity)
    assert len(factory.documents) == math.ceil(n_rows / n_capacity)
    assert all(_doc.n_rows <= n_capacity for _doc in factory.documents)
    assert len(scheduler.paths_existing()) == math.ceil(n_rows / n_capacity)
    assert builder.rows_total == n_rows


def test_sheet_count_is_ceil_of_rows_over_limit(tmp_path: Path) -> None:
    builder, factory, _ = _make_builder(tmp_path, rows_per_sheet_max=3)
    builder.start("Data")
    for _idx in range(7):
        builder.append(SpecRow.from_values([_idx]))
    document = builder.finish_document()

    assert document is factory.documents[0]
    assert [_sheet["name"] for _sheet in document.sheets] == ["Data", "Data (1)", "Data (2)"]
    assert [len(_sheet["rows"]) for _sheet in document.sheets] == [3, 3, 1]
    assert builder.sheets_total == 3
    # row indices restart on every sheet
    assert [_idx for _idx, _ in document.sheets[1]["rows"]] == [0, 1, 2]


def test_fixed_titles_are_re_emitted_on_every_sheet_and_chunk(tmp_path: Path) -> None:
    builder, factory, _ = _make_builder(
        tmp_path, rows_per_sheet_max=3, capacity_rows_per_file=5, if_fixed_titles=True
    )
    builder.start("Data")
    row_title = SpecRow.from_values(["id"], is_header=True)
    builder.set_titles([row_title])
    builder.append(row_title)
    for _idx in range(5):
        builder.append(SpecRow.from_values([_idx]))
    document_last = builder.finish_document()

    l_sheets = [_sheet for _doc in factory.documents for _sheet in _doc.sheets]
    assert all(_sheet["rows"][0][1] == ["id"] for _sheet in l_sheets)
    l_data = [
        _values[0] for _sheet in l_sheets for _, _values in _sheet["rows"][1:]
    ]
    assert l_data == [0, 1, 2, 3, 4]
    assert all(_doc.n_rows <= 5 for _doc in factory.documents)
    assert document_last.height_frozen == 1
    assert factory.documents[0].height_frozen == 1


def test_titles_are_not_repeated_without_fixed_titles(tmp_path: Path) -> None:
    builder, factory, _ = _make_builder(tmp_path, rows_per_sheet_max=2)
    builder.start()
    row_title = SpecRow.from_values(["id"], is_header=True)
    builder.set_titles([row_title])
    builder.append(row_title)
    for _idx in range(3):
        builder.append(SpecRow.from_values([_idx]))
    document = builder.finish_document()

    assert [_values for _, _values in document.sheets[1]["rows"]] == [[1], [2]]
    assert document.height_frozen == 0


def test_widths_never_shrink(tmp_path: Path) -> None:
    builder, _, _ = _make_builder(tmp_path)
    builder.start()
    builder.append(SpecRow.from_values(["a" * 20]))
    builder.append(SpecRow.from_values(["b"]))

    assert builder.widths_by_col == {0: 20}
    document = builder.finish_document()
    assert document.sheets[0]["widths"] == {0: 22}


def test_title_block_rules(tmp_path: Path) -> None:
    builder, _, _ = _make_builder(tmp_path, rows_per_sheet_max=2, if_fixed_titles=True)
    builder.start()
    with pytest.raises(ValueError, match="no room"):
        builder.set_titles([SpecRow.from_values(["a"]), SpecRow.from_values(["b"])])

    builder.set_titles([SpecRow.from_values(["a"])])
    with pytest.raises(ValueError, match="already set"):
        builder.set_titles([SpecRow.from_values(["c"])])


def test_row_limit_above_format_limit_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="exceeds"):
        _make_builder(tmp_path, rows_per_sheet_max=2_000_000)


def test_release_closes_open_document(tmp_path: Path) -> None:
    builder, factory, _ = _make_builder(tmp_path)
    builder.start()
    builder.append(SpecRow.from_values([1]))
    builder.release()

    assert factory.documents[0].is_closed
    with pytest.raises(RuntimeError):
        builder.append(SpecRow.from_values([2]))
