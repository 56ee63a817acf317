from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sheetflow._optional_deps import import_optional_attr

__all__ = [
    "XlsxStreamWriter",
    "XlsxDocument",
    "XlsxDocumentFactory",
    "ChunkedSheetBuilder",
    "ExportScheduler",
    "StyleResolver",
    "SpecBandingState",
    "SpecCell",
    "SpecCellFormat",
    "SpecRow",
    "SpecAutofitPolicy",
    "SpecStreamWriteOptions",
    "SpecStreamReport",
    "EnumCellContentType",
]

if TYPE_CHECKING:
    from .builder import ChunkedSheetBuilder
    from .document import XlsxDocument, XlsxDocumentFactory
    from .export import ExportScheduler
    from .spec import (
        EnumCellContentType,
        SpecAutofitPolicy,
        SpecCell,
        SpecCellFormat,
        SpecRow,
        SpecStreamReport,
        SpecStreamWriteOptions,
    )
    from .stream import XlsxStreamWriter
    from .style import SpecBandingState, StyleResolver

# pure data classes; importable without the xlsx extra
_SET_SPEC_NAMES = {
    "SpecCell",
    "SpecCellFormat",
    "SpecRow",
    "SpecAutofitPolicy",
    "SpecStreamWriteOptions",
    "SpecStreamReport",
    "EnumCellContentType",
}

_DICT_ENGINE_MODULES = {
    "XlsxStreamWriter": ".stream",
    "XlsxDocument": ".document",
    "XlsxDocumentFactory": ".document",
    "ChunkedSheetBuilder": ".builder",
    "ExportScheduler": ".export",
    "StyleResolver": ".style",
    "SpecBandingState": ".style",
}


def __getattr__(name: str) -> Any:
    if name in _SET_SPEC_NAMES:
        return import_optional_attr(
            module_name=".spec",
            attr_name=name,
            package=__name__,
            feature="sheetflow.io.xlsx",
            extras=("xlsx",),
            required_modules=(),
        )
    if name in _DICT_ENGINE_MODULES:
        return import_optional_attr(
            module_name=_DICT_ENGINE_MODULES[name],
            attr_name=name,
            package=__name__,
            feature="sheetflow.io.xlsx",
            extras=("xlsx",),
            required_modules=("xlsxwriter",),
        )
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
