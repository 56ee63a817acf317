from __future__ import annotations

from importlib import import_module
from importlib.metadata import PackageNotFoundError, version
from typing import TYPE_CHECKING, Any

__all__ = [
    "__version__",
    "XlsxStreamWriter",
    "SheetReader",
    "SheetflowError",
    "XlsxBuildError",
    "XlsxReadError",
    "XlsxRejectedError",
]

try:
    __version__ = version("sheetflow")
except PackageNotFoundError:
    __version__ = "0.0.0"

if TYPE_CHECKING:
    from sheetflow.errors import (
        SheetflowError,
        XlsxBuildError,
        XlsxReadError,
        XlsxRejectedError,
    )
    from sheetflow.io.reader import SheetReader
    from sheetflow.io.xlsx import XlsxStreamWriter

# attribute -> module exporting it; resolved on first access
_LAZY_EXPORTS: dict[str, str] = {
    "XlsxStreamWriter": "sheetflow.io.xlsx",
    "SheetReader": "sheetflow.io.reader",
    "SheetflowError": "sheetflow.errors",
    "XlsxBuildError": "sheetflow.errors",
    "XlsxReadError": "sheetflow.errors",
    "XlsxRejectedError": "sheetflow.errors",
}


def __getattr__(name: str) -> Any:
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    obj_export = getattr(import_module(module_name), name)
    globals()[name] = obj_export
    return obj_export


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
