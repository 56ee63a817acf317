from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sheetflow._optional_deps import import_optional_attr

__all__ = [
    "SheetReader",
    "SpecReadConfig",
    "SpecReadContext",
    "SpecRowContext",
    "SpecRowView",
    "EnumSourceFormat",
    "sniff_format",
    "create_row_mapper",
]

if TYPE_CHECKING:
    from .mapping import create_row_mapper
    from .reader import SheetReader
    from .sniff import EnumSourceFormat, sniff_format
    from .spec import SpecReadConfig, SpecReadContext, SpecRowContext, SpecRowView

_DICT_EXPORT_MODULES = {
    "SheetReader": ".reader",
    "SpecReadConfig": ".spec",
    "SpecReadContext": ".spec",
    "SpecRowContext": ".spec",
    "SpecRowView": ".spec",
    "EnumSourceFormat": ".sniff",
    "sniff_format": ".sniff",
    "create_row_mapper": ".mapping",
}


def __getattr__(name: str) -> Any:
    # format engines (openpyxl, xlrd, polars) are imported on first use, not here
    module_name = _DICT_EXPORT_MODULES.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return import_optional_attr(
        module_name=module_name,
        attr_name=name,
        package=__name__,
        feature="sheetflow.io.reader",
        extras=("all",),
        required_modules=(),
    )
