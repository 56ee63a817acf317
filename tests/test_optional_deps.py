from __future__ import annotations

import re
import sys
from pathlib import Path

import pytest

# Ensure src-layout imports work when running tests from repo checkout.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from sheetflow._optional_deps import (  # noqa: E402
    import_optional_module,
    require_module,
)


def test_optional_import_error_contains_install_hint() -> None:
    with pytest.raises(ModuleNotFoundError) as exc_info:
        import_optional_module(
            module_name=".missing_feature_module",
            package="sheetflow",
            feature="sheetflow.io.xlsx",
            extras=("xlsx",),
            required_modules=("missing_feature_module",),
        )

    message = str(exc_info.value)
    assert "sheetflow.io.xlsx is unavailable" in message
    assert re.search(r'pip install "sheetflow\[xlsx\]"', message)
    assert "pdm sync -G dev -G xlsx" in message


def test_unrelated_missing_module_is_not_rewrapped() -> None:
    with pytest.raises(ModuleNotFoundError) as exc_info:
        import_optional_module(
            module_name=".missing_feature_module",
            package="sheetflow",
            feature="sheetflow.io.xlsx",
            extras=("xlsx",),
            required_modules=("xlsxwriter",),
        )

    assert "is unavailable" not in str(exc_info.value)


def test_require_module_maps_module_to_extra() -> None:
    with pytest.raises(ModuleNotFoundError) as exc_info:
        require_module("sheetflow_no_such_dependency", feature="SheetReader")

    message = str(exc_info.value)
    assert "SheetReader is unavailable" in message
    assert "`sheetflow_no_such_dependency`" in message


def test_package_exports_resolve_lazily() -> None:
    import sheetflow

    assert sheetflow.XlsxReadError.__name__ == "XlsxReadError"
    with pytest.raises(AttributeError):
        getattr(sheetflow, "NoSuchExport")
