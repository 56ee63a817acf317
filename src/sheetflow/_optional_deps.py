from __future__ import annotations

from collections.abc import Sequence
from importlib import import_module
from types import ModuleType
from typing import Any

# feature extras declared in pyproject.toml
DICT_EXTRAS_BY_MODULE: dict[str, str] = {
    "xlsxwriter": "xlsx",
    "openpyxl": "xlsx-read",
    "xlrd": "xls",
    "polars": "polars",
}


def _format_extra_names(extras: Sequence[str]) -> str:
    return ",".join(dict.fromkeys(extras))


def build_optional_dependency_error(
    *,
    feature: str,
    extras: Sequence[str],
    missing_module: str | None,
) -> ModuleNotFoundError:
    extras_text = _format_extra_names(extras)
    missing_text = (
        f"Missing optional dependency `{missing_module}`."
        if missing_module
        else "Missing optional dependency."
    )
    message = (
        f"{feature} is unavailable. {missing_text} "
        f"Install extras with `pip install \"sheetflow[{extras_text}]\"` "
        f"or sync in development with `pdm sync -G dev -G {extras_text}`."
    )
    return ModuleNotFoundError(message)


def _is_required_missing(
    exc: ModuleNotFoundError, required_modules: Sequence[str]
) -> bool:
    if not required_modules:
        return True
    set_missing = set((exc.name or "").split("."))
    set_required: set[str] = set()
    for _item in required_modules:
        set_required |= set(_item.split("."))
    return bool(set_missing & set_required)


def import_optional_module(
    *,
    module_name: str,
    package: str | None,
    feature: str,
    extras: Sequence[str],
    required_modules: Sequence[str],
) -> ModuleType:
    try:
        return import_module(module_name, package=package)
    except ModuleNotFoundError as exc:
        if _is_required_missing(exc, required_modules):
            raise build_optional_dependency_error(
                feature=feature,
                extras=extras,
                missing_module=exc.name,
            ) from exc
        raise


def import_optional_attr(
    *,
    module_name: str,
    attr_name: str,
    package: str,
    feature: str,
    extras: Sequence[str],
    required_modules: Sequence[str],
) -> Any:
    module = import_optional_module(
        module_name=module_name,
        package=package,
        feature=feature,
        extras=extras,
        required_modules=required_modules,
    )
    return getattr(module, attr_name)


def require_module(name: str, *, feature: str) -> ModuleType:
    """Import a third-party module needed by ``feature`` or raise an install hint."""
    return import_optional_module(
        module_name=name,
        package=None,
        feature=feature,
        extras=(DICT_EXTRAS_BY_MODULE.get(name, name),),
        required_modules=(name,),
    )
