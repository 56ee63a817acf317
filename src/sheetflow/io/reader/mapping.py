from __future__ import annotations

import dataclasses
import datetime as dt
import types
import typing
from collections.abc import Callable
from decimal import Decimal
from typing import Any

from .spec import SpecRowView

TypeRowMapper = Callable[[SpecRowView], Any]

SET_TRUE_TEXT = frozenset({"true", "1", "yes", "y"})
SET_FALSE_TEXT = frozenset({"false", "0", "no", "n"})


################################################################################
# #region ScalarConverters
def _to_str(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def _to_int(value: Any) -> int:
    if isinstance(value, (int, float, Decimal)):
        if value != int(value):
            raise ValueError(f"Cannot convert {value!r} to int without losing precision")
        return int(value)
    try:
        return _to_int(Decimal(str(value).strip()))
    except ArithmeticError as e:
        raise ValueError(f"Cannot convert {value!r} to int") from e


def _to_float(value: Any) -> float:
    return float(value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return bool(value)
    c_text = str(value).strip().lower()
    if c_text in SET_TRUE_TEXT:
        return True
    if c_text in SET_FALSE_TEXT:
        return False
    raise ValueError(f"Cannot convert {value!r} to bool")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except ArithmeticError as e:
        raise ValueError(f"Cannot convert {value!r} to Decimal") from e


def _to_datetime(value: Any) -> dt.datetime:
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time())
    if isinstance(value, str):
        return dt.datetime.fromisoformat(value.strip())
    raise TypeError(f"Cannot convert {type(value).__name__} to datetime")


def _to_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        return dt.datetime.fromisoformat(value.strip()).date()
    raise TypeError(f"Cannot convert {type(value).__name__} to date")


DICT_CONVERTERS: dict[type, Callable[[Any], Any]] = {
    str: _to_str,
    bool: _to_bool,
    int: _to_int,
    float: _to_float,
    Decimal: _to_decimal,
    dt.datetime: _to_datetime,
    dt.date: _to_date,
}


def _unwrap_optional(hint: Any) -> Any:
    if typing.get_origin(hint) in (typing.Union, types.UnionType):
        l_args = [_a for _a in typing.get_args(hint) if _a is not type(None)]
        if len(l_args) == 1:
            return l_args[0]
    return hint


# #endregion
################################################################################
# #region RowMappers
def _create_dataclass_mapper(target: type) -> TypeRowMapper:
    dict_hints = typing.get_type_hints(target)
    l_bindings: list[tuple[str, int, Callable[[Any], Any] | None]] = []
    for _pos, _field in enumerate(_f for _f in dataclasses.fields(target) if _f.init):
        n_col = int(_field.metadata.get("column", _pos))
        obj_hint = _unwrap_optional(dict_hints.get(_field.name, Any))
        l_bindings.append((_field.name, n_col, DICT_CONVERTERS.get(obj_hint)))

    def map_row(row: SpecRowView) -> Any:
        dict_kwargs: dict[str, Any] = {}
        for _name, _col, _convert in l_bindings:
            obj_value = row.cells.get(_col)
            if obj_value is None:
                # leave missing cells to the field default, if there is one
                continue
            dict_kwargs[_name] = obj_value if _convert is None else _convert(obj_value)
        return target(**dict_kwargs)

    return map_row


def create_row_mapper(target: Any) -> TypeRowMapper:
    """
    Build the function turning a :class:`SpecRowView` into a record.

    - ``None``: the dense list of cell values.
    - ``dict``: ``{col_idx: value}`` for cells present in the row.
    - a dataclass: one field per column, in declaration order unless the
      field sets ``metadata={"column": idx}``; values are converted to the
      annotated scalar type (``str``, ``int``, ``float``, ``bool``,
      ``Decimal``, ``date``, ``datetime``, or ``X | None`` of those).
    - any other callable: called with the row view.
    """
    if target is None:
        return lambda row: row.values
    if target is dict:
        return lambda row: dict(row.cells)
    if isinstance(target, type) and dataclasses.is_dataclass(target):
        return _create_dataclass_mapper(target)
    if callable(target):
        return target
    raise TypeError(f"Unsupported read target: {target!r}")


# #endregion
################################################################################
