from collections.abc import Mapping
from types import MappingProxyType
from typing import Literal

from .spec import SpecCellFormat, SpecStreamWriteOptions

N_NROWS_XLSX_MAX = 1_048_576

C_SUFFIX_XLSX = ".xlsx"
C_SUFFIX_ZIP = ".zip"

# Strategy/Preference/Adjustable Parameters for the streaming writer.

LIT_FMT_KEYS = Literal["text", "number", "date", "header"]
_cls_base_fmt_spec = SpecCellFormat(
    font_name="Times New Roman", font_size=11, border=1, align="left", valign="vcenter"
)

DEFAULT_XLSX_FORMATS: Mapping[LIT_FMT_KEYS, SpecCellFormat] = MappingProxyType(
    {
        "text": _cls_base_fmt_spec,
        "header": _cls_base_fmt_spec.with_(bold=True, align="center"),
        # "General" display unless the cell carries its own num_format
        "number": _cls_base_fmt_spec.with_(align="right"),
        "date": _cls_base_fmt_spec.with_(num_format="yyyy-mm-dd hh:mm:ss"),
    }
)

# light band applied to every other row
C_COLOR_BAND_DEFAULT = "#F2F2F2"

DEFAULT_STREAM_WRITE_OPTIONS = SpecStreamWriteOptions()
