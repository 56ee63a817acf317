import os
from enum import StrEnum
from pathlib import Path

# leading bytes of a zip local file header / empty archive / spanned archive
TUP_MAGIC_ZIP = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
# OLE2 compound document (legacy .xls)
C_MAGIC_OLE2 = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
N_SIZE_MAGIC = len(C_MAGIC_OLE2)


class EnumSourceFormat(StrEnum):
    XLSX = "xlsx"
    XLS = "xls"
    CSV = "csv"


def sniff_bytes(head: bytes) -> EnumSourceFormat:
    """Classify a file by its first bytes; anything unknown is delimited text."""
    if head.startswith(TUP_MAGIC_ZIP):
        return EnumSourceFormat.XLSX
    if head.startswith(C_MAGIC_OLE2):
        return EnumSourceFormat.XLS
    return EnumSourceFormat.CSV


def sniff_format(path: os.PathLike[str] | str) -> EnumSourceFormat:
    """Classify ``path`` by content. The file extension is never consulted."""
    with open(Path(path), "rb") as fh:
        return sniff_bytes(fh.read(N_SIZE_MAGIC))
