from __future__ import annotations


class SheetflowError(Exception):
    """Base class for every error raised by sheetflow."""


class XlsxBuildError(SheetflowError, RuntimeError):
    """The write pipeline hit an unrecoverable fault; it cannot be used any more."""


class XlsxRejectedError(SheetflowError, RuntimeError):
    """A call arrived after termination was requested or after a fault."""


class XlsxReadError(SheetflowError, RuntimeError):
    """The input could not be decoded (malformed container, unreadable stream)."""

    def __init__(self, message: str, *, source_name: str = "") -> None:
        super().__init__(message)
        self.source_name = source_name


class StopReading(SheetflowError):
    """Internal signal that unwinds a decode loop; never surfaced to callers."""


class StopWriting(SheetflowError):
    """Internal signal that ends the consumer thread after ``cancel()``."""
