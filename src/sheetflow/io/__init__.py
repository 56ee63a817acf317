"""Spreadsheet I/O: streaming writer (``sheetflow.io.xlsx``) and reader (``sheetflow.io.reader``)."""
