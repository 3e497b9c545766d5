"""
Spreadsheet I/O Module

Reads uploaded spreadsheets into the plain 2D grid shape the engine works on
and writes the edited grid back out. Only the first worksheet of a workbook is
used; row 0 of the grid is the header row.
"""

import csv
import io
import os
import logging
from typing import List, Any, Union, BinaryIO

import pandas as pd

from .data_structures import Grid, normalize_row

logger = logging.getLogger(__name__)

SUPPORTED_IMPORT_TYPES = ('xlsx', 'xlsm', 'csv')
SUPPORTED_EXPORT_TYPES = ('xlsx', 'csv')

EXPORT_MIMETYPES = {
    'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'csv': 'text/csv',
}

FileSource = Union[str, bytes, BinaryIO]


def file_extension(file_name: str) -> str:
    return os.path.splitext(file_name)[1].lstrip('.').lower()


def is_supported_export_type(fmt: str) -> bool:
    return fmt in SUPPORTED_EXPORT_TYPES


def cleanup_data(rows: List[List[Any]]) -> Grid:
    """Drop missing rows and rows where every cell is blank"""
    cleaned = []
    for row in rows:
        if row is None:
            continue
        normalized = normalize_row(row)
        if normalized and any(cell.strip() for cell in normalized):
            cleaned.append(normalized)
    return cleaned


def _csv_text(source: FileSource) -> str:
    if isinstance(source, str):
        with open(source, 'rb') as f:
            raw = f.read()
    else:
        raw = source.read()
    if isinstance(raw, str):
        return raw
    return raw.decode('utf-8-sig', errors='replace')


def _read_frame(source: FileSource, file_name: str) -> pd.DataFrame:
    ext = file_extension(file_name)
    if ext not in SUPPORTED_IMPORT_TYPES:
        raise ValueError(f"Unsupported file type '.{ext}'. Supported: {', '.join(SUPPORTED_IMPORT_TYPES)}")

    if isinstance(source, bytes):
        source = io.BytesIO(source)

    if ext == 'csv':
        # Rows may have different lengths; the frame is padded to the widest one
        return pd.DataFrame(list(csv.reader(io.StringIO(_csv_text(source), newline=''))), dtype=object)
    # First worksheet only
    return pd.read_excel(source, sheet_name=0, header=None, dtype=object, engine='openpyxl')


def parse_file(source: FileSource, file_name: str) -> Grid:
    """Parse a spreadsheet into a grid

    Args:
        source: Path, raw bytes or a binary file object
        file_name: Original file name (used to pick the reader)

    Returns:
        Grid with row 0 as headers; empty when the sheet holds no data

    Raises:
        ValueError: for unsupported file extensions
    """
    df = _read_frame(source, file_name)
    # NaN cells become "" through normalize_cell
    raw_rows = df.astype(object).where(pd.notna(df), None).values.tolist()
    grid = cleanup_data(raw_rows)
    logger.info(f"📊 Parsed '{file_name}': {len(grid)} rows x {max((len(r) for r in grid), default=0)} columns")
    return grid


def grid_to_csv_text(source: FileSource, file_name: str) -> str:
    """Render a tabular reference file as CSV text for the model"""
    grid = parse_file(source, file_name)
    buffer = io.StringIO()
    pd.DataFrame(grid).to_csv(buffer, index=False, header=False)
    return buffer.getvalue()


def save_grid(grid: Grid, fmt: str = 'xlsx', sheet_name: str = 'Sheet1') -> io.BytesIO:
    """Serialize a grid to an in-memory xlsx or csv file

    Args:
        grid: Grid to write; row 0 is written as the first line
        fmt: 'xlsx' or 'csv'
        sheet_name: Worksheet name for xlsx output

    Returns:
        BytesIO positioned at the start
    """
    if not is_supported_export_type(fmt):
        raise ValueError(f"Unsupported export format '{fmt}'")

    width = max((len(row) for row in grid), default=0)
    padded = [list(row) + [""] * (width - len(row)) for row in grid]
    df = pd.DataFrame(padded)

    output = io.BytesIO()
    if fmt == 'csv':
        output.write(df.to_csv(index=False, header=False).encode('utf-8'))
    else:
        with pd.ExcelWriter(output, engine='openpyxl') as writer:
            df.to_excel(writer, sheet_name=sheet_name, index=False, header=False)
    output.seek(0)
    logger.info(f"💾 Exported grid ({len(grid)} rows) as {fmt}")
    return output
