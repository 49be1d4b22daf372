"""Data I/O module for loading Progenesis QI exports and writing results."""

import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from .errors import MalformedInputError
from .layout import sanitize_column_names
from .merge import POLARITY_COLUMN, SAMPLE_NAME_COLUMNS, UNIQUE_NAME_COLUMN

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {'.csv': ',', '.tsv': '\t', '.txt': '\t'}
EXCEL_SUFFIXES = {'.xlsx', '.xls'}
PARQUET_SUFFIXES = {'.parquet', '.pq'}

SAMPLE_MAP_REQUIRED = [SAMPLE_NAME_COLUMNS['pos'], SAMPLE_NAME_COLUMNS['neg'], UNIQUE_NAME_COLUMN]


def read_table(filepath: Path, as_text: bool = False) -> pd.DataFrame:
    """Read a CSV, TSV/TXT, Excel or Parquet file.

    Args:
        filepath: Path to the table; the format is chosen by suffix
        as_text: Read every cell of a text or Excel file as a string
            (missing cells stay NaN)

    Returns:
        DataFrame with the first line of the file as column labels

    Raises:
        ValueError: If the suffix is not supported

    """
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()
    dtype = str if as_text else None

    if suffix in TEXT_SUFFIXES:
        df = pd.read_csv(filepath, sep=TEXT_SUFFIXES[suffix], dtype=dtype)
    elif suffix in EXCEL_SUFFIXES:
        df = pd.read_excel(filepath, dtype=dtype)
    elif suffix in PARQUET_SUFFIXES:
        # Parquet columns are already typed
        df = pd.read_parquet(filepath)
    else:
        raise ValueError(f"Unsupported file type: {filepath.suffix or filepath.name}")

    logger.debug(f"Read {len(df)} rows x {df.shape[1]} columns from {filepath}")
    return df


def load_intensity_table(filepath: Path) -> pd.DataFrame:
    """Load a compound measurements export.

    Cells are kept as text: the group label and column header lines sit in
    the data rows and the intensity blocks are parsed later.
    """
    df = read_table(filepath, as_text=True)
    logger.info(f"Loaded intensity table {Path(filepath).name}: {df.shape[1]} columns, "
                f"{max(len(df) - 2, 0)} compounds")
    return df


def load_identification_table(filepath: Path) -> pd.DataFrame:
    """Load a compound identification export."""
    df = read_table(filepath)
    logger.info(f"Loaded identification table {Path(filepath).name}: {len(df)} candidates")
    return df


def load_sample_map(filepath: Path) -> pd.DataFrame:
    """Load and validate the sample name map.

    Args:
        filepath: Path to the sample map (xlsx, csv, tsv/txt or parquet)

    Returns:
        Sample map with names as text

    Raises:
        MalformedInputError: If pos.name, neg.name or unique.name is missing

    """
    sample_map = read_table(filepath, as_text=True)

    sanitized = set(sanitize_column_names(sample_map.columns))
    missing = [col for col in SAMPLE_MAP_REQUIRED if col not in sanitized]
    if missing:
        raise MalformedInputError(
            f"Sample map {Path(filepath).name} is missing columns {missing}; "
            f"found {list(sample_map.columns)}"
        )

    logger.info(f"Loaded sample map with {len(sample_map)} samples")
    return sample_map


def write_result(df: pd.DataFrame, output_path: Path, key: Optional[str] = None) -> Path:
    """Write a result table with a header row and no index.

    Args:
        df: Merged or reconciled table
        output_path: Destination; .csv, .tsv/.txt or .parquet
        key: Identifier column to place first (before Polarity); defaults to
            the current first column

    Returns:
        The path written

    Raises:
        ValueError: If the suffix is not supported

    """
    output_path = Path(output_path)
    suffix = output_path.suffix.lower()

    if key is None and len(df.columns):
        key = df.columns[0]
    leading = [c for c in (key, POLARITY_COLUMN) if c and c in df.columns]
    if leading:
        df = df[leading + [c for c in df.columns if c not in leading]]

    if suffix in TEXT_SUFFIXES:
        df.to_csv(output_path, sep=TEXT_SUFFIXES[suffix], index=False)
    elif suffix in PARQUET_SUFFIXES:
        df.to_parquet(output_path, index=False)
    else:
        raise ValueError(f"Unsupported output type: {output_path.suffix or output_path.name}")

    logger.info(f"Wrote {len(df)} rows to {output_path}")
    return output_path
