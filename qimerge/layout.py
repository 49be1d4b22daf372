"""Column layout of Progenesis QI compound measurement exports.

A measurement export has three header lines. The first carries the section
markers ("Normalised abundance", "Raw abundance") above the first column of
each intensity block, the second carries condition/group labels and the third
the real column names. Read with the first line as column labels, the table
therefore looks like:

    | Compound | ... | Normalised abundance | ... | Raw abundance | ... |
    |          | ... | Group A              | ... | Group A       | ... |   row 1
    | Compound | ... | S01                  | ... | S01           | ... |   row 2
    | 1.23_456 | ... | 1024.5               | ... | 998.1         | ... |   data

This module turns the marker columns into an explicit TableLayout that is
validated before any data is touched.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

import pandas as pd

from .errors import MalformedInputError

logger = logging.getLogger(__name__)

# Section markers in the order they appear in a Progenesis QI export
DEFAULT_MARKERS = ('Normalised abundance', 'Raw abundance')

# Row holding the column names, and first data row (0-based, after the
# marker line has been consumed as column labels)
HEADER_ROW = 1
FIRST_DATA_ROW = 2

_NON_ALNUM = re.compile(r'[^A-Za-z0-9]+')


def sanitize_name(name) -> str:
    """Sanitize a single column name.

    Runs of non-alphanumeric characters collapse to one underscore, names
    that do not start with a letter get an ``X`` prefix, and trailing
    underscores are stripped. Missing names become ``X``.
    """
    if name is None or (not isinstance(name, str) and pd.isna(name)):
        text = ''
    else:
        text = str(name).strip()

    if not text[:1].isalpha() or not text[:1].isascii():
        text = 'X' + text

    return _NON_ALNUM.sub('_', text).rstrip('_')


def sanitize_column_names(names: Iterable) -> list[str]:
    """Sanitize column names and make them unique.

    Duplicates after sanitization keep the first occurrence unchanged and get
    ``_1``, ``_2``, ... suffixes, skipping suffixes already in use.

    Args:
        names: Column names (any type; missing values allowed)

    Returns:
        List of unique, sanitized names in the original order

    """
    cleaned = [sanitize_name(n) for n in names]
    used = set(cleaned)
    seen = set()
    counters: dict[str, int] = {}
    result = []
    for name in cleaned:
        if name not in seen:
            seen.add(name)
            result.append(name)
            continue
        k = counters.get(name, 0)
        while True:
            k += 1
            candidate = f'{name}_{k}'
            if candidate not in used:
                break
        counters[name] = k
        used.add(candidate)
        seen.add(candidate)
        result.append(candidate)
    return result


@dataclass(frozen=True)
class TableLayout:
    """Column index ranges of the blocks in an intensity table.

    Ranges are half-open ``[start, end)`` positions into the table columns.
    Both intensity blocks always have the same width.
    """

    annotation: tuple[int, int]
    first_block: tuple[int, int]
    second_block: tuple[int, int]
    markers: tuple[str, str] = DEFAULT_MARKERS

    @property
    def n_samples(self) -> int:
        return self.first_block[1] - self.first_block[0]

    @property
    def n_annotation(self) -> int:
        return self.annotation[1] - self.annotation[0]

    def columns(self, block: str) -> slice:
        """Return a positional slice for ``annotation``, ``first_block`` or ``second_block``."""
        start, end = getattr(self, block)
        return slice(start, end)

    def __str__(self) -> str:
        return (
            f"TableLayout: {self.n_annotation} annotation columns, "
            f"2 x {self.n_samples} sample columns "
            f"('{self.markers[0]}' at {self.first_block[0]}, "
            f"'{self.markers[1]}' at {self.second_block[0]})"
        )


def _find_marker(sanitized: Sequence[str], marker: str) -> int:
    target = sanitize_name(marker)
    hits = [i for i, name in enumerate(sanitized) if name == target]
    if not hits:
        raise MalformedInputError(f"Section marker '{marker}' not found in intensity table columns")
    if len(hits) > 1:
        raise MalformedInputError(
            f"Section marker '{marker}' appears {len(hits)} times (columns {hits})"
        )
    return hits[0]


def parse_layout(
    intensity: pd.DataFrame,
    markers: Sequence[str] = DEFAULT_MARKERS,
) -> TableLayout:
    """Locate the annotation and intensity blocks of an intensity table.

    Marker column labels are matched after sanitization. Each marker must
    occur once; labels that pandas de-duplicated on read ('Raw abundance.1')
    count as repeats.

    Args:
        intensity: Intensity table with the marker line as column labels
        markers: Labels introducing the first and second intensity block

    Returns:
        Validated TableLayout

    Raises:
        MalformedInputError: If a marker is missing, repeated or out of
            order, if a block would be empty or overrun the table, or if the
            header rows are missing

    """
    if len(markers) != 2:
        raise MalformedInputError(f"Expected two section markers, got {list(markers)}")

    # pandas renames repeated labels to 'label.1', which must not match
    labels = [re.sub(r'\.\d+$', '', c) if isinstance(c, str) else c for c in intensity.columns]
    sanitized = [sanitize_name(c) for c in labels]

    first = _find_marker(sanitized, markers[0])
    second = _find_marker(sanitized, markers[1])

    if second < first:
        raise MalformedInputError(
            f"Section markers out of order: '{markers[1]}' (column {second}) "
            f"precedes '{markers[0]}' (column {first})"
        )
    if first == 0:
        raise MalformedInputError(
            f"No annotation columns before section marker '{markers[0]}'"
        )
    width = second - first
    if width == 0:
        raise MalformedInputError(f"Intensity block under '{markers[0]}' is empty")
    if second + width > intensity.shape[1]:
        raise MalformedInputError(
            f"Intensity block under '{markers[1]}' needs {width} columns but only "
            f"{intensity.shape[1] - second} remain"
        )
    if len(intensity) < FIRST_DATA_ROW:
        raise MalformedInputError(
            f"Intensity table has {len(intensity)} rows; expected a group label row "
            f"and a column header row before the data"
        )

    layout = TableLayout(
        annotation=(0, first),
        first_block=(first, second),
        second_block=(second, second + width),
        markers=(markers[0], markers[1]),
    )
    trailing = intensity.shape[1] - layout.second_block[1]
    if trailing:
        logger.debug(f"Ignoring {trailing} columns after the second intensity block")
    logger.debug(str(layout))
    return layout


def header_labels(intensity: pd.DataFrame, layout: TableLayout, block: str) -> list:
    """Return the column-header row (row 2) for one block."""
    return intensity.iloc[HEADER_ROW, layout.columns(block)].tolist()


def block_data(intensity: pd.DataFrame, layout: TableLayout, block: str) -> pd.DataFrame:
    """Return the data rows of one block with a fresh 0..n-1 index."""
    return intensity.iloc[FIRST_DATA_ROW:, layout.columns(block)].reset_index(drop=True)
