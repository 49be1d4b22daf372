"""Single-polarity merge of intensity and identification tables.

Combines one polarity's Progenesis QI compound measurements with its
identification export:

1. Resolve the sample names for the polarity from the sample map
2. Parse the intensity table layout (annotation / two intensity blocks)
3. Extract both intensity blocks, renamed to unique sample names
4. Assemble annotation + intensities and prune all-empty columns
5. Filter identifications by Score and keep the best hit per compound
   and per description
6. Left join identifications onto the intensity table by Compound
7. Sort by Fragmentation_Score and tag with the polarity
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

from .errors import ConfigurationError, MalformedInputError, MissingSampleError
from .layout import (
    DEFAULT_MARKERS,
    TableLayout,
    block_data,
    header_labels,
    parse_layout,
    sanitize_column_names,
)

logger = logging.getLogger(__name__)

POLARITIES = ('pos', 'neg')

DEFAULT_SCORE_CUTOFF = 0.0

# Prefixes for the first and second intensity block. With the Progenesis
# marker order the first block holds normalised abundances.
DEFAULT_BLOCK_PREFIXES = ('Norm_', 'Raw_')

# Sample map columns after sanitization
SAMPLE_NAME_COLUMNS = {'pos': 'pos_name', 'neg': 'neg_name'}
UNIQUE_NAME_COLUMN = 'unique_name'

KEY_COLUMN = 'Compound'
SCORE_COLUMN = 'Score'
FRAGMENTATION_SCORE_COLUMN = 'Fragmentation_Score'
DESCRIPTION_COLUMN = 'Description'
POLARITY_COLUMN = 'Polarity'

REQUIRED_IDENTIFICATION_COLUMNS = [
    KEY_COLUMN,
    SCORE_COLUMN,
    FRAGMENTATION_SCORE_COLUMN,
    DESCRIPTION_COLUMN,
]


def _as_label(value) -> Optional[str]:
    """Normalize a name cell to a stripped string, or None when blank.

    Spreadsheet readers return numeric sample names as floats; integral
    values are rendered without the trailing '.0'.
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def validate_mode(mode: str) -> str:
    if mode not in POLARITIES:
        raise ConfigurationError(f"Invalid mode {mode!r}: must be one of {list(POLARITIES)}")
    return mode


def validate_score_cutoff(score_cutoff) -> float:
    try:
        cutoff = float(score_cutoff)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Score cutoff must be numeric, got {score_cutoff!r}") from None
    if np.isnan(cutoff):
        raise ConfigurationError("Score cutoff must not be NaN")
    return cutoff


@dataclass
class SampleNames:
    """Original-to-unique sample name pairs for one polarity."""

    mode: str
    original: list[str]
    unique: list[str]
    skipped: list[str] = field(default_factory=list)  # unique names not acquired in this mode

    def __len__(self) -> int:
        return len(self.original)


def resolve_sample_names(sample_map: pd.DataFrame, mode: str) -> SampleNames:
    """Select the (original name, unique name) pairs for a polarity.

    Args:
        sample_map: Table with pos.name, neg.name and unique.name columns
            (any spelling that sanitizes to pos_name / neg_name / unique_name)
        mode: 'pos' or 'neg'

    Returns:
        SampleNames in sample map order

    Raises:
        ConfigurationError: If mode is not 'pos' or 'neg'
        MalformedInputError: If columns are missing or names are duplicated

    """
    validate_mode(mode)

    columns = dict(zip(sanitize_column_names(sample_map.columns), sample_map.columns))
    name_col = SAMPLE_NAME_COLUMNS[mode]
    missing = [c for c in (name_col, UNIQUE_NAME_COLUMN) if c not in columns]
    if missing:
        raise MalformedInputError(
            f"Sample map is missing columns {missing}; found {list(sample_map.columns)}"
        )

    original = sample_map[columns[name_col]].map(_as_label)
    unique = sample_map[columns[UNIQUE_NAME_COLUMN]].map(_as_label)

    # A blank original name means the sample was not acquired in this mode
    acquired = original.notna()
    skipped = [u for u in unique[~acquired] if u is not None]
    if skipped:
        logger.info(f"{len(skipped)} samples have no {mode} name and are skipped: {skipped}")
    original = original[acquired]
    unique = unique[acquired]

    if unique.isna().any():
        orphans = original[unique.isna()].tolist()
        raise MalformedInputError(f"Sample map rows without a unique name: {orphans}")

    dup_original = sorted(set(original[original.duplicated()]))
    if dup_original:
        raise MalformedInputError(f"Duplicate {mode} sample names in sample map: {dup_original}")
    dup_unique = sorted(set(unique[unique.duplicated()]))
    if dup_unique:
        raise MalformedInputError(f"Duplicate unique sample names in sample map: {dup_unique}")

    if original.empty:
        raise MalformedInputError(f"Sample map has no {mode} sample names")

    return SampleNames(
        mode=mode,
        original=original.tolist(),
        unique=unique.tolist(),
        skipped=skipped,
    )


def extract_annotation(intensity: pd.DataFrame, layout: TableLayout) -> pd.DataFrame:
    """Return the annotation block with sanitized column names."""
    names = sanitize_column_names(header_labels(intensity, layout, 'annotation'))
    data = block_data(intensity, layout, 'annotation')
    data.columns = names
    return data


def extract_intensity_block(
    intensity: pd.DataFrame,
    layout: TableLayout,
    block: str,
    samples: SampleNames,
    prefix: str,
    strict: bool = True,
) -> pd.DataFrame:
    """Extract one intensity block as floats, one column per mapped sample.

    Columns follow sample map order and are renamed ``<prefix><unique name>``.

    Args:
        intensity: Intensity table
        layout: Parsed layout of ``intensity``
        block: 'first_block' or 'second_block'
        samples: Resolved sample names for the polarity
        prefix: Column name prefix for this block
        strict: Raise on samples present in the block but not in the map;
            otherwise drop them with a warning

    Returns:
        DataFrame of float intensities (unparseable cells are NaN)

    Raises:
        MalformedInputError: If sample names in the block are blank or repeated
        MissingSampleError: If the block and the sample map disagree

    """
    marker = layout.markers[0] if block == 'first_block' else layout.markers[1]
    labels = [_as_label(v) for v in header_labels(intensity, layout, block)]

    start = layout.columns(block).start
    unlabeled = [start + i for i, label in enumerate(labels) if label is None]
    if unlabeled:
        raise MalformedInputError(
            f"Columns without a sample name under '{marker}' (positions {unlabeled})"
        )
    repeated = sorted({label for label in labels if labels.count(label) > 1})
    if repeated:
        raise MalformedInputError(f"Repeated sample names under '{marker}': {repeated}")

    absent = [name for name in samples.original if name not in labels]
    if absent:
        raise MissingSampleError(
            f"Sample map {samples.mode} names not found under '{marker}': {absent}"
        )
    mapped = set(samples.original)
    unmapped = [label for label in labels if label not in mapped]
    if unmapped:
        if strict:
            raise MissingSampleError(
                f"Samples under '{marker}' missing from the sample map "
                f"for {samples.mode} mode: {unmapped}"
            )
        logger.warning(
            f"Dropping {len(unmapped)} samples under '{marker}' that are not "
            f"in the sample map: {unmapped}"
        )

    data = block_data(intensity, layout, block)
    data.columns = labels
    data = data[samples.original]
    data.columns = [f'{prefix}{name}' for name in samples.unique]
    return data.apply(pd.to_numeric, errors='coerce').astype(float)


def _is_blank(column: pd.Series) -> pd.Series:
    return column.isna() | (column.astype(str).str.strip() == '')


def drop_empty_columns(df: pd.DataFrame) -> tuple[pd.DataFrame, list[str]]:
    """Drop columns that are missing or blank in every row.

    Tables without data rows are returned unchanged.

    Returns:
        Tuple of (pruned DataFrame, names of dropped columns)

    """
    if df.empty:
        return df, []
    keep = [not _is_blank(df.iloc[:, i]).all() for i in range(df.shape[1])]
    dropped = [c for c, k in zip(df.columns, keep) if not k]
    return df.loc[:, keep], dropped


def filter_identifications(identification: pd.DataFrame, score_cutoff: float) -> pd.DataFrame:
    """Keep the best-scoring identification per compound and per description.

    Column names are sanitized, Score and Fragmentation_Score coerced to
    numbers, rows sorted by Score (missing last, stable), rows below the
    cutoff removed, then the first row per Compound and afterwards the first
    row per Description is kept. A compound can therefore lose its only row
    when a higher-scoring compound already took its description.

    Args:
        identification: Identification table for one polarity
        score_cutoff: Minimum Score (inclusive)

    Returns:
        Filtered identifications with a fresh index

    Raises:
        MalformedInputError: If a required column is missing

    """
    ids = identification.copy()
    ids.columns = sanitize_column_names(ids.columns)

    missing = [c for c in REQUIRED_IDENTIFICATION_COLUMNS if c not in ids.columns]
    if missing:
        raise MalformedInputError(
            f"Identification table is missing columns {missing}; found {list(ids.columns)}"
        )

    ids[SCORE_COLUMN] = pd.to_numeric(ids[SCORE_COLUMN], errors='coerce')
    ids[FRAGMENTATION_SCORE_COLUMN] = pd.to_numeric(ids[FRAGMENTATION_SCORE_COLUMN], errors='coerce')
    ids[KEY_COLUMN] = ids[KEY_COLUMN].map(_as_label)

    n_total = len(ids)
    ids = ids.sort_values(SCORE_COLUMN, ascending=False, na_position='last', kind='mergesort')
    ids = ids[ids[SCORE_COLUMN] >= score_cutoff]
    n_passing = len(ids)

    ids = ids.drop_duplicates(subset=KEY_COLUMN, keep='first')
    ids = ids.drop_duplicates(subset=DESCRIPTION_COLUMN, keep='first')

    logger.info(
        f"Identifications: {n_total} rows, {n_passing} with Score >= {score_cutoff}, "
        f"{len(ids)} after best-hit selection"
    )
    return ids.reset_index(drop=True)


def join_identifications(filtered: pd.DataFrame, wide: pd.DataFrame) -> pd.DataFrame:
    """Left join filtered identifications onto the intensity table by Compound.

    Columns present on both sides (other than Compound) are taken from the
    identification table.

    Raises:
        MalformedInputError: If the intensity table has no Compound column
            or repeats a Compound value

    """
    if KEY_COLUMN not in wide.columns:
        raise MalformedInputError(
            f"Intensity table annotation has no '{KEY_COLUMN}' column; "
            f"found {list(wide.columns)}"
        )
    keys = wide[KEY_COLUMN].map(_as_label)
    repeated = keys[keys.duplicated() & keys.notna()].unique().tolist()
    if repeated:
        raise MalformedInputError(f"Intensity table repeats {KEY_COLUMN} values: {repeated[:10]}")

    shared = set(filtered.columns)
    common = [c for c in wide.columns if c in shared and c != KEY_COLUMN]
    if common:
        logger.debug(f"Using identification values for shared columns: {common}")
    right = wide.drop(columns=common).assign(**{KEY_COLUMN: keys})
    right = right[right[KEY_COLUMN].notna()]

    unmatched = filtered.loc[~filtered[KEY_COLUMN].isin(set(keys.dropna())), KEY_COLUMN].tolist()
    if unmatched:
        logger.warning(
            f"{len(unmatched)} identified compounds have no intensity row: {unmatched[:10]}"
        )

    return filtered.merge(right, on=KEY_COLUMN, how='left', validate='many_to_one')


@dataclass
class ModeResult:
    """Merged table for one polarity plus what happened along the way."""

    mode: str
    table: pd.DataFrame
    layout: TableLayout
    samples: SampleNames
    n_identifications: int
    n_selected: int
    dropped_columns: list[str] = field(default_factory=list)
    unmatched_compounds: list[str] = field(default_factory=list)

    @property
    def n_rows(self) -> int:
        return len(self.table)

    def __str__(self) -> str:
        return (
            f"{self.mode}: {self.n_rows} compounds from {self.n_identifications} "
            f"identifications, {len(self.samples)} samples"
        )


@dataclass
class SingleModeMerger:
    """Merge one polarity's intensity and identification tables.

    Attributes:
        markers: Column labels introducing the first and second intensity block
        block_prefixes: Column prefixes for the first and second block
        strict_samples: Treat intensity samples missing from the sample map
            as an error (otherwise they are dropped)

    """

    markers: tuple[str, str] = DEFAULT_MARKERS
    block_prefixes: tuple[str, str] = DEFAULT_BLOCK_PREFIXES
    strict_samples: bool = True

    def __post_init__(self):
        self.markers = tuple(self.markers)
        self.block_prefixes = tuple(self.block_prefixes)
        if len(self.markers) != 2 or self.markers[0] == self.markers[1]:
            raise ConfigurationError(f"Need two distinct section markers, got {list(self.markers)}")
        if len(self.block_prefixes) != 2 or self.block_prefixes[0] == self.block_prefixes[1]:
            raise ConfigurationError(
                f"Need two distinct block prefixes, got {list(self.block_prefixes)}"
            )

    def run(
        self,
        intensity: pd.DataFrame,
        identification: pd.DataFrame,
        mode: str,
        score_cutoff: float = DEFAULT_SCORE_CUTOFF,
        sample_map: Optional[pd.DataFrame] = None,
    ) -> ModeResult:
        """Merge and return the table together with merge statistics."""
        validate_mode(mode)
        if sample_map is None:
            raise ConfigurationError("A sample map is required to name the intensity columns")
        cutoff = validate_score_cutoff(score_cutoff)
        logger.info(f"Merging {mode} mode (Score cutoff {cutoff})")

        samples = resolve_sample_names(sample_map, mode)
        layout = parse_layout(intensity, self.markers)
        logger.info(f"{mode}: {layout}")

        annotation = extract_annotation(intensity, layout)
        first = extract_intensity_block(
            intensity, layout, 'first_block', samples, self.block_prefixes[0], self.strict_samples
        )
        second = extract_intensity_block(
            intensity, layout, 'second_block', samples, self.block_prefixes[1], self.strict_samples
        )

        wide = pd.concat([annotation, first, second], axis=1)
        repeated = wide.columns[wide.columns.duplicated()].tolist()
        if repeated:
            raise MalformedInputError(
                f"Annotation and sample columns collide after renaming: {repeated}"
            )
        wide, dropped = drop_empty_columns(wide)
        if dropped:
            logger.info(f"{mode}: dropped {len(dropped)} empty columns: {dropped}")

        filtered = filter_identifications(identification, cutoff)
        merged = join_identifications(filtered, wide)
        known = set(wide[KEY_COLUMN].map(_as_label).dropna())
        unmatched = [c for c in filtered[KEY_COLUMN] if c not in known]

        merged = merged.sort_values(
            FRAGMENTATION_SCORE_COLUMN, ascending=False, na_position='last', kind='mergesort'
        )
        merged[POLARITY_COLUMN] = mode
        ordered = [KEY_COLUMN, POLARITY_COLUMN] + [
            c for c in merged.columns if c not in (KEY_COLUMN, POLARITY_COLUMN)
        ]
        merged = merged[ordered].reset_index(drop=True)

        logger.info(f"{mode}: {len(merged)} compounds in merged table")
        return ModeResult(
            mode=mode,
            table=merged,
            layout=layout,
            samples=samples,
            n_identifications=len(identification),
            n_selected=len(filtered),
            dropped_columns=dropped,
            unmatched_compounds=unmatched,
        )

    def merge(
        self,
        intensity: pd.DataFrame,
        identification: pd.DataFrame,
        mode: str,
        score_cutoff: float = DEFAULT_SCORE_CUTOFF,
        sample_map: Optional[pd.DataFrame] = None,
    ) -> pd.DataFrame:
        """Merge one polarity and return the annotated table.

        Args:
            intensity: Compound measurements (marker line as column labels)
            identification: Identification table for the same polarity
            mode: 'pos' or 'neg'
            score_cutoff: Minimum MS1 Score (inclusive, default 0)
            sample_map: Sample name mapping table (required)

        Returns:
            One row per selected compound: Compound, Polarity, identification
            columns, annotation columns and the renamed intensity columns

        """
        return self.run(intensity, identification, mode, score_cutoff, sample_map).table


def merge_mode(
    intensity: pd.DataFrame,
    identification: pd.DataFrame,
    mode: str,
    score_cutoff: float = DEFAULT_SCORE_CUTOFF,
    sample_map: Optional[pd.DataFrame] = None,
    markers: tuple[str, str] = DEFAULT_MARKERS,
    block_prefixes: tuple[str, str] = DEFAULT_BLOCK_PREFIXES,
    strict_samples: bool = True,
) -> pd.DataFrame:
    """Merge one polarity with the given layout settings. See SingleModeMerger.merge."""
    merger = SingleModeMerger(
        markers=markers,
        block_prefixes=block_prefixes,
        strict_samples=strict_samples,
    )
    return merger.merge(intensity, identification, mode, score_cutoff, sample_map)
