"""
QImerge: Progenesis QI metabolomics result merging

Combines per-polarity compound measurement and identification exports into
annotated tables, and reconciles positive and negative ion mode results into
one best-hit-per-compound table.
"""

__version__ = "0.1.0"

from .errors import (
    QIMergeError,
    ConfigurationError,
    MalformedInputError,
    MissingSampleError,
    SchemaMismatchError,
)
from .layout import (
    TableLayout,
    parse_layout,
    sanitize_column_names,
)
from .merge import (
    SingleModeMerger,
    ModeResult,
    SampleNames,
    merge_mode,
    resolve_sample_names,
    filter_identifications,
)
from .reconcile import (
    CrossModeReconciler,
    reconcile_modes,
)
from .data_io import (
    read_table,
    load_intensity_table,
    load_identification_table,
    load_sample_map,
    write_result,
)
