"""Exception types raised by QImerge.

All errors are structural: they are raised as soon as an input table or a
configuration value cannot be processed, and no partial output is produced.
Cell-level problems (a non-numeric intensity, an empty score) are never
errors; those cells become missing values.
"""


class QIMergeError(ValueError):
    """Base class for all QImerge errors."""


class ConfigurationError(QIMergeError):
    """Invalid polarity mode or configuration value."""


class MalformedInputError(QIMergeError):
    """Input table does not have the expected structure.

    Raised for missing or misordered section markers, missing header rows,
    missing required columns and duplicated keys.
    """


class MissingSampleError(QIMergeError):
    """Sample map and intensity table disagree on the sample names."""


class SchemaMismatchError(QIMergeError):
    """Reconciler inputs lack the grouping or scoring columns."""
