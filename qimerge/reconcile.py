"""Cross-polarity reconciliation of merged results.

A metabolite identified in both ion modes appears once per polarity with a
different Progenesis feature (``Compound``) but the same database
identifier (``Compound_ID``). Reconciliation keeps, per identifier, the
record with the highest Score, using Fragmentation_Score as tie-breaker.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from .errors import SchemaMismatchError
from .merge import FRAGMENTATION_SCORE_COLUMN, SCORE_COLUMN

logger = logging.getLogger(__name__)

DEFAULT_RECONCILE_KEY = 'Compound_ID'


def _is_empty_input(df: Optional[pd.DataFrame]) -> bool:
    return df is None or len(df.columns) == 0


def _best_rows(group: pd.DataFrame) -> pd.Index:
    """Index labels of the rows in one group that win on (Score, Fragmentation_Score)."""
    scores = group[SCORE_COLUMN]
    if scores.isna().all():
        return group.index[:0]
    best = group[scores == scores.max()]
    if len(best) > 1 and FRAGMENTATION_SCORE_COLUMN in best.columns:
        frag = best[FRAGMENTATION_SCORE_COLUMN]
        if frag.notna().any():
            best = best[frag == frag.max()]
    return best.index


@dataclass
class CrossModeReconciler:
    """Keep the best-scoring record per compound across both polarities.

    Attributes:
        key: Column identifying the same compound in both polarities

    """

    key: str = DEFAULT_RECONCILE_KEY

    def _check_schema(self, df: pd.DataFrame, name: str) -> None:
        required = [self.key, SCORE_COLUMN]
        missing = [c for c in required if c not in df.columns]
        if missing:
            raise SchemaMismatchError(
                f"{name} result is missing columns {missing} needed for reconciliation"
            )

    def reconcile(
        self,
        pos_result: Optional[pd.DataFrame],
        neg_result: Optional[pd.DataFrame],
    ) -> pd.DataFrame:
        """Combine two merged results, keeping the best record per compound.

        Within each ``key`` group only rows with the maximum Score survive
        (a missing Score never wins). If several remain, only those with the
        maximum Fragmentation_Score among them are kept; exact ties keep all
        tied rows. Rows with a missing key form one group.

        Args:
            pos_result: Merged positive-mode table (None or no columns = empty)
            neg_result: Merged negative-mode table (None or no columns = empty)

        Returns:
            Reconciled rows sorted by Score (descending, stable)

        Raises:
            SchemaMismatchError: If an input lacks the key or Score column,
                only one input has a Fragmentation_Score column, or both
                inputs are empty

        """
        inputs = [
            (name, df) for name, df in (('Positive', pos_result), ('Negative', neg_result))
            if not _is_empty_input(df)
        ]
        if not inputs:
            raise SchemaMismatchError("Nothing to reconcile: both inputs are empty")
        for name, df in inputs:
            self._check_schema(df, name)
        carriers = [name for name, df in inputs if FRAGMENTATION_SCORE_COLUMN in df.columns]
        if 0 < len(carriers) < len(inputs):
            raise SchemaMismatchError(
                f"Only the {carriers[0]} result has a {FRAGMENTATION_SCORE_COLUMN} column; "
                f"both results need it for tie-breaking"
            )

        combined = pd.concat([df for _, df in inputs], ignore_index=True, sort=False)
        combined[SCORE_COLUMN] = pd.to_numeric(combined[SCORE_COLUMN], errors='coerce')
        if FRAGMENTATION_SCORE_COLUMN in combined.columns:
            combined[FRAGMENTATION_SCORE_COLUMN] = pd.to_numeric(
                combined[FRAGMENTATION_SCORE_COLUMN], errors='coerce'
            )

        if combined.empty:
            return combined

        keep = np.zeros(len(combined), dtype=bool)
        for _, group in combined.groupby(self.key, dropna=False, sort=False):
            keep[_best_rows(group)] = True

        result = combined[keep].sort_values(
            SCORE_COLUMN, ascending=False, na_position='last', kind='mergesort'
        )
        n_groups = combined[self.key].nunique(dropna=False)
        logger.info(
            f"Reconciled {len(combined)} rows into {len(result)} rows "
            f"for {n_groups} values of {self.key}"
        )
        return result.reset_index(drop=True)


def reconcile_modes(
    pos_result: Optional[pd.DataFrame],
    neg_result: Optional[pd.DataFrame],
    key: str = DEFAULT_RECONCILE_KEY,
) -> pd.DataFrame:
    """Reconcile positive and negative results. See CrossModeReconciler.reconcile."""
    return CrossModeReconciler(key=key).reconcile(pos_result, neg_result)
