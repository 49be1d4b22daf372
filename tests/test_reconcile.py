"""Tests for cross-polarity reconciliation."""

import numpy as np
import pandas as pd
import pytest

from qimerge.errors import SchemaMismatchError
from qimerge.merge import merge_mode
from qimerge.reconcile import CrossModeReconciler, reconcile_modes


def _result(rows, polarity):
    """Merged-result table from (Compound_ID, Score, Fragmentation_Score) tuples."""
    df = pd.DataFrame(rows, columns=['Compound_ID', 'Score', 'Fragmentation_Score'])
    df.insert(0, 'Polarity', polarity)
    return df


class TestReconcileModes:
    """Tests for best-record selection across polarities."""

    def test_higher_score_wins(self):
        """Test that the negative record wins with a higher Score."""
        pos = pd.DataFrame({'Compound_ID': ['C1'], 'Score': [0.9], 'Polarity': ['pos']})
        neg = pd.DataFrame({'Compound_ID': ['C1'], 'Score': [0.95], 'Polarity': ['neg']})

        result = reconcile_modes(pos, neg)

        assert len(result) == 1
        assert result.loc[0, 'Polarity'] == 'neg'
        assert result.loc[0, 'Score'] == 0.95

    def test_fragmentation_score_breaks_ties(self):
        pos = _result([('C1', 0.9, 50.0)], 'pos')
        neg = _result([('C1', 0.9, 70.0)], 'neg')

        result = reconcile_modes(pos, neg)

        assert result['Polarity'].tolist() == ['neg']

    def test_exact_tie_keeps_both_in_input_order(self):
        pos = _result([('C1', 0.9, 50.0)], 'pos')
        neg = _result([('C1', 0.9, 50.0)], 'neg')

        result = reconcile_modes(pos, neg)

        assert result['Polarity'].tolist() == ['pos', 'neg']

    def test_missing_fragmentation_scores_keep_tied_rows(self):
        pos = _result([('C1', 0.9, np.nan)], 'pos')
        neg = _result([('C1', 0.9, np.nan)], 'neg')

        result = reconcile_modes(pos, neg)

        assert len(result) == 2

    def test_missing_score_never_wins(self):
        pos = _result([('C1', np.nan, 99.0), ('C2', np.nan, 10.0)], 'pos')
        neg = _result([('C1', 0.1, 1.0)], 'neg')

        result = reconcile_modes(pos, neg)

        # C2 has no scored record at all
        assert result['Compound_ID'].tolist() == ['C1']
        assert result['Polarity'].tolist() == ['neg']

    def test_compounds_in_one_mode_kept(self):
        pos = _result([('C1', 0.9, 1.0), ('C2', 0.5, 1.0)], 'pos')
        neg = _result([('C3', 0.7, 1.0)], 'neg')

        result = reconcile_modes(pos, neg)

        assert result['Compound_ID'].tolist() == ['C1', 'C3', 'C2']

    def test_missing_key_forms_one_group(self):
        pos = _result([(None, 0.9, 1.0)], 'pos')
        neg = _result([(None, 0.8, 1.0)], 'neg')

        result = reconcile_modes(pos, neg)

        assert result['Polarity'].tolist() == ['pos']

    def test_column_union(self):
        """Test that sample columns from both polarities are kept."""
        pos = _result([('C1', 0.9, 1.0)], 'pos').assign(Norm_A=1.0)
        neg = _result([('C2', 0.8, 1.0)], 'neg').assign(Norm_Z=2.0)

        result = reconcile_modes(pos, neg)

        assert {'Norm_A', 'Norm_Z'} <= set(result.columns)
        assert np.isnan(result.set_index('Compound_ID').loc['C2', 'Norm_A'])

    def test_never_more_rows_than_inputs(self):
        pos = _result([('C1', 0.9, 1.0), ('C2', 0.9, 2.0), ('C2', 0.9, 2.0)], 'pos')
        neg = _result([('C1', 0.9, 1.0), ('C2', 0.1, 3.0)], 'neg')

        result = reconcile_modes(pos, neg)

        assert len(result) <= len(pos) + len(neg)
        assert (result['Compound_ID'] == 'C1').sum() == 2
        assert (result['Compound_ID'] == 'C2').sum() == 2

    def test_idempotent_with_empty_input(self):
        pos = _result([('C1', 0.9, 1.0), ('C2', 0.4, 5.0)], 'pos')
        neg = _result([('C1', 0.95, 2.0), ('C3', 0.7, 1.0)], 'neg')

        once = reconcile_modes(pos, neg)
        twice = reconcile_modes(once, pd.DataFrame())

        pd.testing.assert_frame_equal(once, twice)

    def test_none_counts_as_empty(self):
        pos = _result([('C1', 0.9, 1.0)], 'pos')
        result = reconcile_modes(pos, None)
        assert result['Compound_ID'].tolist() == ['C1']

    def test_inputs_not_modified(self):
        pos = _result([('C1', '0.9', 1.0)], 'pos')
        neg = _result([('C1', 0.95, 1.0)], 'neg')
        before = pos.copy()

        reconcile_modes(pos, neg)

        pd.testing.assert_frame_equal(pos, before)


class TestReconcileSchema:
    """Tests for schema checks."""

    def test_missing_key_column(self):
        pos = _result([('C1', 0.9, 1.0)], 'pos')
        neg = pd.DataFrame({'Compound': ['C1'], 'Score': [0.9]})

        with pytest.raises(SchemaMismatchError, match='Compound_ID'):
            reconcile_modes(pos, neg)

    def test_missing_score_column(self):
        pos = _result([('C1', 0.9, 1.0)], 'pos').drop(columns='Score')
        neg = _result([('C1', 0.9, 1.0)], 'neg')

        with pytest.raises(SchemaMismatchError, match='Score'):
            reconcile_modes(pos, neg)

    def test_fragmentation_score_on_one_side(self):
        """Test that a tie-break column present in only one result is rejected."""
        pos = pd.DataFrame({'Compound_ID': ['C1'], 'Score': [0.9], 'Fragmentation_Score': [50.0]})
        neg = pd.DataFrame({'Compound_ID': ['C1'], 'Score': [0.9]})

        with pytest.raises(SchemaMismatchError, match='Fragmentation_Score'):
            reconcile_modes(pos, neg)
        with pytest.raises(SchemaMismatchError, match='Negative'):
            reconcile_modes(neg, pos)

    def test_fragmentation_score_on_neither_side(self):
        pos = pd.DataFrame({'Compound_ID': ['C1'], 'Score': [0.9], 'Polarity': ['pos']})
        neg = pd.DataFrame({'Compound_ID': ['C1'], 'Score': [0.9], 'Polarity': ['neg']})

        result = reconcile_modes(pos, neg)

        assert result['Polarity'].tolist() == ['pos', 'neg']

    def test_fragmentation_score_with_empty_side(self):
        pos = _result([('C1', 0.9, 1.0)], 'pos')
        neg = pd.DataFrame({'Compound_ID': [], 'Score': []})

        with pytest.raises(SchemaMismatchError):
            reconcile_modes(pos, neg)
        assert len(reconcile_modes(pos, None)) == 1

    def test_both_empty(self):
        with pytest.raises(SchemaMismatchError, match='empty'):
            reconcile_modes(pd.DataFrame(), None)

    def test_custom_key(self):
        pos = pd.DataFrame({'Compound': ['C1'], 'Score': [0.9], 'Polarity': ['pos']})
        neg = pd.DataFrame({'Compound': ['C1'], 'Score': [0.8], 'Polarity': ['neg']})

        result = CrossModeReconciler(key='Compound').reconcile(pos, neg)

        assert result['Polarity'].tolist() == ['pos']

    def test_zero_rows_with_columns(self):
        pos = _result([], 'pos')
        neg = _result([('C1', 0.9, 1.0)], 'neg')

        result = reconcile_modes(pos, neg)

        assert result['Compound_ID'].tolist() == ['C1']


class TestReconcileMergedResults:
    """Tests reconciling real single-mode merge output."""

    def test_pos_neg_pipeline(self, pos_intensity, pos_identification,
                              neg_intensity, neg_identification, sample_map):
        pos = merge_mode(pos_intensity, pos_identification, 'pos', 0, sample_map)
        neg = merge_mode(neg_intensity, neg_identification, 'neg', 0, sample_map)

        result = reconcile_modes(pos, neg)

        assert result['Compound_ID'].tolist() == ['HMDB5', 'HMDB1', 'HMDB3']
        assert result['Polarity'].tolist() == ['pos', 'neg', 'neg']
        assert result['Compound'].tolist() == ['C4', 'N-C1', 'N-C2']
        assert result['Compound_ID'].is_unique
