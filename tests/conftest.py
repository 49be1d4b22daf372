"""Shared fixtures: small Progenesis QI style tables."""

import pandas as pd
import pytest

ANNOTATION = ('Compound', 'Neutral mass (Da)', 'm/z', 'Notes')
MARKERS = ('Normalised abundance', 'Raw abundance')


def build_intensity_table(rows, samples=('S1', 'S2'), annotation=ANNOTATION, markers=MARKERS):
    """Build an intensity table as read from a measurements export.

    ``rows`` hold the annotation values followed by the first-block and the
    second-block intensities, all as text.
    """
    n_ann = len(annotation)
    n = len(samples)
    labels = [f'Unnamed: {i}' for i in range(n_ann + 2 * n)]
    labels[n_ann] = markers[0]
    labels[n_ann + n] = markers[1]
    groups = [None] * n_ann + ['Ctrl'] * (2 * n)
    header = list(annotation) + list(samples) * 2
    return pd.DataFrame([groups, header] + [list(r) for r in rows], columns=labels, dtype=object)


def write_export(df: pd.DataFrame, path) -> None:
    """Write a table the way Progenesis does: blank labels above unmarked columns."""
    header = ['' if str(c).startswith('Unnamed') else c for c in df.columns]
    df.to_csv(path, index=False, header=header)


@pytest.fixture
def intensity_factory():
    return build_intensity_table


@pytest.fixture
def export_writer():
    return write_export


@pytest.fixture
def sample_map():
    return pd.DataFrame({
        'pos.name': ['S1', 'S2'],
        'neg.name': ['N1', 'N2'],
        'unique.name': ['A', 'B'],
    })


@pytest.fixture
def pos_intensity():
    return build_intensity_table([
        ['C1', '100.1', '101.1', None, '10', '20', '1', '2'],
        ['C2', '200.2', '201.2', None, '30', 'n/a', '3', '4'],
        ['C3', '300.3', '301.3', None, '50', '60', '5', '6'],
    ])


@pytest.fixture
def pos_identification():
    return pd.DataFrame({
        'Compound': ['C1', 'C1', 'C2', 'C3', 'C4'],
        'Compound ID': ['HMDB1', 'HMDB2', 'HMDB3', 'HMDB4', 'HMDB5'],
        'Adducts': ['M+H', 'M+Na', 'M+H', 'M+H', 'M+H'],
        'Score': [55.0, 40.0, 50.0, 45.0, 60.0],
        'Fragmentation Score': [80.0, 90.0, 60.0, 95.0, 'n/a'],
        'Description': ['Glucose', 'Fructose', 'Alanine', 'Glucose', 'Serine'],
        'm/z': [181.0, 203.0, 90.0, 181.0, 106.0],
    })


@pytest.fixture
def neg_intensity():
    return build_intensity_table(
        [
            ['N-C1', '100.1', '99.1', None, '11', '21', '1.5', '2.5'],
            ['N-C2', '200.2', '199.2', None, '31', '41', '3.5', '4.5'],
        ],
        samples=('N1', 'N2'),
    )


@pytest.fixture
def neg_identification():
    return pd.DataFrame({
        'Compound': ['N-C1', 'N-C2'],
        'Compound ID': ['HMDB1', 'HMDB3'],
        'Adducts': ['M-H', 'M-H'],
        'Score': [58.0, 50.0],
        'Fragmentation Score': [70.0, 65.0],
        'Description': ['Glucose', 'Alanine'],
        'm/z': [179.0, 88.0],
    })
