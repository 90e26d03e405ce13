"""
Loaders for count tables and group assignments.

Count tables are delimited text with one identifier column and one column
per sample or feature:

    ```
    "",geneA,geneB,geneC
    s1,10,20,5
    s2,12,18,0
    ```

Samples are rows by default; ``features_as_rows=True`` reads the common
expression layout (features × samples) and transposes it.

Group tables map sample ids to labels. They are aligned to the sample order
of the counts; samples without a label are an error.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path

import pandas as pd

from diffprop.core.counts import CountMatrix, GroupLabels

__all__ = ['sniff_delimiter', 'load_counts', 'load_groups']

logger = logging.getLogger(__name__)


def sniff_delimiter(path: Path, sample_size: int = 8192) -> str:
    """
    Detect the delimiter of a text table.

    Uses csv.Sniffer, then falls back to the most frequent candidate in the
    header line (comma when none occurs).
    """
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        sample = f.read(sample_size)

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters='\t,;|')
        return dialect.delimiter
    except csv.Error:
        pass

    first_line = sample.split('\n')[0]
    counts = {d: first_line.count(d) for d in ('\t', ',', ';', '|')}
    best = max(counts, key=counts.get)
    return best if counts[best] > 0 else ','


def _read_table(path: Path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    delimiter = sniff_delimiter(path)
    logger.debug(f"Sniffed delimiter: {delimiter!r}")
    try:
        df = pd.read_csv(path, sep=delimiter, index_col=0)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Data file is empty: {path}") from e
    if df.empty:
        raise ValueError(f"Data file contains no data: {path}")
    return df


def load_counts(path: Path, features_as_rows: bool = False) -> CountMatrix:
    """
    Load a count table into a CountMatrix.

    Args:
        path: Delimited text file; first column holds row identifiers
        features_as_rows: Rows are features and columns samples

    Raises:
        FileNotFoundError: Missing file
        ValueError: Empty file or non-numeric / invalid counts
    """
    df = _read_table(path)
    if features_as_rows:
        df = df.T

    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(
            f"Count table has non-numeric columns: {non_numeric[:5]}"
            + (" ..." if len(non_numeric) > 5 else "")
        )

    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    logger.info(f"Loaded counts: {df.shape[0]} samples x {df.shape[1]} features")
    return CountMatrix.from_dataframe(df)


def load_groups(
    path: Path,
    sample_ids: pd.Index,
    column: str | None = None,
) -> GroupLabels:
    """
    Load group labels aligned to ``sample_ids``.

    Args:
        path: Table indexed by sample id
        sample_ids: Sample order of the count matrix
        column: Label column (default: the first column)

    Raises:
        ValueError: Unknown column or samples without a label
        InvalidGroupError: Not exactly two groups
    """
    df = _read_table(path)
    df.index = df.index.astype(str)

    if column is None:
        column = df.columns[0]
    elif column not in df.columns:
        raise ValueError(
            f"Group column '{column}' not found. Available: {list(df.columns)}"
        )

    wanted = pd.Index(sample_ids).astype(str)
    missing = wanted.difference(df.index)
    if len(missing) > 0:
        raise ValueError(
            f"{len(missing)} samples have no group label, e.g. {list(missing[:5])}"
        )

    labels = df.loc[wanted, column]
    logger.info(f"Groups from '{column}': {labels.value_counts().to_dict()}")
    return GroupLabels(labels, n_samples=len(wanted))
