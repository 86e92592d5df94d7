import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import pandas as pd

from Surrogate_Methods.Data_Model import Dataset

logger = logging.getLogger(__name__)


# ---------------------------- Helper Functions ----------------------------
def target_distribution(target: pd.Series, max_levels: int = 20) -> pd.Series:
    """Class counts for a categorical target, summary statistics otherwise."""
    if pd.api.types.is_numeric_dtype(target) and target.nunique() > max_levels:
        return target.describe()
    return target.value_counts()


def missing_value_columns(df: pd.DataFrame) -> list:
    counts = df.isna().sum()
    return counts[counts > 0].index.tolist()


def load_dataset(
    source: Union[str, Path, pd.DataFrame],
    target: str,
    categorical: Optional[Sequence[str]] = None,
    drop_duplicates: bool = True,
    columns: Optional[Sequence[str]] = None,
) -> Dataset:
    """
    Load a tabular dataset for explanation.

    Args:
        source: CSV path or an already loaded DataFrame.
        target: Name of the target column.
        categorical: Categorical feature names; inferred from dtypes when None.
        drop_duplicates: Remove duplicate records first.
        columns: Optional subset of feature columns to keep (target is always kept).

    Returns:
        Dataset: immutable features/target pair.

    Raises:
        ValueError: if any record has a missing value. Imputation belongs upstream.
    """
    df = pd.read_csv(source) if isinstance(source, (str, Path)) else source.copy()
    if target not in df.columns:
        raise ValueError(f"Target column {target!r} not found")
    if columns is not None:
        df = df[list(columns) + [target]]

    if drop_duplicates:
        before = len(df)
        df = df.drop_duplicates()
        if len(df) < before:
            logger.info(f"Dropped {before - len(df)} duplicate records")

    missing = missing_value_columns(df)
    if missing:
        raise ValueError(f"Records with missing values must be imputed or dropped upstream; columns: {missing}")

    logger.info(f"Loaded {len(df)} records with {df.shape[1] - 1} features")
    logger.info(f"Target distribution:\n{target_distribution(df[target])}")
    return Dataset.from_frame(df, target, categorical)
