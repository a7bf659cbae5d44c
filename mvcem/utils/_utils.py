import numpy as np
import pandas as pd
from pandas.api.types import infer_dtype, is_numeric_dtype

from mvcem.tl.fit.errors import MissingValueError, ShapeMismatch, UnitSetMismatch


def _assert_numeric_table(table: pd.DataFrame, name: str) -> None:
    if not isinstance(table, pd.DataFrame):
        raise TypeError(f"Expected `{name}` to be a `pandas.DataFrame`, found `{type(table).__name__}`.")
    # Identifiers are stored as strings, so uniqueness is checked after conversion:
    if not table.index.astype(str).is_unique:
        raise ShapeMismatch(f"Unit identifiers of `{name}` are not unique.")
    if not table.columns.astype(str).is_unique:
        raise ShapeMismatch(f"Marker names of `{name}` are not unique.")
    for k in table.columns:
        if not is_numeric_dtype(table[k]):
            raise TypeError(f"Expected column `{k}` of `{name}` to be numeric, found `{infer_dtype(table[k])}`.")
    if table.isna().values.any():
        n_missing = int(table.isna().values.sum())
        raise MissingValueError(f"Found {n_missing} missing values in `{name}`.")
    n_infinite = int(np.sum(np.isinf(np.asarray(table.values, dtype="float64"))))
    if n_infinite > 0:
        raise MissingValueError(f"Found {n_infinite} infinite values in `{name}`.")


def _assert_aligned_units(index: pd.Index, reference: pd.Index, name: str, error=ShapeMismatch) -> None:
    if len(index) != len(reference) or not np.all(np.asarray(index) == np.asarray(reference)):
        raise error(
            f"Units of `{name}` do not match the ordered unit set of the view store "
            f"({len(index)} vs {len(reference)} units)."
        )


def _assert_coordinates(coordinates: pd.DataFrame, reference: pd.Index) -> None:
    _assert_numeric_table(coordinates, name="coordinates")
    _assert_aligned_units(coordinates.index, reference, name="coordinates", error=UnitSetMismatch)
    if coordinates.shape[1] not in [2, 3]:
        raise ShapeMismatch(f"Expected 2 or 3 coordinate columns, found {coordinates.shape[1]}.")
