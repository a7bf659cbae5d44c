import os
import pickle
import warnings
from typing import Dict, List, Optional, Union
from urllib.parse import quote, unquote

import numpy as np
import pandas as pd

from mvcem.tl.fit.backend.learners import ViewResult
from mvcem.tl.fit.backend.meta_model import MetaResult
from mvcem.tl.fit.constants import (
    COL_IMPORTANCE,
    COL_NORMALIZED,
    COL_PREDICTOR,
    COL_SAMPLE,
    COL_TARGET,
    COL_VALUE,
    COL_VIEW,
    IMPROVEMENT_MEASURES,
    NAME_INTERCEPT,
    POLICY_OVERWRITE,
    POLICY_SKIP,
    SUFFIX_RESULTS,
)

KEY_IMPROVEMENTS = "improvements"
KEY_CONTRIBUTIONS = "contributions"
KEY_IMPORTANCES = "importances"
KEY_PARAMS = "params"

COLUMNS_IMPROVEMENTS = [COL_TARGET] + IMPROVEMENT_MEASURES
COLUMNS_CONTRIBUTIONS = [COL_TARGET, COL_VIEW, COL_VALUE]
COLUMNS_IMPORTANCES = [COL_TARGET, COL_VIEW, COL_PREDICTOR, COL_IMPORTANCE, COL_NORMALIZED]


def _zscore(x: np.ndarray) -> np.ndarray:
    sd = np.std(x)
    if x.shape[0] == 0 or not sd > 0:
        return np.zeros_like(x)
    return (x - np.mean(x)) / sd


def make_tables(meta_result: MetaResult, view_results: Dict[str, ViewResult]) -> Dict[str, pd.DataFrame]:
    """
    Convert the results of one target into rows of the three long-form result tables.

    Args:
        meta_result: Meta-model of the target.
        view_results: Per-view model results of the target by view name.

    Returns: Dictionary with improvements, contributions and importances rows of this target.
    """
    target = meta_result.target
    improvements = pd.DataFrame(
        [[
            target,
            meta_result.intra_r2,
            meta_result.multi_r2,
            meta_result.gain_r2,
            meta_result.intra_rmse,
            meta_result.multi_rmse,
            meta_result.gain_rmse,
        ]],
        columns=COLUMNS_IMPROVEMENTS,
    )
    contributions = [[target, k, v] for k, v in meta_result.contributions.items()]
    contributions.append([target, NAME_INTERCEPT, meta_result.intercept])
    contributions = pd.DataFrame(
        contributions,
        columns=COLUMNS_CONTRIBUTIONS,
    )
    importances = []
    for view, res in view_results.items():
        imp = res.importances.values
        importances.append(pd.DataFrame({
            COL_TARGET: target,
            COL_VIEW: view,
            COL_PREDICTOR: res.importances.index.tolist(),
            COL_IMPORTANCE: imp,
            COL_NORMALIZED: _zscore(imp),
        }, columns=COLUMNS_IMPORTANCES))
    if len(importances) > 0:
        importances = pd.concat(importances, axis=0, ignore_index=True)
    else:
        importances = pd.DataFrame(columns=COLUMNS_IMPORTANCES)
    return {
        KEY_IMPROVEMENTS: improvements,
        KEY_CONTRIBUTIONS: contributions,
        KEY_IMPORTANCES: importances,
    }


def _select(df: pd.DataFrame, col: str, values: Optional[Union[str, List[str]]]) -> pd.DataFrame:
    if values is None:
        return df
    if isinstance(values, str):
        values = [values]
    return df.loc[df[col].isin(values).values, :]


class MultiViewResults:
    """
    Long-form result tables of a multi-view run, optionally across several samples.

    Tables:

        - improvements: one row per target (and sample) with intra, multi and gain R2 and RMSE.
        - contributions: one row per target, view (and sample) with the meta-model coefficient of the view. The
          intercept of the meta-model is reported as view "intercept".
        - importances: one row per target, view, predictor (and sample) with the importance of the predictor in the
          model of the target in that view, and its z-score within the target and view.
    """

    def __init__(self, improvements: pd.DataFrame, contributions: pd.DataFrame, importances: pd.DataFrame):
        self.improvements = improvements.reset_index(drop=True)
        self.contributions = contributions.reset_index(drop=True)
        self.importances = importances.reset_index(drop=True)

    @property
    def targets(self) -> List[str]:
        return np.unique(self.improvements[COL_TARGET].values).tolist()

    @property
    def views(self) -> List[str]:
        return [x for x in pd.unique(self.contributions[COL_VIEW].values) if x != NAME_INTERCEPT]

    @property
    def has_samples(self) -> bool:
        return COL_SAMPLE in self.improvements.columns

    def get_improvements(
        self, targets: Optional[Union[str, List[str]]] = None, measure: Optional[str] = None
    ) -> pd.DataFrame:
        """
        Improvements table, optionally restricted to targets and to one measure.

        Args:
            targets: Target markers to keep.
            measure: One of "intra.R2", "multi.R2", "gain.R2", "intra.RMSE", "multi.RMSE", "gain.RMSE".

        Returns: Improvements table.
        """
        df = _select(self.improvements, COL_TARGET, targets)
        if measure is not None:
            if measure not in IMPROVEMENT_MEASURES:
                raise ValueError(f"measure {measure} not recognized, choose from {IMPROVEMENT_MEASURES}")
            df = df.loc[:, [x for x in df.columns if x not in IMPROVEMENT_MEASURES or x == measure]]
        return df.reset_index(drop=True)

    def get_contributions(
        self,
        views: Optional[Union[str, List[str]]] = None,
        targets: Optional[Union[str, List[str]]] = None,
    ) -> pd.DataFrame:
        df = _select(self.contributions, COL_VIEW, views)
        df = _select(df, COL_TARGET, targets)
        return df.reset_index(drop=True)

    def get_importances(
        self,
        views: Optional[Union[str, List[str]]] = None,
        targets: Optional[Union[str, List[str]]] = None,
        predictors: Optional[Union[str, List[str]]] = None,
    ) -> pd.DataFrame:
        df = _select(self.importances, COL_VIEW, views)
        df = _select(df, COL_TARGET, targets)
        df = _select(df, COL_PREDICTOR, predictors)
        return df.reset_index(drop=True)

    def importance_matrix(self, view: str, normalized: bool = True) -> pd.DataFrame:
        """
        Predictor x target matrix of importances in one view, averaged across samples.

        Pairs of a predictor and a target that were not modelled are NaN.
        """
        df = self.get_importances(views=view)
        if df.shape[0] == 0:
            raise KeyError(f"no importances found for view {view}")
        col = COL_NORMALIZED if normalized else COL_IMPORTANCE
        return df.pivot_table(index=COL_PREDICTOR, columns=COL_TARGET, values=col, aggfunc="mean")

    def improvements_stats(self) -> pd.DataFrame:
        """Mean, standard deviation and coefficient of variation of each improvement measure across samples."""
        df = self.improvements.melt(
            id_vars=[x for x in self.improvements.columns if x not in IMPROVEMENT_MEASURES],
            value_vars=IMPROVEMENT_MEASURES,
            var_name="measure",
            value_name=COL_VALUE,
        )
        stats = df.groupby([COL_TARGET, "measure"], sort=True)[COL_VALUE].agg(["mean", "std"]).reset_index()
        stats["cv"] = stats["std"] / stats["mean"]
        return stats

    def contributions_stats(self) -> pd.DataFrame:
        """
        Mean, standard deviation and coefficient of variation of the contribution of each view across samples.

        The fraction is the mean share of a view in the sum of contributions of all views of a target.
        """
        df = self.contributions.loc[self.contributions[COL_VIEW].values != NAME_INTERCEPT, :].copy()
        by = [COL_SAMPLE, COL_TARGET] if self.has_samples else [COL_TARGET]
        total = df.groupby(by, sort=False)[COL_VALUE].transform("sum")
        share = df[COL_VALUE] / total.where(total > 0)
        df["fraction"] = np.where(total.values > 0, share.values, 0.0)
        stats = df.groupby([COL_TARGET, COL_VIEW], sort=True).agg(
            mean=(COL_VALUE, "mean"), std=(COL_VALUE, "std"), fraction=("fraction", "mean")
        ).reset_index()
        stats["cv"] = stats["std"] / stats["mean"]
        return stats

    def aggregated_importances(self) -> pd.DataFrame:
        """Importances averaged across samples."""
        return self.importances.groupby([COL_VIEW, COL_PREDICTOR, COL_TARGET], sort=True).agg(
            importance=(COL_IMPORTANCE, "mean"), normalized=(COL_NORMALIZED, "mean")
        ).reset_index()


class ResultStore:
    """
    Append-only store of per-target results.

    Results are keyed by target. Adding a target that is already present follows the conflict policy:

        - "skip": the present result is kept and nothing is added. Re-running into the same store therefore leaves
          it unchanged and resumes interrupted runs.
        - "overwrite": the present result is replaced.

    With a path, every target is persisted to its own pickle file in that directory as soon as it is added.
    """

    def __init__(self, path: Optional[str] = None, policy: str = POLICY_SKIP):
        if policy not in [POLICY_SKIP, POLICY_OVERWRITE]:
            raise ValueError(f"conflict policy {policy} not recognized, choose from {[POLICY_SKIP, POLICY_OVERWRITE]}")
        self.path = path
        self.policy = policy
        self._records = {}
        if self.path is not None:
            os.makedirs(self.path, exist_ok=True)

    def _fn(self, target: str) -> str:
        return os.path.join(self.path, quote(target, safe="") + SUFFIX_RESULTS)

    @property
    def targets(self) -> List[str]:
        targets = set(self._records.keys())
        if self.path is not None:
            targets = targets.union({
                unquote(x[:-len(SUFFIX_RESULTS)]) for x in os.listdir(self.path) if x.endswith(SUFFIX_RESULTS)
            })
        return sorted(targets)

    def has_target(self, target: str) -> bool:
        if target in self._records.keys():
            return True
        return self.path is not None and os.path.isfile(self._fn(target))

    def add(self, target: str, tables: Dict[str, pd.DataFrame], params: Optional[dict] = None) -> bool:
        """
        Add the result tables of one target.

        Args:
            target: Target marker.
            tables: Improvements, contributions and importances rows of this target, see make_tables.
            params: Run parameters saved with the result.

        Returns: Whether the result was added.
        """
        if self.has_target(target) and self.policy == POLICY_SKIP:
            return False
        record = {k: tables[k] for k in [KEY_IMPROVEMENTS, KEY_CONTRIBUTIONS, KEY_IMPORTANCES]}
        record[KEY_PARAMS] = {} if params is None else dict(params)
        if self.path is not None:
            fn = self._fn(target)
            fn_tmp = fn + ".tmp"
            with open(fn_tmp, "wb") as f:
                pickle.dump(obj=record, file=f)
            os.replace(fn_tmp, fn)
        self._records[target] = record
        return True

    def load(self, target: str) -> dict:
        if target in self._records.keys():
            return self._records[target]
        if not self.has_target(target):
            raise KeyError(f"no results found for target {target}")
        with open(self._fn(target), "rb") as f:
            record = pickle.load(f)
        self._records[target] = record
        return record

    def to_results(self, sample: Optional[str] = None) -> MultiViewResults:
        """
        Assemble all stored targets, in sorted order, into result tables.

        Args:
            sample: If given, added as sample column to all tables.

        Returns: Result tables.
        """
        tables = {KEY_IMPROVEMENTS: [], KEY_CONTRIBUTIONS: [], KEY_IMPORTANCES: []}
        columns = {
            KEY_IMPROVEMENTS: COLUMNS_IMPROVEMENTS,
            KEY_CONTRIBUTIONS: COLUMNS_CONTRIBUTIONS,
            KEY_IMPORTANCES: COLUMNS_IMPORTANCES,
        }
        for x in self.targets:
            record = self.load(x)
            for k in tables.keys():
                tables[k].append(record[k])
        out = {}
        for k, v in tables.items():
            v = [x for x in v if x.shape[0] > 0]
            df = pd.concat(v, axis=0, ignore_index=True) if len(v) > 0 else pd.DataFrame(columns=columns[k])
            if sample is not None:
                df.insert(0, COL_SAMPLE, sample)
            out[k] = df
        return MultiViewResults(
            improvements=out[KEY_IMPROVEMENTS],
            contributions=out[KEY_CONTRIBUTIONS],
            importances=out[KEY_IMPORTANCES],
        )


def collect_results(
    paths: Union[str, List[str]],
    sample_names: Optional[List[str]] = None,
    verbose: bool = False,
) -> MultiViewResults:
    """
    Load results of one or several runs, one sample per destination directory.

    Args:
        paths: Destination directories of runs.
        sample_names: Sample name of each directory, defaults to the directory names.
        verbose: Whether to report directories without results.

    Returns: Result tables with a sample column.
    """
    if isinstance(paths, str):
        paths = [paths]
    if sample_names is None:
        sample_names = [os.path.basename(os.path.normpath(x)) for x in paths]
    if len(sample_names) != len(paths):
        raise ValueError(f"found {len(sample_names)} sample names for {len(paths)} paths")
    if len(set(sample_names)) != len(sample_names):
        raise ValueError("sample names need to be unique, pass sample_names explicitly")
    improvements = []
    contributions = []
    importances = []
    for x, s in zip(paths, sample_names):
        if not os.path.isdir(x):
            raise ValueError(f"result directory {x} not found")
        store = ResultStore(path=x)
        if len(store.targets) == 0:
            if verbose:
                warnings.warn(f"no results found in {x}")
            continue
        res = store.to_results(sample=s)
        improvements.append(res.improvements)
        contributions.append(res.contributions)
        importances.append(res.importances)
    if len(improvements) == 0:
        raise ValueError("no results found")
    return MultiViewResults(
        improvements=pd.concat(improvements, axis=0, ignore_index=True),
        contributions=pd.concat(contributions, axis=0, ignore_index=True),
        importances=pd.concat(importances, axis=0, ignore_index=True),
    )
