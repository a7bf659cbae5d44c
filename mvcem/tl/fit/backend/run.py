import warnings
from typing import List, Optional, Union

import anndata
import numpy as np
from joblib import Parallel, delayed
from tqdm import tqdm

from mvcem.tl.fit.backend.learners import BaseViewLearner, get_folds, get_learner
from mvcem.tl.fit.backend.meta_model import combine_views
from mvcem.tl.fit.backend.results import MultiViewResults, ResultStore, make_tables
from mvcem.tl.fit.backend.views import get_intra_view_name, get_view, get_view_names
from mvcem.tl.fit.constants import (
    DEFAULT_CV_FOLDS,
    DEFAULT_RIDGE_ALPHA,
    DEFAULT_SEED,
    MODEL_ENSEMBLE,
    POLICY_SKIP,
)
from mvcem.utils._utils import _assert_aligned_units, _assert_numeric_table


def run_views(
    adata: anndata.AnnData,
    destination: Optional[str] = None,
    targets: Optional[Union[str, List[str]]] = None,
    model: Union[str, BaseViewLearner] = MODEL_ENSEMBLE,
    cv_folds: int = DEFAULT_CV_FOLDS,
    bypass_intra: bool = False,
    alpha: float = DEFAULT_RIDGE_ALPHA,
    seed: int = DEFAULT_SEED,
    n_jobs: int = 1,
    policy: str = POLICY_SKIP,
    verbose: bool = True,
    **model_kwargs,
) -> MultiViewResults:
    """
    Model each target marker from every view and decompose the variance explained across views.

    Targets are processed one after another. For each target, one model per view is trained under k-fold
    cross-validation (in parallel across views), then the out-of-fold predictions of all views are combined in a
    ridge meta-model. The results of a target are added to the result store before the next target starts, so an
    interrupted run can be resumed into the same destination.

    Args:
        adata: View store, see create_initial_view.
        destination: Directory in which per-target results are persisted. Results are kept in memory only if None.
        targets: Markers of the intrinsic view to model, defaults to all.
        model: Model family ("ensemble", "boosting", "linear") or an instance of a custom learner.
        cv_folds: Number of cross-validation folds.
        bypass_intra: Whether to leave the intrinsic view out of the meta-model. The intrinsic view is still trained
            and its importances are reported, intra.R2 is reported as NaN.
        alpha: Ridge penalty of the meta-model.
        seed: Seed of fold assignments and learners.
        n_jobs: Number of views trained in parallel.
        policy: Conflict policy for targets already present in the destination: "skip" or "overwrite".
        verbose: Whether to show progress and report skipped targets.
        model_kwargs: Hyper-parameters of the model family.

    Returns:
        Result tables of all targets in the result store.
    """
    # Validate the full configuration before any model is trained.
    intra_view = get_intra_view_name(adata)
    views = get_view_names(adata)
    tables = {}
    for x in views:
        tables[x] = get_view(adata, name=x)
        _assert_numeric_table(tables[x], name=x)
        _assert_aligned_units(tables[x].index, reference=adata.obs_names, name=x)
    intra = tables[intra_view]
    if targets is None:
        targets = intra.columns.tolist()
    elif isinstance(targets, str):
        targets = [targets]
    missing = [x for x in targets if x not in intra.columns]
    if len(missing) > 0:
        raise KeyError(f"targets {missing} not found in intrinsic view {intra_view}")
    if bypass_intra and len(views) < 2:
        raise ValueError("bypassing the intrinsic view requires at least one other view")
    if not alpha >= 0:
        raise ValueError(f"ridge penalty needs to be non-negative, found {alpha}")
    learner = get_learner(model=model, seed=seed, **model_kwargs)
    store = ResultStore(path=destination, policy=policy)
    params = {
        "model": getattr(learner, "name", type(learner).__name__),
        "views": views,
        "cv_folds": cv_folds,
        "bypass_intra": bypass_intra,
        "alpha": alpha,
        "seed": seed,
    }
    n_obs = adata.n_obs
    skipped = []
    with tqdm(total=len(targets), disable=not verbose) as pbar:
        for target in targets:
            if policy == POLICY_SKIP and store.has_target(target):
                skipped.append(target)
                pbar.update(1)
                continue
            y = np.asarray(intra[target].values, dtype="float64")
            folds = get_folds(n_obs=n_obs, cv_folds=cv_folds, seed=seed)
            view_results = Parallel(n_jobs=n_jobs)(
                delayed(learner.train_view)(
                    features=tables[x].drop(columns=[target], errors="ignore"),
                    target=y,
                    folds=folds,
                    target_name=target,
                    view_name=x,
                )
                for x in views
            )
            view_results = dict(zip(views, view_results))
            meta_result = combine_views(
                target_values=y,
                view_results=view_results,
                intra_view=intra_view,
                bypass_intra=bypass_intra,
                alpha=alpha,
                target_name=target,
            )
            store.add(target=target, tables=make_tables(meta_result=meta_result, view_results=view_results),
                      params=params)
            pbar.update(1)
    if verbose and len(skipped) > 0:
        warnings.warn(f"skipped {len(skipped)} targets with results present in {destination}: {skipped}")
    return store.to_results()
