import warnings
from typing import Dict, NamedTuple, Optional

import numpy as np
import pandas as pd
from sklearn.linear_model import Ridge

from mvcem.tl.fit.backend.learners import ViewResult
from mvcem.tl.fit.constants import DEFAULT_RIDGE_ALPHA
from mvcem.utils.metrics import is_constant, r_squared, rmse


class MetaResult(NamedTuple):
    """Decomposition of the variance of one target marker explained across views."""

    target: str
    # Non-negative coefficient of each view, NaN for a bypassed intrinsic view:
    contributions: pd.Series
    intercept: float
    # NaN if the intrinsic view is bypassed or absent:
    intra_r2: float
    multi_r2: float
    gain_r2: float
    intra_rmse: float
    multi_rmse: float
    # Reduction of the RMSE by the multi-view model, NaN if the intrinsic view is bypassed or absent:
    gain_rmse: float
    degenerate: bool
    negative_gain: bool


def combine_views(
    target_values: np.ndarray,
    view_results: Dict[str, ViewResult],
    intra_view: Optional[str],
    bypass_intra: bool = False,
    alpha: float = DEFAULT_RIDGE_ALPHA,
    target_name: str = "",
) -> MetaResult:
    """
    Fit the meta-model of one target on the out-of-fold predictions of all views.

    The design matrix has one column per view (out-of-fold predictions of the per-view models) and is regressed
    onto the observed target with a ridge regression with non-negative coefficients.

    Args:
        target_values: Observed target of each unit.
        view_results: Per-view model results of this target by view name, in view order.
        intra_view: Name of the intrinsic view, None if there is none.
        bypass_intra: Whether to leave the intrinsic view out of the meta-model. The baseline of the gain is then
            zero instead of the performance of the intrinsic view.
        alpha: Ridge penalty.
        target_name: Name of target marker.

    Returns: Contributions of the views and intra, multi and gain variance explained.
    """
    if not alpha >= 0:
        raise ValueError(f"ridge penalty needs to be non-negative, found {alpha}")
    y = np.asarray(target_values, dtype="float64")
    views = list(view_results.keys())
    views_used = [x for x in views if not (bypass_intra and x == intra_view)]
    if len(views_used) == 0:
        raise ValueError(f"no views left to combine for target {target_name}")
    for x in views_used:
        if view_results[x].predictions.shape[0] != y.shape[0]:
            raise ValueError(f"predictions of view {x} do not match the number of units")
    has_intra = intra_view is not None and intra_view in views and not bypass_intra
    if has_intra:
        intra_r2 = view_results[intra_view].performance
        intra_rmse = view_results[intra_view].rmse
    else:
        intra_r2 = np.nan
        intra_rmse = np.nan

    contributions = pd.Series(np.nan, index=views, dtype="float64")
    degenerate = is_constant(y)
    if degenerate:
        contributions[views_used] = 0.0
        intercept = float(np.mean(y)) if y.shape[0] > 0 else 0.0
        y_hat = np.zeros_like(y) + intercept
    else:
        design = np.stack([view_results[x].predictions for x in views_used], axis=1)
        model = Ridge(alpha=alpha, positive=True, fit_intercept=True)
        model.fit(design, y)
        coef = np.clip(model.coef_, 0.0, None)
        intercept = float(model.intercept_)
        y_hat = intercept + np.matmul(design, coef)
        contributions[views_used] = coef
    multi_r2 = r_squared(y, y_hat)
    multi_rmse = rmse(y, y_hat)
    if has_intra:
        gain_r2 = multi_r2 - intra_r2
        gain_rmse = intra_rmse - multi_rmse
    else:
        gain_r2 = multi_r2
        gain_rmse = np.nan
    negative_gain = bool(gain_r2 < 0)
    if negative_gain:
        warnings.warn(
            f"multi-view model of target {target_name} explains less variance than the intrinsic view "
            f"(gain.R2={gain_r2:.4f})"
        )
    return MetaResult(
        target=target_name,
        contributions=contributions,
        intercept=intercept,
        intra_r2=intra_r2,
        multi_r2=multi_r2,
        gain_r2=gain_r2,
        intra_rmse=intra_rmse,
        multi_rmse=multi_rmse,
        gain_rmse=gain_rmse,
        degenerate=degenerate,
        negative_gain=negative_gain,
    )
