import numpy as np
import pandas as pd
import pytest

from mvcem.tl.fit.views import ViewResult, combine_views, get_folds
from mvcem.utils.metrics import r_squared, rmse

N_OBS = 100


def _view_result(name: str, y: np.ndarray, predictions: np.ndarray, performance=None) -> ViewResult:
    return ViewResult(
        target="A",
        view=name,
        predictions=predictions,
        importances=pd.Series([1.0], index=["B"]),
        performance=r_squared(y, predictions) if performance is None else performance,
        rmse=rmse(y, predictions),
        folds=get_folds(n_obs=N_OBS),
        degenerate=False,
    )


def _get_view_results(seed: int = 0):
    """Intrinsic view explains half of the target and a second view explains the other half."""
    rng = np.random.default_rng(seed)
    u = rng.normal(size=N_OBS)
    v = rng.normal(size=N_OBS)
    y = u + v
    view_results = {
        "intraview": _view_result("intraview", y, u),
        "juxtaview.1.0": _view_result("juxtaview.1.0", y, v),
    }
    return y, view_results


def test_combine_views():
    y, view_results = _get_view_results()
    res = combine_views(target_values=y, view_results=view_results, intra_view="intraview", alpha=0.0)
    assert res.contributions.index.tolist() == ["intraview", "juxtaview.1.0"]
    assert np.allclose(res.contributions.values, 1.0, atol=1e-3)
    assert np.isclose(res.multi_r2, 1.0, atol=1e-4)
    assert np.isclose(res.intra_r2, view_results["intraview"].performance)
    assert np.isclose(res.gain_r2, res.multi_r2 - res.intra_r2)
    assert res.gain_r2 > 0.3
    assert np.isclose(res.gain_rmse, res.intra_rmse - res.multi_rmse)
    assert not res.negative_gain


@pytest.mark.parametrize("alpha", [0.0, 1.0, 100.0])
def test_contributions_are_non_negative(alpha):
    rng = np.random.default_rng(1)
    y, view_results = _get_view_results()
    # A view that is anti-correlated with the target:
    view_results["paraview.2.0"] = _view_result("paraview.2.0", y, -y + rng.normal(scale=0.1, size=N_OBS))
    res = combine_views(target_values=y, view_results=view_results, intra_view="intraview", alpha=alpha)
    assert np.all(res.contributions.values >= 0.0)
    assert res.contributions["paraview.2.0"] < 1e-4
    assert 0.0 <= res.multi_r2 <= 1.0


def test_bypass_intra():
    y, view_results = _get_view_results()
    res = combine_views(target_values=y, view_results=view_results, intra_view="intraview", bypass_intra=True)
    assert np.isnan(res.contributions["intraview"])
    assert res.contributions["juxtaview.1.0"] > 0.0
    assert np.isnan(res.intra_r2)
    assert np.isnan(res.intra_rmse)
    assert np.isnan(res.gain_rmse)
    assert res.gain_r2 == res.multi_r2


def test_bypass_only_view():
    y, view_results = _get_view_results()
    with pytest.raises(ValueError):
        combine_views(
            target_values=y,
            view_results={"intraview": view_results["intraview"]},
            intra_view="intraview",
            bypass_intra=True,
        )


def test_negative_gain_is_reported():
    """A meta-model can explain less than the reported intrinsic performance, the gain is kept negative."""
    y, view_results = _get_view_results()
    rng = np.random.default_rng(2)
    view_results = {
        "intraview": _view_result("intraview", y, rng.normal(size=N_OBS), performance=0.9),
        "juxtaview.1.0": _view_result("juxtaview.1.0", y, rng.normal(size=N_OBS)),
    }
    with pytest.warns(UserWarning):
        res = combine_views(target_values=y, view_results=view_results, intra_view="intraview")
    assert res.negative_gain
    assert res.gain_r2 < 0.0
    assert np.isclose(res.gain_r2, res.multi_r2 - 0.9)


def test_zero_variance_target():
    y = np.ones((N_OBS,))
    view_results = {
        "intraview": _view_result("intraview", y, y.copy(), performance=0.0),
        "juxtaview.1.0": _view_result("juxtaview.1.0", y, y.copy(), performance=0.0),
    }
    res = combine_views(target_values=y, view_results=view_results, intra_view="intraview")
    assert res.degenerate
    assert np.all(res.contributions.values == 0.0)
    assert res.intercept == 1.0
    assert res.intra_r2 == 0.0 and res.multi_r2 == 0.0 and res.gain_r2 == 0.0


def test_invalid_penalty():
    y, view_results = _get_view_results()
    with pytest.raises(ValueError):
        combine_views(target_values=y, view_results=view_results, intra_view="intraview", alpha=-1.0)
