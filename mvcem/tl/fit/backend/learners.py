import abc
import warnings
from typing import Dict, NamedTuple, Optional, Tuple, Type, Union

import numpy as np
import pandas as pd
from sklearn.ensemble import GradientBoostingRegressor, RandomForestRegressor
from sklearn.inspection import permutation_importance
from sklearn.model_selection import KFold

from mvcem.tl.fit.backend.ols_fit import add_intercept, ols_fit, ols_predict
from mvcem.tl.fit.constants import DEFAULT_CV_FOLDS, DEFAULT_SEED, MODEL_BOOSTING, MODEL_ENSEMBLE, MODEL_LINEAR
from mvcem.utils.metrics import is_constant, r_squared, rmse


class ViewResult(NamedTuple):
    """Cross-validated model of one target marker from the markers of one view."""

    target: str
    view: str
    # Out-of-fold prediction of each unit:
    predictions: np.ndarray
    # Importance of each predictor marker, averaged over folds:
    importances: pd.Series
    performance: float
    rmse: float
    # Fold of each unit:
    folds: np.ndarray
    # Whether the model could not be fit (constant target, no predictors or a numerical failure):
    degenerate: bool


def get_folds(n_obs: int, cv_folds: int = DEFAULT_CV_FOLDS, seed: int = DEFAULT_SEED) -> np.ndarray:
    """
    Assign units to cross-validation folds.

    Args:
        n_obs: Number of units.
        cv_folds: Number of folds, reduced to n_obs (leave-one-out) if larger.
        seed: Seed of the shuffled fold assignment.

    Returns: Fold index of each unit.
    """
    if cv_folds < 2:
        raise ValueError(f"need at least 2 cross-validation folds, found {cv_folds}")
    if n_obs < 2:
        raise ValueError(f"need at least 2 units for cross-validation, found {n_obs}")
    if cv_folds > n_obs:
        warnings.warn(f"reducing {cv_folds} cross-validation folds to the number of units {n_obs}")
        cv_folds = n_obs
    folds = np.zeros((n_obs,), dtype="int64")
    splitter = KFold(n_splits=cv_folds, shuffle=True, random_state=seed)
    for i, (_, idx_test) in enumerate(splitter.split(np.arange(n_obs))):
        folds[idx_test] = i
    folds.setflags(write=False)
    return folds


class BaseViewLearner(abc.ABC):
    """
    Base class of per-view learners.

    Subclasses implement one fit on training units and prediction of held-out units; cross-validation, performance
    and degenerate cases are handled here.
    """

    name: str

    def __init__(self, seed: int = DEFAULT_SEED):
        self.seed = seed

    @abc.abstractmethod
    def _fit_predict(
        self, x_train: np.ndarray, y_train: np.ndarray, x_test: np.ndarray, y_test: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Fit model on training units and predict held-out units.

        Args:
            x_train: Predictors of training units (units x predictors).
            y_train: Target of training units.
            x_test: Predictors of held-out units.
            y_test: Target of held-out units, only used by importances that are evaluated out of sample.

        Returns:
            Tuple of predictions of held-out units and importance of each predictor.
        """
        pass

    def train_view(
        self,
        features: pd.DataFrame,
        target: np.ndarray,
        folds: np.ndarray,
        target_name: str = "",
        view_name: str = "",
    ) -> ViewResult:
        """
        Cross-validated fit of a target on the markers of a view.

        No unit is predicted by a model that was trained on it. A numerical failure of any fold fit is reported with a
        warning and the view is recorded as degenerate with performance 0.

        Args:
            features: Predictor markers (units x predictors), the target marker needs to be removed already.
            target: Target values of each unit.
            folds: Fold index of each unit, see get_folds.
            target_name: Name of target marker.
            view_name: Name of view.

        Returns: Out-of-fold predictions, importances and performance.
        """
        target = np.asarray(target, dtype="float64")
        x = np.asarray(features.values, dtype="float64")
        predictors = features.columns.tolist()
        fold_ids = np.unique(folds)
        predictions = np.zeros((target.shape[0],), dtype="float64")
        importances = np.zeros((len(predictors),), dtype="float64")
        degenerate = is_constant(target) or len(predictors) == 0
        if degenerate:
            reason = "has zero variance" if is_constant(target) else "has no predictors"
            warnings.warn(f"target {target_name} in view {view_name} {reason}, reporting performance 0")
        else:
            try:
                for i in fold_ids:
                    idx_test = folds == i
                    idx_train = np.logical_not(idx_test)
                    y_hat, imp = self._fit_predict(
                        x_train=x[idx_train, :],
                        y_train=target[idx_train],
                        x_test=x[idx_test, :],
                        y_test=target[idx_test],
                    )
                    predictions[idx_test] = y_hat
                    importances += np.nan_to_num(np.asarray(imp, dtype="float64"))
                if not np.all(np.isfinite(predictions)):
                    raise FloatingPointError("non-finite out-of-fold predictions")
            except (np.linalg.LinAlgError, FloatingPointError, ValueError) as e:
                # Numerical failures are isolated to this target and view.
                warnings.warn(f"fit of target {target_name} in view {view_name} failed ({e}), reporting performance 0")
                degenerate = True
                importances = np.zeros((len(predictors),), dtype="float64")
        if degenerate:
            for i in fold_ids:
                idx_test = folds == i
                predictions[idx_test] = np.mean(target[np.logical_not(idx_test)])
        else:
            importances = importances / len(fold_ids)
        return ViewResult(
            target=target_name,
            view=view_name,
            predictions=predictions,
            importances=pd.Series(importances, index=predictors, dtype="float64"),
            performance=0.0 if degenerate else r_squared(target, predictions),
            rmse=rmse(target, predictions),
            folds=folds,
            degenerate=degenerate,
        )


class EnsembleLearner(BaseViewLearner):
    """
    Random forest: bootstrap samples of units, random subsets of predictors per split, averaged trees.

    Importance is the mean decrease in impurity.
    """

    name = MODEL_ENSEMBLE

    def __init__(
        self, n_estimators: int = 100, max_features: Union[str, float, int] = "sqrt", seed: int = DEFAULT_SEED, **kwargs
    ):
        super(EnsembleLearner, self).__init__(seed=seed)
        self.n_estimators = n_estimators
        self.max_features = max_features
        self.kwargs = kwargs

    def _fit_predict(self, x_train, y_train, x_test, y_test):
        model = RandomForestRegressor(
            n_estimators=self.n_estimators,
            max_features=self.max_features,
            bootstrap=True,
            random_state=self.seed,
            n_jobs=1,
            **self.kwargs,
        )
        model.fit(x_train, y_train)
        return model.predict(x_test), model.feature_importances_


class BoostingLearner(BaseViewLearner):
    """
    Gradient boosted trees.

    Importance is the permutation importance on the held-out fold.
    """

    name = MODEL_BOOSTING

    def __init__(self, n_estimators: int = 100, n_repeats: int = 5, seed: int = DEFAULT_SEED, **kwargs):
        super(BoostingLearner, self).__init__(seed=seed)
        self.n_estimators = n_estimators
        self.n_repeats = n_repeats
        self.kwargs = kwargs

    def _fit_predict(self, x_train, y_train, x_test, y_test):
        model = GradientBoostingRegressor(n_estimators=self.n_estimators, random_state=self.seed, **self.kwargs)
        model.fit(x_train, y_train)
        if x_test.shape[0] < 2 or is_constant(y_test):
            # Permutations of fewer than two held-out units are uninformative.
            imp = np.zeros((x_train.shape[1],))
        else:
            imp = permutation_importance(
                model, x_test, y_test, n_repeats=self.n_repeats, random_state=self.seed
            ).importances_mean
        return model.predict(x_test), imp


class LinearLearner(BaseViewLearner):
    """
    Ordinary least squares with intercept.

    Importance is the standardized coefficient: its magnitude is the importance and its sign the direction of the
    association.
    """

    name = MODEL_LINEAR

    def _fit_predict(self, x_train, y_train, x_test, y_test):
        params = ols_fit(x_=add_intercept(x_train), y_=y_train)
        y_hat = ols_predict(x_=add_intercept(x_test), params=params)
        sd_x = np.std(x_train, axis=0)
        sd_y = np.std(y_train)
        if sd_y > 0:
            imp = params[1:] * sd_x / sd_y
        else:
            imp = np.zeros_like(params[1:])
        return y_hat, imp


LEARNERS: Dict[str, Type[BaseViewLearner]] = {
    MODEL_ENSEMBLE: EnsembleLearner,
    MODEL_BOOSTING: BoostingLearner,
    MODEL_LINEAR: LinearLearner,
}


def get_learner(
    model: Union[str, BaseViewLearner] = MODEL_ENSEMBLE, seed: Optional[int] = DEFAULT_SEED, **kwargs
) -> BaseViewLearner:
    """
    Instantiate the learner of a model family.

    Args:
        model: Name of a model family ("ensemble", "boosting", "linear") or an instance of a custom learner.
        seed: Seed of the learner.
        kwargs: Hyper-parameters passed to the learner.

    Returns: Learner.
    """
    if isinstance(model, BaseViewLearner):
        if len(kwargs) > 0:
            warnings.warn(f"ignoring hyper-parameters {list(kwargs.keys())} for given learner instance")
        return model
    if model not in LEARNERS.keys():
        raise ValueError(f"model family {model} not recognized, choose from {list(LEARNERS.keys())}")
    return LEARNERS[model](seed=seed, **kwargs)
