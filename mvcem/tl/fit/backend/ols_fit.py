import numpy as np


def add_intercept(x_):
    return np.hstack([np.ones((x_.shape[0], 1), dtype=x_.dtype), x_])


def ols_fit(x_, y_):
    """beta = (XT * X)^-1 XT y"""
    # Pseudo-inverse keeps collinear or constant predictors fittable:
    x = np.matmul(
        np.linalg.pinv(np.matmul(x_.T, x_)),
        x_.T
    )
    return np.matmul(x, y_)


def ols_predict(x_, params):
    """Predict from parameters fit by ols_fit on a design matrix with the same columns."""
    return np.matmul(x_, params.T)
