import numpy as np
from sklearn.metrics import mean_squared_error, r2_score


def is_constant(y_true) -> bool:
    """Check whether a response vector has zero variance.

    Parameters
    ----------
    y_true
        y_true.

    Returns
    -------
    whether all entries are identical
    """
    y_true = np.asarray(y_true)
    return y_true.shape[0] == 0 or bool(np.ptp(y_true) == 0)


def r_squared(y_true, y_pred):
    """Compute r squared clipped at zero.

    A prediction that is worse than the mean of y_true scores zero. A constant y_true scores zero.

    Parameters
    ----------
    y_true
        y_true.
    y_pred
        y_pred.

    Returns
    -------
    r2
    """
    y_true = np.asarray(y_true, dtype="float64")
    y_pred = np.asarray(y_pred, dtype="float64")
    if is_constant(y_true):
        return 0.0
    return float(max(0.0, r2_score(y_true=y_true, y_pred=y_pred)))


def rmse(y_true, y_pred):
    """Compute root mean squared error.

    Parameters
    ----------
    y_true
        y_true.
    y_pred
        y_pred.

    Returns
    -------
    rmse
    """
    y_true = np.asarray(y_true, dtype="float64")
    y_pred = np.asarray(y_pred, dtype="float64")
    return float(np.sqrt(mean_squared_error(y_true=y_true, y_pred=y_pred)))
