from typing import Callable, Optional

import numpy as np
import scipy.sparse
from scipy.spatial.distance import cdist
from sklearn.neighbors import NearestNeighbors

from mvcem.tl.fit.constants import (
    DEFAULT_CUTOFF_FACTOR,
    FAMILY_CONSTANT,
    FAMILY_CUSTOM,
    FAMILY_EXPONENTIAL,
    FAMILY_GAUSSIAN,
    FAMILY_LINEAR,
    FAMILY_THRESHOLD,
    KERNEL_FAMILIES,
    KNN_CHUNK_SIZE,
    OBSP_KEY_WEIGHTS_PREFIX,
)
from mvcem.tl.fit.errors import InsufficientNeighbors, InvalidRadius


def _resolve_cutoff(family: str, radius: float, cutoff: Optional[float]) -> float:
    if cutoff is not None:
        if not cutoff > 0:
            raise InvalidRadius(f"cutoff needs to be positive, found {cutoff}")
        return float(cutoff)
    if family in [FAMILY_THRESHOLD, FAMILY_LINEAR]:
        return float(radius)
    return DEFAULT_CUTOFF_FACTOR * float(radius)


def _knn_graph(coords: np.ndarray, k: int) -> scipy.sparse.csr_matrix:
    """
    Binary k-nearest neighbor graph, self excluded.

    Distances are evaluated in chunks of rows. Ties at equal distance are resolved by a stable sort so that the
    neighbor with the lower unit index is selected first.
    """
    n = coords.shape[0]
    rows = []
    cols = []
    for start in range(0, n, KNN_CHUNK_SIZE):
        stop = min(start + KNN_CHUNK_SIZE, n)
        d = cdist(coords[start:stop, :], coords)
        d[np.arange(0, stop - start), np.arange(start, stop)] = np.inf
        idx = np.argsort(d, axis=1, kind="stable")[:, :k]
        rows.append(np.repeat(np.arange(start, stop), k))
        cols.append(idx.ravel())
    rows = np.concatenate(rows)
    cols = np.concatenate(cols)
    w = scipy.sparse.csr_matrix((np.ones(rows.shape[0], dtype="float64"), (rows, cols)), shape=(n, n))
    w.sort_indices()
    return w


def _radius_graph(coords: np.ndarray, cutoff: float) -> scipy.sparse.csr_matrix:
    """
    Sparse distance graph of all pairs with distance <= cutoff, self excluded.

    Explicit entries are kept for coinciding units (distance 0).
    """
    n = coords.shape[0]
    # Exact distances, units at distance cutoff are included.
    nn = NearestNeighbors(radius=cutoff, algorithm="kd_tree").fit(coords)
    # Query without X so that each unit is not reported as its own neighbor:
    dists, idx = nn.radius_neighbors(X=None, radius=cutoff, return_distance=True)
    indptr = np.concatenate([[0], np.cumsum([len(x) for x in idx])])
    indices = np.concatenate(idx).astype("int64") if n > 0 else np.zeros((0,), dtype="int64")
    data = np.concatenate(dists).astype("float64") if n > 0 else np.zeros((0,), dtype="float64")
    g = scipy.sparse.csr_matrix((data, indices, indptr), shape=(n, n))
    g.sort_indices()
    return g


def neighborhood_weights(
    coordinates,
    family: str,
    radius: Optional[float] = None,
    k: Optional[int] = None,
    zoi: float = 0.0,
    cutoff: Optional[float] = None,
    weight_fn: Optional[Callable[[np.ndarray], np.ndarray]] = None,
) -> scipy.sparse.csr_matrix:
    """
    Compute the neighborhood weight matrix of a set of units from their coordinates.

    The weight of a unit to itself is always zero. Identical inputs yield bit-identical weights.

    Args:
        coordinates: Coordinates (units x 2 or units x 3), array or data frame.
        family: Kernel family:

            - "constant": weight 1 for the k nearest units, ties at equal distance go to the lower unit index.
            - "threshold": weight 1 for all units within radius.
            - "gaussian": exp(-d^2 / (2 radius^2)) for units within cutoff, radius acts as bandwidth.
            - "exponential": exp(-d / radius) for units within cutoff.
            - "linear": 1 - d / radius for units within radius.
            - "custom": weight_fn(d) for units within cutoff.
        radius: Radius or bandwidth of the kernel, not used for "constant".
        k: Number of nearest neighbors, only used for "constant".
        zoi: Zone of indifference, units closer than zoi get weight zero. Not used for "constant".
        cutoff: Maximal distance at which weights are evaluated. Defaults to radius for "threshold" and "linear" and
            to a multiple of radius for the decaying kernels.
        weight_fn: Vectorised map from distances to weights, only used for "custom".

    Returns: Sparse (units x units) weight matrix.

    Raises:
        InvalidRadius: If radius, zoi or cutoff are out of range.
        InsufficientNeighbors: If k is not between 1 and the number of units - 1.
    """
    if family not in KERNEL_FAMILIES:
        raise ValueError(f"kernel family {family} not recognized, choose from {KERNEL_FAMILIES}")
    coords = np.asarray(coordinates, dtype="float64")
    n = coords.shape[0]
    if family == FAMILY_CONSTANT:
        if k is None or int(k) != k or k < 1 or k > n - 1:
            raise InsufficientNeighbors(f"cannot select k={k} neighbors among {n} units")
        return _knn_graph(coords=coords, k=int(k))

    if radius is None or not radius > 0:
        raise InvalidRadius(f"radius needs to be positive, found {radius}")
    if zoi is None or zoi < 0:
        raise InvalidRadius(f"zone of indifference needs to be non-negative, found {zoi}")
    if family == FAMILY_CUSTOM and not callable(weight_fn):
        raise ValueError("custom kernel family requires a callable weight_fn")
    cutoff = _resolve_cutoff(family=family, radius=radius, cutoff=cutoff)
    g = _radius_graph(coords=coords, cutoff=cutoff)
    d = g.data
    if family == FAMILY_THRESHOLD:
        w = np.ones_like(d)
    elif family == FAMILY_GAUSSIAN:
        w = np.exp(-(d ** 2) / (2.0 * radius ** 2))
    elif family == FAMILY_EXPONENTIAL:
        w = np.exp(-d / radius)
    elif family == FAMILY_LINEAR:
        w = np.maximum(0.0, 1.0 - d / radius)
    else:
        w = np.asarray(weight_fn(d.copy()), dtype="float64")
        if w.shape != d.shape:
            raise ValueError(f"weight_fn returned shape {w.shape} for distances of shape {d.shape}")
    w[d < zoi] = 0.0
    weights = scipy.sparse.csr_matrix((w, g.indices.copy(), g.indptr.copy()), shape=(n, n))
    weights.eliminate_zeros()
    return weights


def row_normalize(weights: scipy.sparse.spmatrix) -> scipy.sparse.csr_matrix:
    """
    Divide each row of a weight matrix by its sum.

    Rows without any neighborhood mass remain zero.
    """
    mass = np.asarray(weights.sum(axis=1)).flatten()
    scale = np.zeros_like(mass)
    scale[mass > 0] = 1.0 / mass[mass > 0]
    return scipy.sparse.csr_matrix(scipy.sparse.diags(scale) @ weights)


def weights_cache_key(
    family: str,
    radius: Optional[float] = None,
    k: Optional[int] = None,
    zoi: float = 0.0,
    cutoff: Optional[float] = None,
) -> Optional[str]:
    """
    Key of .obsp slot under which a weight matrix is cached.

    Custom kernels are not cached as the weight function cannot be identified reliably.
    """
    if family == FAMILY_CUSTOM:
        return None
    if family == FAMILY_CONSTANT:
        return f"{OBSP_KEY_WEIGHTS_PREFIX}{family}_k{k}"
    return f"{OBSP_KEY_WEIGHTS_PREFIX}{family}_r{radius}_zoi{zoi}_cutoff{cutoff}"
