import warnings
from typing import Callable, Dict, List, Optional, Union

import anndata
import numpy as np
import pandas as pd

from mvcem.tl.fit.backend.kernel import neighborhood_weights, row_normalize, weights_cache_key
from mvcem.tl.fit.backend.utils import read_uns, write_uns
from mvcem.tl.fit.constants import (
    FAMILY_CONSTANT,
    FAMILY_GAUSSIAN,
    FAMILY_THRESHOLD,
    KIND_CUSTOM,
    KIND_INTRINSIC,
    KIND_JUXTA,
    KIND_PARA,
    NAME_INTRA_VIEW,
    OBSM_KEY_SPATIAL,
    OBSM_KEY_VIEW_PREFIX,
    PREFIX_JUXTA_VIEW,
    PREFIX_PARA_VIEW,
    UNS_KEY_INTRA_VIEW,
    UNS_KEY_VIEWS,
    UNS_KEY_WEIGHTS,
    VIEW_KINDS,
)
from mvcem.tl.fit.errors import DuplicateViewName, InsufficientNeighbors, InvalidRadius
from mvcem.utils._utils import _assert_aligned_units, _assert_coordinates, _assert_numeric_table


def _as_str_index(table: pd.DataFrame) -> pd.DataFrame:
    table = table.copy()
    table.index = table.index.astype(str)
    table.columns = table.columns.astype(str)
    return table


def create_initial_view(
    table: pd.DataFrame,
    coordinates: Optional[pd.DataFrame] = None,
    name: str = NAME_INTRA_VIEW,
) -> anndata.AnnData:
    """
    Create a view store from the intrinsic marker table.

    Fixes the ordered set of units for all views that are added later.

    Args:
        table: Intrinsic view (units x markers), numeric and without missing values.
        coordinates: Spatial coordinates (units x 2 or units x 3) of the same units in the same order. Required for
            views derived from neighborhoods.
        name: Name of the intrinsic view.

    Returns:
        AnnData instance with the intrinsic view in .X, coordinates in .obsm and the view registry in .uns.

    Raises:
        MissingValueError: If a table contains missing values.
        ShapeMismatch: If unit or marker names are not unique or coordinates are not 2D or 3D.
        UnitSetMismatch: If coordinates are not given for the same ordered units.
    """
    _assert_numeric_table(table, name="table")
    table = _as_str_index(table)
    adata = anndata.AnnData(
        X=np.asarray(table.values, dtype="float64"),
        obs=pd.DataFrame(index=table.index),
        var=pd.DataFrame(index=table.columns),
    )
    if coordinates is not None:
        coordinates = coordinates.copy()
        coordinates.index = coordinates.index.astype(str)
        _assert_coordinates(coordinates, reference=adata.obs_names)
        adata.obsm[OBSM_KEY_SPATIAL] = np.asarray(coordinates.values, dtype="float64")
    write_uns(adata, UNS_KEY_INTRA_VIEW, name)
    write_uns(adata, UNS_KEY_VIEWS, {name: {"kind": KIND_INTRINSIC}})
    write_uns(adata, UNS_KEY_WEIGHTS, {})
    return adata


def get_intra_view_name(adata: anndata.AnnData) -> str:
    return read_uns(adata, k=UNS_KEY_INTRA_VIEW)


def get_view_names(adata: anndata.AnnData) -> List[str]:
    """Names of all views in registration order, intrinsic view first."""
    return list(read_uns(adata, k=UNS_KEY_VIEWS).keys())


def get_view_kinds(adata: anndata.AnnData) -> Dict[str, str]:
    return {k: v["kind"] for k, v in read_uns(adata, k=UNS_KEY_VIEWS).items()}


def get_view(adata: anndata.AnnData, name: str) -> pd.DataFrame:
    """
    Return one view as data frame (units x markers).

    Args:
        adata: View store.
        name: Name of the view.

    Returns: View table.
    """
    if name not in get_view_names(adata):
        raise KeyError(f"view {name} not found, available views are {get_view_names(adata)}")
    if name == get_intra_view_name(adata):
        return pd.DataFrame(np.asarray(adata.X), index=adata.obs_names, columns=adata.var_names)
    return adata.obsm[f"{OBSM_KEY_VIEW_PREFIX}{name}"]


def get_coordinates(adata: anndata.AnnData) -> np.ndarray:
    if OBSM_KEY_SPATIAL not in adata.obsm.keys():
        raise ValueError("no coordinates found, pass coordinates to create_initial_view to build neighborhood views")
    return np.asarray(adata.obsm[OBSM_KEY_SPATIAL])


def add_view(
    adata: anndata.AnnData,
    name: str,
    table: pd.DataFrame,
    kind: str = KIND_CUSTOM,
    params: Optional[dict] = None,
) -> anndata.AnnData:
    """
    Register a view in a copy of the view store.

    Args:
        adata: View store.
        name: Name of the new view.
        table: View table (units x markers) over the ordered units of the view store.
        kind: One of "juxta", "para", "custom". The intrinsic view is set by create_initial_view only.
        params: Construction parameters that are saved with the view.

    Returns:
        New view store that contains the view, the input instance is not modified.

    Raises:
        DuplicateViewName: If a view with this name exists.
        ShapeMismatch: If the units do not match the units of the view store.
        MissingValueError: If the table contains missing values.
    """
    if name in get_view_names(adata):
        raise DuplicateViewName(f"view {name} already exists")
    if kind not in VIEW_KINDS or kind == KIND_INTRINSIC:
        kinds = [x for x in VIEW_KINDS if x != KIND_INTRINSIC]
        raise ValueError(f"view kind {kind} not recognized, choose from {kinds}")
    _assert_numeric_table(table, name=name)
    table = _as_str_index(table).astype("float64")
    _assert_aligned_units(table.index, reference=adata.obs_names, name=name)
    adata = adata.copy()
    adata.obsm[f"{OBSM_KEY_VIEW_PREFIX}{name}"] = table
    views = dict(read_uns(adata, k=UNS_KEY_VIEWS))
    entry = {"kind": kind}
    if params is not None:
        entry.update({k: v for k, v in params.items() if v is not None})
    views[name] = entry
    write_uns(adata, UNS_KEY_VIEWS, views)
    return adata


def add_kernel_view(
    adata: anndata.AnnData,
    name: str,
    family: str,
    radius: Optional[float] = None,
    k: Optional[int] = None,
    zoi: float = 0.0,
    cutoff: Optional[float] = None,
    weight_fn: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    normalize: bool = False,
    base_view: Optional[str] = None,
    kind: str = KIND_CUSTOM,
    skip_on_error: bool = False,
) -> anndata.AnnData:
    """
    Derive a view by aggregating the markers of a base view over spatial neighborhoods.

    For unit u and marker m, the derived value is the sum over neighbors n != u of w(u, n) * base(n, m).

    Args:
        adata: View store with coordinates.
        name: Name of the new view.
        family: Kernel family, see neighborhood_weights.
        radius: Radius or bandwidth of the kernel.
        k: Number of nearest neighbors for the "constant" family.
        zoi: Zone of indifference.
        cutoff: Maximal distance at which weights are evaluated.
        weight_fn: Weight function of the "custom" family.
        normalize: Whether to divide the weights of each unit by their sum (neighborhood mean) instead of using
            the raw weighted sum, which keeps the total neighborhood mass as information.
        base_view: View whose markers are aggregated, defaults to the intrinsic view.
        kind: Kind of the new view.
        skip_on_error: Whether to warn and return an unchanged copy of the view store on kernel configuration errors.

    Returns:
        New view store that contains the view. Weight matrices are cached in .obsp.
    """
    if name in get_view_names(adata):
        raise DuplicateViewName(f"view {name} already exists")
    base_view = get_intra_view_name(adata) if base_view is None else base_view
    base = get_view(adata, name=base_view)
    key = weights_cache_key(family=family, radius=radius, k=k, zoi=zoi, cutoff=cutoff)
    if key is not None and key in adata.obsp.keys():
        w = adata.obsp[key]
    else:
        try:
            w = neighborhood_weights(
                coordinates=get_coordinates(adata),
                family=family,
                radius=radius,
                k=k,
                zoi=zoi,
                cutoff=cutoff,
                weight_fn=weight_fn,
            )
        except (InvalidRadius, InsufficientNeighbors) as e:
            if not skip_on_error:
                raise
            warnings.warn(f"skipping view {name}: {e}")
            return adata.copy()
    w_agg = row_normalize(w) if normalize else w
    derived = pd.DataFrame(np.asarray(w_agg @ base.values), index=adata.obs_names, columns=base.columns)
    params = {
        "family": family,
        "radius": radius,
        "k": k,
        "zoi": zoi,
        "cutoff": cutoff,
        "normalize": normalize,
        "base_view": base_view,
        "weights_key": key,
    }
    adata = add_view(adata, name=name, table=derived, kind=kind, params=params)
    if key is not None and key not in adata.obsp.keys():
        adata.obsp[key] = w
        weights = dict(read_uns(adata, k=UNS_KEY_WEIGHTS))
        weights[key] = {k_: v for k_, v in params.items() if k_ in ["family", "radius", "k", "zoi", "cutoff"]
                        and v is not None}
        write_uns(adata, UNS_KEY_WEIGHTS, weights)
    return adata


def add_juxtaview(
    adata: anndata.AnnData,
    radius: Optional[float] = None,
    family: str = FAMILY_THRESHOLD,
    k: Optional[int] = None,
    normalize: bool = False,
    name: Optional[str] = None,
    base_view: Optional[str] = None,
    skip_on_error: bool = False,
) -> anndata.AnnData:
    """
    Add a view of the markers of directly neighboring units.

    Args:
        adata: View store with coordinates.
        radius: Distance up to which units are neighbors ("threshold" family).
        family: "threshold" (default) or "constant" for the k nearest units.
        k: Number of nearest neighbors for the "constant" family.
        normalize: Whether to average instead of sum over neighbors.
        name: Name of the view, defaults to "juxtaview.<radius>" or "juxtaview.<k>".
        base_view: View whose markers are aggregated, defaults to the intrinsic view.
        skip_on_error: Whether to warn and skip the view on kernel configuration errors.

    Returns:
        New view store that contains the juxtaview.
    """
    if name is None:
        name = f"{PREFIX_JUXTA_VIEW}{k if family == FAMILY_CONSTANT else radius}"
    return add_kernel_view(
        adata=adata,
        name=name,
        family=family,
        radius=radius,
        k=k,
        normalize=normalize,
        base_view=base_view,
        kind=KIND_JUXTA,
        skip_on_error=skip_on_error,
    )


def add_paraview(
    adata: anndata.AnnData,
    radius: float,
    family: str = FAMILY_GAUSSIAN,
    zoi: float = 0.0,
    cutoff: Optional[float] = None,
    weight_fn: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    normalize: bool = False,
    name: Optional[str] = None,
    base_view: Optional[str] = None,
    skip_on_error: bool = False,
) -> anndata.AnnData:
    """
    Add a view of the markers of the broader neighborhood, weighted by a distance-decaying kernel.

    Args:
        adata: View store with coordinates.
        radius: Bandwidth of the kernel.
        family: "gaussian" (default), "exponential", "linear" or "custom".
        zoi: Zone of indifference, units closer than zoi do not contribute.
        cutoff: Maximal distance at which weights are evaluated.
        weight_fn: Weight function of the "custom" family.
        normalize: Whether to divide by the total weight of each neighborhood.
        name: Name of the view, defaults to "paraview.<radius>".
        base_view: View whose markers are aggregated, defaults to the intrinsic view.
        skip_on_error: Whether to warn and skip the view on kernel configuration errors.

    Returns:
        New view store that contains the paraview.
    """
    if name is None:
        name = f"{PREFIX_PARA_VIEW}{radius}"
    return add_kernel_view(
        adata=adata,
        name=name,
        family=family,
        radius=radius,
        zoi=zoi,
        cutoff=cutoff,
        weight_fn=weight_fn,
        normalize=normalize,
        base_view=base_view,
        kind=KIND_PARA,
        skip_on_error=skip_on_error,
    )


def remove_views(adata: anndata.AnnData, names: Union[str, List[str]]) -> anndata.AnnData:
    """Return a copy of the view store without the given views. The intrinsic view cannot be removed."""
    if isinstance(names, str):
        names = [names]
    intra_view = get_intra_view_name(adata)
    for x in names:
        if x == intra_view:
            raise ValueError("the intrinsic view cannot be removed")
        if x not in get_view_names(adata):
            raise KeyError(f"view {x} not found")
    adata = adata.copy()
    views = dict(read_uns(adata, k=UNS_KEY_VIEWS))
    for x in names:
        del adata.obsm[f"{OBSM_KEY_VIEW_PREFIX}{x}"]
        del views[x]
    write_uns(adata, UNS_KEY_VIEWS, views)
    return adata


def filter_markers(adata: anndata.AnnData, name: str, min_variance: float = 0.0) -> anndata.AnnData:
    """
    Drop markers of a view whose variance across units does not exceed min_variance.

    Constant markers carry no information for any model and make standardized importances undefined.
    """
    view = get_view(adata, name=name)
    keep = view.var(axis=0, ddof=0).values > min_variance
    if np.all(keep):
        return adata.copy()
    if name == get_intra_view_name(adata):
        return adata[:, keep].copy()
    adata = adata.copy()
    adata.obsm[f"{OBSM_KEY_VIEW_PREFIX}{name}"] = view.loc[:, keep]
    return adata
