import numpy as np
import pandas as pd
import pytest

from mvcem.tl.fit.backend.kernel import neighborhood_weights
from mvcem.tl.fit.backend.utils import read_uns
from mvcem.tl.fit.constants import OBSM_KEY_VIEW_PREFIX, UNS_KEY_WEIGHTS
from mvcem.tl.fit.errors import (
    DuplicateViewName,
    InsufficientNeighbors,
    InvalidRadius,
    MissingValueError,
    ShapeMismatch,
    UnitSetMismatch,
)
from mvcem.tl.fit.views import (
    add_juxtaview,
    add_kernel_view,
    add_paraview,
    add_view,
    create_initial_view,
    filter_markers,
    get_view,
    get_view_kinds,
    get_view_names,
    remove_views,
)
from mvcem.unit_test.data_for_tests import KEY_B, KEY_CONST, get_adata, get_grid_coordinates, get_intrinsic_table


def _assert_view_slots(adata, name: str, kind: str):
    """Asserts that a view is registered with its kind and aligned to the units of the store."""
    assert name in get_view_names(adata)
    assert get_view_kinds(adata)[name] == kind
    view = get_view(adata, name=name)
    assert np.all(view.index == adata.obs_names)
    assert not view.isna().values.any()


def test_create_initial_view():
    table = get_intrinsic_table()
    adata = create_initial_view(table=table, coordinates=get_grid_coordinates())
    assert get_view_names(adata) == ["intraview"]
    _assert_view_slots(adata, name="intraview", kind="intrinsic")
    assert np.allclose(get_view(adata, "intraview").values, table.values)


def test_missing_values():
    table = get_intrinsic_table()
    table.iloc[3, 1] = np.nan
    with pytest.raises(MissingValueError):
        create_initial_view(table=table, coordinates=get_grid_coordinates())


def test_infinite_values():
    table = get_intrinsic_table()
    table.iloc[5, 2] = np.inf
    with pytest.raises(MissingValueError):
        create_initial_view(table=table, coordinates=get_grid_coordinates())
    adata = get_adata()
    custom = pd.DataFrame({"score": np.arange(adata.n_obs, dtype="float64")}, index=adata.obs_names)
    custom.iloc[0, 0] = -np.inf
    with pytest.raises(MissingValueError):
        add_view(adata, name="scores", table=custom)


@pytest.mark.parametrize("duplicate", ["cell_0", 0])
def test_duplicate_units(duplicate):
    table = get_intrinsic_table()
    # Identifiers 0 and "0" coincide once stored as strings:
    first = "cell_0" if duplicate == "cell_0" else "0"
    table.index = [first] + table.index.tolist()[1:-1] + [duplicate]
    with pytest.raises(ShapeMismatch):
        create_initial_view(table=table)


@pytest.mark.parametrize("mode", ["order", "subset", "ids"])
def test_coordinates_unit_mismatch(mode):
    table = get_intrinsic_table()
    coords = get_grid_coordinates()
    if mode == "order":
        coords = coords.iloc[::-1, :]
    elif mode == "subset":
        coords = coords.iloc[:50, :]
    else:
        coords.index = [f"spot_{i}" for i in range(coords.shape[0])]
    with pytest.raises(UnitSetMismatch):
        create_initial_view(table=table, coordinates=coords)


@pytest.mark.parametrize("n_dims", [1, 4])
def test_coordinates_dimension(n_dims):
    table = get_intrinsic_table()
    coords = pd.DataFrame(np.random.uniform(size=(table.shape[0], n_dims)), index=table.index)
    with pytest.raises(ShapeMismatch):
        create_initial_view(table=table, coordinates=coords)


def test_add_view():
    adata = get_adata()
    custom = pd.DataFrame({"score": np.arange(adata.n_obs, dtype="float64")}, index=adata.obs_names)
    adata_new = add_view(adata, name="scores", table=custom)
    _assert_view_slots(adata_new, name="scores", kind="custom")
    # The input store is a snapshot and is not modified:
    assert "scores" not in get_view_names(adata)
    with pytest.raises(DuplicateViewName):
        add_view(adata_new, name="scores", table=custom)
    with pytest.raises(DuplicateViewName):
        add_view(adata_new, name="intraview", table=custom)


def test_add_view_misaligned():
    adata = get_adata()
    custom = pd.DataFrame({"score": np.arange(adata.n_obs, dtype="float64")}, index=adata.obs_names[::-1])
    with pytest.raises(ShapeMismatch):
        add_view(adata, name="scores", table=custom)
    with pytest.raises(ShapeMismatch):
        add_view(adata, name="scores", table=custom.iloc[:10, :])


def test_add_view_unknown_kind():
    adata = get_adata()
    with pytest.raises(ValueError):
        add_view(adata, name="x", table=get_view(adata, "intraview"), kind="intrinsic")


@pytest.mark.parametrize("normalize", [False, True])
def test_juxtaview_aggregation(normalize):
    adata = get_adata()
    adata = add_juxtaview(adata, radius=1.0, normalize=normalize)
    name = "juxtaview.1.0"
    _assert_view_slots(adata, name=name, kind="juxta")
    intra = get_view(adata, "intraview")
    juxta = get_view(adata, name)
    # Unit 11 has grid neighbors 1, 10, 12, 21:
    expected = intra.iloc[[1, 10, 12, 21], :].values.sum(axis=0)
    if normalize:
        expected = expected / 4.0
    assert np.allclose(juxta.iloc[11, :].values, expected)
    # Corner unit 0 has neighbors 1 and 10:
    expected = intra.iloc[[1, 10], :].values.sum(axis=0)
    if normalize:
        expected = expected / 2.0
    assert np.allclose(juxta.iloc[0, :].values, expected)


def test_juxtaview_constant():
    adata = add_juxtaview(get_adata(), family="constant", k=4)
    _assert_view_slots(adata, name="juxtaview.4", kind="juxta")


def test_paraview_weights():
    adata = add_paraview(get_adata(), radius=2.0)
    _assert_view_slots(adata, name="paraview.2.0", kind="para")
    intra = get_view(adata, "intraview")
    para = get_view(adata, "paraview.2.0")
    w = neighborhood_weights(coordinates=get_grid_coordinates(), family="gaussian", radius=2.0)
    assert np.allclose(para[KEY_B].values, w @ intra[KEY_B].values)
    assert para.iloc[0, :].values.tolist() != para.iloc[1, :].values.tolist()


def test_weights_are_cached():
    adata = add_paraview(get_adata(), radius=2.0)
    weights = read_uns(adata, k=UNS_KEY_WEIGHTS)
    assert len(weights) == 1
    key = list(weights.keys())[0]
    assert key in adata.obsp.keys()
    adata = add_paraview(adata, radius=2.0, normalize=True, name="paraview.mean")
    assert len(read_uns(adata, k=UNS_KEY_WEIGHTS)) == 1
    assert np.allclose(
        get_view(adata, "paraview.mean").values,
        get_view(adata, "paraview.2.0").values / np.asarray(adata.obsp[key].sum(axis=1)),
    )


def test_paraview_on_custom_base_view():
    adata = get_adata()
    custom = pd.DataFrame({"score": np.ones((adata.n_obs,))}, index=adata.obs_names)
    adata = add_view(adata, name="scores", table=custom)
    adata = add_kernel_view(adata, name="score_counts", family="threshold", radius=1.0, base_view="scores")
    counts = get_view(adata, "score_counts")["score"].values
    assert counts[11] == 4.0 and counts[0] == 2.0


def test_kernel_errors():
    adata = get_adata()
    with pytest.raises(InvalidRadius):
        add_juxtaview(adata, radius=-1.0)
    with pytest.warns(UserWarning):
        adata_skipped = add_juxtaview(adata, radius=-1.0, skip_on_error=True)
    assert get_view_names(adata_skipped) == ["intraview"]
    # Skipping still returns a new snapshot:
    assert adata_skipped is not adata
    with pytest.raises(InsufficientNeighbors):
        add_juxtaview(adata, family="constant", k=100)
    with pytest.warns(UserWarning):
        adata_skipped = add_juxtaview(adata, family="constant", k=100, skip_on_error=True)
    assert get_view_names(adata_skipped) == ["intraview"]
    assert adata_skipped is not adata


def test_neighborhood_view_requires_coordinates():
    adata = create_initial_view(table=get_intrinsic_table())
    with pytest.raises(ValueError):
        add_juxtaview(adata, radius=1.0)


def test_remove_views():
    adata = add_paraview(add_juxtaview(get_adata(), radius=1.0), radius=2.0)
    adata = remove_views(adata, "juxtaview.1.0")
    assert get_view_names(adata) == ["intraview", "paraview.2.0"]
    assert f"{OBSM_KEY_VIEW_PREFIX}juxtaview.1.0" not in adata.obsm.keys()
    with pytest.raises(ValueError):
        remove_views(adata, "intraview")
    with pytest.raises(KeyError):
        remove_views(adata, "juxtaview.1.0")


def test_filter_markers():
    adata = get_adata(add_constant=True)
    assert KEY_CONST in get_view(adata, "intraview").columns
    adata = add_juxtaview(adata, radius=1.0)
    adata_filtered = filter_markers(adata, name="intraview")
    assert KEY_CONST not in get_view(adata_filtered, "intraview").columns
    assert KEY_CONST in get_view(adata_filtered, "juxtaview.1.0").columns
