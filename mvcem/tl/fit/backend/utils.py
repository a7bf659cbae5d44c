from mvcem.tl.fit.constants import UNS_KEY_MVCEM


def read_uns(adata, k):
    if UNS_KEY_MVCEM not in adata.uns.keys():
        raise ValueError(f"could not read {k} from .uns, it seems that no view store was created on this instance")
    if k not in adata.uns[UNS_KEY_MVCEM].keys():
        raise ValueError(f"could not find {k} in .uns[{UNS_KEY_MVCEM}]")
    return adata.uns[UNS_KEY_MVCEM][k]


def write_uns(adata, k, v):
    if UNS_KEY_MVCEM not in adata.uns.keys():
        adata.uns[UNS_KEY_MVCEM] = {}
    adata.uns[UNS_KEY_MVCEM][k] = v
