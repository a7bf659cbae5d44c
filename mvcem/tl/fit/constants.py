# .uns key under which all mvcem entries in .uns are stored:
UNS_KEY_MVCEM = "mvcem"
# .uns key (inside UNS_KEY_MVCEM) with the registry of views, their kinds and construction parameters:
UNS_KEY_VIEWS = "views"
# .uns key (inside UNS_KEY_MVCEM) with the name of the intrinsic view:
UNS_KEY_INTRA_VIEW = "intra_view"
# .uns key (inside UNS_KEY_MVCEM) with the registry of cached neighborhood weight matrices:
UNS_KEY_WEIGHTS = "weights"
# .obsm key of spatial coordinates:
OBSM_KEY_SPATIAL = "spatial"
# Prefix of .obsm keys under which view tables are stored:
OBSM_KEY_VIEW_PREFIX = "mvcem_view_"
# Prefix of .obsp keys under which neighborhood weight matrices are stored:
OBSP_KEY_WEIGHTS_PREFIX = "mvcem_weights_"

# View kinds:
KIND_INTRINSIC = "intrinsic"
KIND_JUXTA = "juxta"
KIND_PARA = "para"
KIND_CUSTOM = "custom"
VIEW_KINDS = (KIND_INTRINSIC, KIND_JUXTA, KIND_PARA, KIND_CUSTOM)

# Default view names:
NAME_INTRA_VIEW = "intraview"
PREFIX_JUXTA_VIEW = "juxtaview."
PREFIX_PARA_VIEW = "paraview."

# Kernel families:
FAMILY_CONSTANT = "constant"
FAMILY_THRESHOLD = "threshold"
FAMILY_GAUSSIAN = "gaussian"
FAMILY_EXPONENTIAL = "exponential"
FAMILY_LINEAR = "linear"
FAMILY_CUSTOM = "custom"
KERNEL_FAMILIES = (
    FAMILY_CONSTANT,
    FAMILY_THRESHOLD,
    FAMILY_GAUSSIAN,
    FAMILY_EXPONENTIAL,
    FAMILY_LINEAR,
    FAMILY_CUSTOM,
)
# Cutoff of decaying kernels in units of the radius (bandwidth) if no explicit cutoff is given:
DEFAULT_CUTOFF_FACTOR = 3.0
# Number of units for which distances are evaluated at once in the k-nearest neighbor search:
KNN_CHUNK_SIZE = 1024

# Learner families:
MODEL_ENSEMBLE = "ensemble"
MODEL_BOOSTING = "boosting"
MODEL_LINEAR = "linear"

# Run defaults:
DEFAULT_CV_FOLDS = 10
DEFAULT_RIDGE_ALPHA = 1.0
DEFAULT_SEED = 42

# Conflict policies of the result store:
POLICY_SKIP = "skip"
POLICY_OVERWRITE = "overwrite"
SUFFIX_RESULTS = "_results.pickle"

# Column names of the result tables:
COL_TARGET = "target"
COL_VIEW = "view"
COL_PREDICTOR = "predictor"
COL_VALUE = "value"
COL_IMPORTANCE = "importance"
COL_NORMALIZED = "normalized"
COL_SAMPLE = "sample"
COL_INTRA_R2 = "intra.R2"
COL_MULTI_R2 = "multi.R2"
COL_GAIN_R2 = "gain.R2"
COL_INTRA_RMSE = "intra.RMSE"
COL_MULTI_RMSE = "multi.RMSE"
COL_GAIN_RMSE = "gain.RMSE"
IMPROVEMENT_MEASURES = [COL_INTRA_R2, COL_MULTI_R2, COL_GAIN_R2, COL_INTRA_RMSE, COL_MULTI_RMSE, COL_GAIN_RMSE]
# Pseudo-view under which the intercept of the meta-model is reported in the contribution table:
NAME_INTERCEPT = "intercept"
