from mvcem.tl.fit.backend.kernel import neighborhood_weights, row_normalize
from mvcem.tl.fit.backend.learners import (BaseViewLearner, BoostingLearner,
                                           EnsembleLearner, LinearLearner,
                                           ViewResult, get_folds, get_learner)
from mvcem.tl.fit.backend.meta_model import MetaResult, combine_views
from mvcem.tl.fit.backend.results import (MultiViewResults, ResultStore,
                                          collect_results)
from mvcem.tl.fit.backend.run import run_views
from mvcem.tl.fit.backend.views import (add_juxtaview, add_kernel_view,
                                        add_paraview, add_view,
                                        create_initial_view, filter_markers,
                                        get_view, get_view_kinds,
                                        get_view_names, remove_views)
