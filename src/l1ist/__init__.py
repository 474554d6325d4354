"Iterative shrinkage/thresholding for l1-regularized least squares."
from .config import ConfigurationError, Initialization, ISTConfig
from .jax import ist_jax
from .ist import ist, ISTSolver, ISTState, ISTResult, Stage
from .objective import Evaluation, evaluate, objective
from .operator import LinearOperator, MatrixOperator, FunctionOperator, aslinearoperator
from .shrinkage import soft_threshold, l1_norm
from .stopping import StopCriterion, StoppingRule
from .utility import tau_max, lipschitz_constant, ista_step_size

__all__ = [
    "ist", "ist_jax", "ISTSolver", "ISTState", "ISTResult", "Stage",
    "ISTConfig", "Initialization", "ConfigurationError",
    "StopCriterion", "StoppingRule",
    "Evaluation", "evaluate", "objective",
    "LinearOperator", "MatrixOperator", "FunctionOperator", "aslinearoperator",
    "soft_threshold", "l1_norm",
    "tau_max", "lipschitz_constant", "ista_step_size",
]
