"Iterative shrinkage/thresholding (IST) for l1-regularized least squares."
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator
import numpy as np
from numpy.typing import ArrayLike
from tqdm.auto import tqdm

from .config import ConfigurationError, ISTConfig, initial_iterate
from .objective import Evaluation, evaluate
from .operator import LinearOperator, aslinearoperator
from .shrinkage import l1_norm, soft_threshold
from .stopping import StoppingRule
from .utility import ista_step_size

logger = logging.getLogger(__name__)


class Stage(Enum):
    "Stage of the IST loop."
    INIT = "init"
    RUNNING = "running"
    DONE = "done"


@dataclass
class ISTState:
    "State of the IST loop."
    stage: Stage = Stage.INIT
    "Current stage."
    iteration: int = 0
    "Number of completed shrinkage steps."
    x: np.ndarray = None
    "Current iterate."
    evaluation: Evaluation = None
    "Residual, objective and gradient at `x`."
    obj: list[float] = field(default_factory=list)
    "Objective value per iteration, starting with the initial iterate."
    times: list[float] = field(default_factory=list)
    "Seconds elapsed since the start, per iteration."
    mses: list[float] = field(default_factory=list)
    "Mean squared error against the ground truth, per iteration."
    started: float = 0.0
    "Clock value at the start of the solve."


@dataclass
class ISTResult:
    x: np.ndarray
    """Solution of the l1-regularized least squares problem."""

    obj: np.ndarray
    """Objective value per iteration, including the initial evaluation."""

    times: np.ndarray
    """Cumulative elapsed time in seconds per iteration."""

    mses: np.ndarray
    """Mean squared error against `true_x` per iteration. Empty if `true_x` was not given."""

    nit: int
    """Number of shrinkage steps performed."""

    status: int
    """Cause of termination.

    0: Maximum iterations reached.
    1: Tolerance reached.
    2: Objective is not finite (diverged).
    """

    message: str
    "Description of the cause of termination."

    criterion: float
    "Last value of the stopping criterion."

    residual_norm: float
    "`||y - A(x)||_2` at the solution."

    l1_norm: float
    "`||x||_1` at the solution."

    nonzeros: int
    "Number of non-zero entries of the solution."

    @property
    def objective(self) -> float:
        "Final objective value."
        return float(self.obj[-1])

    @property
    def elapsed(self) -> float:
        "Total elapsed time in seconds."
        return float(self.times[-1])

    def __iter__(self) -> Iterator[np.ndarray]:
        "Allows `x, obj, times, mses = ist(...)`."
        return iter((self.x, self.obj, self.times, self.mses))

    def __str__(self):
        return (
            f"ISTResult(nit={self.nit}, "
            f"status={self.status}, "
            f"message={self.message!r})"
        )


_MESSAGES = {
    0: "Maximum iterations reached.",
    1: "Tolerance reached.",
    2: "Objective is not finite (diverged).",
}


class ISTSolver:
    """IST iteration as an explicit state machine.

    Parameters
    ==========
    y: ArrayLike
        Observed values, a vector or a 2-d array (image).
    A: LinearOperator | ArrayLike | Callable
        Observation operator: a `LinearOperator`, a matrix, or a function
        (then `config.AT` must be given).
    tau: float
        Regularization weight, `tau >= 0`.
    config: ISTConfig
        Options. Defaults are used if not given.

    The loop can be driven step by step:

    ```Python
    solver = ISTSolver(y, A, tau)
    state = solver.initialize()
    while state.stage is Stage.RUNNING:
        state = solver.step()
    result = solver.result()
    ```
    """

    def __init__(self, y: ArrayLike, A, tau: float, config: ISTConfig = None):
        if config is None:
            config = ISTConfig()
        if not (np.ndim(tau) == 0 and np.isfinite(tau) and tau >= 0):
            raise ConfigurationError(f"tau must be a finite non-negative scalar, got {tau!r}.")
        self.y = np.asarray(y)
        self.A: LinearOperator = aslinearoperator(A, config.AT)
        self.tau = float(tau)
        self.config = config
        self.rule = StoppingRule(config.stop_criterion, config.tolerance, config.maxiter, config.miniter)
        self.step_size = None
        self.state = ISTState()

    @property
    def _level(self) -> int:
        return logging.INFO if self.config.verbose else logging.DEBUG

    def initialize(self) -> ISTState:
        "Set up the initial iterate and record the first iteration."
        state = self.state
        if state.stage is not Stage.INIT:
            raise RuntimeError(f"Solver already initialized (stage: {state.stage.value}).")
        state.started = time.perf_counter()

        x = initial_iterate(self.config, self.A.adjoint(self.y))
        if self.config.has_true_x and self.config.true_x.shape != x.shape:
            raise ConfigurationError(
                f"true_x has shape {self.config.true_x.shape}, but x has shape {x.shape}.")
        if self.config.step == "auto":
            self.step_size = ista_step_size(
                self.A, x.shape, rng=np.random.default_rng(self.config.seed))
        else:
            self.step_size = float(self.config.step)

        state.x = x
        state.evaluation = evaluate(x, self.y, self.A, self.tau)
        self.rule.reset(state.evaluation.objective, x)
        self._record(state)
        state.stage = Stage.RUNNING
        return state

    def step(self) -> ISTState:
        "Perform one shrinkage step and evaluate the stopping rule."
        state = self.state
        if state.stage is not Stage.RUNNING:
            raise RuntimeError(f"Solver is not running (stage: {state.stage.value}).")
        alpha = self.step_size
        x = soft_threshold(state.x - alpha * state.evaluation.gradient, alpha * self.tau)
        state.x = x
        state.evaluation = evaluate(x, self.y, self.A, self.tau)
        state.iteration += 1
        keep_going = self.rule.update(state.iteration, state.evaluation.objective, x)
        self._record(state)
        if not keep_going:
            state.stage = Stage.DONE
        return state

    def run(self) -> ISTResult:
        "Iterate from the initial state until the stopping rule says stop."
        state = self.initialize()
        with tqdm(total=self.config.maxiter, disable=not self.config.progress) as pbar:
            while state.stage is Stage.RUNNING:
                state = self.step()
                pbar.update(1)
        return self.result()

    def result(self) -> ISTResult:
        "Collect the result of a finished run and log the summary."
        state = self.state
        if state.stage is not Stage.DONE:
            raise RuntimeError(f"Solver has not finished (stage: {state.stage.value}).")
        status = 2 if self.rule.diverged else int(self.rule.converged)
        evaluation = state.evaluation
        result = ISTResult(
            x=state.x,
            obj=np.array(state.obj),
            times=np.array(state.times),
            mses=np.array(state.mses),
            nit=state.iteration,
            status=status,
            message=_MESSAGES[status],
            criterion=self.rule.value,
            residual_norm=evaluation.residual_norm,
            l1_norm=l1_norm(state.x),
            nonzeros=evaluation.nonzeros,
        )
        logger.log(self._level, "Finished the IST algorithm: %s", result.message)
        logger.log(self._level, "||A x - y||_2 = %10.3e", result.residual_norm)
        logger.log(self._level, "||x||_1 = %10.3e", result.l1_norm)
        logger.log(self._level, "Objective function = %10.3e", result.objective)
        logger.log(self._level, "Number of non-zero components = %d", result.nonzeros)
        logger.log(self._level, "Elapsed time = %.4f s (%d iterations)", result.elapsed, result.nit)
        return result

    def _record(self, state: ISTState):
        "Append the current iterate to the traces."
        evaluation = state.evaluation
        state.obj.append(evaluation.objective)
        state.times.append(time.perf_counter() - state.started)
        if self.config.has_true_x:
            true_x = self.config.true_x
            state.mses.append(float(np.sum(np.abs(state.x - true_x) ** 2)) / true_x.size)
        if logger.isEnabledFor(self._level):
            mse = f", mse = {state.mses[-1]:.4e}" if state.mses else ""
            logger.log(
                self._level,
                "Iteration = %d, objective = %.6e%s, nonzeros = %d, criterion = %.3e",
                state.iteration + 1, evaluation.objective, mse, evaluation.nonzeros, self.rule.value)


def ist(y: ArrayLike, A, tau: float, **options: Any) -> ISTResult:
    """IST for the l1-regularized least squares problem.

    The problem is:

    ```
    minimize 0.5 * ||y - A(x)||_2^2 + tau * ||x||_1
        x
    ```

    IST solves this problem by following iteration procedure:

    ```Python
    while not converged:
        x = soft_threshold(x - step * AT(A(x) - y), step * tau)
    ```

    Parameters
    ==========
    y: ArrayLike
        Observed values. Can be 1-d or 2-d.
    A: LinearOperator | np.ndarray | Callable
        Observation operator.
        A matrix of the size `(n, p)` or a function mapping `x` to the
        measurement space.
    tau: float
        Regularization weight, non-negative.
    AT: np.ndarray | Callable
        Adjoint of `A`.
        Derived from `A` if it is a matrix, required if `A` is a function.
    stop_criterion: int | str
        0 (`"support"`): relative change in the set of non-zero entries.
        1 (`"objective"`): relative change in the objective. Default.
        2 (`"maxiter"`): run until `maxiter`.
        4 (`"objective_value"`): objective below `tolerance`.
    tolerance: float
        Tolerance of the stopping criterion.
        Default is 0.01.
    maxiter: int
        Maximum number of iterations.
        Default is 10000.
    miniter: int
        Minimum number of iterations.
        Default is 5.
    init: int | str | np.ndarray
        Initial value for `x`.
        0 (`"zero"`): zero array. Default.
        1 (`"random"`): random array (see `seed`).
        2 (`"adjoint"`): `AT(y)`.
        An array is used as the initial value as it is.
    true_x: np.ndarray
        Ground truth, if known. Enables the MSE trace.
    step: float | str
        Gradient step size. Default is 1.
        `"auto"` uses `1 / ||A||_2^2`, which makes the iteration monotone.
    seed: int
        Seed for the random initialization.
    verbose: bool
        Set True to log progress at INFO level.
        Default is False.
    progress: bool
        Set True to show a progress bar.
        Default is False.

    Historical option names such as `StopCriterion`, `MaxiterA`,
    `MiniterA`, `Initialization` and `True_x` are accepted, too.

    Returns
    =======
    ISTResult
        The solution `x` and the traces `obj`, `times` and `mses`.
        It unpacks as `x, obj, times, mses`.
    """
    config = ISTConfig.from_options(**options)
    return ISTSolver(y, A, tau, config).run()

