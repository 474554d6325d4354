"Stopping rules of the IST iteration."
from enum import IntEnum
import numpy as np


class StopCriterion(IntEnum):
    """Rule deciding when the iteration halts.

    The values follow the numbering used by the IST/SpaRSA family of solvers.
    """
    SUPPORT = 0
    "Relative change in the set of non-zero entries falls below the tolerance."
    OBJECTIVE = 1
    "Relative change in the objective falls below the tolerance."
    MAXITER = 2
    "Run until the iteration budget is exhausted."
    OBJECTIVE_VALUE = 4
    "Objective falls below the tolerance."


def _relative(numerator: float, denominator: float) -> float:
    """`numerator / denominator`, with 0/0 = 0 and x/0 = inf for x > 0."""
    if denominator == 0:
        return 0.0 if numerator == 0 else np.inf
    return numerator / denominator


class StoppingRule:
    """Stopping rule with the state it carries across iterations.

    Parameters
    ==========
    criterion: StopCriterion
        Which quantity is compared against `tolerance`.
    tolerance: float
        Threshold of the criterion.
    maxiter: int
        Iteration budget. Iteration stops once `maxiter` steps are done.
    miniter: int
        Number of steps always performed, whatever the criterion says.
    """

    def __init__(self, criterion: StopCriterion, tolerance: float, maxiter: int, miniter: int = 0):
        self.criterion = StopCriterion(criterion)
        self.tolerance = tolerance
        self.maxiter = maxiter
        self.miniter = miniter
        self.previous_objective = None
        self.previous_support = None
        self.value = np.inf
        self.diverged = False

    def reset(self, objective: float, x: np.ndarray):
        "Seed the rule with the state before the first step."
        self.previous_objective = objective
        self.previous_support = x != 0
        self.value = np.inf
        self.diverged = False

    def measure(self, objective: float, x: np.ndarray) -> float:
        """Criterion value for the new state, and remember the state.

        A non-finite objective marks the run as diverged and gives `inf`.
        """
        support = x != 0
        if not np.isfinite(objective):
            self.diverged = True
            value = np.inf
        elif self.criterion == StopCriterion.SUPPORT:
            changes = np.count_nonzero(support != self.previous_support)
            value = _relative(changes, np.count_nonzero(support))
        elif self.criterion == StopCriterion.OBJECTIVE:
            value = _relative(abs(objective - self.previous_objective), self.previous_objective)
        elif self.criterion == StopCriterion.OBJECTIVE_VALUE:
            value = objective
        else:
            value = np.inf
        self.previous_objective = objective
        self.previous_support = support
        self.value = float(value)
        return self.value

    def update(self, iteration: int, objective: float, x: np.ndarray) -> bool:
        """Whether to continue after `iteration` steps ending at `x` with `objective`."""
        value = self.measure(objective, x)
        if self.diverged or iteration >= self.maxiter:
            return False
        if iteration < self.miniter:
            return True
        return value > self.tolerance

    @property
    def converged(self) -> bool:
        "Whether the last measured criterion met the tolerance."
        return (
            not self.diverged
            and self.criterion != StopCriterion.MAXITER
            and self.value <= self.tolerance)
