"Objective, residual and gradient of the l1-regularized least squares problem."
from dataclasses import dataclass
import numpy as np

from .operator import LinearOperator
from .shrinkage import l1_norm


@dataclass(frozen=True)
class Evaluation:
    "Quantities derived from one iterate."
    residual: np.ndarray
    "`y - A(x)`."
    data_term: float
    "`0.5 * ||y - A(x)||^2`."
    penalty: float
    "`tau * ||x||_1`."
    gradient: np.ndarray
    "Gradient of the data term, `-AT(y - A(x))`."
    nonzeros: int
    "Number of non-zero entries of `x`."

    @property
    def objective(self) -> float:
        return self.data_term + self.penalty

    @property
    def residual_norm(self) -> float:
        return float(np.linalg.norm(np.ravel(self.residual)))


def data_term(residual: np.ndarray) -> float:
    r = np.ravel(residual)
    return 0.5 * float(np.real(np.vdot(r, r)))


def objective(x: np.ndarray, y: np.ndarray, A: LinearOperator, tau: float) -> float:
    """Value of `0.5 * ||y - A(x)||^2 + tau * ||x||_1`."""
    return data_term(y - A.forward(x)) + tau * l1_norm(x)


def evaluate(x: np.ndarray, y: np.ndarray, A: LinearOperator, tau: float) -> Evaluation:
    """Evaluate residual, objective and gradient at `x`.

    This applies `A` once and its adjoint once. Errors raised by the
    operator are propagated unchanged.
    """
    residual = y - A.forward(x)
    return Evaluation(
        residual=residual,
        data_term=data_term(residual),
        penalty=tau * l1_norm(x),
        gradient=-A.adjoint(residual),
        nonzeros=int(np.count_nonzero(x)),
    )
