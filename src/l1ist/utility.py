"Various utility functions for choosing IST parameters."

import numpy as np
from numpy.typing import ArrayLike

from .operator import LinearOperator, MatrixOperator, aslinearoperator


def tau_max(
    A: LinearOperator | ArrayLike,
    y: ArrayLike,
    AT=None,
) -> float:
    """Smallest regularization weight for which the solution is all zeros.

    Parameters
    ==========
    A : LinearOperator | ArrayLike
        Observation operator, or a matrix of shape (n, p).
    y : ArrayLike
        Observed values.
    AT : Callable | ArrayLike
        Adjoint operator, required when `A` is a plain function.

    Notes
    =====

    `x = 0` is optimal iff `0` belongs to the subdifferential at zero, i.e.,

    ```
    ||A^T y||_∞ ≤ tau .
    ```

    A reasonable `tau` is usually a small fraction of this value:

    ```Python
    tau = 0.1 * tau_max(A, y)
    ```
    """
    A = aslinearoperator(A, AT)
    return float(np.max(np.abs(A.adjoint(np.asarray(y)))))


def lipschitz_constant(
    A: LinearOperator | ArrayLike,
    shape: tuple[int, ...] | None = None,
    AT=None,
    niter: int = 100,
    rtol: float = 1e-6,
    rng: np.random.Generator = None,
) -> float:
    """Lipschitz constant of the gradient of `0.5 * ||y - A x||^2`, i.e., `||A||_2^2`.

    Parameters
    ----------
    A : LinearOperator | ArrayLike
        Observation operator.
        For a matrix the value is exact; otherwise it is estimated by power iteration on `AT A`.
    shape : tuple[int, ...]
        Shape of the solution space. Required unless `A` is a matrix.
    niter : int
        Maximum number of power iterations.
    rtol : float
        Relative change of the estimate at which the power iteration stops.
    rng : np.random.Generator
        Random generator for the starting vector.

    Returns
    -------
    float
        Estimate of the largest eigenvalue of `AT A`.
    """
    A = aslinearoperator(A, AT)
    if isinstance(A, MatrixOperator):
        if isinstance(A.matrix, np.ndarray):
            return float(np.linalg.norm(A.matrix, 2) ** 2)
        # Sparse matrices go through the power iteration.
        shape = shape or (A.shape[1],)
    if shape is None:
        raise ValueError("shape of the solution space is required for a function operator.")
    if rng is None:
        rng = np.random.default_rng()
    v = rng.standard_normal(shape)
    v /= np.linalg.norm(v)
    estimate = 0.0
    for _ in range(niter):
        w = A.adjoint(A.forward(v))
        norm = np.linalg.norm(np.ravel(w))
        if norm == 0:
            return 0.0
        v = w / norm
        if abs(norm - estimate) <= rtol * norm:
            return float(norm)
        estimate = norm
    return float(estimate)


def ista_step_size(A: LinearOperator | ArrayLike, shape: tuple[int, ...] | None = None, AT=None, rng=None) -> float:
    """Largest safe gradient step, `1 / ||A||_2^2`.

    With this step (or any smaller one) every IST iteration decreases the objective.
    """
    L = lipschitz_constant(A, shape, AT=AT, rng=rng)
    if L == 0:
        return 1.0
    return 1.0 / L
