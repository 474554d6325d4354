"Linear operators given as matrices or as a pair of functions."
from abc import ABC, abstractmethod
from typing import Callable
import numpy as np
from numpy.typing import ArrayLike

from .config import ConfigurationError


class LinearOperator(ABC):
    """Linear map `A` together with its adjoint `AT`.

    The adjoint must satisfy `<A(u), v> = <u, AT(v)>`. This is assumed and
    never checked by the solver.
    """

    @abstractmethod
    def forward(self, x: np.ndarray) -> np.ndarray:
        "Map a solution-space array to the measurement space."

    @abstractmethod
    def adjoint(self, r: np.ndarray) -> np.ndarray:
        "Map a measurement-space array back to the solution space."

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return self.forward(x)

    @property
    def H(self) -> 'LinearOperator':
        "Adjoint operator."
        return FunctionOperator(self.adjoint, self.forward)


class MatrixOperator(LinearOperator):
    """Dense (or sparse) matrix acting by `@`.

    The adjoint is the conjugate transpose. Arrays with more than one column
    are transformed column by column.
    """

    def __init__(self, matrix: ArrayLike, adjoint: ArrayLike | Callable | None = None):
        self.matrix = matrix if hasattr(matrix, "ndim") else np.asarray(matrix)
        if self.matrix.ndim != 2:
            raise ValueError(f"Operator matrix must be 2-d, got shape {self.matrix.shape}.")
        if adjoint is None:
            self._adjoint = self.matrix.conj().T
        elif callable(adjoint):
            self._adjoint = adjoint
        else:
            self._adjoint = adjoint if hasattr(adjoint, "__matmul__") else np.asarray(adjoint)

    @property
    def shape(self) -> tuple[int, int]:
        return self.matrix.shape

    def forward(self, x):
        return self.matrix @ x

    def adjoint(self, r):
        if callable(self._adjoint):
            return self._adjoint(r)
        return self._adjoint @ r

    def __repr__(self):
        return f"MatrixOperator(shape={self.shape}, dtype={self.matrix.dtype})"


class FunctionOperator(LinearOperator):
    "Operator given by two caller functions, used as they are."

    def __init__(self, forward: Callable, adjoint: Callable):
        self._forward = forward
        self._adjoint = adjoint

    def forward(self, x):
        return self._forward(x)

    def adjoint(self, r):
        return self._adjoint(r)

    def __repr__(self):
        return f"FunctionOperator(forward={self._forward!r}, adjoint={self._adjoint!r})"


def aslinearoperator(A, AT=None) -> LinearOperator:
    """Wrap `A` (and its adjoint `AT`, if given) into a `LinearOperator`.

    Parameters
    ==========
    A: LinearOperator | ArrayLike | Callable
        Forward operator. A 2-d array is used as a matrix.
    AT: ArrayLike | Callable
        Adjoint operator. Optional when `A` is a matrix or a `LinearOperator`,
        required when `A` is a plain function.
    """
    if isinstance(A, LinearOperator):
        if AT is None:
            return A
        return FunctionOperator(A.forward, _as_function(AT))
    if hasattr(A, "ndim") or isinstance(A, (list, tuple)):
        return MatrixOperator(A, AT)
    if callable(A):
        if AT is None:
            raise ConfigurationError("AT is required when A is given as a function.")
        return FunctionOperator(A, _as_function(AT))
    raise ConfigurationError(f"A must be a matrix or a callable, got {type(A).__name__}.")


def _as_function(op) -> Callable:
    if callable(op):
        return op
    matrix = op if hasattr(op, "__matmul__") else np.asarray(op)
    return lambda r: matrix @ r
