"JAX implementation of IST for dense matrices."
import re
from dataclasses import dataclass
import numpy as np
import jax
import jax.numpy as jnp

from .config import ConfigurationError, ISTConfig
from .stopping import StopCriterion


def ist_jax(
    A: np.ndarray,
    y: np.ndarray,
    tau: float,
    maxiter: int = 1000,
    miniter: int = 5,
    tolerance: float = 0.01,
    stop_criterion: StopCriterion | int | str = StopCriterion.OBJECTIVE,
    step: float | str = 1.0,
    init_x: np.ndarray | bool | None = None,
    true_x: np.ndarray | None = None,
    device_kind: str = None,
) -> 'ISTJaxResult':
    """IST for a batch of l1-regularized least squares problems.

    Each batch solves:

    ```
    minimize 0.5 * ||y - A x||_2^2 + tau * ||x||_1
        x
    ```

    by the iteration:

    ```Python
    while not converged:
        x = soft_threshold(x - step * A^H (A x - y), step * tau)
    ```

    This function is a JAX implementation of the above algorithm.
    The whole loop is compiled, so there is no timing trace and no logging.

    Parameters
    ==========
    A: np.ndarray
        Observation matrix of the size `(n, p)`.
    y: np.ndarray
        Observed values of the size `(b, n)`.
        `b` is the number of batches which is processed in parallel.
    tau: float
        Regularization weight.
    maxiter: int
        Maximum number of iterations.
    miniter: int
        Minimum number of iterations.
    tolerance: float
        Tolerance of the stopping criterion.
    stop_criterion: StopCriterion | int | str
        Stopping criterion. See `StopCriterion`.
    step: float | str
        Gradient step size. `"auto"` uses `1 / ||A||_2^2`.
    init_x: np.ndarray | bool
        Initial value for `x`.
        If `True`, `A^H y` is used.
        If `False` or `None`, zero vector is used.
        Default is `None`.
    true_x: np.ndarray
        Ground truth of the size `(p,)` or `(b, p)`. Enables the MSE trace.
    device_kind: str
        Regex pattern for target devices.
        Default is None, which will use all visible devices.

    Returns
    =======
    ISTJaxResult
        Result of the IST algorithm, containing the solution `x`, status, messages, and traces.
    """
    if not (np.ndim(tau) == 0 and np.isfinite(tau) and tau >= 0):
        raise ConfigurationError(f"tau must be a finite non-negative scalar, got {tau!r}.")
    tau = float(tau)
    # Validate the options the same way as the Python solver.
    config = ISTConfig(
        stop_criterion=stop_criterion, tolerance=tolerance,
        maxiter=maxiter, miniter=miniter, step=step)
    criterion = config.stop_criterion
    maxiter, miniter = config.maxiter, config.miniter
    if config.step == "auto":
        step = 1.0 / max(np.linalg.norm(A, 2) ** 2, np.finfo(float).tiny)
    else:
        step = float(config.step)

    n, p = A.shape
    ndims = np.ndim(y)
    y = np.atleast_2d(y)
    nbatches, n_ = y.shape
    assert n_ == n, f"A.shape = {A.shape}, y.shape = {y.shape}, y.shape[1] = {n_} != A.shape[0] = {n}"

    # Initialization.
    dtype = jnp.result_type(A, y, jnp.float32)
    A = jnp.array(A, dtype=dtype)
    AH = jnp.conj(A).T
    y = jnp.array(y, dtype=dtype)
    x = jnp.zeros((nbatches, p), dtype=A.dtype)

    if init_x is not None:
        if isinstance(init_x, bool):
            if init_x:
                x = y @ jnp.conj(A)
        else:
            x = jnp.array(init_x, dtype=A.dtype)
        try:
            x = x.reshape(nbatches, p)
        except Exception as e:
            raise ConfigurationError(f"init_x shape {x.shape} does not match (nbatches, p) = {(nbatches, p)}.") from e

    has_true_x = true_x is not None
    if has_true_x:
        x_true = jnp.broadcast_to(jnp.array(true_x, dtype=A.dtype), (nbatches, p))
    else:
        x_true = jnp.zeros((nbatches, p), dtype=A.dtype)

    def loop(y, x_true, x):
        """Main loop of the IST algorithm."""

        def evaluate(x):
            "Objective and gradient at `x`."
            r = y - A @ x
            f = 0.5 * jnp.real(jnp.vdot(r, r)) + tau * jnp.sum(jnp.abs(x))
            return f, -(AH @ r)

        def cond(state: ISTJaxState):
            "Stopping condition."
            return state.keep_going

        def body(state: ISTJaxState):
            "IST single step."
            x = soft_threshold(state.x - step * state.grad, step * tau)
            f, grad = evaluate(x)
            i = state.i + 1
            support = x != 0

            if criterion == StopCriterion.SUPPORT:
                changes = jnp.sum(support != state.support)
                value = _relative(changes, jnp.sum(support))
            elif criterion == StopCriterion.OBJECTIVE:
                value = _relative(jnp.abs(f - state.f), state.f)
            elif criterion == StopCriterion.OBJECTIVE_VALUE:
                value = f
            else:
                value = jnp.inf
            diverged = ~jnp.isfinite(f)
            value = jnp.where(diverged, jnp.inf, jnp.asarray(value, dtype=f.dtype))

            keep_going = ~diverged & (i < maxiter) & ((i < miniter) | (value > tolerance))

            return ISTJaxState(
                i=i,
                x=x,
                f=f,
                grad=grad,
                support=support,
                value=value,
                keep_going=keep_going,
                obj=state.obj.at[i].set(f),
                mse=state.mse.at[i].set(_mse(x, x_true)),
                nnz=state.nnz.at[i].set(jnp.sum(support)),
            )

        f, grad = evaluate(x)
        support = x != 0
        state = ISTJaxState(
            i=jnp.zeros((), dtype=int),
            x=x,
            f=f,
            grad=grad,
            support=support,
            value=jnp.asarray(jnp.inf, dtype=f.dtype),
            keep_going=jnp.asarray(True),
            obj=jnp.full((maxiter + 1,), jnp.nan, dtype=f.dtype).at[0].set(f),
            mse=jnp.full((maxiter + 1,), jnp.nan, dtype=f.dtype).at[0].set(_mse(x, x_true)),
            nnz=jnp.full((maxiter + 1,), -1, dtype=int).at[0].set(jnp.sum(support)),
        )

        # Run the whole loop.
        return jax.lax.while_loop(cond, body, state)

    devices = jax.devices()
    if device_kind is not None:
        devices = [d for d in devices if re.match(device_kind, d.device_kind, re.IGNORECASE)]
    ndevices = len(devices)

    # Run the loop.
    if ndevices == 1 or nbatches == 1:  # Use vmap
        state = jax.vmap(loop, in_axes=(0, 0, 0))(y, x_true, x)
    else:  # Use pmap
        batches_per_device = nbatches // ndevices
        rem = nbatches - batches_per_device * ndevices
        if rem != 0:
            # Add small number of dummy tasks to make it divisible by n_devices
            nadd = ndevices - rem
            y, x_true, x = (_extend(a, nadd) for a in (y, x_true, x))
        # Split batches into devices.
        y, x_true, x = (_split(a, ndevices) for a in (y, x_true, x))
        # Distribute tasks to devices.
        state = jax.pmap(
            jax.vmap(loop, in_axes=(0, 0, 0)),
            axis_name="batch",
            devices=devices
        )(y, x_true, x)
        # Collect result from devices.
        state = jax.tree_util.tree_map(_merge, state)
        # Discard unnecessary part.
        state = jax.tree_util.tree_map(lambda a: a[:nbatches], state)

    x = np.asarray(state.x)
    if ndims == 1:
        x = x.ravel()

    # Status of the method.
    messages_dict = {
        0: "Maximum iterations reached.",
        1: "Tolerance reached.",
        2: "Objective is not finite (diverged).",
    }
    value = np.asarray(state.value)
    status = np.zeros(nbatches, dtype=int)
    if criterion != StopCriterion.MAXITER:
        status[value <= tolerance] = 1
    status[~np.isfinite(np.asarray(state.f))] = 2
    messages = np.array([messages_dict[s] for s in status])

    # Return results.
    return ISTJaxResult(
        x=x,
        status=status,
        messages=messages,
        nit=np.asarray(state.i),
        has_true_x=has_true_x,
        state=state,
    )


def soft_threshold(x: jnp.ndarray, threshold: float) -> jnp.ndarray:
    """Soft thresholding function for JAX.

    This also works for complex inputs.
    """
    mag = jnp.abs(x)
    a = jnp.fmax(mag - threshold, 0)
    nonzero = mag > 0
    return jnp.where(nonzero, a / jnp.where(nonzero, mag, 1), 0) * x


def _relative(numerator, denominator):
    "`numerator / denominator`, with 0/0 = 0 and x/0 = inf."
    zero = denominator == 0
    return jnp.where(
        zero,
        jnp.where(numerator == 0, 0.0, jnp.inf),
        numerator / jnp.where(zero, 1, denominator))


def _mse(x, x_true):
    return jnp.sum(jnp.abs(x - x_true) ** 2) / x.size


@dataclass
class ISTJaxResult:
    x: np.ndarray
    """Solution vector of the IST algorithm."""

    status: np.ndarray
    """Status of the algorithm for each batch.

    0: Exceeded maximum iterations.
    1: Tolerance reached.
    2: Objective is not finite (diverged).
    """

    messages: np.ndarray
    "Description of the cause of termination for each batch."

    nit: np.ndarray
    """Number of iterations performed for each batch."""

    has_true_x: bool
    "Whether the MSE trace is available."

    state: 'ISTJaxState'
    """Raw state of the IST loop, containing the traces.

    This is JAX's pytree.
    """

    def _trim(self, trace) -> list[np.ndarray]:
        trace = np.asarray(trace)
        return [t[:n + 1] for t, n in zip(trace, self.nit)]

    @property
    def obj(self) -> list[np.ndarray]:
        "Objective trace of each batch, including the initial evaluation."
        return self._trim(self.state.obj)

    @property
    def mses(self) -> list[np.ndarray]:
        "MSE trace of each batch. Empty arrays if `true_x` was not given."
        if not self.has_true_x:
            return [np.array([]) for _ in self.nit]
        return self._trim(self.state.mse)

    def __str__(self):
        return (
            f"ISTJaxResult(nit={self.nit}, "
            f"status={self.status}, "
            f"messages={self.messages})"
        )

    def __repr__(self):
        width_batch = len(str(self.status.shape[0]))
        width_nit = len(str(max(self.nit)))
        lines = []
        for ib, (status, nit, message) in enumerate(zip(self.status, self.nit, self.messages)):
            lines.append(f"{ib:{width_batch}d} [{status:2d}] {nit:{width_nit}d}it: {message}")
        return "\n".join(lines)


@jax.tree_util.register_pytree_node_class
@dataclass
class ISTJaxState:
    "State of IST loop."
    i: int
    "Number of completed iterations."
    x: jnp.ndarray
    "Current solution vector."
    f: jnp.ndarray
    "Current objective value."
    grad: jnp.ndarray
    "Gradient of the data term at `x`."
    support: jnp.ndarray
    "Non-zero pattern of `x`."
    value: jnp.ndarray
    "Last value of the stopping criterion."
    keep_going: jnp.ndarray
    "Whether to continue the iteration."
    obj: jnp.ndarray
    "Objective value per iteration, padded with NaN."
    mse: jnp.ndarray
    "MSE against the ground truth per iteration, padded with NaN."
    nnz: jnp.ndarray
    "Number of non-zero elements per iteration, padded with -1."

    def tree_flatten(self):
        """Flatten the state for JAX tree utilities."""
        children = (
            self.i, self.x, self.f, self.grad, self.support,
            self.value, self.keep_going, self.obj, self.mse, self.nnz,
        )
        aux_data = None
        return children, aux_data

    @classmethod
    def tree_unflatten(cls, _, children):
        """Unflatten the state from JAX tree utilities."""
        return cls(*children)


def _split(arr: jax.Array, ndevices: int):
    """Give every device its own block of batches: (b, ...) -> (ndevices, b // ndevices, ...)."""
    nbatches = arr.shape[0]
    if nbatches % ndevices:
        raise ValueError(f"{nbatches} batches cannot be shared evenly by {ndevices} devices.")
    return arr.reshape(ndevices, nbatches // ndevices, *arr.shape[1:])


def _merge(arr: jax.Array):
    """Collect the per-device blocks back into one batch axis."""
    return arr.reshape(-1, *arr.shape[2:])


def _extend(arr: jax.Array, nadd: int):
    """Pad the batch axis with `nadd` copies of the last batch."""
    if nadd == 0:
        return arr
    return jnp.concatenate([arr, jnp.repeat(arr[-1:], nadd, axis=0)])
