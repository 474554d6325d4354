"Configuration of the IST solver."
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Any, Callable, Sequence
import numpy as np
from numpy.typing import ArrayLike

from .stopping import StopCriterion


class ConfigurationError(ValueError):
    """Invalid option name or value given to the solver."""


class Initialization(IntEnum):
    "How the initial iterate is chosen."
    ZERO = 0
    "All zeros."
    RANDOM = 1
    "Standard normal random values."
    ADJOINT = 2
    "Adjoint applied to the observation, `AT(y)`."


# Lower-cased, underscore-free option names and the field they set.
_ALIASES = {
    "at": "AT",
    "stopcriterion": "stop_criterion",
    "tolerance": "tolerance",
    "tolerancea": "tolerance",
    "tol": "tolerance",
    "maxiter": "maxiter",
    "maxitera": "maxiter",
    "miniter": "miniter",
    "minitera": "miniter",
    "initialization": "init",
    "init": "init",
    "truex": "true_x",
    "step": "step",
    "seed": "seed",
    "verbose": "verbose",
    "progress": "progress",
}


@dataclass(frozen=True)
class ISTConfig:
    "Immutable set of options for one solve."
    AT: Callable | np.ndarray | None = None
    "Adjoint operator. Derived from `A` when `A` is a matrix."
    stop_criterion: StopCriterion = StopCriterion.OBJECTIVE
    "Which stopping rule to apply."
    tolerance: float = 0.01
    "Threshold for the stopping rule."
    maxiter: int = 10000
    "Maximum number of iterations."
    miniter: int = 5
    "Minimum number of iterations before the stopping rule is honored."
    init: Initialization | np.ndarray = Initialization.ZERO
    "Initialization mode, or the initial iterate itself."
    true_x: np.ndarray | None = None
    "Ground truth; enables the MSE trace."
    step: float | str = 1.0
    "Gradient step size, or `'auto'` for 1 / ||A||^2."
    seed: int | None = None
    "Seed for the random initialization."
    verbose: bool = False
    "Log one line per iteration and a summary at INFO level."
    progress: bool = False
    "Show a progress bar."

    def __post_init__(self):
        try:
            criterion = _to_criterion(self.stop_criterion)
        except (KeyError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown stop criterion {self.stop_criterion!r}. "
                f"Choose from {[c.name for c in StopCriterion]} or their values.") from e
        object.__setattr__(self, "stop_criterion", criterion)

        if isinstance(self.init, (np.ndarray, list, tuple)):
            object.__setattr__(self, "init", np.asarray(self.init))
        else:
            try:
                init = _to_initialization(self.init)
            except (KeyError, ValueError) as e:
                raise ConfigurationError(
                    f"Unknown initialization {self.init!r}. "
                    f"Choose from {[i.name for i in Initialization]}, their values, or an array.") from e
            object.__setattr__(self, "init", init)

        if self.true_x is not None:
            object.__setattr__(self, "true_x", np.asarray(self.true_x))

        if not self.tolerance > 0:
            raise ConfigurationError(f"tolerance must be positive, got {self.tolerance}.")
        if int(self.maxiter) != self.maxiter or self.maxiter < 1:
            raise ConfigurationError(f"maxiter must be an integer >= 1, got {self.maxiter}.")
        if int(self.miniter) != self.miniter or self.miniter < 0:
            raise ConfigurationError(f"miniter must be an integer >= 0, got {self.miniter}.")
        if self.miniter > self.maxiter:
            raise ConfigurationError(
                f"miniter ({self.miniter}) must not exceed maxiter ({self.maxiter}).")
        object.__setattr__(self, "maxiter", int(self.maxiter))
        object.__setattr__(self, "miniter", int(self.miniter))
        if isinstance(self.step, str):
            if self.step.lower() != "auto":
                raise ConfigurationError(f"step must be a positive number or 'auto', got {self.step!r}.")
            object.__setattr__(self, "step", "auto")
        elif not self.step > 0:
            raise ConfigurationError(f"step must be positive, got {self.step}.")

    @property
    def has_true_x(self) -> bool:
        return self.true_x is not None

    @classmethod
    def from_options(cls, **options: Any) -> 'ISTConfig':
        """Build a configuration from keyword options.

        Names are matched ignoring case and underscores, so both `max_iter`
        and `MaxiterA` set `maxiter`.
        """
        kwargs = {}
        for name, value in options.items():
            key = _ALIASES.get(name.replace("_", "").lower())
            if key is None:
                raise ConfigurationError(
                    f"Unrecognized option {name!r}. "
                    f"Valid options are: {', '.join(f.name for f in fields(cls))}.")
            if key in kwargs:
                raise ConfigurationError(f"Option {name!r} given more than once.")
            kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def from_pairs(cls, pairs: Sequence[Any]) -> 'ISTConfig':
        """Build a configuration from a flat `[name, value, name, value, ...]` sequence."""
        if len(pairs) % 2 != 0:
            raise ConfigurationError(
                f"Options must come in name/value pairs, got {len(pairs)} entries.")
        options = {}
        for name, value in zip(pairs[0::2], pairs[1::2]):
            if not isinstance(name, str):
                raise ConfigurationError(f"Option name must be a string, got {name!r}.")
            if name in options:
                raise ConfigurationError(f"Option {name!r} given more than once.")
            options[name] = value
        return cls.from_options(**options)


def _to_criterion(value: StopCriterion | int | str) -> StopCriterion:
    if isinstance(value, str):
        return StopCriterion[value.upper()]
    return StopCriterion(value)


def _to_initialization(value: Initialization | int | str) -> Initialization:
    if isinstance(value, str):
        return Initialization[value.upper()]
    return Initialization(value)


def initial_iterate(config: ISTConfig, ATy: ArrayLike) -> np.ndarray:
    """Initial iterate for the configured mode.

    `ATy` is the adjoint applied to the observation; it fixes the shape and
    dtype of the solution space.
    """
    ATy = np.asarray(ATy)
    if not np.issubdtype(ATy.dtype, np.inexact):
        ATy = ATy.astype(float)
    init = config.init
    if isinstance(init, np.ndarray):
        if init.shape != ATy.shape:
            raise ConfigurationError(
                f"Initial x has shape {init.shape}, but AT(y) has shape {ATy.shape}.")
        return init.astype(np.result_type(init, ATy), copy=True)
    if init == Initialization.ZERO:
        return np.zeros_like(ATy)
    if init == Initialization.RANDOM:
        rng = np.random.default_rng(config.seed)
        x = rng.standard_normal(ATy.shape)
        if np.iscomplexobj(ATy):
            x = x + 1j * rng.standard_normal(ATy.shape)
        return x.astype(ATy.dtype)
    return ATy.copy()
