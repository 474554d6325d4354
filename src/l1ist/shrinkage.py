"Soft thresholding, the proximal operator of the l1 norm."
import numpy as np
from numpy.typing import ArrayLike


def soft_threshold(x: ArrayLike, threshold: float) -> np.ndarray:
    """Soft thresholding function.

    Each entry is shrunk toward zero by `threshold`, and entries whose
    magnitude does not exceed it become exactly zero:

    ```
    S(x) = sign(x) * max(|x| - threshold, 0)
    ```

    This also works for complex inputs, where the phase is kept.
    A new array is returned.
    """
    x = np.asarray(x)
    a = np.fmax(np.abs(x) - threshold, 0)
    if not np.iscomplexobj(x):
        return np.sign(x) * a
    mag = np.abs(x)
    scale = np.divide(a, mag, out=np.zeros_like(a), where=mag > 0)
    return scale * x


def l1_norm(x: ArrayLike) -> float:
    "Sum of absolute values of all entries."
    return float(np.sum(np.abs(x)))
