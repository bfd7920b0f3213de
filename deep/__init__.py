"""The deep package builds differentiable computation graphs and trains them.

Build expressions with `Tensor`, then evaluate or train them using any
implementation of the `Backend` contract (e.g., `NumpyBackend`).
"""

from .engine.backend import Backend, BackendError
from .engine.frontend.tensor import Tensor
from .engine.numpybackend.executor import NumpyBackend
from .engine.training import gradient_descent

__all__ = [
    "Backend",
    "BackendError",
    "NumpyBackend",
    "Tensor",
    "gradient_descent",
]
