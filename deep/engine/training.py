"""Gradient-descent training step.

This module drives one training step through the `backend.Backend`
contract. It does not know anything about the numeric types involved:
the caller supplies the two conversions between the backend tensor
type and a plain float.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Callable

from .backend import Backend, DeltaT, InternalStorageT, StateT, TensorDictT, TensorT
from .frontend import graph


def gradient_descent(
    backend: Backend[TensorDictT, InternalStorageT, TensorT, DeltaT, StateT],
    g: graph.Graph,
    root: graph.Input,
    state: StateT,
    inputs: TensorDictT,
    learning_rate: float,
    tensor_loss: Callable[[TensorT], float],
    delta_tensor: Callable[[float], TensorT],
) -> float:
    """Train the graph with root as the loss using one gradient-descent step.

    The step is:

    1. evaluate root obtaining the output and the internal storage;
    2. convert the output to a scalar loss using tensor_loss;
    3. build the output delta with delta_tensor(-learning_rate * loss);
    4. propagate the output delta back to obtain the parameters delta;
    5. apply the parameters delta to state.

    Any backend error aborts the step and propagates to the caller. Whether
    state has been modified in that case depends on the backend `train`.

    Returns
    -------
        The loss before training, i.e., at the original parameter values.
    """
    # 1. forward pass
    output, internal = backend.forward(g, state, inputs, root)

    # 2-3. loss and output delta
    loss = tensor_loss(output)
    output_delta = delta_tensor(-learning_rate * loss)

    # 4. backward pass
    delta = backend.backward(g, state, internal, inputs, root, output_delta)

    # 5. update
    backend.train(state, delta)

    return loss
