"""Tests for the deep.engine.backend module.

These tests implement the contract with plain Python floats, showing that
graphs and the training driver do not depend on any numeric library.
"""

# SPDX-License-Identifier: Apache-2.0

from typing import Any

import pytest

from deep.engine import training
from deep.engine.backend import Backend, BackendError
from deep.engine.frontend import graph, linearize
from deep.engine.frontend.tensor import Tensor


class MissingFeed(BackendError):
    """Raised by FloatBackend when a feed is missing."""


class FloatBackend(Backend[dict[str, float], dict[int, float], float, dict[int, float], dict[int, float]]):
    """Scalar backend recording the calls it receives."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def state(self, g: graph.Graph, rng: Any) -> dict[int, float]:
        self.calls.append(("state", rng))
        return {index: op.value for index, op in g.train_consts()}

    def _value(self, input: graph.Input, values: dict[int, float], inputs: dict[str, float]) -> float:
        if isinstance(input, graph.Feed):
            try:
                return inputs[input.key]
            except KeyError:
                raise MissingFeed(input.key)
        return values[input.node]

    def forward(self, g, state, inputs, root):
        self.calls.append(("forward", root))
        values: dict[int, float] = {}
        for index in linearize.nodes(g, root):
            op = g[index]
            if isinstance(op, graph.TrainConst):
                values[index] = state[index]
            elif isinstance(op, graph.Square):
                values[index] = self._value(op.operand, values, inputs) ** 2
            elif isinstance(op, graph.Add):
                values[index] = self._value(op.left, values, inputs) + self._value(op.right, values, inputs)
            else:
                values[index] = self._value(op.left, values, inputs) - self._value(op.right, values, inputs)
        return self._value(root, values, inputs), values

    def backward(self, g, state, internal, inputs, root, output_delta):
        self.calls.append(("backward", output_delta))
        gradients: dict[int, float] = {}
        if isinstance(root, graph.Internal):
            gradients[root.node] = output_delta
        delta: dict[int, float] = {}
        for index in reversed(linearize.nodes(g, root)):
            gradient = gradients.get(index, 0.0)
            op = g[index]
            if isinstance(op, graph.TrainConst):
                delta[index] = gradient
                continue
            if isinstance(op, graph.Square):
                contributions = [2 * self._value(op.operand, internal, inputs) * gradient]
            elif isinstance(op, graph.Add):
                contributions = [gradient, gradient]
            else:
                contributions = [gradient, -gradient]
            for input, contribution in zip(op.inputs(), contributions):
                if isinstance(input, graph.Internal):
                    gradients[input.node] = gradients.get(input.node, 0.0) + contribution
        return delta

    def train(self, state, delta):
        self.calls.append(("train", dict(delta)))
        for index, gradient in delta.items():
            state[index] += gradient


def test_backend_is_abstract():
    """The contract cannot be instantiated without implementing it."""
    with pytest.raises(TypeError):
        Backend()  # type: ignore[abstract]

    class Partial(Backend):
        def state(self, g, rng):
            return {}

    with pytest.raises(TypeError):
        Partial()  # type: ignore[abstract]


def test_square_scenario():
    """train_const([1], 2.0).squared() evaluates to 4.0."""
    backend = FloatBackend()
    y = Tensor.train_const([1], 2.0).squared()
    state = y.gen_state(backend, "rng")
    assert y.eval(backend, state, {}) == 4.0
    assert backend.calls[0] == ("state", "rng")


def test_add_scenario():
    """train_const([1], 3.0) + feed x evaluates to 8.0 with x = 5.0."""
    backend = FloatBackend()
    c = Tensor.train_const([1], 3.0) + Tensor.feed("x")
    state = c.gen_state(backend, None)
    assert c.eval(backend, state, {"x": 5.0}) == 8.0


def test_chain_rule():
    """Gradients follow the Add, Sub, and Square identities."""
    backend = FloatBackend()
    a = Tensor.train_const([1], 3.0)
    b = Tensor.train_const([1], 5.0)
    y = (a - b).squared() + Tensor.train_const([1], 1.0)
    state = y.gen_state(backend, None)

    _, internal = backend.forward(y.graph, state, {}, y.input)
    delta = backend.backward(y.graph, state, internal, {}, y.input, 1.0)

    # d/da (a - b)^2 = 2 (a - b), d/db = -2 (a - b), d/dc c = 1
    assert delta == {0: -4.0, 1: 4.0, 4: 1.0}


def test_driver_sequence():
    """The driver runs forward, backward, and train in order."""
    backend = FloatBackend()
    loss = (Tensor.train_const([1], 2.0) - "y").squared()
    state = loss.gen_state(backend, None)
    backend.calls.clear()

    result = training.gradient_descent(
        backend,
        loss.graph,
        loss.input,
        state,
        {"y": 1.0},
        0.5,
        tensor_loss=lambda value: value,
        delta_tensor=lambda value: value,
    )

    assert result == 1.0
    assert [name for name, _ in backend.calls] == ["forward", "backward", "train"]
    assert backend.calls[1] == ("backward", -0.5)
    assert backend.calls[2] == ("train", {0: -1.0})
    assert state == {0: 1.0}


def test_driver_propagates_errors():
    """Backend errors reach the caller unchanged."""
    backend = FloatBackend()
    loss = Tensor.train_const([1], 2.0) + "missing"
    state = loss.gen_state(backend, None)

    with pytest.raises(MissingFeed):
        loss.gradient_descent(backend, state, {}, 0.1, float, float)

    assert [name for name, _ in backend.calls] == ["state", "forward"]
    assert state == {0: 2.0}
