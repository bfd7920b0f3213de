"""NumPy Graph Executor.

A `backend.Backend` implementation computing over `np.ndarray` values. It
serves both as a ready-to-use engine for small models and as the reference
for what a conforming backend does.

Forward evaluation only visits the nodes the requested root depends on (see
`frontend.linearize`), in increasing index order, which is a topological
order because references only point backward. Each node is evaluated once
per forward call and its value is cached in the returned `Storage`, which
`backward` then uses to apply the chain rule without recomputing anything.

All values are float64 arrays and operations follow NumPy broadcasting.
Gradients flowing into a broadcast operand are summed back to the operand
shape, so parameter updates always preserve parameter shapes.

Debugging
---------

The executor honors the `compileflags` passed to its constructor (by default
those read from the `DEEP_ENGINE_FLAGS` environment variable):

1. DUMP prints the graph before evaluating it
2. TRACE prints each node before evaluating it and its value afterwards,
   and prints each gradient while propagating backward
3. BREAK waits for a key press after evaluating each node
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, TypeAlias

import numpy as np
from numpy.typing import ArrayLike

from .. import compileflags
from ..backend import Backend, BackendError
from ..frontend import graph, linearize

TensorDict: TypeAlias = Mapping[str, ArrayLike]
"""Maps feed names to their values."""

_ForwardFunc: TypeAlias = Callable[..., np.ndarray]
_BackwardFunc: TypeAlias = Callable[..., tuple[np.ndarray, ...]]

_forward_operations: dict[type, _ForwardFunc] = {
    graph.Add: np.add,
    graph.Sub: np.subtract,
    graph.Square: np.square,
}
"""Maps a non-leaf op in the graph domain to the corresponding numpy operation.

Each function receives the operand values in the order returned
by the `inputs()` method of the op.

Add entries to this table (and to `_backward_operations`) to support
more operations."""


def _add_gradient(upstream: np.ndarray, left: np.ndarray, right: np.ndarray) -> tuple[np.ndarray, ...]:
    return upstream, upstream


def _sub_gradient(upstream: np.ndarray, left: np.ndarray, right: np.ndarray) -> tuple[np.ndarray, ...]:
    return upstream, np.negative(upstream)


def _square_gradient(upstream: np.ndarray, operand: np.ndarray) -> tuple[np.ndarray, ...]:
    return (2.0 * operand * upstream,)


_backward_operations: dict[type, _BackwardFunc] = {
    graph.Add: _add_gradient,
    graph.Sub: _sub_gradient,
    graph.Square: _square_gradient,
}
"""Maps a non-leaf op to the function computing the gradient of each operand.

Each function receives the upstream gradient followed by the operand
values and returns one gradient per operand (before reduction to the
operand shape)."""


class NumpyBackendError(BackendError):
    """Base class for errors raised by the NumPy executor."""


class FeedValueNotProvided(NumpyBackendError):
    """Raised when the inputs lack the value for a feed."""


class ShapeMismatch(NumpyBackendError):
    """Raised when operand shapes cannot be broadcast together."""


class UnsupportedOperation(NumpyBackendError):
    """Raised when the executor encounters an unsupported operation."""


class MalformedGraph(NumpyBackendError):
    """Raised when a graph or root violates the reference invariant."""


class StateMismatch(NumpyBackendError):
    """Raised when state, storage, or delta do not match the graph."""


@dataclass
class State:
    """The trainable parameters.

    Attributes
    ----------
        params: maps the index of each `graph.TrainConst` node to its value.
    """

    params: dict[int, np.ndarray]


@dataclass(frozen=True)
class Storage:
    """Values cached by a forward pass for the matching backward pass.

    Attributes
    ----------
        root: the root the forward pass evaluated.
        values: maps each evaluated node index to its value.
        feeds: maps each feed the forward pass read to its value.
    """

    root: graph.Input
    values: dict[int, np.ndarray]
    feeds: dict[str, np.ndarray]


@dataclass
class Delta:
    """Gradients produced by a backward pass.

    Attributes
    ----------
        params: maps the index of each reached `graph.TrainConst` node to
            its gradient, with the same shape as the parameter.
        feeds: maps each reached feed name to its gradient, with the same
            shape as the feed value.
    """

    params: dict[int, np.ndarray] = field(default_factory=dict)
    feeds: dict[str, np.ndarray] = field(default_factory=dict)


def loss_of(value: np.ndarray) -> float:
    """Project an output value to a scalar loss by summing its elements."""
    return float(np.sum(value))


def delta_of(value: float) -> np.ndarray:
    """Build an output delta from a scalar (it broadcasts to any output shape)."""
    return np.asarray(value, dtype=np.float64)


def _print_graph_node(index: int, op: graph.Op) -> None:
    """Print a node before evaluation."""
    print(f"# n{index} = {op!r}")


def _print_value(label: str, value: np.ndarray) -> None:
    """Print a value after computing it."""
    # 1. print the shape and dtype, which are invaluable when debugging
    print(f"# {label} shape: {value.shape}")
    print(f"# {label} dtype: {value.dtype}")

    # 2. give the user a sense of the value for debugging purposes
    print(f"# {label}:")
    print("\n".join("# " + line for line in str(value).splitlines()))

    # 3. add an empty line, which is always nice to separate things
    print("")


def _reduce_to_shape(value: np.ndarray, shape: tuple[int, ...]) -> np.ndarray:
    """Sum value over the axes that broadcasting added or stretched.

    The result has exactly the given shape. Values with fewer elements
    (e.g., a scalar output delta) are broadcast up to the shape instead.

    Raises
    ------
        ShapeMismatch: if value cannot be reduced or broadcast to shape.
    """
    if value.shape == shape:
        return value
    while value.ndim > len(shape):
        value = value.sum(axis=0)
    for axis, dim in enumerate(shape):
        if value.ndim == len(shape) and dim == 1 and value.shape[axis] != 1:
            value = value.sum(axis=axis, keepdims=True)
    try:
        return np.broadcast_to(value, shape).copy()
    except ValueError as exc:
        raise ShapeMismatch(f"numpybackend: cannot reduce gradient of shape {value.shape} to {shape}") from exc


class NumpyBackend(Backend[TensorDict, Storage, np.ndarray, Delta, State]):
    """Backend evaluating graphs using NumPy.

    Args:
        flags: Bitmask of `compileflags` controlling debugging output.
        init_scale: When positive, `state` adds normal noise with this
            standard deviation to the declared initial value of each
            parameter. When zero (the default), parameters are filled
            with their declared value and the rng is not used.
    """

    def __init__(self, flags: int = compileflags.defaults, init_scale: float = 0.0) -> None:
        self.flags = flags
        self.init_scale = init_scale

    def state(self, g: graph.Graph, rng: np.random.Generator | None) -> State:
        """Create the parameters for every `graph.TrainConst` of g.

        Raises
        ------
            MalformedGraph: if g violates the reference invariant.
            NumpyBackendError: if init_scale is positive and rng is None.
        """
        _check_graph(g)
        params: dict[int, np.ndarray] = {}
        for index, op in g.train_consts():
            value = np.full(op.shape, op.value, dtype=np.float64)
            if self.init_scale > 0:
                if rng is None:
                    raise NumpyBackendError("numpybackend: a random generator is required when init_scale is positive")
                value = value + rng.normal(scale=self.init_scale, size=op.shape)
            params[index] = value
        return State(params)

    def forward(
        self,
        g: graph.Graph,
        state: State,
        inputs: TensorDict,
        root: graph.Input,
    ) -> tuple[np.ndarray, Storage]:
        """Evaluate root.

        Raises
        ------
            MalformedGraph: if g or root violates the reference invariant.
            FeedValueNotProvided: if inputs lacks a feed the root needs.
            ShapeMismatch: if operands cannot be broadcast together.
            StateMismatch: if state lacks a parameter or its shape differs.
            UnsupportedOperation: if g contains an unknown operation.
        """
        _check_graph(g)
        _check_root(g, root)

        # Honor the DUMP flag when requested to do so
        if self.flags & compileflags.DUMP != 0:
            print(str(g))
            print("")

        values: dict[int, np.ndarray] = {}
        feeds: dict[str, np.ndarray] = {}
        for index in linearize.nodes(g, root):
            values[index] = self._evaluate_node(g, index, state, inputs, values, feeds)

        output = _resolve(root, inputs, values, feeds)
        return output, Storage(root=root, values=values, feeds=feeds)

    def _evaluate_node(
        self,
        g: graph.Graph,
        index: int,
        state: State,
        inputs: TensorDict,
        values: dict[int, np.ndarray],
        feeds: dict[str, np.ndarray],
    ) -> np.ndarray:
        op = g[index]

        # 1. check whether we need to trace this node
        tracing = self.flags & compileflags.TRACE
        if tracing:
            _print_graph_node(index, op)

        # 2. evaluate the node
        if isinstance(op, graph.TrainConst):
            result = _parameter(state, index, op)
        else:
            operands = [_resolve(operand, inputs, values, feeds) for operand in op.inputs()]
            result = _apply(index, op, operands)

        # 3. check whether we need to print the computation result
        if tracing:
            _print_value("value", result)

        # 4. check whether we need to stop after evaluating this node
        if self.flags & compileflags.BREAK != 0:
            input("# numpybackend: press any key to continue...")
            print("")

        return result

    def backward(
        self,
        g: graph.Graph,
        state: State,
        internal: Storage,
        inputs: TensorDict,
        root: graph.Input,
        output_delta: np.ndarray,
    ) -> Delta:
        """Propagate output_delta back from root.

        The returned delta contains a gradient for every parameter and feed
        the root depends on.

        Raises
        ------
            StateMismatch: if internal was produced for another root.
            ShapeMismatch: if output_delta does not fit the root value.
        """
        if internal.root != root:
            raise StateMismatch(f"numpybackend: storage was produced for {internal.root!r}, not for {root!r}")

        tracing = self.flags & compileflags.TRACE
        gradients: dict[int, np.ndarray] = {}
        delta = Delta()

        upstream = np.asarray(output_delta, dtype=np.float64)
        _accumulate(root, upstream, internal, gradients, delta)

        for index in reversed(linearize.nodes(g, root)):
            gradient = gradients.pop(index, None)
            if gradient is None:
                continue

            op = g[index]
            if tracing:
                _print_graph_node(index, op)
                _print_value("gradient", gradient)

            if isinstance(op, graph.TrainConst):
                delta.params[index] = gradient
                continue

            operands = [_stored(input, internal) for input in op.inputs()]
            try:
                contributions = _backward_operations[type(op)](gradient, *operands)
            except KeyError:
                raise UnsupportedOperation(f"numpybackend: unsupported operation: {type(op)}")
            for input, contribution in zip(op.inputs(), contributions):
                _accumulate(input, contribution, internal, gradients, delta)

        return delta

    def train(self, state: State, delta: Delta) -> None:
        """Add each parameter gradient in delta to the parameter.

        The learning rate (and sign) is already part of the gradients,
        since the output delta passed to `backward` carries them. The delta
        is validated first, so state is either fully updated or untouched.

        Raises
        ------
            StateMismatch: if delta refers to an unknown parameter or a
                gradient shape differs from the parameter shape.
        """
        for index, gradient in delta.params.items():
            if index not in state.params:
                raise StateMismatch(f"numpybackend: no parameter for node n{index}")
            if gradient.shape != state.params[index].shape:
                raise StateMismatch(
                    f"numpybackend: gradient shape {gradient.shape} differs from "
                    f"parameter shape {state.params[index].shape} for node n{index}"
                )
        for index, gradient in delta.params.items():
            state.params[index] = state.params[index] + gradient


def _check_graph(g: graph.Graph) -> None:
    try:
        g.check()
    except graph.InvalidReference as exc:
        raise MalformedGraph(f"numpybackend: {exc}") from exc


def _check_root(g: graph.Graph, root: graph.Input) -> None:
    if isinstance(root, graph.Internal) and (not 0 <= root.node < len(g) or root.output != 0):
        raise MalformedGraph(f"numpybackend: root {root!r} is not an output of the graph")


def _parameter(state: State, index: int, op: graph.TrainConst) -> np.ndarray:
    try:
        value = state.params[index]
    except KeyError:
        raise StateMismatch(f"numpybackend: no parameter for node n{index}")
    if value.shape != op.shape:
        raise StateMismatch(f"numpybackend: parameter n{index} has shape {value.shape}, expected {op.shape}")
    return value


def _apply(index: int, op: graph.Op, operands: list[np.ndarray]) -> np.ndarray:
    try:
        function = _forward_operations[type(op)]
    except KeyError:
        raise UnsupportedOperation(f"numpybackend: unsupported operation: {type(op)}")
    try:
        return function(*operands)
    except ValueError as exc:
        shapes = ", ".join(str(operand.shape) for operand in operands)
        raise ShapeMismatch(f"numpybackend: node n{index}: incompatible operand shapes {shapes}") from exc


def _resolve(
    input: graph.Input,
    inputs: TensorDict,
    values: dict[int, np.ndarray],
    feeds: dict[str, np.ndarray],
) -> np.ndarray:
    """Return the value of an input during the forward pass."""
    if isinstance(input, graph.Internal):
        return values[input.node]
    if input.key not in feeds:
        try:
            feeds[input.key] = np.asarray(inputs[input.key], dtype=np.float64)
        except KeyError:
            raise FeedValueNotProvided(f"numpybackend: no value provided for feed '{input.key}'")
    return feeds[input.key]


def _stored(input: graph.Input, internal: Storage) -> np.ndarray:
    """Return the value an input had during the forward pass."""
    try:
        if isinstance(input, graph.Internal):
            return internal.values[input.node]
        return internal.feeds[input.key]
    except KeyError:
        raise StateMismatch(f"numpybackend: storage has no value for {input!r}")


def _accumulate(
    input: graph.Input,
    gradient: np.ndarray,
    internal: Storage,
    gradients: dict[int, np.ndarray],
    delta: Delta,
) -> None:
    """Add gradient to the gradient of input, reduced to the input shape."""
    gradient = _reduce_to_shape(gradient, _stored(input, internal).shape)
    if isinstance(input, graph.Internal):
        previous: Any = gradients.get(input.node)
        gradients[input.node] = gradient if previous is None else previous + gradient
    else:
        previous = delta.feeds.get(input.key)
        delta.feeds[input.key] = gradient if previous is None else previous + gradient
