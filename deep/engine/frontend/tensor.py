"""Lazy Expression Builder.

This module provides `Tensor`, the user-facing value used to build graphs.
A tensor does not hold numbers: it holds a graph and the input denoting the
value the tensor stands for. Combining tensors grows graphs lazily; a backend
computes the actual values later.

Here's an example of what you can do with this module:

    >>> from deep.engine.frontend.tensor import Tensor
    >>>
    >>> w = Tensor.train_const([1], 0.5)
    >>> loss = (w - "y").squared()
    >>> len(loss.graph)
    3

Graph Sharing
-------------

Tensors derived from a common ancestor share the same `graph.Graph`
instance. For example, `squared` appends to the graph of its receiver and
returns a new tensor referencing the appended node, while the receiver keeps
referencing its own node in the (now larger) graph.

Binary operations extend the graph of the left operand with a relabelled
copy of the graph of the right operand, then append the operation. Therefore
the indices of the left operand never change and only the right operand is
shifted. This also means that, when both operands share a graph, the right
operand's history is copied rather than reused:

    >>> x = Tensor.train_const([1], 3.0)
    >>> y = x.squared() + x.squared()
    >>> len(y.graph)
    7

Feeds
-----

`Tensor.feed(name)` creates a tensor with an empty graph whose value comes
from the inputs mapping provided at evaluation time. Wherever a tensor
operand is expected, a string is accepted as a shorthand for a feed:

    >>> w = Tensor.train_const([1], 3.0)
    >>> c = w + "x"
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Any, Callable, Sequence

from .. import training
from ..backend import Backend, DeltaT, InternalStorageT, StateT, TensorDictT, TensorT
from . import graph


def ensure_tensor(value: Tensor | str) -> Tensor:
    """Convert a feed name to a feed tensor if necessary."""
    return value if isinstance(value, Tensor) else Tensor.feed(value)


class Tensor:
    """Node of a lazily-built computation graph.

    Args:
        g: The graph this tensor belongs to, possibly shared with other tensors.
        input: The input denoting the value of this tensor inside g.
    """

    def __init__(self, g: graph.Graph, input: graph.Input) -> None:
        self._graph = g
        self._input = input

    @classmethod
    def train_const(cls, shape: Sequence[int], value: float) -> Tensor:
        """Create a trainable parameter filled with value in a new graph."""
        g = graph.Graph()
        node = g.append(graph.TrainConst(shape=tuple(shape), value=value))
        return cls(g, graph.Internal(node=node, output=0))

    @classmethod
    def feed(cls, name: str) -> Tensor:
        """Create a tensor whose value is read from the inputs under name.

        The resulting tensor has an empty graph and only contributes to a
        graph when combined with other tensors.
        """
        return cls(graph.Graph(), graph.Feed(name))

    @property
    def graph(self) -> graph.Graph:
        """Return the (possibly shared) graph of this tensor."""
        return self._graph

    @property
    def input(self) -> graph.Input:
        """Return the input denoting this tensor inside its graph."""
        return self._input

    def squared(self) -> Tensor:
        """Append an element-wise square to the shared graph."""
        node = self._graph.append(graph.Square(operand=self._input))
        return Tensor(self._graph, graph.Internal(node=node, output=0))

    def __add__(self, other: Tensor | str) -> Tensor:
        """Add two tensors or a tensor and a feed."""
        if not isinstance(other, (Tensor, str)):
            return NotImplemented
        return add(self, ensure_tensor(other))

    def __radd__(self, other: str) -> Tensor:
        """Add a feed and a tensor."""
        if not isinstance(other, str):
            return NotImplemented
        return add(ensure_tensor(other), self)

    def __sub__(self, other: Tensor | str) -> Tensor:
        """Subtract two tensors or a feed from a tensor."""
        if not isinstance(other, (Tensor, str)):
            return NotImplemented
        return sub(self, ensure_tensor(other))

    def __rsub__(self, other: str) -> Tensor:
        """Subtract a tensor from a feed."""
        if not isinstance(other, str):
            return NotImplemented
        return sub(ensure_tensor(other), self)

    def gen_state(
        self,
        backend: Backend[TensorDictT, InternalStorageT, TensorT, DeltaT, StateT],
        rng: Any,
    ) -> StateT:
        """Create the backend state for the graph of this tensor."""
        return backend.state(self._graph, rng)

    def eval(
        self,
        backend: Backend[TensorDictT, InternalStorageT, TensorT, DeltaT, StateT],
        state: StateT,
        inputs: TensorDictT,
    ) -> TensorT:
        """Evaluate the tensor, discarding the backward storage."""
        output, _ = backend.forward(self._graph, state, inputs, self._input)
        return output

    def gradient_descent(
        self,
        backend: Backend[TensorDictT, InternalStorageT, TensorT, DeltaT, StateT],
        state: StateT,
        inputs: TensorDictT,
        learning_rate: float,
        tensor_loss: Callable[[TensorT], float],
        delta_tensor: Callable[[float], TensorT],
    ) -> float:
        """Train the graph using this tensor as the loss.

        See `training.gradient_descent` for the details.

        Returns
        -------
            The loss before training.
        """
        return training.gradient_descent(
            backend,
            self._graph,
            self._input,
            state,
            inputs,
            learning_rate,
            tensor_loss,
            delta_tensor,
        )

    def __repr__(self) -> str:
        """Return a short description of the tensor."""
        return f"<Tensor input={self._input!r} graph_len={len(self._graph)}>"


def _merge2_1(a: Tensor, b: Tensor, make_op: Callable[[graph.Input, graph.Input], graph.Op]) -> Tensor:
    """Combine two tensors into a new node of the graph of a.

    Appends the graph of b to the graph of a, shifting the references of b
    by the length of the graph of a so they keep pointing at the right
    nodes, then appends the operation. The result shares the graph of a.
    """
    g = a.graph
    right = g.merge_input(b.graph, b.input)
    node = g.append(make_op(a.input, right))
    return Tensor(g, graph.Internal(node=node, output=0))


def add(a: Tensor, b: Tensor) -> Tensor:
    """Element-wise addition of two tensors."""
    return _merge2_1(a, b, graph.Add)


def sub(a: Tensor, b: Tensor) -> Tensor:
    """Element-wise subtraction of b from a."""
    return _merge2_1(a, b, graph.Sub)
