"""Computation Graph Intermediate Representation.

This module defines the append-only graph IR that the `tensor` builder grows
and that backends execute. A graph is an ordered list of operations where each
operation refers to its inputs either by name (a feed, resolved only when the
graph is executed) or by position (the output of an earlier operation).

This module provides:

1. The two input kinds: `Feed` and `Internal`
2. The closed set of operations: `Add`, `Sub`, `Square`, `TrainConst`
3. The `Graph` container with append, merge, and index-shifting primitives

Here's an example of what you can do with this module:

    >>> from deep.engine.frontend import graph
    >>>
    >>> g = graph.Graph()
    >>> w = g.append(graph.TrainConst(shape=(1,), value=2.0))
    >>> s = g.append(graph.Square(operand=graph.Internal(node=w)))
    >>> d = g.append(graph.Sub(left=graph.Internal(node=s), right=graph.Feed("y")))

Design Decisions
----------------

1. Positional Node Identity:
    - Nodes are identified by their index in the graph
    - An index is only meaningful relative to the graph that holds it
    - Splicing graphs therefore requires shifting the spliced indices

2. Append-Only Storage:
    - Appending never invalidates existing indices
    - Merging appends a relabelled copy of the other graph and never
      touches the nodes the receiver already holds

3. Closed Operation Set:
    - Each operation is a frozen dataclass carrying only its own fields
    - `Op` is the union of all operations; add kinds by adding variants

4. Unchecked Invariant:
    - `append` and `merge` trust the caller: every `Internal` reference
      must point to an earlier node and use output slot 0
    - The `tensor` builder satisfies this by construction
    - `Graph.check` validates the invariant on demand

Node Representation
-------------------

The `__repr__` of a graph emits the Python code that rebuilds it:

    g = graph.Graph()
    g.append(graph.TrainConst(shape=(1,), value=2.0))  # n0
    g.append(graph.Square(operand=graph.Internal(node=0, output=0)))  # n1

No Deduplication
----------------

Merging a graph into itself (or into a graph sharing some history with it)
duplicates every merged node. Identical sub-expressions are never detected or
shared, so a graph can be larger than the minimal DAG for its expression.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, TypeAlias


class InvalidReference(ValueError):
    """Raised by `Graph.check` when a node refers to a missing output."""


@dataclass(frozen=True)
class Internal:
    """Reference to one output of a node already appended to a graph.

    Attributes
    ----------
    node: index of the producing node.
    output: output slot of the producing node (always 0 for now, since
        no operation produces more than one output).
    """

    node: int
    output: int = 0

    def relabel(self, offset: int) -> Internal:
        """Return a copy of the reference shifted by offset."""
        return Internal(node=self.node + offset, output=self.output)

    def __repr__(self) -> str:
        """Return a round-trippable representation of the reference."""
        return f"graph.Internal(node={self.node}, output={self.output})"


@dataclass(frozen=True)
class Feed:
    """Named value provided by the caller when executing the graph.

    The graph only stores the key, so the same graph can be executed
    many times against different feed mappings.
    """

    key: str

    def relabel(self, offset: int) -> Feed:
        """Feeds do not depend on positions, hence return self."""
        return self

    def __repr__(self) -> str:
        """Return a round-trippable representation of the feed."""
        return f"graph.Feed(key={self.key!r})"


Input: TypeAlias = Feed | Internal
"""Where an operation reads one of its operands from."""


@dataclass(frozen=True)
class Add:
    """Element-wise addition of two inputs."""

    left: Input
    right: Input

    def inputs(self) -> tuple[Input, ...]:
        """Return the operands in positional order."""
        return (self.left, self.right)

    def relabel(self, offset: int) -> Add:
        """Return a copy with internal references shifted by offset."""
        return Add(left=self.left.relabel(offset), right=self.right.relabel(offset))

    def __repr__(self) -> str:
        """Return a round-trippable representation of the operation."""
        return f"graph.Add(left={self.left!r}, right={self.right!r})"


@dataclass(frozen=True)
class Sub:
    """Element-wise subtraction of the right input from the left input."""

    left: Input
    right: Input

    def inputs(self) -> tuple[Input, ...]:
        """Return the operands in positional order."""
        return (self.left, self.right)

    def relabel(self, offset: int) -> Sub:
        """Return a copy with internal references shifted by offset."""
        return Sub(left=self.left.relabel(offset), right=self.right.relabel(offset))

    def __repr__(self) -> str:
        """Return a round-trippable representation of the operation."""
        return f"graph.Sub(left={self.left!r}, right={self.right!r})"


@dataclass(frozen=True)
class Square:
    """Element-wise square of an input."""

    operand: Input

    def inputs(self) -> tuple[Input, ...]:
        """Return the operands in positional order."""
        return (self.operand,)

    def relabel(self, offset: int) -> Square:
        """Return a copy with internal references shifted by offset."""
        return Square(operand=self.operand.relabel(offset))

    def __repr__(self) -> str:
        """Return a round-trippable representation of the operation."""
        return f"graph.Square(operand={self.operand!r})"


@dataclass(frozen=True)
class TrainConst:
    """Trainable parameter of the given shape.

    Every element is initialized to value. Unlike a `Feed`, the parameter
    is part of the backend state and changes when the backend trains.

    Args:
        shape: The parameter shape (any sequence of ints, stored as a tuple).
        value: The scalar used to fill the parameter on initialization.
    """

    shape: tuple[int, ...]
    value: float = 0.0

    def __post_init__(self) -> None:
        """Normalize the shape to a tuple of ints."""
        object.__setattr__(self, "shape", tuple(int(dim) for dim in self.shape))

    def inputs(self) -> tuple[Input, ...]:
        """Return the operands in positional order (none, this is a leaf)."""
        return ()

    def relabel(self, offset: int) -> TrainConst:
        """Leaves have no references, hence return self."""
        return self

    def __repr__(self) -> str:
        """Return a round-trippable representation of the operation."""
        return f"graph.TrainConst(shape={self.shape}, value={self.value!r})"


Op: TypeAlias = Add | Sub | Square | TrainConst
"""Any operation that can be stored inside a graph."""


class Graph:
    """Append-only sequence of operations.

    Invariant: for the operation at index i, every `Internal` reference
    points to an index lower than i. Builders sharing a graph hold a
    reference to the same instance and extend it in place.

    Args:
        ops: Optional initial operations, which must already satisfy
            the invariant.
    """

    def __init__(self, ops: Iterable[Op] = ()) -> None:
        self._ops: list[Op] = list(ops)

    @property
    def ops(self) -> tuple[Op, ...]:
        """Return a read-only view of the operations."""
        return tuple(self._ops)

    def __len__(self) -> int:
        """Return the number of operations."""
        return len(self._ops)

    def __iter__(self) -> Iterator[Op]:
        """Iterate over the operations in index order."""
        return iter(self._ops)

    def __getitem__(self, index: int) -> Op:
        """Return the operation at the given index."""
        return self._ops[index]

    def __eq__(self, other: object) -> bool:
        """Two graphs are equal when they hold equal operations in the same order."""
        if not isinstance(other, Graph):
            return NotImplemented
        return self._ops == other._ops

    __hash__ = None  # type: ignore[assignment]

    def append(self, op: Op) -> int:
        """Append an operation and return its index.

        The references inside op are not validated.
        """
        self._ops.append(op)
        return len(self._ops) - 1

    def merge(self, other: Graph) -> None:
        """Append every operation of other, shifting its internal references.

        The shift is the length of self before merging, so every reference
        inside the appended region keeps pointing at the same operation it
        pointed at inside other. The operations already in self are never
        touched and other is left unchanged (it may even be self).
        """
        offset = len(self._ops)
        fragment = list(other._ops)
        self._ops.extend(op.relabel(offset) for op in fragment)

    def merge_input(self, other: Graph, input: Input) -> Input:
        """Merge other and return input shifted the same way.

        Use this to carry a reference into other (typically the current
        result of a builder) over into the merged graph.
        """
        offset = len(self._ops)
        self.merge(other)
        return input.relabel(offset)

    def copy(self) -> Graph:
        """Return a shallow copy (operations are immutable)."""
        return Graph(self._ops)

    def train_consts(self) -> Iterator[tuple[int, TrainConst]]:
        """Yield the index and operation of every trainable parameter."""
        for index, op in enumerate(self._ops):
            if isinstance(op, TrainConst):
                yield index, op

    def check(self) -> None:
        """Validate that every internal reference points backward.

        Raises
        ------
            InvalidReference: if a reference points to the node itself,
                to a later node, to a negative index, or to an output
                slot other than 0.
        """
        for index, op in enumerate(self._ops):
            for input in op.inputs():
                if not isinstance(input, Internal):
                    continue
                if not 0 <= input.node < index:
                    raise InvalidReference(
                        f"graph: node {index} refers to node {input.node}, which is not an earlier node"
                    )
                if input.output != 0:
                    raise InvalidReference(
                        f"graph: node {index} refers to output {input.output} of node {input.node}, "
                        "but operations have a single output"
                    )

    def __repr__(self) -> str:
        """Return the Python code that rebuilds the graph."""
        lines = ["g = graph.Graph()"]
        for index, op in enumerate(self._ops):
            lines.append(f"g.append({op!r})  # n{index}")
        return "\n".join(lines)

    def __str__(self) -> str:
        """Return the Python code that rebuilds the graph."""
        return repr(self)
