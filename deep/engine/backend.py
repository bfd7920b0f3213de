"""Backend Contract.

A backend is the numeric engine executing graphs built with the frontend.
The frontend only knows about graph structure. Everything numeric (the
tensor type, where values live, how parameters are initialized, how
gradients are stored) belongs to the backend and is opaque to the rest of
the engine.

The contract is generic over five types the engine never inspects:

1. TensorDict: the name -> value mapping used to resolve `graph.Feed` inputs
2. InternalStorage: data cached by `forward` and needed by `backward`
3. Tensor: the numeric value type the backend computes with
4. Delta: the gradients produced by `backward` and consumed by `train`
5. State: the trainable parameters (one per `graph.TrainConst` node) plus
   whatever else the backend persists across steps

A training step always calls `forward`, then `backward` with the storage
that very `forward` call returned, then `train`. Storage produced by one
evaluation must never be paired with another.

Errors
------

Backends report failures by raising `BackendError` subclasses. The engine
never catches them: they reach the caller unchanged.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from .frontend import graph

TensorDictT = TypeVar("TensorDictT")
"""Mapping used to resolve feeds."""

InternalStorageT = TypeVar("InternalStorageT")
"""Data passed from forward to backward."""

TensorT = TypeVar("TensorT")
"""Numeric value type."""

DeltaT = TypeVar("DeltaT")
"""Gradients produced by backward."""

StateT = TypeVar("StateT")
"""Trainable parameters and persistent backend data."""


class BackendError(Exception):
    """Base class for errors raised by backends."""


class Backend(ABC, Generic[TensorDictT, InternalStorageT, TensorT, DeltaT, StateT]):
    """Numeric engine executing graphs.

    Subclasses bind the type parameters and implement the four methods.
    """

    @abstractmethod
    def state(self, g: graph.Graph, rng: Any) -> StateT:
        """Create the initial state for a graph.

        The state must cover every `graph.TrainConst` node. The declared
        shape and value are the default initialization, but the backend may
        apply its own scheme using the randomness source rng.

        Raises
        ------
            BackendError: if the graph is malformed for this backend.
        """

    @abstractmethod
    def forward(
        self,
        g: graph.Graph,
        state: StateT,
        inputs: TensorDictT,
        root: graph.Input,
    ) -> tuple[TensorT, InternalStorageT]:
        """Evaluate root.

        Feeds are resolved through inputs and trainable parameters through
        state. Returns the value of root along with the storage needed by
        the matching `backward` call.

        Raises
        ------
            BackendError: on missing feeds, shape mismatches, or
                malformed graphs.
        """

    @abstractmethod
    def backward(
        self,
        g: graph.Graph,
        state: StateT,
        internal: InternalStorageT,
        inputs: TensorDictT,
        root: graph.Input,
        output_delta: TensorT,
    ) -> DeltaT:
        """Propagate output_delta from root back to every input.

        The gradient flows unchanged through both operands of `graph.Add`
        and into the left operand of `graph.Sub`, negated into the right
        operand of `graph.Sub`, and multiplied by twice the operand value
        through `graph.Square`. Contributions to nodes with more than one
        consumer accumulate.

        The internal storage must come from `forward` invoked with the same
        graph, state, inputs, and root.
        """

    @abstractmethod
    def train(self, state: StateT, delta: DeltaT) -> None:
        """Apply delta to state in place.

        Each call applies the delta again, so call it once per delta.
        """
