"""Runnable snippets from README.md."""

import numpy as np

from deep import NumpyBackend, Tensor
from deep.engine.frontend import graph
from deep.engine.numpybackend import executor

# ---------------------------------------------------------------------------
# README: building graphs
# ---------------------------------------------------------------------------

t = Tensor.train_const([1], 2.0)
y = t.squared()

assert y.graph.ops == (
    graph.TrainConst(shape=(1,), value=2.0),
    graph.Square(operand=graph.Internal(node=0, output=0)),
)

backend = NumpyBackend()
state = y.gen_state(backend, np.random.default_rng(0))
np.testing.assert_allclose(y.eval(backend, state, {}), [4.0])


# ---------------------------------------------------------------------------
# README: feeds
# ---------------------------------------------------------------------------

a = Tensor.train_const([1], 3.0)
c = a + "x"
np.testing.assert_allclose(c.eval(backend, c.gen_state(backend, None), {"x": 5.0}), [8.0])


# ---------------------------------------------------------------------------
# README: training
# ---------------------------------------------------------------------------

w = Tensor.train_const([3], 0.0)
loss = (w - "target").squared()
state = loss.gen_state(backend, None)
target = {"target": np.array([1.0, -0.5, 0.25])}

first = loss.gradient_descent(backend, state, target, 0.2, executor.loss_of, executor.delta_of)
for _ in range(200):
    last = loss.gradient_descent(backend, state, target, 0.2, executor.loss_of, executor.delta_of)

assert last < first
print(f"loss: {first:.4f} -> {last:.4f}")
print(f"w: {state.params[0]}")
