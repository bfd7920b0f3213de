"""Reachability analysis over graphs.

Graphs may contain nodes no root depends on (the builder never prunes). This
module computes the nodes a set of roots actually needs, so that backends
can skip dead nodes. Because references only ever point backward, sorting the
reachable indices in increasing order yields a topological order.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from . import graph


def nodes(g: graph.Graph, *roots: graph.Input) -> list[int]:
    """Return the indices of the nodes the roots depend on, sorted.

    A root that is a `graph.Feed` does not depend on any node. Internal
    roots are included in the result.

    Args:
        g: The graph the roots belong to.
        *roots: The inputs whose dependencies to collect.

    Returns
    -------
        The indices in increasing order, which is a valid evaluation order.
    """
    visited: set[int] = set()
    stack = [root.node for root in roots if isinstance(root, graph.Internal)]
    while stack:
        index = stack.pop()
        if index in visited:
            continue
        visited.add(index)
        for input in g[index].inputs():
            if isinstance(input, graph.Internal):
                stack.append(input.node)
    return sorted(visited)


def feeds(g: graph.Graph, *roots: graph.Input) -> list[str]:
    """Return the feed keys the roots read, in first-use order."""
    keys: list[str] = []
    candidates: list[graph.Input] = list(roots)
    for index in nodes(g, *roots):
        candidates.extend(g[index].inputs())
    for input in candidates:
        if isinstance(input, graph.Feed) and input.key not in keys:
            keys.append(input.key)
    return keys
