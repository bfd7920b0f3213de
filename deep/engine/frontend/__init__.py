"""The engine frontend allows expressing computations as graphs.

Modules:
    graph: Graph intermediate representation.
    linearize: Reachability and evaluation order.
    tensor: Lazy expression builder.
"""

# SPDX-License-Identifier: Apache-2.0
