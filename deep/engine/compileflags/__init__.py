"""
The compileflags package defines the flags influencing graph execution.

Backends read these flags to decide whether to dump the graph before running
it, trace each node while evaluating it, or stop after each node. Keeping the
definitions here avoids each backend inventing its own incompatible flags.
"""

# SPDX-License-Identifier: Apache-2.0

from typing import Callable
import os


TRACE = 1 << 0
"""Print each node before and after evaluating it."""

BREAK = 1 << 1
"""Wait for a key press after evaluating each node."""

DUMP = 1 << 2
"""Print the whole graph before evaluating it."""

_flagnames: dict[str, int] = {
    "break": BREAK,
    "dump": DUMP,
    "trace": TRACE,
}
"""Maps the lowercase name of the flag to its value."""


def from_environ(
    varname: str = "DEEP_ENGINE_FLAGS",
    getenv: Callable[[str], str | None] = os.getenv,
) -> int:
    """Read flags from a specific environment variable.

    The format for the flags is the following:

        <key>[,<key>,...]

    where <key> is the case-insensitive name of an existing flag. Unknown
    names are ignored.

    For example:

        export DEEP_ENGINE_FLAGS=trace,dump

    causes this function to return:

        TRACE|DUMP

    Arguments
    ---------
    varname: the name of the environment variable (default: `DEEP_ENGINE_FLAGS`).
    getenv: the function to read the environment variable (default: os.getenv).
    """
    flags: int = 0
    for value in (getenv(varname) or "").split(","):
        flags |= _flagnames.get(value.strip().lower(), 0)
    return flags


defaults = from_environ()
"""Default flags initialized from the `DEEP_ENGINE_FLAGS` environment variable."""
