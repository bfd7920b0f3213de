"""NumPy-specific backend.

Modules:
    executor: Forward, backward, and training over NumPy arrays.
"""

# SPDX-License-Identifier: Apache-2.0
