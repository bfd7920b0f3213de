"""The execution engine allows building and training computation graphs.

Modules:
    backend: Generic contract implemented by numeric engines.
    compileflags: Common definitions of flags influencing execution.
    frontend: Graph construction and manipulation frontend.
    numpybackend: NumPy-specific backend.
    training: Gradient-descent training step.
"""
