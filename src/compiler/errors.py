"""Compiler exceptions."""


class CompilationError(Exception):
    """Manifest cannot be compiled into platform entities.

    Raised before any network call: missing locations, missing sequence
    actions, name collisions, unresolved rule or route references.
    """
