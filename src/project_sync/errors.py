"""Errors raised while syncing a project."""


class DriftLookupError(Exception):
    """The previously deployed project fingerprint could not be looked up."""


class SideEffectError(Exception):
    """A deploy prerequisite outside the entity set failed (org id registration)."""


class UnsupportedRuntimeError(Exception):
    """An action uses a runtime kind that neither the client nor the server supports."""
