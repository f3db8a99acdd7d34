"""Exception types shared across the protocol, state and scripting layers."""

from __future__ import annotations


class MoriError(Exception):
    """Base for all Mori errors."""


class DecodeError(MoriError):
    """Malformed or truncated variant buffer."""


class TypeMismatch(DecodeError):
    """A typed accessor was used on a value carrying a different tag."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"expected {expected} variant, got {actual}")


class ProtocolShapeError(MoriError):
    """A recognised event is missing a field it needs (or the field is garbage)."""


class SubscriberError(MoriError):
    """Wraps an exception raised from inside a callback."""

    def __init__(self, event: str, cause: BaseException):
        self.event = event
        self.cause = cause
        super().__init__(f"error in '{event}' callback: {cause}")


class ResourceUnavailable(MoriError):
    """A non-blocking read found its target locked."""

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} is busy")


class ScriptError(MoriError):
    """A Lua script failed to load or raised at top level."""
