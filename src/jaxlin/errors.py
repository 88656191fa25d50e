"""Exceptions raised by jaxlin.

All of these signal a broken precondition on the caller's side; nothing in the
library retries or recovers from them."""

from __future__ import annotations

from ._keys import Key, format_key


class JaxlinError(Exception):
    """Base class for jaxlin errors."""


class NotFoundError(JaxlinError, LookupError):
    """A key was expected to be present but is not."""

    def __init__(self, key: Key, container: str) -> None:
        self.key = key
        super().__init__(
            f"Requested variable '{format_key(key)}' is not in this {container}."
        )


class AlreadyExistsError(JaxlinError, ValueError):
    """A key was expected to be absent but is already present."""

    def __init__(self, key: Key, container: str) -> None:
        self.key = key
        super().__init__(
            f"Requested to insert variable '{format_key(key)}' already in this {container}."
        )


class InvalidArgumentError(JaxlinError, ValueError):
    """An argument is missing or malformed."""


class DimensionMismatchError(InvalidArgumentError):
    """Two operands do not have the same structure or shape."""


class TypeMismatchError(JaxlinError, TypeError):
    """A stored value does not have the type a caller asked for."""
