from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, TypeVar, cast, overload

import jax
from jax import numpy as jnp

from . import charts
from ._keys import Key, format_key
from ._vector_values import VectorValues
from .errors import AlreadyExistsError, NotFoundError, TypeMismatchError

T = TypeVar("T")


class Values:
    """A mapping from keys to variable values. This is the linearization point
    passed to factors.

    Values can be vectors (stored as JAX arrays) or `jaxlie` group elements.
    Unlike `VectorValues`, entries are immutable and keys can hold values of
    different types, so lookups can be type-checked:

        vals.at(key)                 # Any value.
        vals.at(key, jaxlie.SE2)     # Raises TypeMismatchError if not an SE2.
    """

    def __init__(self, values: Mapping[Key, Any] | None = None) -> None:
        self._values = dict[Key, Any]()
        if values is not None:
            for key, value in values.items():
                self.insert(key, value)

    @staticmethod
    def _prepare(value: Any) -> Any:
        if charts.is_lie_group(value):
            return value
        return jnp.atleast_1d(jnp.asarray(value, dtype=float))

    def insert(self, key: Key, value: Any) -> None:
        if key in self._values:
            raise AlreadyExistsError(key, "Values")
        self._values[key] = self._prepare(value)

    def update(self, key: Key, value: Any) -> None:
        if key not in self._values:
            raise NotFoundError(key, "Values")
        self._values[key] = self._prepare(value)

    def erase(self, key: Key) -> None:
        if key not in self._values:
            raise NotFoundError(key, "Values")
        del self._values[key]

    @overload
    def at(self, key: Key) -> Any: ...

    @overload
    def at(self, key: Key, value_type: type[T]) -> T: ...

    def at(self, key: Key, value_type: type | None = None) -> Any:
        """Get the value of `key`. If `value_type` is set, the value must be an
        instance of it."""
        try:
            value = self._values[key]
        except KeyError:
            raise NotFoundError(key, "Values") from None
        if value_type is not None and not isinstance(value, value_type):
            raise TypeMismatchError(
                f"Variable '{format_key(key)}' holds a {type(value).__name__},"
                f" but a {value_type.__name__} was requested."
            )
        return value

    def __getitem__(self, key: Key) -> Any:
        return self.at(key)

    def exists(self, key: Key) -> bool:
        return key in self._values

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Key]:
        return iter(tuple(self._values))

    def keys(self) -> list[Key]:
        return list(self._values.keys())

    def dims(self) -> dict[Key, int]:
        """Tangent dimension of each variable."""
        return {key: charts.dimension(value) for key, value in self._values.items()}

    def zero_vectors(self) -> VectorValues:
        """A zero tangent vector for each variable."""
        return VectorValues.from_vector(
            jnp.zeros(sum(self.dims().values())), self.dims()
        )

    def retract(self, delta: VectorValues) -> Values:
        """Apply a tangent-space update. Keys missing from `delta` are copied
        unchanged."""
        out = Values()
        for key, value in self._values.items():
            if key in delta:
                value = charts.retract(value, jnp.asarray(delta[key]))
            out._values[key] = value
        return out

    def local_coordinates(self, other: Values) -> VectorValues:
        """Tangent vectors taking each value here to the value in `other`."""
        return VectorValues(
            {
                key: cast(jax.Array, charts.local(value, other.at(key, type(value))))
                for key, value in self._values.items()
            }
        )

    def __repr__(self) -> str:
        out_lines = [
            f"  {format_key(key)}: ".ljust(8) + f"{value},"
            for key, value in self._values.items()
        ]
        return "Values(\n" + "\n".join(out_lines) + "\n)"
