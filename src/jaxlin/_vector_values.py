from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Mapping, Sequence
from os import PathLike
from typing import Any

import numpy as onp

from ._keys import Key, format_key
from .errors import (
    AlreadyExistsError,
    DimensionMismatchError,
    InvalidArgumentError,
    NotFoundError,
)


def _as_vector(value: Any) -> onp.ndarray:
    """Copy an array-like into a fresh 1D float64 buffer."""
    out = onp.array(value, dtype=onp.float64)
    if out.ndim == 0:
        out = out.reshape((1,))
    if out.ndim != 1:
        raise InvalidArgumentError(
            f"VectorValues entries must be 1D, but got shape {out.shape}."
        )
    return out


class VectorValues:
    """A mapping from keys to vectors, with vector-space arithmetic that treats
    all stored vectors as one concatenated vector.

    There are two families of operations:

    - Standard operations (`insert()`, `insert_all()`, `erase()`,
      `try_insert()`) change the set of keys. These copy the internal key map
      and should be avoided in inner loops.
    - Fast operations (`at()`, `vv[key]`, `update()`, `set_zero()`, in-place
      arithmetic) read or overwrite existing entries. Arrays returned by
      `at()` are the stored buffers: writing into them is immediately visible
      and never moves other entries.

    The efficient way to build a store for an inner loop is to pre-size it,
    with `VectorValues.zero(other)` or `VectorValues.from_vector(flat, dims)`.

    Binary arithmetic requires both operands to have the same structure (same
    keys with the same dimensions); entries are aligned by key and results
    follow the left operand's ordering.

    Thread-safety: lookups never take a lock. Changes to the set of keys swap
    in a new dictionary under a lock, so iteration in other threads keeps
    walking the snapshot it started with. Writing the same key from several
    threads without external coordination is up to the caller.
    """

    def __init__(
        self,
        values: Mapping[Key, Any] | Iterable[tuple[Key, Any]] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._values: dict[Key, onp.ndarray] = {}
        if values is None:
            return

        items = values.items() if isinstance(values, Mapping) else values
        out = dict[Key, onp.ndarray]()
        for key, value in items:
            if key in out:
                raise AlreadyExistsError(key, "VectorValues")
            out[key] = _as_vector(value)
        self._values = out

    # Constructors.

    @staticmethod
    def merge(first: VectorValues, second: VectorValues) -> VectorValues:
        """Merge two stores with disjoint keys into a new one."""
        out = first.copy()
        out.insert_all(second)
        return out

    @staticmethod
    def zero(other: VectorValues) -> VectorValues:
        """Create a store with the structure of `other`, filled with zeros."""
        out = VectorValues()
        out._values = {
            key: onp.zeros_like(value) for key, value in other._values.items()
        }
        return out

    @staticmethod
    def from_vector(flat: Any, dims: Mapping[Key, int]) -> VectorValues:
        """Split a flat vector into a store, following an ordered key -> dim
        mapping."""
        flat = onp.asarray(flat, dtype=onp.float64)
        total_dim = sum(dims.values())
        if flat.shape != (total_dim,):
            raise InvalidArgumentError(
                f"Vector of shape {flat.shape} does not match the {total_dim}"
                " total dimensions requested."
            )

        out = VectorValues()
        offset = 0
        for key, dim in dims.items():
            out._values[key] = flat[offset : offset + dim].copy()
            offset += dim
        assert offset == total_dim
        return out

    def copy(self) -> VectorValues:
        """Deep copy."""
        out = VectorValues()
        out._values = {key: value.copy() for key, value in self._values.items()}
        return out

    # Lookup.

    def size(self) -> int:
        """Number of stored vectors."""
        return len(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def dim(self, key: Key) -> int:
        """Dimension of the vector stored for `key`."""
        return self.at(key).shape[0]

    def dims(self) -> dict[Key, int]:
        """Dimension of each stored vector, in iteration order."""
        return {key: value.shape[0] for key, value in self._values.items()}

    def exists(self, key: Key) -> bool:
        return key in self._values

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def at(self, key: Key) -> onp.ndarray:
        """Stored vector for `key`. The returned array can be written to."""
        try:
            return self._values[key]
        except KeyError:
            raise NotFoundError(key, "VectorValues") from None

    def __getitem__(self, key: Key) -> onp.ndarray:
        return self.at(key)

    def __setitem__(self, key: Key, value: Any) -> None:
        """Replace the vector of an existing key."""
        if key not in self._values:
            raise NotFoundError(key, "VectorValues")
        self._assign(key, _as_vector(value))

    def _assign(self, key: Key, vector: onp.ndarray) -> None:
        # Same shape: write into the stored buffer, so arrays returned by
        # `at()` stay live. Otherwise swap in a new map, like `insert()`.
        existing = self._values.get(key)
        if existing is not None and existing.shape == vector.shape:
            existing[...] = vector
            return
        with self._lock:
            if key not in self._values:
                raise NotFoundError(key, "VectorValues")
            values = dict(self._values)
            values[key] = vector.copy()
            self._values = values

    def keys(self) -> list[Key]:
        return list(self._values.keys())

    def items(self) -> list[tuple[Key, onp.ndarray]]:
        return list(self._values.items())

    def __iter__(self) -> Iterator[Key]:
        # Iterate over a snapshot; inserts and erases replace the dictionary.
        return iter(tuple(self._values))

    # Mutation.

    def insert(self, key: Key, value: Any) -> onp.ndarray:
        """Insert a new vector. Raises `AlreadyExistsError` if `key` is
        present. Copies the key map; do not call in inner loops."""
        vector = _as_vector(value)
        with self._lock:
            if key in self._values:
                raise AlreadyExistsError(key, "VectorValues")
            values = dict(self._values)
            values[key] = vector
            self._values = values
        return vector

    def try_insert(self, key: Key, value: Any) -> tuple[onp.ndarray, bool]:
        """Insert if `key` is absent. Returns the stored vector and whether an
        insertion happened."""
        with self._lock:
            existing = self._values.get(key)
            if existing is not None:
                return existing, False
            vector = _as_vector(value)
            values = dict(self._values)
            values[key] = vector
            self._values = values
        return vector, True

    def insert_all(self, other: VectorValues) -> None:
        """Insert every entry of `other`.

        All-or-nothing: if any key of `other` already exists, nothing is
        inserted and `AlreadyExistsError` names the first conflicting key."""
        with self._lock:
            for key in other._values:
                if key in self._values:
                    raise AlreadyExistsError(key, "VectorValues")
            values = dict(self._values)
            for key, value in other._values.items():
                values[key] = value.copy()
            self._values = values

    def update(self, other: VectorValues) -> None:
        """Overwrite the vectors of every key in `other`. All keys must already
        exist; if one is missing, nothing is written."""
        for key in other._values:
            if key not in self._values:
                raise NotFoundError(key, "VectorValues")
        for key, value in other._values.items():
            self._assign(key, value)

    def erase(self, key: Key) -> None:
        with self._lock:
            if key not in self._values:
                raise NotFoundError(key, "VectorValues")
            values = dict(self._values)
            del values[key]
            self._values = values

    def set_zero(self) -> None:
        """Zero every stored vector, in place."""
        for value in self._values.values():
            value.fill(0.0)

    # Flattening.

    def vector(self, keys: Sequence[Key] | None = None) -> onp.ndarray:
        """Concatenate stored vectors: all of them in iteration order, or the
        ones in `keys`, in that order."""
        if keys is None:
            parts = list(self._values.values())
        else:
            parts = [self.at(key) for key in keys]
        if len(parts) == 0:
            return onp.zeros((0,))
        return onp.concatenate(parts, axis=0)

    def vector_from_dims(self, dims: Mapping[Key, int]) -> onp.ndarray:
        """Concatenate stored vectors following an ordered key -> dim mapping.
        Dimensions are checked against what is stored."""
        parts = list[onp.ndarray]()
        for key, dim in dims.items():
            value = self.at(key)
            if value.shape[0] != dim:
                raise DimensionMismatchError(
                    f"Variable '{format_key(key)}' has dimension {value.shape[0]},"
                    f" but {dim} was requested."
                )
            parts.append(value)
        if len(parts) == 0:
            return onp.zeros((0,))
        return onp.concatenate(parts, axis=0)

    # Comparison.

    def has_same_structure(self, other: VectorValues) -> bool:
        """True if both stores hold the same keys with the same dimensions.
        Ordering is not compared."""
        if len(self._values) != len(other._values):
            return False
        for key, value in self._values.items():
            other_value = other._values.get(key)
            if other_value is None or other_value.shape != value.shape:
                return False
        return True

    def equals(self, other: VectorValues, tol: float = 1e-9) -> bool:
        """Same structure, and every element within `tol`."""
        if not self.has_same_structure(other):
            return False
        return all(
            bool(onp.all(onp.abs(value - other._values[key]) <= tol))
            for key, value in self._values.items()
        )

    def _check_same_structure(self, other: VectorValues, op: str) -> None:
        if len(self._values) != len(other._values):
            raise DimensionMismatchError(
                f"VectorValues::{op} called with a VectorValues of a different"
                f" structure ({len(self._values)} vs {len(other._values)} entries)."
            )
        for key, value in self._values.items():
            other_value = other._values.get(key)
            if other_value is None or other_value.shape != value.shape:
                raise DimensionMismatchError(
                    f"VectorValues::{op} called with a VectorValues of a different"
                    f" structure, at variable '{format_key(key)}'."
                )

    # Vector-space operations.

    def dot(self, other: VectorValues) -> float:
        self._check_same_structure(other, "dot")
        return float(
            sum(
                onp.dot(value, other._values[key])
                for key, value in self._values.items()
            )
        )

    def squared_norm(self) -> float:
        return float(sum(onp.dot(value, value) for value in self._values.values()))

    def norm(self) -> float:
        return float(onp.sqrt(self.squared_norm()))

    def add(self, other: VectorValues) -> VectorValues:
        self._check_same_structure(other, "add")
        out = VectorValues()
        out._values = {
            key: value + other._values[key] for key, value in self._values.items()
        }
        return out

    def __add__(self, other: VectorValues) -> VectorValues:
        return self.add(other)

    def subtract(self, other: VectorValues) -> VectorValues:
        self._check_same_structure(other, "subtract")
        out = VectorValues()
        out._values = {
            key: value - other._values[key] for key, value in self._values.items()
        }
        return out

    def __sub__(self, other: VectorValues) -> VectorValues:
        return self.subtract(other)

    def scale(self, alpha: float) -> VectorValues:
        out = VectorValues()
        out._values = {key: alpha * value for key, value in self._values.items()}
        return out

    def __mul__(self, alpha: float) -> VectorValues:
        return self.scale(alpha)

    def __rmul__(self, alpha: float) -> VectorValues:
        return self.scale(alpha)

    def __neg__(self) -> VectorValues:
        return self.scale(-1.0)

    def add_in_place(self, other: VectorValues) -> VectorValues:
        self._check_same_structure(other, "add_in_place")
        for key, value in self._values.items():
            value += other._values[key]
        return self

    def __iadd__(self, other: VectorValues) -> VectorValues:
        return self.add_in_place(other)

    def add_in_place_(self, other: VectorValues) -> VectorValues:
        """Like `add_in_place()`, but keys missing from `self` are inserted
        instead of raising. Slower; meant for partially filled accumulators."""
        for key, value in other._values.items():
            existing, inserted = self.try_insert(key, value)
            if inserted:
                continue
            if existing.shape != value.shape:
                raise DimensionMismatchError(
                    f"Variable '{format_key(key)}' has dimension {existing.shape[0]}"
                    f" here and {value.shape[0]} in the added VectorValues."
                )
            existing += value
        return self

    def scale_in_place(self, alpha: float) -> VectorValues:
        for value in self._values.values():
            value *= alpha
        return self

    def __imul__(self, alpha: float) -> VectorValues:
        return self.scale_in_place(alpha)

    # Persistence.

    def save(self, path: str | PathLike[str]) -> None:
        """Write keys, dimensions and values to a `.npz` archive."""
        values = self._values
        onp.savez(
            path,
            keys=onp.array(list(values.keys()), dtype=onp.uint64),
            dims=onp.array([v.shape[0] for v in values.values()], dtype=onp.int64),
            values=self.vector(list(values.keys())),
        )

    @staticmethod
    def load(path: str | PathLike[str]) -> VectorValues:
        """Read an archive written by `save()`."""
        with onp.load(path) as archive:
            keys = [int(key) for key in archive["keys"]]
            dims = [int(dim) for dim in archive["dims"]]
            flat = archive["values"]
        return VectorValues.from_vector(flat, dict(zip(keys, dims)))

    def __repr__(self) -> str:
        out_lines = [
            f"  {format_key(key)}: ".ljust(8) + f"{value},"
            for key, value in self._values.items()
        ]
        return "VectorValues(\n" + "\n".join(out_lines) + "\n)"
