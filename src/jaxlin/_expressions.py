from __future__ import annotations

import abc
import dataclasses
import operator
from collections.abc import Callable, Mapping
from typing import Any, Generic, Literal, TypeVar, assert_never

import jax
from jax import numpy as jnp
from overrides import EnforceOverrides, final, overrides

from . import charts
from ._block_matrix import JacobianMap
from ._keys import Key, format_key
from ._values import Values
from .errors import DimensionMismatchError, InvalidArgumentError, NotFoundError

T = TypeVar("T")

JacMode = Literal["auto", "forward", "reverse"]


class Expression(abc.ABC, Generic[T], EnforceOverrides):
    """A differentiable function of keyed variables.

    Subclasses describe the computation with `leaves()` and `evaluate()`, which
    should be written in JAX. Values and Jacobians are then available through
    `value()`:

        x = leaf(symbol("x", 0), 2)
        expr = 2.0 * x + x
        expr.value(vals)                     # Value only.
        expr.value(vals, jacobian_map)       # Value, and Jacobians added to the map.

    Jacobians are taken with respect to the tangent coordinates of each leaf,
    and expressed in the tangent coordinates of the output at its current
    value. For vector-valued expressions this is the usual Jacobian.
    """

    # (1) Functions that must be overriden in subclasses.

    @abc.abstractmethod
    def leaves(self) -> tuple[LeafExpression[Any], ...]:
        """All leaves of the expression. A key may appear more than once."""

    @abc.abstractmethod
    def evaluate(self, leaf_values: Mapping[Key, Any]) -> T:
        """Compute the expression from leaf values. Must be traceable by JAX."""

    # (2) Shared implementations.

    @final
    def keys_and_dims(self) -> tuple[tuple[Key, ...], tuple[int, ...]]:
        """Keys this expression depends on, in ascending order, and the tangent
        dimension of each."""
        dim_from_key = dict[Key, int]()
        for leaf_expr in self.leaves():
            dim = dim_from_key.setdefault(leaf_expr.key, leaf_expr.dim)
            if dim != leaf_expr.dim:
                raise InvalidArgumentError(
                    f"Variable '{format_key(leaf_expr.key)}' is used with"
                    f" dimensions {dim} and {leaf_expr.dim} in the same expression."
                )
        keys = tuple(sorted(dim_from_key))
        return keys, tuple(dim_from_key[key] for key in keys)

    @final
    def keys(self) -> tuple[Key, ...]:
        return self.keys_and_dims()[0]

    @final
    def value(
        self,
        values: Values,
        jacobians: JacobianMap | None = None,
        jac_mode: JacMode = "reverse",
        origin: Any = None,
    ) -> T:
        """Evaluate the expression at `values`. If `jacobians` is passed, the
        Jacobian for each key is added to its block.

        Jacobians are of `local(origin, h(x))`. `origin` defaults to the
        current value of the expression; factors pass their measurement.

        Raises `NotFoundError` if a key is missing from `values`. Nothing is
        written to `jacobians` unless evaluation succeeds."""
        leaf_values = self._fetch_leaf_values(values)
        if jacobians is None:
            return self.evaluate(leaf_values)

        keys, dims = self.keys_and_dims()
        for key in keys:
            if key not in jacobians:
                raise NotFoundError(key, "JacobianMap")

        out, blocks = _compute_value_and_jacobians(
            self, leaf_values, keys, dims, jac_mode, origin
        )
        for key, block in zip(keys, blocks):
            jacobians.add(key, block)
        return out

    @final
    def _fetch_leaf_values(self, values: Values) -> dict[Key, Any]:
        leaf_values = dict[Key, Any]()
        for leaf_expr in self.leaves():
            if leaf_expr.key not in leaf_values:
                leaf_values[leaf_expr.key] = leaf_expr.fetch(values)
        return leaf_values

    # (3) Operator sugar. Constants are wrapped automatically.

    def __add__(self, other: Any) -> FunctionExpression[Any]:
        return apply(operator.add, self, other)

    def __radd__(self, other: Any) -> FunctionExpression[Any]:
        return apply(operator.add, other, self)

    def __sub__(self, other: Any) -> FunctionExpression[Any]:
        return apply(operator.sub, self, other)

    def __rsub__(self, other: Any) -> FunctionExpression[Any]:
        return apply(operator.sub, other, self)

    def __mul__(self, other: Any) -> FunctionExpression[Any]:
        return apply(operator.mul, self, other)

    def __rmul__(self, other: Any) -> FunctionExpression[Any]:
        return apply(operator.mul, other, self)

    def __matmul__(self, other: Any) -> FunctionExpression[Any]:
        """Matrix product, group composition, or group action on a point."""
        return apply(operator.matmul, self, other)

    def __rmatmul__(self, other: Any) -> FunctionExpression[Any]:
        return apply(operator.matmul, other, self)

    def __neg__(self) -> FunctionExpression[Any]:
        return apply(operator.neg, self)


@dataclasses.dataclass(frozen=True, eq=False)
class LeafExpression(Expression[T]):
    """A variable. `value_type` is either an integer (the variable is a vector
    of that length) or a `jaxlie` group class."""

    key: Key
    value_type: int | type

    @property
    def dim(self) -> int:
        """Tangent dimension of the variable."""
        if isinstance(self.value_type, int):
            return self.value_type
        return charts.dimension(self.value_type)

    def fetch(self, values: Values) -> T:
        """Look up and check the value of this variable."""
        if charts.is_lie_group(self.value_type):
            return values.at(self.key, self.value_type)  # type: ignore

        value = values.at(self.key, jax.Array)
        if value.shape != (self.dim,):
            raise DimensionMismatchError(
                f"Variable '{format_key(self.key)}' has shape {value.shape},"
                f" expected ({self.dim},)."
            )
        return value  # type: ignore

    @overrides
    def leaves(self) -> tuple[LeafExpression[Any], ...]:
        return (self,)

    @overrides
    def evaluate(self, leaf_values: Mapping[Key, Any]) -> T:
        return leaf_values[self.key]


@dataclasses.dataclass(frozen=True, eq=False)
class ConstantExpression(Expression[T]):
    """A fixed value, with no Jacobians."""

    constant: T

    @overrides
    def leaves(self) -> tuple[LeafExpression[Any], ...]:
        return ()

    @overrides
    def evaluate(self, leaf_values: Mapping[Key, Any]) -> T:
        return self.constant


@dataclasses.dataclass(frozen=True, eq=False)
class FunctionExpression(Expression[T]):
    """Apply a JAX function to the values of child expressions."""

    fn: Callable[..., T]
    children: tuple[Expression[Any], ...]

    @overrides
    def leaves(self) -> tuple[LeafExpression[Any], ...]:
        out = list[LeafExpression[Any]]()
        for child in self.children:
            out.extend(child.leaves())
        return tuple(out)

    @overrides
    def evaluate(self, leaf_values: Mapping[Key, Any]) -> T:
        return self.fn(*[child.evaluate(leaf_values) for child in self.children])


def _as_expression(value: Any) -> Expression[Any]:
    if isinstance(value, Expression):
        return value
    if charts.is_lie_group(value):
        return ConstantExpression(value)
    return ConstantExpression(jnp.asarray(value, dtype=float))


def leaf(key: Key, value_type: int | type) -> LeafExpression[Any]:
    """Expression for a single variable."""
    return LeafExpression(key, value_type)


def constant(value: T) -> ConstantExpression[T]:
    return ConstantExpression(value)


def apply(fn: Callable[..., Any], *args: Any) -> FunctionExpression[Any]:
    """Expression computing `fn(*args)`. Arguments that are not expressions
    are treated as constants."""
    return FunctionExpression(fn, tuple(_as_expression(arg) for arg in args))


def inverse(expr: Expression[Any]) -> FunctionExpression[Any]:
    """Group inverse."""
    return apply(lambda x: x.inverse(), expr)


def between(a: Expression[Any], b: Expression[Any]) -> FunctionExpression[Any]:
    """Relative transform `a^-1 @ b`."""
    return apply(lambda x, y: x.inverse() @ y, a, b)


def _compute_value_and_jacobians(
    expr: Expression[Any],
    leaf_values: Mapping[Key, Any],
    keys: tuple[Key, ...],
    dims: tuple[int, ...],
    jac_mode: JacMode,
    origin: Any = None,
) -> tuple[Any, tuple[jax.Array, ...]]:
    """Value of an expression, and the Jacobian of its local coordinates at
    `origin` wrt each key's tangent space.

    Shape of each Jacobian is (output tangent dim, key tangent dim)."""
    value = expr.evaluate(leaf_values)
    if len(keys) == 0:
        return value, ()
    if origin is None:
        origin = value

    def local_output(deltas: tuple[jax.Array, ...]) -> jax.Array:
        perturbed = dict(leaf_values)
        for key, delta in zip(keys, deltas):
            perturbed[key] = charts.retract(leaf_values[key], delta)
        return charts.local(origin, expr.evaluate(perturbed))

    match jac_mode:
        case "auto":
            jacfwd_or_jacrev = (
                jax.jacrev if charts.dimension(value) < sum(dims) else jax.jacfwd
            )
        case "forward":
            jacfwd_or_jacrev = jax.jacfwd
        case "reverse":
            jacfwd_or_jacrev = jax.jacrev
        case _:
            assert_never(jac_mode)

    blocks = jacfwd_or_jacrev(local_output)(tuple(jnp.zeros((dim,)) for dim in dims))
    assert len(blocks) == len(keys)
    return value, tuple(blocks)
