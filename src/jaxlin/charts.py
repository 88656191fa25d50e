"""Default charts: how values are compared and perturbed in local (tangent)
coordinates.

Array-like values use vector subtraction and addition. `jaxlie` groups use
right-multiplicative retraction, `x @ exp(delta)`, and its inverse.
"""

from __future__ import annotations

from typing import Any, TypeVar

import jax
import jaxlie
import numpy as onp
from jax import numpy as jnp

T = TypeVar("T")


def is_lie_group(value_or_type: Any) -> bool:
    if isinstance(value_or_type, type):
        return issubclass(value_or_type, jaxlie.MatrixLieGroup)
    return isinstance(value_or_type, jaxlie.MatrixLieGroup)


def dimension(value_or_type: Any) -> int:
    """Tangent dimension of a value. Groups can also be passed as classes."""
    if is_lie_group(value_or_type):
        return value_or_type.tangent_dim
    return int(onp.size(value_or_type))


def local(origin: T, value: T) -> jax.Array:
    """Coordinates of `value` in the tangent space at `origin`. For vectors,
    this is `value - origin`."""
    if is_lie_group(origin):
        return jaxlie.manifold.rminus(origin, value)  # type: ignore
    return jnp.ravel(jnp.asarray(value, dtype=float)) - jnp.ravel(
        jnp.asarray(origin, dtype=float)
    )


def retract(origin: T, delta: jax.Array) -> T:
    """Move `origin` by a tangent vector. Inverse of `local()`."""
    if is_lie_group(origin):
        return jaxlie.manifold.rplus(origin, delta)  # type: ignore
    origin_array = jnp.asarray(origin, dtype=float)
    return origin_array + jnp.reshape(delta, origin_array.shape)  # type: ignore
