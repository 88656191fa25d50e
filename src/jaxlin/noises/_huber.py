from __future__ import annotations

import jax
import jax_dataclasses as jdc
from jax import numpy as jnp
from overrides import overrides

from ._noise_model_base import NoiseModelBase


@jdc.pytree_dataclass
class HuberWrapper(NoiseModelBase):
    """Wrapper for applying a Huber loss to standard (eg Gaussian) noise models.

    Residuals whose whitened norm exceeds `delta` are downweighted by
    `sqrt(delta / norm)`."""

    wrapped: NoiseModelBase
    """Underlying noise model."""

    delta: float | jax.Array
    """Threshold parameter for Huber loss. Applied _after_ the wrapped noise model."""

    def _weight(self, residual_vector: jax.Array) -> jax.Array:
        residual_norm = jnp.linalg.norm(
            self.wrapped.whiten_residual_vector(residual_vector)
        )
        return jnp.where(
            residual_norm <= self.delta,
            1.0,
            jnp.sqrt(self.delta / jnp.maximum(residual_norm, 1e-12)),
        )

    @overrides
    def get_residual_dim(self) -> int:
        return self.wrapped.get_residual_dim()

    @overrides
    def whiten_residual_vector(self, residual_vector: jax.Array) -> jax.Array:
        return self.wrapped.whiten_residual_vector(residual_vector) * self._weight(
            residual_vector
        )

    @overrides
    def whiten_jacobian(
        self,
        jacobian: jax.Array,
        residual_vector: jax.Array,
    ) -> jax.Array:
        return self.wrapped.whiten_jacobian(jacobian, residual_vector) * self._weight(
            residual_vector
        )
