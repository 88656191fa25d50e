from __future__ import annotations

from typing import Sequence

import jax
import jax_dataclasses as jdc
from jax import numpy as jnp
from overrides import overrides

from ._noise_model_base import NoiseModelBase


@jdc.pytree_dataclass
class Constrained(NoiseModelBase):
    """Diagonal noise model where some rows are hard constraints.

    A sigma of zero marks a hard constraint. Soft rows are whitened by dividing
    by their sigma; hard rows are left unscaled, since they can't be whitened by
    scaling. Linearized factors carry `unit()` so that the hard rows stay
    identifiable downstream."""

    sigmas: jax.Array
    """Per-row standard deviations. Zero for hard constraints."""

    mu: jdc.Static[float] = 1000.0
    """Penalty weight on hard rows when computing `distance()`."""

    @staticmethod
    def make_from_sigmas(
        sigmas: jax.Array | Sequence[float], mu: float = 1000.0
    ) -> Constrained:
        return Constrained(sigmas=jnp.asarray(sigmas, dtype=float), mu=mu)

    @staticmethod
    def make_all(dim: int, mu: float = 1000.0) -> Constrained:
        """Fully constrained model."""
        return Constrained(sigmas=jnp.zeros(dim), mu=mu)

    def _hard_mask(self) -> jax.Array:
        return self.sigmas == 0.0

    def _inv_sigmas(self) -> jax.Array:
        hard = self._hard_mask()
        return jnp.where(hard, 1.0, 1.0 / jnp.where(hard, 1.0, self.sigmas))

    def unit(self) -> Constrained:
        """Same constraint pattern, with unit sigmas on soft rows."""
        return Constrained(
            sigmas=jnp.where(self._hard_mask(), 0.0, 1.0),
            mu=self.mu,
        )

    @overrides
    def is_constrained(self) -> bool:
        return True

    @overrides
    def get_residual_dim(self) -> int:
        return self.sigmas.shape[-1]

    @overrides
    def whiten_residual_vector(self, residual_vector: jax.Array) -> jax.Array:
        assert residual_vector.shape == self.sigmas.shape
        return self._inv_sigmas() * residual_vector

    @overrides
    def whiten_jacobian(
        self,
        jacobian: jax.Array,
        residual_vector: jax.Array,  # Unused
    ) -> jax.Array:
        assert len(jacobian.shape) == 2 and jacobian.shape[0] == self.sigmas.shape[0]
        return self._inv_sigmas()[:, None] * jacobian

    @overrides
    def distance(self, residual_vector: jax.Array) -> float:
        whitened = self.whiten_residual_vector(residual_vector)
        weights = jnp.where(self._hard_mask(), self.mu, 1.0)
        return float(jnp.sum(weights * whitened**2))
