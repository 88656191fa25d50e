from __future__ import annotations

import abc

import jax
import numpy as onp
from jax import numpy as jnp
from overrides import EnforceOverrides, final


class NoiseModelBase(abc.ABC, EnforceOverrides):
    @abc.abstractmethod
    def get_residual_dim(self) -> int:
        pass

    @abc.abstractmethod
    def whiten_residual_vector(self, residual_vector: jax.Array) -> jax.Array:
        pass

    @abc.abstractmethod
    def whiten_jacobian(
        self,
        jacobian: jax.Array,
        residual_vector: jax.Array,
    ) -> jax.Array:
        pass

    def is_constrained(self) -> bool:
        """Constrained models have rows that can't be whitened by scaling. Their
        linearized factors carry a unit model instead."""
        return False

    def distance(self, residual_vector: jax.Array) -> float:
        """Squared Mahalanobis distance of an unwhitened residual."""
        whitened = self.whiten_residual_vector(residual_vector)
        return float(jnp.sum(whitened**2))

    @final
    def whiten_system(self, ab: onp.ndarray) -> None:
        """Whiten an augmented system `[A | b]`, in place. `b` is the last
        column."""
        assert ab.ndim == 2 and ab.shape[0] == self.get_residual_dim()
        b = onp.array(ab[:, -1])
        ab[:, :-1] = onp.asarray(self.whiten_jacobian(ab[:, :-1], b))
        ab[:, -1] = onp.asarray(self.whiten_residual_vector(b))
