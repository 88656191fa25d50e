from __future__ import annotations

from typing import Sequence

import jax
import jax_dataclasses as jdc
from jax import numpy as jnp
from overrides import overrides

from ._noise_model_base import NoiseModelBase


@jdc.pytree_dataclass
class Gaussian(NoiseModelBase):
    sqrt_precision_matrix: jax.Array
    """Square root precision matrix `R`, such that `R^T R` is the precision
    matrix. Lower-triangular when built from a covariance."""

    @staticmethod
    def make_from_covariance(covariance: jax.Array) -> Gaussian:
        covariance = jnp.asarray(covariance, dtype=float)
        assert (
            len(covariance.shape) == 2 and covariance.shape[0] == covariance.shape[1]
        ), "Covariance must be a square matrix!"
        return Gaussian(
            sqrt_precision_matrix=jnp.linalg.inv(jnp.linalg.cholesky(covariance))
        )

    @staticmethod
    def make_from_sqrt_information(sqrt_information: jax.Array) -> Gaussian:
        sqrt_information = jnp.asarray(sqrt_information, dtype=float)
        assert len(sqrt_information.shape) == 2
        return Gaussian(sqrt_precision_matrix=sqrt_information)

    @overrides
    def get_residual_dim(self) -> int:
        return self.sqrt_precision_matrix.shape[-1]

    @overrides
    def whiten_residual_vector(self, residual_vector: jax.Array) -> jax.Array:
        return jnp.einsum("ij,j->i", self.sqrt_precision_matrix, residual_vector)

    @overrides
    def whiten_jacobian(
        self,
        jacobian: jax.Array,
        residual_vector: jax.Array,  # Unused
    ) -> jax.Array:
        return jnp.einsum("ij,jk->ik", self.sqrt_precision_matrix, jacobian)


@jdc.pytree_dataclass
class DiagonalGaussian(NoiseModelBase):
    sqrt_precision_diagonal: jax.Array
    """Diagonal elements of square root precision matrix."""

    @staticmethod
    def make_from_covariance(
        diagonal: jax.Array | Sequence[float],
    ) -> DiagonalGaussian:
        return DiagonalGaussian(
            sqrt_precision_diagonal=1.0 / jnp.sqrt(jnp.asarray(diagonal, dtype=float))
        )

    @staticmethod
    def make_from_sigmas(sigmas: jax.Array | Sequence[float]) -> DiagonalGaussian:
        return DiagonalGaussian(
            sqrt_precision_diagonal=1.0 / jnp.asarray(sigmas, dtype=float)
        )

    @staticmethod
    def make_isotropic(dim: int, sigma: float) -> DiagonalGaussian:
        return DiagonalGaussian(sqrt_precision_diagonal=jnp.full(dim, 1.0 / sigma))

    @staticmethod
    def make_unit(dim: int) -> DiagonalGaussian:
        return DiagonalGaussian(sqrt_precision_diagonal=jnp.ones(dim))

    @overrides
    def get_residual_dim(self) -> int:
        return self.sqrt_precision_diagonal.shape[-1]

    @overrides
    def whiten_residual_vector(self, residual_vector: jax.Array) -> jax.Array:
        assert residual_vector.shape == self.sqrt_precision_diagonal.shape
        return self.sqrt_precision_diagonal * residual_vector

    @overrides
    def whiten_jacobian(
        self,
        jacobian: jax.Array,
        residual_vector: jax.Array,  # Unused
    ) -> jax.Array:
        assert len(jacobian.shape) == 2
        assert (
            residual_vector.shape
            == self.sqrt_precision_diagonal.shape
            == (jacobian.shape[0],)
        )
        return self.sqrt_precision_diagonal[:, None] * jacobian
