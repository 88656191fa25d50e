from __future__ import annotations

from collections.abc import Sequence

import numpy as onp
from frozendict import frozendict

from ._block_matrix import VerticalBlockMatrix
from ._keys import Key
from ._vector_values import VectorValues
from .errors import InvalidArgumentError, NotFoundError
from .noises import NoiseModelBase


class JacobianFactor:
    """A linear factor `||A x - b||^2`, stored as an augmented block matrix
    `[A_1 ... A_n | b]` with one block per key.

    The system is usually already whitened. `noise_model` is only set when the
    factor came from a constrained model, in which case it is the unit
    equivalent of that model and marks which rows are hard constraints."""

    def __init__(
        self,
        keys: Sequence[Key],
        ab: VerticalBlockMatrix,
        noise_model: NoiseModelBase | None = None,
    ) -> None:
        if len(keys) != ab.n_blocks - 1:
            raise InvalidArgumentError(
                f"Got {len(keys)} keys for a block matrix with"
                f" {ab.n_blocks - 1} variable blocks."
            )
        if noise_model is not None and noise_model.get_residual_dim() != ab.rows:
            raise InvalidArgumentError(
                "JacobianFactor was created with a noise model of incorrect dimension."
            )
        self.keys: tuple[Key, ...] = tuple(keys)
        self.ab = ab
        self.noise_model = noise_model
        self._block_from_key = frozendict(
            {key: i for i, key in enumerate(self.keys)}
        )

    @staticmethod
    def make(
        keys: Sequence[Key],
        dims: Sequence[int],
        rows: int,
        noise_model: NoiseModelBase | None = None,
    ) -> JacobianFactor:
        """Allocate a zeroed factor."""
        return JacobianFactor(keys, VerticalBlockMatrix(dims, rows), noise_model)

    def rows(self) -> int:
        return self.ab.rows

    def dims(self) -> dict[Key, int]:
        return {key: self.ab.block_num_cols[i] for i, key in enumerate(self.keys)}

    def get_A(self, key: Key) -> onp.ndarray:
        """Writable coefficient block for `key`."""
        try:
            return self.ab[self._block_from_key[key]]
        except KeyError:
            raise NotFoundError(key, "JacobianFactor") from None

    def get_b(self) -> onp.ndarray:
        """Writable right-hand side."""
        return self.ab.rhs()

    def jacobian(self) -> tuple[onp.ndarray, onp.ndarray]:
        """Dense `(A, b)`, with columns in key order."""
        return self.ab.to_dense()

    def multiply(self, x: VectorValues) -> onp.ndarray:
        """Compute `A x`."""
        return self.ab.matrix[:, :-1] @ x.vector_from_dims(self.dims())

    def unweighted_error(self, x: VectorValues) -> onp.ndarray:
        """Compute `A x - b`."""
        return self.multiply(x) - self.get_b()

    def error_vector(self, x: VectorValues) -> onp.ndarray:
        out = self.unweighted_error(x)
        if self.noise_model is not None:
            out = onp.asarray(self.noise_model.whiten_residual_vector(out))
        return out

    def error(self, x: VectorValues) -> float:
        """Compute `0.5 * ||A x - b||^2`, weighted by the noise model if set."""
        unweighted = self.unweighted_error(x)
        if self.noise_model is not None:
            return 0.5 * self.noise_model.distance(unweighted)
        return 0.5 * float(onp.dot(unweighted, unweighted))

    def gradient_at_zero(self) -> VectorValues:
        """Gradient of `error()` at `x = 0`, which is `-A^T b`."""
        A, b = self.jacobian()
        if self.noise_model is not None:
            b = onp.asarray(self.noise_model.whiten_residual_vector(b))
            A = onp.asarray(self.noise_model.whiten_jacobian(A, b))
        return VectorValues.from_vector(-A.T @ b, self.dims())

    def __repr__(self) -> str:
        A, b = self.jacobian()
        return f"JacobianFactor(keys={self.keys}, A={A}, b={b})"
