from __future__ import annotations

from collections.abc import MutableSequence
from typing import Any, Generic, TypeVar, cast

import jax
import numpy as onp
from loguru import logger

from . import charts
from ._block_matrix import JacobianMap, VerticalBlockMatrix
from ._expressions import Expression, JacMode
from ._jacobian_factor import JacobianFactor
from ._keys import Key, format_key
from ._values import Values
from .errors import DimensionMismatchError, InvalidArgumentError
from .noises import Constrained, NoiseModelBase

T = TypeVar("T")


class ExpressionFactor(Generic[T]):
    """Factor comparing the value of an expression to a measurement.

    The error is `local(measurement, h(x))`: the difference between the
    expression value and the measurement, in the tangent space of the
    measurement. For vectors, this is just `h(x) - measurement`.

    Jacobians come from autodiff through the expression (reverse-mode by
    default), so nothing needs to be derived by hand:

        x = jaxlin.leaf(jaxlin.symbol("x", 0), jaxlie.SE2)
        factor = jaxlin.ExpressionFactor(
            jaxlin.noises.DiagonalGaussian.make_from_sigmas([0.1, 0.1, 0.05]),
            measured_pose,
            x,
        )
        linear_factor = factor.linearize(vals)

    Factors hold no mutable state. `linearize()` and `unwhitened_error()` can
    be called concurrently, as long as each call gets its own output buffers.
    """

    def __init__(
        self,
        noise_model: NoiseModelBase | None,
        measurement: T,
        expression: Expression[T],
        jac_mode: JacMode = "reverse",
    ) -> None:
        if noise_model is None:
            raise InvalidArgumentError("ExpressionFactor: no NoiseModel.")

        self._dim = charts.dimension(measurement)
        if noise_model.get_residual_dim() != self._dim:
            raise InvalidArgumentError(
                "ExpressionFactor was created with a NoiseModel of incorrect"
                f" dimension: {noise_model.get_residual_dim()}, expected {self._dim}."
            )

        self.noise_model = noise_model
        self.measurement = measurement
        self.expression = expression
        self.jac_mode: JacMode = jac_mode

        # Expressions are immutable, so keys and dimensions only need to be
        # read once.
        keys, dims = expression.keys_and_dims()
        self.keys: tuple[Key, ...] = keys
        self.dims: tuple[int, ...] = dims
        self.augmented_cols = sum(dims) + 1
        """Total number of Jacobian columns, plus one for the right-hand side."""

        logger.debug(
            "ExpressionFactor on [{}]: dims {} -> {}x{}",
            ", ".join(format_key(key) for key in keys),
            dims,
            self._dim,
            self.augmented_cols,
        )

    def dim(self) -> int:
        """Dimension of the error vector."""
        return self._dim

    def size(self) -> int:
        """Number of keys."""
        return len(self.keys)

    def active(self, values: Values) -> bool:
        """Inactive factors are skipped by `linearize()`. Override to add a
        validity condition."""
        return True

    def _local(self, value: T) -> jax.Array:
        error = charts.local(self.measurement, value)
        if error.shape != (self._dim,):
            raise DimensionMismatchError(
                f"Expression error has shape {error.shape}, but the measurement"
                f" has dimension {self._dim}."
            )
        return error

    def unwhitened_error(
        self,
        values: Values,
        jacobians: MutableSequence[Any] | None = None,
    ) -> jax.Array:
        """Error without the noise model, `h(x) - z`.

        If `jacobians` is passed, it should have one slot per key; each slot is
        overwritten with the Jacobian of the error wrt that key. Slots are only
        written once evaluation has succeeded."""
        if jacobians is None:
            return self._local(self.expression.value(values))

        if len(jacobians) != self.size():
            raise InvalidArgumentError(
                f"Expected {self.size()} Jacobian slots, got {len(jacobians)}."
            )

        ab = VerticalBlockMatrix(self.dims, self._dim)
        jacobian_map = JacobianMap(self.keys, ab)
        ab.set_zero()

        # Reverse-mode autodiff happens here. Jacobians are taken in the tangent
        # space of the measurement, which is where the error lives.
        value = self.expression.value(
            values, jacobian_map, jac_mode=self.jac_mode, origin=self.measurement
        )
        error = self._local(value)

        for i in range(self.size()):
            jacobians[i] = ab[i].copy()
        return error

    def whitened_error(self, values: Values) -> jax.Array:
        return self.noise_model.whiten_residual_vector(self.unwhitened_error(values))

    def error(self, values: Values) -> float:
        """Compute `0.5 * distance`, where distance is the squared
        Mahalanobis norm of the error."""
        if not self.active(values):
            return 0.0
        return 0.5 * self.noise_model.distance(self.unwhitened_error(values))

    def linearize(self, values: Values) -> JacobianFactor | None:
        """Linearize around `values`. Returns `None` if the factor is inactive.

        The result holds the whitened system `[A | b]`, with `b` set to the
        negated error. Constrained models are whitened too: soft rows are scaled
        by their sigmas and hard rows are left as is."""
        if not self.active(values):
            logger.debug(
                "Skipping inactive ExpressionFactor on [{}]",
                ", ".join(format_key(key) for key in self.keys),
            )
            return None

        # Constrained models can't be folded into the system by scaling, so the
        # linear factor keeps their unit equivalent.
        factor = JacobianFactor.make(
            self.keys,
            self.dims,
            self._dim,
            noise_model=(
                cast(Constrained, self.noise_model).unit()
                if self.noise_model.is_constrained()
                else None
            ),
        )
        ab = factor.ab
        jacobian_map = JacobianMap(self.keys, ab)
        ab.set_zero()

        # Reverse-mode autodiff happens here. Jacobians are taken in the tangent
        # space of the measurement, which is where the error lives.
        value = self.expression.value(
            values, jacobian_map, jac_mode=self.jac_mode, origin=self.measurement
        )
        ab.rhs()[:] = -onp.asarray(self._local(value))

        # Whiten the system. Jacobian blocks and right-hand side are updated
        # together.
        self.noise_model.whiten_system(ab.matrix)
        return factor
