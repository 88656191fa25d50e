import jax
import numpy as onp
import pytest
from jax import numpy as jnp

import jaxlin
from jaxlin.noises import Constrained, DiagonalGaussian, Gaussian, HuberWrapper


def _system() -> onp.ndarray:
    return onp.arange(12.0).reshape((3, 4)) + 1.0


def test_diagonal_whiten_system():
    noise = DiagonalGaussian.make_from_sigmas([0.5, 2.0, 1.0])
    ab = _system()
    noise.whiten_system(ab)
    onp.testing.assert_allclose(ab, _system() * onp.array([2.0, 0.5, 1.0])[:, None])


def test_diagonal_constructors():
    from_covariance = DiagonalGaussian.make_from_covariance([4.0, 1.0])
    from_sigmas = DiagonalGaussian.make_from_sigmas([2.0, 1.0])
    onp.testing.assert_allclose(
        from_covariance.sqrt_precision_diagonal, from_sigmas.sqrt_precision_diagonal
    )
    onp.testing.assert_allclose(
        DiagonalGaussian.make_isotropic(3, 0.1).sqrt_precision_diagonal,
        [10.0, 10.0, 10.0],
    )
    assert DiagonalGaussian.make_unit(4).get_residual_dim() == 4


def test_gaussian_matches_diagonal():
    full = Gaussian.make_from_covariance(jnp.diag(jnp.array([0.25, 4.0, 1.0])))
    diagonal = DiagonalGaussian.make_from_sigmas([0.5, 2.0, 1.0])

    ab_full = _system()
    ab_diagonal = _system()
    full.whiten_system(ab_full)
    diagonal.whiten_system(ab_diagonal)
    onp.testing.assert_allclose(ab_full, ab_diagonal, rtol=1e-9)


def test_gaussian_distance():
    covariance = jnp.array([[2.0, 0.5], [0.5, 1.0]])
    noise = Gaussian.make_from_covariance(covariance)
    r = jnp.array([0.3, -1.2])
    onp.testing.assert_allclose(
        noise.distance(r), r @ jnp.linalg.inv(covariance) @ r, rtol=1e-9
    )


def test_constrained():
    noise = Constrained.make_from_sigmas([0.0, 2.0, 0.0], mu=100.0)
    assert noise.is_constrained()
    assert not DiagonalGaussian.make_unit(3).is_constrained()

    # Hard rows are left unscaled.
    ab = _system()
    noise.whiten_system(ab)
    onp.testing.assert_allclose(ab, _system() * onp.array([1.0, 0.5, 1.0])[:, None])

    unit = noise.unit()
    onp.testing.assert_allclose(unit.sigmas, [0.0, 1.0, 0.0])
    assert unit.is_constrained()
    assert unit.mu == 100.0

    onp.testing.assert_allclose(
        noise.distance(jnp.array([1.0, 2.0, 3.0])), 100.0 * (1.0 + 9.0) + 1.0
    )


def test_fully_constrained_is_identity():
    noise = Constrained.make_all(3)
    ab = _system()
    noise.whiten_system(ab)
    onp.testing.assert_allclose(ab, _system())


def test_huber():
    gaussian = DiagonalGaussian.make_from_sigmas([1.0, 1.0])
    huber = HuberWrapper(wrapped=gaussian, delta=1.0)

    # Inliers match the wrapped model.
    small = jnp.array([0.3, 0.4])
    onp.testing.assert_allclose(
        huber.whiten_residual_vector(small), gaussian.whiten_residual_vector(small)
    )

    # Outliers are downweighted.
    large = jnp.array([30.0, 40.0])
    onp.testing.assert_allclose(
        huber.whiten_residual_vector(large), large * jnp.sqrt(1.0 / 50.0)
    )
    assert huber.distance(large) < gaussian.distance(large)


def test_noise_models_are_pytrees():
    noise = DiagonalGaussian.make_from_sigmas([1.0, 2.0])
    leaves = jax.tree_util.tree_leaves(noise)
    assert len(leaves) == 1


def test_whiten_system_dimension_check():
    with pytest.raises(AssertionError):
        DiagonalGaussian.make_unit(2).whiten_system(_system())


def test_factor_carries_unit_model():
    x = jaxlin.leaf(0, 2)
    factor = jaxlin.ExpressionFactor(
        Constrained.make_from_sigmas([0.0, 0.5]), jnp.zeros(2), x
    )
    linear = factor.linearize(jaxlin.Values({0: [1.0, 2.0]}))
    assert linear is not None
    assert isinstance(linear.noise_model, Constrained)
    onp.testing.assert_allclose(linear.noise_model.sigmas, [0.0, 1.0])

    A, b = linear.jacobian()
    onp.testing.assert_allclose(A, onp.diag([1.0, 2.0]))
    onp.testing.assert_allclose(b, [-1.0, -4.0])
