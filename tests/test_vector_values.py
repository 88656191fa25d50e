import threading

import numpy as onp
import pytest

import jaxlin
from jaxlin import VectorValues, symbol
from jaxlin.errors import (
    AlreadyExistsError,
    DimensionMismatchError,
    InvalidArgumentError,
    NotFoundError,
)


def _make(dims, offset=0.0) -> VectorValues:
    rng = onp.random.default_rng(0)
    return VectorValues(
        {key: rng.normal(size=dim) + offset for key, dim in dims.items()}
    )


def test_merge():
    """Merged stores keep both sources, in order."""
    a = _make({symbol("x", 0): 3, symbol("x", 1): 2})
    b = _make({symbol("l", 0): 1, symbol("l", 1): 4}, offset=5.0)
    merged = VectorValues.merge(a, b)

    assert merged.size() == 4
    onp.testing.assert_allclose(
        merged.vector(), onp.concatenate([a.vector(), b.vector()])
    )


def test_merge_overlap():
    a = _make({0: 3, 1: 2})
    b = _make({1: 2, 2: 1})
    with pytest.raises(AlreadyExistsError):
        VectorValues.merge(a, b)


def test_insert_erase_structure():
    x = _make({0: 3, 1: 2})
    original = x.copy()

    x.insert(symbol("x", 5), onp.ones(4))
    assert not x.has_same_structure(original)
    x.erase(symbol("x", 5))
    assert x.has_same_structure(original)
    assert x.equals(original)


def test_insert_existing():
    x = _make({0: 3})
    with pytest.raises(AlreadyExistsError):
        x.insert(0, onp.zeros(3))


def test_erase_missing():
    with pytest.raises(NotFoundError):
        _make({0: 3}).erase(1)


def test_try_insert():
    x = VectorValues()
    stored, inserted = x.try_insert(0, [1.0, 2.0])
    assert inserted
    onp.testing.assert_allclose(stored, [1.0, 2.0])

    stored, inserted = x.try_insert(0, [3.0, 4.0])
    assert not inserted
    onp.testing.assert_allclose(stored, [1.0, 2.0])


def test_insert_all_is_atomic():
    x = _make({0: 1, 1: 1})
    other = VectorValues({2: [1.0], 1: [2.0]})
    with pytest.raises(AlreadyExistsError):
        x.insert_all(other)
    assert x.keys() == [0, 1]


def test_update_leaves_other_keys():
    x = _make({0: 3, 1: 2, 2: 1})
    before = x.copy()

    x.update(VectorValues({1: [7.0, 8.0]}))
    onp.testing.assert_allclose(x[1], [7.0, 8.0])
    onp.testing.assert_allclose(x[0], before[0])
    onp.testing.assert_allclose(x[2], before[2])


def test_update_missing_key_writes_nothing():
    x = _make({0: 2, 1: 2})
    before = x.copy()
    with pytest.raises(NotFoundError) as excinfo:
        x.update(VectorValues({0: [9.0, 9.0], 5: [1.0]}))
    assert excinfo.value.key == 5
    assert x.equals(before)


def test_at_returns_stored_buffer():
    x = _make({0: 3, 1: 2})
    other_buffer = x.at(1)
    x.at(0)[:] = 4.0
    onp.testing.assert_allclose(x[0], [4.0, 4.0, 4.0])
    assert x.at(1) is other_buffer


def test_setitem():
    x = _make({0: 2})
    x[0] = [1.0, 2.0]
    onp.testing.assert_allclose(x[0], [1.0, 2.0])
    with pytest.raises(NotFoundError):
        x[1] = [1.0]


def test_scalar_and_matrix_entries():
    x = VectorValues({0: 3.0})
    assert x.dim(0) == 1
    with pytest.raises(InvalidArgumentError):
        VectorValues({0: onp.zeros((2, 2))})


def test_arithmetic():
    dims = {0: 3, 1: 2, 2: 4}
    x = _make(dims)
    y = _make(dims, offset=1.0)

    assert ((x + y) - y).equals(x, tol=1e-9)
    assert x.scale(1.0).equals(x)
    assert (2.0 * x).equals(x + x)
    assert (-x).equals(x.scale(-1.0))
    onp.testing.assert_allclose(x.dot(x), x.squared_norm())
    onp.testing.assert_allclose(x.norm(), onp.linalg.norm(x.vector()))


def test_in_place_arithmetic():
    dims = {0: 3, 1: 2}
    x = _make(dims)
    y = _make(dims, offset=1.0)
    expected = x + y

    buffer = x.at(0)
    x += y
    assert x.equals(expected)
    assert x.at(0) is buffer

    x *= 0.5
    assert x.equals(expected.scale(0.5))


def test_arithmetic_aligns_by_key():
    x = VectorValues({0: [1.0], 1: [2.0, 3.0]})
    y = VectorValues({1: [1.0, 1.0], 0: [10.0]})
    out = x + y
    assert out.keys() == [0, 1]
    onp.testing.assert_allclose(out.vector(), [11.0, 3.0, 4.0])


def test_structure_mismatch():
    x = VectorValues({0: [1.0], 1: [2.0, 3.0]})
    y = VectorValues({0: [1.0], 1: [2.0]})
    with pytest.raises(DimensionMismatchError, match="'1'"):
        x + y
    with pytest.raises(DimensionMismatchError):
        x.dot(VectorValues({0: [1.0]}))
    with pytest.raises(DimensionMismatchError):
        x.add_in_place(y)


def test_zero():
    x = _make({0: 3, 1: 2})
    zero = VectorValues.zero(x)
    assert zero.has_same_structure(x)
    assert onp.all(zero.vector() == 0.0)

    before = x.copy()
    x.add_in_place_(zero)
    assert x.equals(before)


def test_add_in_place_inserts_missing():
    x = VectorValues({0: [1.0, 1.0]})
    x.add_in_place_(VectorValues({0: [1.0, 2.0], 3: [5.0]}))
    onp.testing.assert_allclose(x[0], [2.0, 3.0])
    onp.testing.assert_allclose(x[3], [5.0])

    with pytest.raises(DimensionMismatchError):
        x.add_in_place_(VectorValues({3: [1.0, 2.0]}))


def test_set_zero():
    x = _make({0: 3, 1: 2})
    buffer = x.at(0)
    x.set_zero()
    assert x.squared_norm() == 0.0
    assert x.at(0) is buffer


def test_from_vector():
    dims = {symbol("x", 0): 2, symbol("x", 1): 3}
    x = VectorValues.from_vector(onp.arange(5.0), dims)
    onp.testing.assert_allclose(x[symbol("x", 1)], [2.0, 3.0, 4.0])
    assert x.dims() == dims

    with pytest.raises(InvalidArgumentError):
        VectorValues.from_vector(onp.arange(4.0), dims)


def test_vector_orderings():
    x = VectorValues({0: [1.0], 1: [2.0, 3.0], 2: [4.0]})
    onp.testing.assert_allclose(x.vector([2, 0]), [4.0, 1.0])
    onp.testing.assert_allclose(x.vector_from_dims({1: 2, 2: 1}), [2.0, 3.0, 4.0])
    with pytest.raises(DimensionMismatchError):
        x.vector_from_dims({1: 3})
    assert VectorValues().vector().shape == (0,)


def test_archive_round_trip(tmp_path):
    x = _make({symbol("x", 0): 3, symbol("l", 2): 2, 7: 1})
    path = tmp_path / "values.npz"
    x.save(path)
    loaded = VectorValues.load(path)
    assert loaded.equals(x)
    assert loaded.keys() == x.keys()


def test_iteration_survives_concurrent_inserts():
    x = VectorValues({i: [float(i)] for i in range(100)})
    start = threading.Event()

    def insert_more() -> None:
        start.wait()
        for i in range(100, 1000):
            x.insert(i, [float(i)])

    thread = threading.Thread(target=insert_more)
    thread.start()

    seen = []
    for key in x:
        start.set()
        seen.append(key)
    thread.join()

    assert seen == list(range(100))
    assert x.size() == 1000


def test_concurrent_try_insert():
    x = VectorValues()
    inserted_counts = [0] * 8

    def worker(worker_index: int) -> None:
        for key in range(200):
            _, inserted = x.try_insert(key, [float(worker_index)])
            inserted_counts[worker_index] += int(inserted)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert x.size() == 200
    assert sum(inserted_counts) == 200


def test_repr():
    assert "x0" in repr(jaxlin.VectorValues({symbol("x", 0): [1.0]}))


def test_update_writes_into_stored_buffer():
    x = _make({0: 2, 1: 3})
    buffer = x.at(0)

    x.update(VectorValues({0: [7.0, 8.0]}))
    onp.testing.assert_allclose(buffer, [7.0, 8.0])
    assert x.at(0) is buffer

    x[0] = [1.0, 2.0]
    onp.testing.assert_allclose(buffer, [1.0, 2.0])

    # Resizing swaps in a new buffer.
    x[0] = [1.0, 2.0, 3.0]
    assert x.dim(0) == 3
    onp.testing.assert_allclose(buffer, [1.0, 2.0])


def test_update_survives_concurrent_inserts():
    x = VectorValues({0: [0.0]})
    start = threading.Event()

    def insert_more() -> None:
        start.wait()
        for i in range(1, 2000):
            x.insert(i, [0.0])

    thread = threading.Thread(target=insert_more)
    thread.start()
    start.set()
    for i in range(2000):
        x.update(VectorValues({0: [float(i)]}))
    thread.join()

    onp.testing.assert_allclose(x[0], [1999.0])
    assert x.size() == 2000
