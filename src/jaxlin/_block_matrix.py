from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as onp
from frozendict import frozendict

from ._keys import Key, format_key
from .errors import DimensionMismatchError, InvalidArgumentError, NotFoundError


class VerticalBlockMatrix:
    """A dense matrix split into column blocks. Every block has the same
    number of rows; widths are set per block. A trailing one-column block is
    always appended for the right-hand side.

    Blocks are stored contiguously in `matrix`, which is a mutable numpy array.
    Indexing returns writable views:

        ab = VerticalBlockMatrix((3, 2), rows=3)
        ab[0]       # (3, 3) view.
        ab[1]       # (3, 2) view.
        ab[2]       # (3, 1) view; right-hand side.
        ab.rhs()    # (3,) view of the same column.
    """

    def __init__(self, block_num_cols: Sequence[int], rows: int) -> None:
        for width in block_num_cols:
            if width < 0:
                raise InvalidArgumentError(f"Negative block width: {width}.")

        self.block_num_cols: tuple[int, ...] = tuple(int(w) for w in block_num_cols) + (
            1,
        )
        """# of columns for each block, including the right-hand side."""

        start_cols = [0]
        for width in self.block_num_cols:
            start_cols.append(start_cols[-1] + width)
        self.start_cols: tuple[int, ...] = tuple(start_cols)
        """Column index of the start of each block, followed by the total
        column count."""

        self.matrix = onp.zeros((rows, self.start_cols[-1]))
        """Backing storage. Shape is `(rows, sum(block_num_cols))`."""

    @property
    def rows(self) -> int:
        return self.matrix.shape[0]

    @property
    def cols(self) -> int:
        return self.matrix.shape[1]

    @property
    def n_blocks(self) -> int:
        """Number of blocks, including the right-hand side."""
        return len(self.block_num_cols)

    def __getitem__(self, block: int) -> onp.ndarray:
        if block < 0:
            block += self.n_blocks
        if not 0 <= block < self.n_blocks:
            raise IndexError(f"Block {block} out of range for {self.n_blocks} blocks.")
        return self.matrix[:, self.start_cols[block] : self.start_cols[block + 1]]

    def range(self, start_block: int, end_block: int) -> onp.ndarray:
        """View of the consecutive blocks `[start_block, end_block)`."""
        assert 0 <= start_block <= end_block <= self.n_blocks
        return self.matrix[
            :, self.start_cols[start_block] : self.start_cols[end_block]
        ]

    def rhs(self) -> onp.ndarray:
        """Right-hand side column, as a writable 1D view."""
        return self.matrix[:, -1]

    def set_zero(self) -> None:
        self.matrix.fill(0.0)

    def to_dense(self) -> tuple[onp.ndarray, onp.ndarray]:
        """Copies of the coefficient matrix and right-hand side."""
        return self.matrix[:, :-1].copy(), self.matrix[:, -1].copy()


class JacobianMap:
    """Writable per-key views into a `VerticalBlockMatrix`.

    Block `i` belongs to `keys[i]`, so the keys should be passed in the same
    order as the widths used to build the matrix."""

    def __init__(self, keys: Sequence[Key], ab: VerticalBlockMatrix) -> None:
        if len(keys) != ab.n_blocks - 1:
            raise InvalidArgumentError(
                f"Got {len(keys)} keys for a block matrix with"
                f" {ab.n_blocks - 1} variable blocks."
            )
        self._ab = ab
        self._block_from_key = frozendict({key: i for i, key in enumerate(keys)})

    def keys(self) -> tuple[Key, ...]:
        return tuple(self._block_from_key.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._block_from_key

    def __getitem__(self, key: Key) -> onp.ndarray:
        try:
            block = self._block_from_key[key]
        except KeyError:
            raise NotFoundError(key, "JacobianMap") from None
        return self._ab[block]

    def add(self, key: Key, jacobian: Any) -> None:
        """Accumulate a Jacobian into the block of `key`. Subexpressions that
        share a key each add their contribution."""
        block = self[key]
        jacobian = onp.asarray(jacobian, dtype=onp.float64)
        if jacobian.shape != block.shape:
            raise DimensionMismatchError(
                f"Jacobian for '{format_key(key)}' has shape {jacobian.shape},"
                f" expected {block.shape}."
            )
        block += jacobian
