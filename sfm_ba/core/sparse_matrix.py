"""
Block-sparse matrix layer for bundle adjustment

Thin wrapper around a canonical `scipy.sparse.csr_matrix` (sorted indices,
duplicates summed) with the operations the Schur complement solver needs:
triplet assembly, products, block column multiplication and in-place
inversion of block-diagonal matrices through index-addressed block views.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple, Union

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve
from scipy.sparse import coo_matrix, csr_matrix, diags, issparse

logger = logging.getLogger(__name__)

# Determinants below this magnitude are treated as singular
SINGULAR_DETERMINANT_EPSILON = 1e-14


class StructuralPreconditionError(ValueError):
    """A matrix does not have the structure an operation requires.

    This signals a bug in matrix assembly rather than bad input data.
    """


@dataclass
class BlockInversionReport:
    """Outcome of an in-place block-diagonal inversion"""

    num_blocks: int
    singular_blocks: List[int] = field(default_factory=list)

    @property
    def num_singular(self) -> int:
        return len(self.singular_blocks)

    @property
    def all_regular(self) -> bool:
        return not self.singular_blocks


class BlockView:
    """
    Index-addressed view of fixed-size square blocks stored back to back

    Block k occupies values[k * block_size**2:(k + 1) * block_size**2] in
    row-major order. Blocks returned by indexing are writable views.
    """

    def __init__(self, values: np.ndarray, block_size: int):
        if block_size < 1:
            raise StructuralPreconditionError(f"Block size must be positive, got {block_size}")
        stride = block_size * block_size
        if values.ndim != 1 or values.size % stride != 0:
            raise StructuralPreconditionError(
                f"Value arena of size {values.size} is not a whole number of "
                f"{block_size}x{block_size} blocks"
            )
        self._values = values
        self.block_size = block_size
        self.stride = stride

    def __len__(self) -> int:
        return self._values.size // self.stride

    def offset(self, index: int) -> int:
        """Offset of the first value of block `index` in the arena"""
        if not 0 <= index < len(self):
            raise IndexError(f"Block index {index} out of range for {len(self)} blocks")
        return index * self.stride

    def __getitem__(self, index: int) -> np.ndarray:
        start = self.offset(index)
        return self._values[start:start + self.stride].reshape(self.block_size, self.block_size)

    def __setitem__(self, index: int, block: Union[np.ndarray, float]):
        start = self.offset(index)
        block = np.broadcast_to(np.asarray(block, dtype=self._values.dtype),
                                (self.block_size, self.block_size))
        self._values[start:start + self.stride] = block.reshape(-1)

    def __iter__(self) -> Iterator[np.ndarray]:
        for index in range(len(self)):
            yield self[index]

    def as_array(self) -> np.ndarray:
        """All blocks as a writable (num_blocks, block_size, block_size) view"""
        return self._values.reshape(-1, self.block_size, self.block_size)


class SparseMatrix:
    """Sparse matrix assembled from (row, col, value) triplets"""

    def __init__(self, matrix=None, shape: Tuple[int, int] = (0, 0)):
        if matrix is None:
            matrix = csr_matrix(shape, dtype=np.float64)
        self._matrix = csr_matrix(matrix, dtype=np.float64)
        self._matrix.sum_duplicates()

    @classmethod
    def allocate(cls, rows: int, cols: int) -> "SparseMatrix":
        """Empty matrix of the given shape"""
        return cls(shape=(rows, cols))

    @classmethod
    def from_triplets(cls, rows: int, cols: int, row_indices, col_indices, values) -> "SparseMatrix":
        matrix = cls.allocate(rows, cols)
        matrix.set_from_triplets(row_indices, col_indices, values)
        return matrix

    @classmethod
    def from_dense(cls, array: np.ndarray) -> "SparseMatrix":
        return cls(np.asarray(array, dtype=np.float64))

    def set_from_triplets(self, row_indices, col_indices, values):
        """Replace contents with the given triplets; duplicate entries are summed"""
        row_indices = np.asarray(row_indices, dtype=np.int64)
        col_indices = np.asarray(col_indices, dtype=np.int64)
        values = np.asarray(values, dtype=np.float64)
        if not (row_indices.shape == col_indices.shape == values.shape):
            raise StructuralPreconditionError("Triplet arrays must have equal length")

        self._matrix = coo_matrix((values, (row_indices, col_indices)), shape=self.shape).tocsr()
        self._matrix.sum_duplicates()

    @property
    def csr(self) -> csr_matrix:
        return self._matrix

    @property
    def shape(self) -> Tuple[int, int]:
        return self._matrix.shape

    @property
    def num_rows(self) -> int:
        return self._matrix.shape[0]

    @property
    def num_cols(self) -> int:
        return self._matrix.shape[1]

    @property
    def num_non_zero(self) -> int:
        """Number of stored entries (explicit zeros included)"""
        return self._matrix.nnz

    def __repr__(self) -> str:
        return f"SparseMatrix(shape={self.shape}, nnz={self.num_non_zero})"

    def copy(self) -> "SparseMatrix":
        return SparseMatrix(self._matrix.copy())

    def to_dense(self) -> np.ndarray:
        return self._matrix.toarray()

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self._matrix.data)))

    def transpose(self) -> "SparseMatrix":
        return SparseMatrix(self._matrix.transpose().tocsr())

    def multiply(self, other: Union["SparseMatrix", np.ndarray]) -> Union["SparseMatrix", np.ndarray]:
        """Matrix product with another sparse matrix or a dense vector"""
        if isinstance(other, SparseMatrix):
            if self.num_cols != other.num_rows:
                raise StructuralPreconditionError(
                    f"Incompatible dimensions for multiply: {self.shape} x {other.shape}"
                )
            return SparseMatrix(self._matrix @ other._matrix)

        if issparse(other):
            raise TypeError("Wrap scipy matrices in SparseMatrix before multiplying")

        vector = np.asarray(other, dtype=np.float64)
        if vector.shape[0] != self.num_cols:
            raise StructuralPreconditionError(
                f"Incompatible dimensions for multiply: {self.shape} x {vector.shape}"
            )
        return np.asarray(self._matrix @ vector)

    def subtract(self, other: "SparseMatrix") -> "SparseMatrix":
        if self.shape != other.shape:
            raise StructuralPreconditionError(
                f"Cannot subtract matrices of shape {self.shape} and {other.shape}"
            )
        return SparseMatrix(self._matrix - other._matrix)

    def _diagonal_mask(self) -> np.ndarray:
        rows = np.repeat(np.arange(self.num_rows), np.diff(self._matrix.indptr))
        return self._matrix.indices == rows

    def mult_diagonal(self, factor: float):
        """Scale the stored diagonal entries in place"""
        self._matrix.data[self._diagonal_mask()] *= factor

    def diagonal_matrix(self) -> "SparseMatrix":
        return SparseMatrix(diags(self._matrix.diagonal(), shape=self.shape, format="csr"))

    def cwise_invert(self):
        """Invert every stored value in place"""
        with np.errstate(divide="ignore"):
            self._matrix.data[:] = 1.0 / self._matrix.data

    def column_nonzeros(self, col: int) -> np.ndarray:
        """Stored values of column `col`, ordered by row"""
        if not 0 <= col < self.num_cols:
            raise IndexError(f"Column {col} out of range for {self.num_cols} columns")
        column = self._matrix[:, [col]].tocsc()
        column.sort_indices()
        return column.data.copy()

    def block_column_multiply(self, block_size: int) -> "SparseMatrix":
        """
        Compute A^T A where each block column of A is only multiplied with itself

        The result is block-diagonal with `block_size` square blocks. Every
        entry of every block is stored, including zeros, so the result can be
        inverted with the block-diagonal routines.
        """
        num_cols = self.num_cols
        if num_cols % block_size != 0:
            raise StructuralPreconditionError(
                f"{num_cols} columns are not a multiple of block size {block_size}"
            )

        product = (self._matrix.transpose() @ self._matrix).tocoo()
        in_block = (product.row // block_size) == (product.col // block_size)

        num_blocks = num_cols // block_size
        local = np.arange(block_size)
        base = np.repeat(np.arange(num_blocks) * block_size, block_size * block_size)
        pattern_rows = base + np.tile(np.repeat(local, block_size), num_blocks)
        pattern_cols = base + np.tile(np.tile(local, block_size), num_blocks)

        return SparseMatrix.from_triplets(
            num_cols, num_cols,
            np.concatenate([pattern_rows, product.row[in_block]]),
            np.concatenate([pattern_cols, product.col[in_block]]),
            np.concatenate([np.zeros(pattern_rows.size), product.data[in_block]]),
        )

    def block_view(self, block_size: int) -> BlockView:
        """
        View the stored values of a block-diagonal matrix as square blocks

        Raises:
            StructuralPreconditionError: if the matrix is not square, its
                non-zero count is not rows * block_size, or entries lie outside
                the diagonal blocks
        """
        if self.num_rows != self.num_cols:
            raise StructuralPreconditionError("Block matrix must be square")
        if self.num_rows % block_size != 0:
            raise StructuralPreconditionError(
                f"{self.num_rows} rows are not a multiple of block size {block_size}"
            )
        if self.num_non_zero != self.num_rows * block_size:
            raise StructuralPreconditionError(
                f"Invalid number of non-zeros: {self.num_non_zero}, "
                f"expected {self.num_rows * block_size}"
            )

        matrix = self._matrix
        matrix.sort_indices()
        expected_indptr = np.arange(self.num_rows + 1) * block_size
        expected_indices = (np.arange(self.num_rows) // block_size * block_size)[:, None] + np.arange(block_size)
        if (not np.array_equal(matrix.indptr, expected_indptr)
                or not np.array_equal(matrix.indices, expected_indices.reshape(-1))):
            raise StructuralPreconditionError("Matrix has entries outside its diagonal blocks")

        return BlockView(matrix.data, block_size)

    def invert_block_diagonal_3x3(self) -> BlockInversionReport:
        """
        Invert a matrix with 3x3 blocks on its diagonal in place (closed form)

        Singular or non-finite blocks are replaced with zero blocks.
        """
        view = self.block_view(3)
        blocks = view.as_array()

        r0, r1, r2 = blocks[:, 0, :], blocks[:, 1, :], blocks[:, 2, :]
        # Columns of the adjugate are cross products of the rows
        adjugate = np.stack([np.cross(r1, r2), np.cross(r2, r0), np.cross(r0, r1)], axis=-1)
        det = np.einsum("ij,ij->i", r0, adjugate[:, :, 0])

        with np.errstate(divide="ignore", invalid="ignore"):
            inverse = adjugate / det[:, None, None]

        singular = (np.abs(det) < SINGULAR_DETERMINANT_EPSILON) | ~np.all(np.isfinite(inverse), axis=(1, 2))
        inverse[singular] = 0.0
        blocks[:] = inverse

        report = BlockInversionReport(num_blocks=len(view), singular_blocks=np.flatnonzero(singular).tolist())
        if report.num_singular:
            logger.debug(f"Zeroed {report.num_singular} of {report.num_blocks} singular 3x3 blocks")
        return report

    def invert_block_diagonal_cholesky(self, block_size: int) -> BlockInversionReport:
        """
        Invert a symmetric positive definite block-diagonal matrix in place

        Each block is inverted through its Cholesky factorization. Blocks that
        are not positive definite or give non-finite results become zero blocks.
        """
        view = self.block_view(block_size)
        identity = np.eye(block_size)
        report = BlockInversionReport(num_blocks=len(view))

        for index, block in enumerate(view):
            inverse: Optional[np.ndarray]
            try:
                inverse = cho_solve(cho_factor(block), identity)
            except (LinAlgError, ValueError):
                inverse = None

            if inverse is None or not np.all(np.isfinite(inverse)):
                view[index] = 0.0
                report.singular_blocks.append(index)
            else:
                view[index] = inverse

        if report.num_singular:
            logger.debug(
                f"Zeroed {report.num_singular} of {report.num_blocks} "
                f"non-positive-definite {block_size}x{block_size} blocks"
            )
        return report
