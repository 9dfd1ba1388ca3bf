"""Normal-equation solver for sparse least-squares problems."""

from __future__ import annotations

import numpy as np
import scipy.linalg
from scipy import sparse
from scipy.sparse.csgraph import reverse_cuthill_mckee


class CholeskyDecomp:
    """Solves ``J^T J delta = J^T r`` by Cholesky factorisation.

    The fill-reducing ordering is computed on the first run and reused by
    later solves until :meth:`free_factor` is called.
    """

    def __init__(self) -> None:
        self._permutation: np.ndarray | None = None
        self._columns = 0

    @property
    def has_factor(self) -> bool:
        return self._permutation is not None

    def free_factor(self) -> None:
        if self._permutation is None:
            raise RuntimeError("there is no factor to free")
        self._permutation = None
        self._columns = 0

    def solve(self, jacobian, residual, first_run: bool) -> np.ndarray:
        """Least-squares step for a Jacobian (rows by columns) and a residual."""
        jac = sparse.csr_matrix(jacobian, dtype=float)
        rhs = np.asarray(residual, dtype=float).ravel()
        if rhs.shape[0] != jac.shape[0]:
            raise ValueError(f"residual has {rhs.shape[0]} entries, Jacobian has {jac.shape[0]} rows")

        normal = (jac.T @ jac).tocsr()
        if first_run:
            if self._permutation is not None:
                raise RuntimeError("a factor is already analysed; free it first")
            self._permutation = self._analyse(normal)
            self._columns = jac.shape[1]
        elif self._permutation is None:
            raise RuntimeError("no analysed factor; solve with first_run=True")
        elif jac.shape[1] != self._columns:
            raise ValueError(f"Jacobian has {jac.shape[1]} columns, factor was analysed for {self._columns}")

        if self._columns == 0:
            return np.zeros(0)

        perm = self._permutation
        permuted = normal[perm][:, perm].toarray()
        lower = scipy.linalg.cholesky(permuted, lower=True)
        projected = jac.T @ rhs
        forward = scipy.linalg.solve_triangular(lower, projected[perm], lower=True)
        backward = scipy.linalg.solve_triangular(lower.T, forward, lower=False)
        delta = np.empty_like(backward)
        delta[perm] = backward
        return delta

    @staticmethod
    def _analyse(normal: sparse.csr_matrix) -> np.ndarray:
        if normal.shape[0] == 0:
            return np.zeros(0, dtype=np.intp)
        return np.asarray(reverse_cuthill_mckee(normal, symmetric_mode=True), dtype=np.intp)