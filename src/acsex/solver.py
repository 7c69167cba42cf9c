# -*- coding: utf-8 -*-
"""
Copyright (C) 2023 pyprg

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.

Created on Tue Oct 17 15:20:48 2023

@author: pyprg

Increment of the state of one Gauss-Newton step of the weighted least
squares estimation.

Normal variant: solves the normal equations

::

    J.T @ W @ J @ dx = J.T @ W @ r

with an LU factorization of the gain matrix J.T @ W @ J.

Orthogonal variant: QR factorization of W^(1/2) @ J.

The angle of the slack bus is not changed, the column of the slack angle
is zeroed during the calculation and restored afterwards.
"""
import logging
import numpy as np
from scipy.linalg import qr, solve_triangular
from scipy.sparse import csc_matrix, csr_matrix, identity
from scipy.sparse.csgraph import reverse_cuthill_mckee
from scipy.sparse.linalg import splu
from acsex.errors import ObservabilityError
from acsex.jacobian import get_jacobian_matrix, get_precision_matrix

logger = logging.getLogger(__name__)

# pivots smaller than _SINGULARITY_THRESHOLD * largest pivot
_SINGULARITY_THRESHOLD = 1e-12

def neutralize_slack(jacobian):
    """Zeroes the column of the slack angle in place.

    Returns
    -------
    numpy.array
        float, saved values"""
    saved = jacobian.data[jacobian.slack_slots].copy()
    jacobian.data[jacobian.slack_slots] = 0.
    return saved

def restore_slack(jacobian, saved):
    """Writes values saved by neutralize_slack back."""
    jacobian.data[jacobian.slack_slots] = saved

def create_structure(jacobian):
    """Sparsity pattern of the gain matrix of in-service rows.

    The pattern depends on the positions of the Jacobian entries and
    the status of rows only, not on their values.

    Parameters
    ----------
    jacobian: acsex.jacobian.Jacobian
        arena

    Returns
    -------
    scipy.sparse.csr_matrix
        float, 1 for structural entries, full diagonal"""
    in_service = np.repeat(
        (jacobian.status != 0.).astype(float), np.diff(jacobian.indptr))
    S = csr_matrix(
        (in_service, jacobian.indices, jacobian.indptr),
        shape=jacobian.shape)
    size = jacobian.shape[1]
    structure = (S.T @ S + identity(size, format='csr')).tocsr()
    structure.eliminate_zeros()
    structure.data[:] = 1.
    return structure

def create_gain_matrix(J, W, index_of_slack):
    """Calculates J.T @ W @ J.

    The diagonal element of the slack angle is set to the largest diagonal
    element, its row and column are zero otherwise.

    Parameters
    ----------
    J: scipy.sparse.csr_matrix
        Jacobian, column of slack angle is zero
    W: scipy.sparse.csr_matrix
        precision matrix
    index_of_slack: int
        column of slack angle

    Returns
    -------
    scipy.sparse.csc_matrix"""
    size = J.shape[1]
    gain = (J.T @ (W @ J)).tocsc()
    diagonal = gain.diagonal()
    scale = diagonal.max() if size and 0. < diagonal.max() else 1.
    slack = csc_matrix(
        ([scale], ([index_of_slack], [index_of_slack])), shape=(size, size))
    gain = (gain + slack).tocsc()
    gain.sort_indices()
    return gain

def _check_pivots(pivots, name):
    pivots = np.abs(pivots)
    if not pivots.size:
        return
    largest = pivots.max()
    if largest == 0. or pivots.min() <= _SINGULARITY_THRESHOLD * largest:
        raise ObservabilityError(
            f'{name} is numerically singular, '
            f'smallest pivot {pivots.min():.3e}, largest {largest:.3e}')

class LUFactorization:
    """Factorization of the gain matrix.

    The fill-reducing ordering (symbolic analysis) is calculated from
    the structure of the gain matrix and reused until a new structure
    is passed. Numeric factorization is executed with each call of
    'factorize'."""

    def __init__(self):
        self.permutation = None
        self.lu = None
        self.count_of_symbolic = 0

    def factorize(self, gain, structure=None):
        """Factorizes the gain matrix.

        Parameters
        ----------
        gain: scipy.sparse.csc_matrix
            symmetric
        structure: scipy.sparse.csr_matrix, optional
            sparsity pattern of gain, triggers a new symbolic analysis,
            the first call without structure analyzes gain itself"""
        size = gain.shape[0]
        if (structure is not None or self.permutation is None
                or len(self.permutation) != size):
            pattern = gain.tocsr() if structure is None else structure
            self.permutation = reverse_cuthill_mckee(
                pattern, symmetric_mode=True)
            self.count_of_symbolic += 1
            logger.debug(
                'symbolic analysis of gain matrix %s, nnz %d',
                pattern.shape, pattern.nnz)
        p = self.permutation
        permuted = gain[p, :][:, p].tocsc()
        try:
            self.lu = splu(permuted, permc_spec='NATURAL')
        except RuntimeError as e:
            raise ObservabilityError(f'gain matrix is singular: {e}') from e
        _check_pivots(self.lu.U.diagonal(), 'gain matrix')
        return self

    def solve(self, rhs):
        """Solves gain @ x = rhs, rhs is a vector or a 2d array."""
        p = self.permutation
        x = np.empty_like(rhs, dtype=float)
        x[p] = self.lu.solve(np.asarray(rhs, dtype=float)[p])
        return x

class QRFactorization:
    """QR factorization with column pivoting of the scaled Jacobian."""

    def __init__(self):
        self.signature = None
        self.q = self.r = self.permutation = None
        self.count_of_symbolic = 0

    def factorize(self, A, signature=None):
        """Factorizes A.

        Parameters
        ----------
        A: numpy.array
            float, W^(1/2) @ J, with additional row for the slack angle
        signature: int, optional
            signature of row structure, counted for diagnostics"""
        if signature != self.signature:
            self.signature = signature
            self.count_of_symbolic += 1
        rows, cols = A.shape
        if rows < cols:
            raise ObservabilityError(
                f'{rows - 1} measurements for {cols - 1} state variables')
        self.q, self.r, self.permutation = qr(
            A, mode='economic', pivoting=True)
        _check_pivots(np.diag(self.r), 'triangular factor')
        return self

    def solve(self, rhs):
        """Least squares solution of A @ x = rhs."""
        z = solve_triangular(self.r, self.q.T @ rhs)
        x = np.empty_like(z)
        x[self.permutation] = z
        return x

def calculate_increment_normal(
        jacobian, factorization, index_of_slack, pattern_dirty=False):
    """Solves the normal equations for the increment of the state.

    Jacobian and residual are expected to be calculated for the
    current state.

    Parameters
    ----------
    jacobian: acsex.jacobian.Jacobian
        arena, column of slack angle is restored on return
    factorization: LUFactorization
        keeps the symbolic analysis between calls
    index_of_slack: int
        index of slack bus
    pattern_dirty: bool
        in-service rows changed, forces a new symbolic analysis

    Returns
    -------
    numpy.array
        float, increment, angles then magnitudes"""
    saved = neutralize_slack(jacobian)
    try:
        J = get_jacobian_matrix(jacobian)
    finally:
        restore_slack(jacobian, saved)
    W = get_precision_matrix(jacobian.precision)
    gain = create_gain_matrix(J, W, index_of_slack)
    factorization.factorize(
        gain, create_structure(jacobian) if pattern_dirty else None)
    increment = factorization.solve(J.T @ (W @ jacobian.residual))
    increment[index_of_slack] = 0.
    return increment

def get_sqrt_precision(precision):
    """Square root of diagonal precision matrix.

    Raises
    ------
    ValueError
        for precision matrices with off-diagonal elements"""
    if np.any(0 <= precision.offdiagonal_slot):
        raise ValueError('precision matrix is not diagonal')
    return np.sqrt(precision.data[precision.diagonal_slot])

def calculate_increment_orthogonal(
        jacobian, factorization, index_of_slack, signature=None):
    """Solves the weighted least squares problem of one iteration
    by an orthogonal factorization.

    ::

        min || W^(1/2) @ (J @ dx - r) ||

    Parameters
    ----------
    jacobian: acsex.jacobian.Jacobian
        arena, column of slack angle is restored on return
    factorization: QRFactorization

    index_of_slack: int
        index of slack bus
    signature: int, optional
        signature of row structure

    Returns
    -------
    numpy.array
        float, increment, angles then magnitudes"""
    sqrt_w = get_sqrt_precision(jacobian.precision)
    saved = neutralize_slack(jacobian)
    try:
        J = get_jacobian_matrix(jacobian)
    finally:
        restore_slack(jacobian, saved)
    size = J.shape[1]
    A = J.toarray() * sqrt_w.reshape(-1, 1)
    largest = np.abs(A).max() if A.size else 0.
    slack_row = np.zeros((1, size))
    slack_row[0, index_of_slack] = largest if 0. < largest else 1.
    A = np.vstack([A, slack_row])
    b = np.concatenate([sqrt_w * jacobian.residual, [0.]])
    factorization.factorize(A, signature)
    increment = factorization.solve(b)
    increment[index_of_slack] = 0.
    return increment
