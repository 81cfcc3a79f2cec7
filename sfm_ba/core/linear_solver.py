"""
Normal-equation solver for Levenberg-Marquardt bundle adjustment

With J = [Jc | Jp] and residual vector F, the damped normal equations

    [ B'   E  ] [dc]   [v]        B = Jc^T Jc,  C = Jp^T Jp,  E = Jc^T Jp
    [ E^T  C' ] [dp] = [w]        v = -Jc^T F,  w = -Jp^T F

are solved by eliminating the points (C' is block-diagonal with 3x3 blocks):

    S  = B' - E C'^-1 E^T
    S dc = v - E C'^-1 w          (preconditioned conjugate gradient)
    dp = C'^-1 (w - E^T dc)

B' and C' are B and C with their diagonals scaled by (1 + 1 / radius).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from scipy.sparse.linalg import cg

from .config import LinearSolverConfig, NUM_CAMERA_PARAMS, NUM_POINT_PARAMS
from .sparse_matrix import SparseMatrix

logger = logging.getLogger(__name__)


class CGInfo(Enum):
    """Termination reason of the conjugate gradient solver"""
    CONVERGENCE = "convergence"
    MAX_ITERATIONS = "max_iterations"
    INVALID_INPUT = "invalid_input"


@dataclass
class CGStatus:
    num_iterations: int = 0
    info: CGInfo = CGInfo.CONVERGENCE


@dataclass
class LinearSolverStatus:
    """Outcome of one normal-equation solve"""
    success: bool = False
    num_cg_iterations: int = 0
    message: str = ""


class ConjugateGradient:
    """Preconditioned conjugate gradient for symmetric positive (semi-)definite systems"""

    def __init__(self, max_iterations: int = 1000, tolerance: float = 1e-20):
        self.max_iterations = max_iterations
        # Squared residual norm at which the solve counts as converged
        self.tolerance = tolerance

    def solve(self, A: SparseMatrix, b: np.ndarray,
              preconditioner: Optional[SparseMatrix] = None) -> Tuple[np.ndarray, CGStatus]:
        """
        Solve A x = b starting from x = 0

        Returns:
            Solution vector and status. Invalid input (dimension mismatch or
            non-finite values) returns a zero vector with CGInfo.INVALID_INPUT.
        """
        b = np.asarray(b, dtype=np.float64)
        x_invalid = np.zeros(A.num_cols)

        if A.num_rows != A.num_cols or b.shape != (A.num_rows,):
            logger.debug(f"CG input dimensions do not match: A {A.shape}, b {b.shape}")
            return x_invalid, CGStatus(0, CGInfo.INVALID_INPUT)
        if preconditioner is not None and preconditioner.shape != A.shape:
            logger.debug(f"CG preconditioner shape {preconditioner.shape} does not match {A.shape}")
            return x_invalid, CGStatus(0, CGInfo.INVALID_INPUT)
        if not (A.is_finite() and np.all(np.isfinite(b))
                and (preconditioner is None or preconditioner.is_finite())):
            logger.debug("CG input contains non-finite values")
            return x_invalid, CGStatus(0, CGInfo.INVALID_INPUT)
        if A.num_rows == 0:
            return x_invalid, CGStatus(0, CGInfo.CONVERGENCE)

        num_iterations = 0

        def count_iteration(_):
            nonlocal num_iterations
            num_iterations += 1

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            x, info = cg(
                A.csr, b,
                rtol=0.0,
                atol=np.sqrt(self.tolerance),
                maxiter=self.max_iterations,
                M=None if preconditioner is None else preconditioner.csr,
                callback=count_iteration,
            )

        if info < 0 or not np.all(np.isfinite(x)):
            logger.debug(f"CG broke down after {num_iterations} iterations")
            return x_invalid, CGStatus(num_iterations, CGInfo.INVALID_INPUT)

        if info > 0:
            return x, CGStatus(num_iterations, CGInfo.MAX_ITERATIONS)
        return x, CGStatus(num_iterations, CGInfo.CONVERGENCE)


class SchurComplementSolver:
    """Solves the damped normal equations by eliminating point parameters"""

    def __init__(self, config: Optional[LinearSolverConfig] = None,
                 camera_block_dim: int = NUM_CAMERA_PARAMS):
        self.config = config or LinearSolverConfig()
        self.camera_block_dim = camera_block_dim
        self.cg_solver = ConjugateGradient(
            max_iterations=self.config.cg_max_iterations,
            tolerance=self.config.cg_tolerance,
        )

    def solve(self, jac_cams: SparseMatrix, jac_points: SparseMatrix,
              residuals: np.ndarray, trust_region_radius: float) -> Tuple[np.ndarray, LinearSolverStatus]:
        """
        Compute the parameter update for one LM iteration

        Args:
            jac_cams: Camera Jacobian Jc, shape (2K, 9M)
            jac_points: Point Jacobian Jp, shape (2K, 3N)
            residuals: Residual vector F, length 2K
            trust_region_radius: Damping is 1 / radius

        Returns:
            (delta, status); delta holds camera updates followed by point
            updates and is all zeros when the solve fails
        """
        num_cam_cols = jac_cams.num_cols
        num_point_cols = jac_points.num_cols
        failed_delta = np.zeros(num_cam_cols + num_point_cols)
        F = np.asarray(residuals, dtype=np.float64)

        if jac_cams.num_rows != F.size or jac_points.num_rows != F.size:
            return failed_delta, LinearSolverStatus(
                False, 0, f"Jacobian rows ({jac_cams.num_rows}, {jac_points.num_rows}) "
                          f"do not match {F.size} residuals"
            )
        if not (np.all(np.isfinite(F)) and jac_cams.is_finite() and jac_points.is_finite()):
            return failed_delta, LinearSolverStatus(False, 0, "Non-finite residuals or Jacobian")

        jac_cams_t = jac_cams.transpose()
        jac_points_t = jac_points.transpose()

        B = jac_cams.block_column_multiply(self.camera_block_dim)
        C = jac_points.block_column_multiply(NUM_POINT_PARAMS)
        E = jac_cams_t.multiply(jac_points)

        v = -jac_cams_t.multiply(F)
        w = -jac_points_t.multiply(F)

        # Trust region damping
        damping = 1.0 + 1.0 / trust_region_radius
        B.mult_diagonal(damping)
        C.mult_diagonal(damping)

        # C now holds C'^-1
        C.invert_block_diagonal_3x3()

        E_t = E.transpose()
        S = B.subtract(E.multiply(C).multiply(E_t))
        rhs = v - E.multiply(C.multiply(w))

        precond = B.copy()
        precond.invert_block_diagonal_cholesky(self.camera_block_dim)

        delta_cams, cg_status = self.cg_solver.solve(S, rhs, precond)
        logger.debug(f"CG finished: {cg_status.info.value} after {cg_status.num_iterations} iterations")

        if cg_status.info == CGInfo.INVALID_INPUT:
            logger.warning("BA: CG failed (invalid input)")
            return failed_delta, LinearSolverStatus(False, cg_status.num_iterations, "CG invalid input")

        delta_points = C.multiply(w - E_t.multiply(delta_cams))
        delta = np.concatenate([delta_cams, delta_points])
        if not np.all(np.isfinite(delta)):
            return failed_delta, LinearSolverStatus(
                False, cg_status.num_iterations, "Non-finite point update"
            )

        return delta, LinearSolverStatus(True, cg_status.num_iterations, cg_status.info.value)


def solve_dense_normal_equations(jac_cams: SparseMatrix, jac_points: SparseMatrix,
                                 residuals: np.ndarray, trust_region_radius: float) -> np.ndarray:
    """
    Reference solve of the same damped normal equations with dense algebra

    Only practical for small systems; used to check the Schur complement path.
    """
    J = np.hstack([jac_cams.to_dense(), jac_points.to_dense()])
    H = J.T @ J
    H[np.diag_indices_from(H)] *= 1.0 + 1.0 / trust_region_radius
    return np.linalg.solve(H, -J.T @ np.asarray(residuals, dtype=np.float64))
