"""
Core components for Levenberg-Marquardt bundle adjustment
"""

from .config import (
    BundleAdjusterConfig,
    LinearSolverConfig,
    TrustRegionConfig,
    NUM_CAMERA_PARAMS,
    NUM_POINT_PARAMS,
)
from .camera_model import (
    Camera,
    Point3D,
    Observation,
    rodrigues_to_matrix,
    update_camera,
    update_point,
    apply_camera_updates,
    apply_point_updates,
)
from .problem import BundleProblem
from .sparse_matrix import (
    SparseMatrix,
    BlockView,
    BlockInversionReport,
    StructuralPreconditionError,
)
from .reprojection import evaluate_residuals, evaluate_jacobian, compute_mse
from .linear_solver import (
    ConjugateGradient,
    CGInfo,
    CGStatus,
    LinearSolverStatus,
    SchurComplementSolver,
    solve_dense_normal_equations,
)
from .lm_optimizer import BundleAdjuster, BundleAdjustmentStatus, LMState

__all__ = [
    # Configuration
    "BundleAdjusterConfig",
    "LinearSolverConfig",
    "TrustRegionConfig",
    "NUM_CAMERA_PARAMS",
    "NUM_POINT_PARAMS",

    # Parameter model
    "Camera",
    "Point3D",
    "Observation",
    "rodrigues_to_matrix",
    "update_camera",
    "update_point",
    "apply_camera_updates",
    "apply_point_updates",
    "BundleProblem",

    # Sparse algebra
    "SparseMatrix",
    "BlockView",
    "BlockInversionReport",
    "StructuralPreconditionError",

    # Evaluation and solving
    "evaluate_residuals",
    "evaluate_jacobian",
    "compute_mse",
    "ConjugateGradient",
    "CGInfo",
    "CGStatus",
    "LinearSolverStatus",
    "SchurComplementSolver",
    "solve_dense_normal_equations",

    # Optimizer
    "BundleAdjuster",
    "BundleAdjustmentStatus",
    "LMState",
]
