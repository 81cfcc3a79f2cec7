"""
Levenberg-Marquardt bundle adjustment

The trust region radius sets the damping of the normal equations (damping =
1 / radius). A step that lowers the mean squared reprojection error is
committed and the radius grows, moving the method towards Gauss-Newton; a
step that does not is discarded and the radius shrinks, moving it towards
gradient descent.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from tqdm import tqdm

from .camera_model import Camera, Point3D, Observation
from .config import BundleAdjusterConfig
from .linear_solver import SchurComplementSolver
from .problem import BundleProblem
from .reprojection import compute_mse, evaluate_jacobian, evaluate_residuals

logger = logging.getLogger(__name__)


class LMState(Enum):
    """State of a Levenberg-Marquardt run; all but OPTIMIZING are terminal"""
    OPTIMIZING = "optimizing"
    CONVERGED_ABSOLUTE = "converged_absolute"
    CONVERGED_RELATIVE = "converged_relative"
    EXHAUSTED = "exhausted"


@dataclass
class BundleAdjustmentStatus:
    """Run statistics of one bundle adjustment"""
    state: LMState = LMState.OPTIMIZING
    initial_mse: float = 0.0
    final_mse: float = 0.0
    num_lm_iterations: int = 0
    num_lm_successful_iterations: int = 0
    num_lm_unsuccessful_iterations: int = 0
    num_cg_iterations: int = 0
    final_trust_region_radius: float = 0.0
    runtime_seconds: float = 0.0

    # Committed MSE values, starting with the initial MSE
    mse_history: List[float] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.state in (LMState.CONVERGED_ABSOLUTE, LMState.CONVERGED_RELATIVE)

    def summary(self) -> str:
        return (
            f"Bundle Adjustment Status:\n"
            f"  State: {self.state.value}\n"
            f"  Initial MSE: {self.initial_mse:.6g}\n"
            f"  Final MSE: {self.final_mse:.6g}\n"
            f"  LM iterations: {self.num_lm_iterations} "
            f"({self.num_lm_successful_iterations} successful, "
            f"{self.num_lm_unsuccessful_iterations} unsuccessful)\n"
            f"  CG iterations: {self.num_cg_iterations}\n"
            f"  Trust region radius: {self.final_trust_region_radius:.6g}\n"
            f"  Runtime: {self.runtime_seconds:.3f}s"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "initial_mse": self.initial_mse,
            "final_mse": self.final_mse,
            "num_lm_iterations": self.num_lm_iterations,
            "num_lm_successful_iterations": self.num_lm_successful_iterations,
            "num_lm_unsuccessful_iterations": self.num_lm_unsuccessful_iterations,
            "num_cg_iterations": self.num_cg_iterations,
            "final_trust_region_radius": self.final_trust_region_radius,
            "runtime_seconds": self.runtime_seconds,
            "mse_history": list(self.mse_history),
        }


class BundleAdjuster:
    """
    Levenberg-Marquardt bundle adjuster

    Jointly refines camera parameters (focal length, radial distortion, pose)
    and 3D point positions with a Schur complement solver.
    """

    def __init__(self, config: Optional[BundleAdjusterConfig] = None):
        """
        Args:
            config: BundleAdjusterConfig or None (uses defaults)
        """
        self.config = config or BundleAdjusterConfig()
        self.logger = logging.getLogger(__name__)

        self.solver = SchurComplementSolver(
            self.config.linear_solver, camera_block_dim=self.config.num_camera_params
        )

    def optimize(
        self,
        cameras: List[Camera],
        points: List[Point3D],
        observations: Sequence[Observation],
    ) -> BundleAdjustmentStatus:
        """
        Run bundle adjustment

        Args:
            cameras: Initial cameras, refined in place
            points: Initial 3D points, refined in place
            observations: Observations referencing cameras and points by index

        Returns:
            Run statistics
        """
        problem = BundleProblem.from_records(cameras, points, observations)
        status = self.optimize_problem(problem)
        problem.write_back(cameras, points)
        return status

    def optimize_problem(self, problem: BundleProblem) -> BundleAdjustmentStatus:
        """Run bundle adjustment on a packed problem, committing updates in place"""
        start_time = time.time()
        config = self.config
        trust_region = config.trust_region
        num_threads = config.num_threads

        residuals = evaluate_residuals(problem, num_threads=num_threads)
        current_mse = compute_mse(residuals)
        radius = trust_region.clamp(trust_region.initial_radius)

        status = BundleAdjustmentStatus(
            initial_mse=current_mse,
            final_mse=current_mse,
            mse_history=[current_mse],
        )

        self.logger.info(
            f"Starting bundle adjustment: {problem.num_cameras} cameras, "
            f"{problem.num_points} points, {problem.num_observations} observations, "
            f"initial MSE {current_mse:.6g}"
        )

        progress_bar = tqdm(total=config.max_iterations, desc="Bundle Adjustment",
                            disable=not config.show_progress)
        try:
            lm_iter = 0
            while True:
                if current_mse < config.mse_threshold:
                    self.logger.info("BA: Satisfied MSE threshold.")
                    status.state = LMState.CONVERGED_ABSOLUTE
                    break

                jac_cams, jac_points = evaluate_jacobian(problem, num_threads=num_threads)
                delta, solver_status = self.solver.solve(jac_cams, jac_points, residuals, radius)
                status.num_cg_iterations += solver_status.num_cg_iterations
                status.num_lm_iterations += 1

                new_mse = current_mse
                new_residuals = None
                if solver_status.success:
                    # Canonical parameters stay untouched until the step is accepted
                    new_residuals = evaluate_residuals(problem, delta, num_threads=num_threads)
                    new_mse = compute_mse(new_residuals)

                if solver_status.success and new_mse < current_mse:
                    delta_mse_ratio = 1.0 - new_mse / current_mse
                    self.logger.info(
                        f"BA: #{lm_iter:<2d} success, MSE {current_mse:11.6g} -> {new_mse:11.6g}, "
                        f"CG {solver_status.num_cg_iterations:3d}, TRR {radius:g}, "
                        f"MSE Ratio: {delta_mse_ratio:g}"
                    )

                    problem.commit(delta)
                    residuals = new_residuals
                    current_mse = new_mse
                    status.num_lm_successful_iterations += 1
                    status.mse_history.append(current_mse)

                    radius = trust_region.clamp(radius * trust_region.gain)

                    if delta_mse_ratio < config.relative_mse_threshold:
                        self.logger.info(
                            f"BA: Satisfied delta mse ratio threshold of {config.relative_mse_threshold:g}"
                        )
                        status.state = LMState.CONVERGED_RELATIVE
                        break
                else:
                    self.logger.info(
                        f"BA: #{lm_iter:<2d} failure, MSE {current_mse:11.6g}, "
                        f"CG {solver_status.num_cg_iterations:3d}, TRR {radius:g}"
                    )
                    status.num_lm_unsuccessful_iterations += 1
                    radius = trust_region.clamp(radius * trust_region.decrement)

                progress_bar.update(1)
                progress_bar.set_postfix({"mse": current_mse, "trr": radius})

                if lm_iter + 1 >= config.max_iterations:
                    self.logger.info(f"BA: Reached maximum LM iterations of {config.max_iterations}")
                    status.state = LMState.EXHAUSTED
                    break
                lm_iter += 1
        finally:
            progress_bar.close()

        status.final_mse = current_mse
        status.final_trust_region_radius = radius
        status.runtime_seconds = time.time() - start_time

        self.logger.info(
            f"Bundle adjustment finished in {status.runtime_seconds:.2f}s: {status.state.value}, "
            f"MSE {status.initial_mse:.6g} -> {status.final_mse:.6g}"
        )
        return status
