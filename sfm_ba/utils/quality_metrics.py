"""
Reprojection quality metrics for bundle adjustment results
"""

import logging
from typing import Any, Dict, Sequence

import numpy as np

from ..core.camera_model import Camera, Point3D, Observation
from ..core.problem import BundleProblem
from ..core.reprojection import evaluate_residuals

logger = logging.getLogger(__name__)


class QualityMetrics:
    """Reprojection error statistics for cameras, points and observations"""

    def __init__(self, num_threads: int = 1):
        self.num_threads = num_threads

    def reprojection_errors(
        self,
        cameras: Sequence[Camera],
        points: Sequence[Point3D],
        observations: Sequence[Observation],
    ) -> np.ndarray:
        """Euclidean reprojection error (pixels) of every observation, in order"""
        problem = BundleProblem.from_records(cameras, points, observations)
        residuals = evaluate_residuals(problem, num_threads=self.num_threads)
        return np.linalg.norm(residuals.reshape(-1, 2), axis=1)

    def evaluate(
        self,
        cameras: Sequence[Camera],
        points: Sequence[Point3D],
        observations: Sequence[Observation],
    ) -> Dict[str, Any]:
        """
        Summarize reprojection errors

        Returns:
            Dictionary with observation count, mse (mean squared error per
            observation, as minimized by the adjuster), rmse, mean, median and
            max error, plus per-camera mean errors
        """
        errors = self.reprojection_errors(cameras, points, observations)

        metrics = {
            'num_observations': int(errors.size),
            'mse': 0.0,
            'rmse': 0.0,
            'mean_error': 0.0,
            'median_error': 0.0,
            'max_error': 0.0,
            'per_camera_mean_error': {},
        }

        if errors.size == 0:
            return metrics

        mse = float(np.mean(errors * errors))
        metrics.update({
            'mse': mse,
            'rmse': float(np.sqrt(mse)),
            'mean_error': float(np.mean(errors)),
            'median_error': float(np.median(errors)),
            'max_error': float(np.max(errors)),
        })

        camera_ids = np.array([obs.camera_id for obs in observations])
        for cam_id in np.unique(camera_ids):
            metrics['per_camera_mean_error'][int(cam_id)] = float(np.mean(errors[camera_ids == cam_id]))

        if not np.all(np.isfinite(errors)):
            logger.warning("Non-finite reprojection errors (points on or behind the camera plane?)")

        return metrics

    @staticmethod
    def compare(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, float]:
        """Relative improvement of the scalar error metrics between two evaluations"""
        improvement = {}
        for key in ['mse', 'rmse', 'mean_error', 'median_error', 'max_error']:
            if before[key] > 0.0:
                improvement[key] = 1.0 - after[key] / before[key]
            else:
                improvement[key] = 0.0
        return improvement
