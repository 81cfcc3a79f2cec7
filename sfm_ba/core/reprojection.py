"""
Reprojection residuals and analytic Jacobians

Observations are split into contiguous chunks that are evaluated on a thread
pool and joined in chunk order, so the output never depends on the number of
workers. Points on the camera plane (zc == 0) produce non-finite values; the
caller is responsible for supplying sane initial geometry.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

import numpy as np

from .config import NUM_CAMERA_PARAMS, NUM_POINT_PARAMS
from .problem import BundleProblem
from .sparse_matrix import SparseMatrix

logger = logging.getLogger(__name__)


def _chunk_bounds(num_items: int, num_chunks: int) -> List[Tuple[int, int]]:
    """Split [0, num_items) into at most `num_chunks` contiguous ranges"""
    num_chunks = max(1, min(num_chunks, num_items))
    edges = np.linspace(0, num_items, num_chunks + 1).astype(np.int64)
    return [(int(start), int(stop)) for start, stop in zip(edges[:-1], edges[1:]) if stop > start]


def _map_chunks(func: Callable, num_items: int, num_threads: int) -> List:
    """Run `func(start, stop)` over observation chunks, results in chunk order"""
    bounds = _chunk_bounds(num_items, num_threads)
    if len(bounds) <= 1:
        return [func(start, stop) for start, stop in bounds]

    with ThreadPoolExecutor(max_workers=num_threads) as executor:
        futures = [executor.submit(func, start, stop) for start, stop in bounds]
        return [future.result() for future in futures]


def _camera_space(problem: BundleProblem, start: int, stop: int):
    """Rotated points R @ X and camera-space points R @ X + t for a chunk"""
    cams = problem.camera_indices[start:stop]
    R = problem.rotations[cams]
    X = problem.points[problem.point_indices[start:stop]]
    t = problem.translations[cams]

    # Written out per component so every element is summed in the same order
    rx = R[:, 0, 0] * X[:, 0] + R[:, 0, 1] * X[:, 1] + R[:, 0, 2] * X[:, 2]
    ry = R[:, 1, 0] * X[:, 0] + R[:, 1, 1] * X[:, 1] + R[:, 1, 2] * X[:, 2]
    rz = R[:, 2, 0] * X[:, 0] + R[:, 2, 1] * X[:, 1] + R[:, 2, 2] * X[:, 2]

    return (rx, ry, rz), (rx + t[:, 0], ry + t[:, 1], rz + t[:, 2])


def _residual_chunk(problem: BundleProblem, start: int, stop: int) -> np.ndarray:
    cams = problem.camera_indices[start:stop]
    focal = problem.focal_lengths[cams]
    k0 = problem.distortions[cams, 0]
    k1 = problem.distortions[cams, 1]

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        _, (xc, yc, zc) = _camera_space(problem, start, stop)
        x = xc / zc
        y = yc / zc
        r2 = x * x + y * y
        factor = 1.0 + r2 * (k0 + k1 * r2)

        residuals = np.empty((stop - start, 2))
        residuals[:, 0] = x * factor * focal - problem.observed[start:stop, 0]
        residuals[:, 1] = y * factor * focal - problem.observed[start:stop, 1]

    return residuals.reshape(-1)


def evaluate_residuals(problem: BundleProblem, delta: Optional[np.ndarray] = None,
                       num_threads: int = 1) -> np.ndarray:
    """
    Compute the reprojection residual vector

    Args:
        problem: Cameras, points and observations (not modified)
        delta: Optional parameter update applied to a private copy before projecting
        num_threads: Number of worker threads

    Returns:
        Residuals of length 2 * num_observations, (x, y) interleaved per observation
    """
    if delta is not None:
        problem = problem.updated(delta)

    chunks = _map_chunks(
        lambda start, stop: _residual_chunk(problem, start, stop),
        problem.num_observations, num_threads,
    )
    if not chunks:
        return np.zeros(0)
    return np.concatenate(chunks)


def compute_mse(residuals: np.ndarray) -> float:
    """Mean over observations of the squared reprojection error"""
    num_observations = residuals.size // 2
    if num_observations == 0:
        return 0.0
    return float(np.sum(residuals * residuals)) / num_observations


def _jacobian_chunk(problem: BundleProblem, start: int, stop: int):
    """Camera (n, 2, 9) and point (n, 2, 3) Jacobian blocks for a chunk"""
    cams = problem.camera_indices[start:stop]
    f = problem.focal_lengths[cams]
    k0 = problem.distortions[cams, 0]
    k1 = problem.distortions[cams, 1]
    R = problem.rotations[cams]

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        (rx, ry, rz), (xc, yc, zc) = _camera_space(problem, start, stop)
        x = xc / zc
        y = yc / zc
        r2 = x * x + y * y
        distort = 1.0 + (k0 + k1 * r2) * r2

        # d(distort)/d(xc, yc, zc) through r2
        distort_deriv_r2 = k0 + 2.0 * k1 * r2
        distort_deriv_xc = distort_deriv_r2 * 2.0 * x / zc
        distort_deriv_yc = distort_deriv_r2 * 2.0 * y / zc
        distort_deriv_zc = distort_deriv_r2 * -2.0 * r2 / zc

        # u = f * distort * x, v = f * distort * y
        u_deriv_xc = f * x * distort_deriv_xc + f * distort / zc
        u_deriv_yc = f * x * distort_deriv_yc
        u_deriv_zc = f * x * distort_deriv_zc - f * distort * x / zc
        v_deriv_xc = f * y * distort_deriv_xc
        v_deriv_yc = f * y * distort_deriv_yc + f * distort / zc
        v_deriv_zc = f * y * distort_deriv_zc - f * distort * y / zc

        cam_block = np.empty((stop - start, 2, NUM_CAMERA_PARAMS))
        point_block = np.empty((stop - start, 2, NUM_POINT_PARAMS))

        for row, (d_xc, d_yc, d_zc, coord) in enumerate(
            [(u_deriv_xc, u_deriv_yc, u_deriv_zc, x), (v_deriv_xc, v_deriv_yc, v_deriv_zc, y)]
        ):
            # Focal length and radial distortion
            cam_block[:, row, 0] = distort * coord
            cam_block[:, row, 1] = f * coord * r2
            cam_block[:, row, 2] = f * coord * r2 * r2

            # Translation
            cam_block[:, row, 3] = d_xc
            cam_block[:, row, 4] = d_yc
            cam_block[:, row, 5] = d_zc

            # Incremental rotation at identity: d(R X)/dw = -[R X]x
            cam_block[:, row, 6] = d_yc * -rz + d_zc * ry
            cam_block[:, row, 7] = d_xc * rz + d_zc * -rx
            cam_block[:, row, 8] = d_xc * -ry + d_yc * rx

            # Point coordinates: d(R X + t)/dX = R
            for col in range(NUM_POINT_PARAMS):
                point_block[:, row, col] = d_xc * R[:, 0, col] + d_yc * R[:, 1, col] + d_zc * R[:, 2, col]

    return cam_block, point_block


def _block_triplets(obs_index: np.ndarray, param_index: np.ndarray, block: np.ndarray):
    """Row / column indices for per-observation (2, width) Jacobian blocks"""
    width = block.shape[2]
    rows = 2 * obs_index[:, None, None] + np.arange(2)[None, :, None]
    cols = width * param_index[:, None, None] + np.arange(width)[None, None, :]
    rows, cols = np.broadcast_arrays(rows, cols)
    return rows.reshape(-1), cols.reshape(-1), block.reshape(-1)


def evaluate_jacobian(problem: BundleProblem, num_threads: int = 1) -> Tuple[SparseMatrix, SparseMatrix]:
    """
    Compute the analytic Jacobian of the residuals

    Returns:
        (Jc, Jp): camera Jacobian of shape (2K, 9M) and point Jacobian of
        shape (2K, 3N) for K observations, M cameras and N points
    """
    num_rows = 2 * problem.num_observations
    jac_cams = SparseMatrix.allocate(num_rows, problem.num_cameras * NUM_CAMERA_PARAMS)
    jac_points = SparseMatrix.allocate(num_rows, problem.num_points * NUM_POINT_PARAMS)

    def chunk_triplets(start: int, stop: int):
        cam_block, point_block = _jacobian_chunk(problem, start, stop)
        obs_index = np.arange(start, stop)
        return (
            _block_triplets(obs_index, problem.camera_indices[start:stop], cam_block),
            _block_triplets(obs_index, problem.point_indices[start:stop], point_block),
        )

    chunks = _map_chunks(chunk_triplets, problem.num_observations, num_threads)
    if not chunks:
        return jac_cams, jac_points

    cam_triplets = [np.concatenate(parts) for parts in zip(*(chunk[0] for chunk in chunks))]
    point_triplets = [np.concatenate(parts) for parts in zip(*(chunk[1] for chunk in chunks))]

    jac_cams.set_from_triplets(*cam_triplets)
    jac_points.set_from_triplets(*point_triplets)
    return jac_cams, jac_points
