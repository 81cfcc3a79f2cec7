"""
Unit tests for residual and Jacobian evaluation
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sfm_ba.core.camera_model import Camera, Point3D, Observation, rodrigues_to_matrix
from sfm_ba.core.problem import BundleProblem
from sfm_ba.core.reprojection import compute_mse, evaluate_jacobian, evaluate_residuals
from sfm_ba.utils.synthetic_scene import generate_scene, perturb_scene


def make_problem(seed=0, num_cameras=3, num_points=20):
    """Perturbed synthetic problem with distortion and non-trivial poses"""
    scene = generate_scene(
        num_cameras=num_cameras,
        num_points=num_points,
        focal_length=2.0,
        distortion=(0.05, -0.01),
        visibility=0.8,
        seed=seed,
    )
    scene = perturb_scene(scene, seed=seed + 1)
    return BundleProblem.from_records(scene.cameras, scene.points, scene.observations)


class TestResiduals:
    """Test residual evaluation"""

    def test_single_observation(self):
        """Residual is projection minus observation, x then y"""
        cameras = [Camera(focal_length=2.0, translation=[0.0, 0.0, 1.0])]
        points = [Point3D(pos=[1.0, 0.5, 1.0])]
        observations = [Observation(0, 0, [0.25, -0.5])]
        problem = BundleProblem.from_records(cameras, points, observations)

        residuals = evaluate_residuals(problem)

        expected = cameras[0].project(points[0].pos) - observations[0].pos
        np.testing.assert_allclose(residuals, expected)
        assert compute_mse(residuals) == pytest.approx(np.sum(expected ** 2))

    def test_layout_follows_observation_order(self):
        problem = make_problem()
        residuals = evaluate_residuals(problem)
        assert residuals.shape == (2 * problem.num_observations,)

        k = problem.num_observations // 2
        cam = Camera(
            focal_length=problem.focal_lengths[problem.camera_indices[k]],
            distortion=problem.distortions[problem.camera_indices[k]],
            rotation=problem.rotations[problem.camera_indices[k]],
            translation=problem.translations[problem.camera_indices[k]],
        )
        expected = cam.project(problem.points[problem.point_indices[k]]) - problem.observed[k]
        np.testing.assert_allclose(residuals[2 * k:2 * k + 2], expected, rtol=1e-12, atol=1e-14)

    def test_trial_update_leaves_problem_untouched(self):
        problem = make_problem()
        points_before = problem.points.copy()
        rotations_before = problem.rotations.copy()
        delta = np.full(problem.num_parameters, 1e-3)

        trial = evaluate_residuals(problem, delta)

        np.testing.assert_array_equal(problem.points, points_before)
        np.testing.assert_array_equal(problem.rotations, rotations_before)
        np.testing.assert_array_equal(trial, evaluate_residuals(problem.updated(delta)))

    def test_empty_problem(self):
        problem = BundleProblem.from_records([Camera()], [Point3D(pos=[0.0, 0.0, 1.0])], [])
        residuals = evaluate_residuals(problem)
        assert residuals.size == 0
        assert compute_mse(residuals) == 0.0

    def test_point_on_camera_plane_is_non_finite(self):
        """Degenerate geometry propagates as non-finite residuals"""
        problem = BundleProblem.from_records(
            [Camera()], [Point3D(pos=[1.0, 0.0, 0.0])], [Observation(0, 0, [0.0, 0.0])]
        )
        assert not np.all(np.isfinite(evaluate_residuals(problem)))


class TestJacobian:
    """Test analytic Jacobians"""

    def test_shapes_and_sparsity(self):
        problem = make_problem()
        jac_cams, jac_points = evaluate_jacobian(problem)

        assert jac_cams.shape == (2 * problem.num_observations, 9 * problem.num_cameras)
        assert jac_points.shape == (2 * problem.num_observations, 3 * problem.num_points)
        # At most 18 camera and 6 point entries per observation
        assert jac_cams.num_non_zero <= 18 * problem.num_observations
        assert jac_points.num_non_zero <= 6 * problem.num_observations

    def test_matches_finite_differences(self):
        """Analytic derivatives agree with central differences of the residuals"""
        problem = make_problem(num_cameras=2, num_points=5)
        jac_cams, jac_points = evaluate_jacobian(problem)
        analytic = np.hstack([jac_cams.to_dense(), jac_points.to_dense()])

        eps = 1e-6
        numeric = np.zeros_like(analytic)
        for col in range(problem.num_parameters):
            delta = np.zeros(problem.num_parameters)
            delta[col] = eps
            forward = evaluate_residuals(problem, delta)
            backward = evaluate_residuals(problem, -delta)
            numeric[:, col] = (forward - backward) / (2.0 * eps)

        np.testing.assert_allclose(analytic, numeric, rtol=1e-5, atol=1e-6)

    def test_rotation_derivative_at_non_identity_pose(self):
        """Rotation columns are derivatives of the left-multiplied increment"""
        cameras = [Camera(focal_length=1.5, rotation=rodrigues_to_matrix([0.4, -0.3, 0.2]),
                          translation=[0.1, -0.2, 3.0])]
        points = [Point3D(pos=[0.3, 0.4, 1.0])]
        observations = [Observation(0, 0, [0.0, 0.0])]
        problem = BundleProblem.from_records(cameras, points, observations)

        jac_cams, _ = evaluate_jacobian(problem)
        eps = 1e-6
        for col in range(6, 9):
            delta = np.zeros(problem.num_parameters)
            delta[col] = eps
            numeric = (evaluate_residuals(problem, delta) - evaluate_residuals(problem, -delta)) / (2.0 * eps)
            np.testing.assert_allclose(jac_cams.to_dense()[:, col], numeric, rtol=1e-6, atol=1e-8)


class TestDeterminism:
    """Output must not depend on the number of worker threads"""

    @pytest.mark.parametrize("num_threads", [2, 8])
    def test_residuals_identical(self, num_threads):
        problem = make_problem(num_points=40)
        np.testing.assert_array_equal(
            evaluate_residuals(problem, num_threads=1),
            evaluate_residuals(problem, num_threads=num_threads),
        )

    @pytest.mark.parametrize("num_threads", [2, 8])
    def test_jacobian_identical(self, num_threads):
        problem = make_problem(num_points=40)
        serial_cams, serial_points = evaluate_jacobian(problem, num_threads=1)
        parallel_cams, parallel_points = evaluate_jacobian(problem, num_threads=num_threads)

        for serial, parallel in [(serial_cams, parallel_cams), (serial_points, parallel_points)]:
            np.testing.assert_array_equal(serial.csr.indptr, parallel.csr.indptr)
            np.testing.assert_array_equal(serial.csr.indices, parallel.csr.indices)
            np.testing.assert_array_equal(serial.csr.data, parallel.csr.data)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
