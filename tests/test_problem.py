"""
Unit tests for the packed optimization context
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sfm_ba.core.camera_model import Camera, Point3D, Observation, rodrigues_to_matrix
from sfm_ba.core.problem import BundleProblem


def two_camera_records():
    cameras = [
        Camera(focal_length=1.0),
        Camera(focal_length=2.0, distortion=[0.1, 0.0], rotation=rodrigues_to_matrix([0.0, 0.2, 0.0]),
               translation=[1.0, 0.0, 0.0]),
    ]
    points = [Point3D(pos=[0.0, 0.0, 5.0]), Point3D(pos=[1.0, 1.0, 6.0])]
    observations = [
        Observation(0, 0, [0.0, 0.0]),
        Observation(1, 0, [0.1, 0.0]),
        Observation(1, 1, [0.3, 0.2]),
    ]
    return cameras, points, observations


class TestFromRecords:
    """Test packing caller records"""

    def test_dimensions(self):
        problem = BundleProblem.from_records(*two_camera_records())
        assert problem.num_cameras == 2
        assert problem.num_points == 2
        assert problem.num_observations == 3
        assert problem.num_parameters == 2 * 9 + 2 * 3
        np.testing.assert_array_equal(problem.camera_indices, [0, 1, 1])
        np.testing.assert_array_equal(problem.point_indices, [0, 0, 1])

    def test_observations_read_only(self):
        problem = BundleProblem.from_records(*two_camera_records())
        with pytest.raises(ValueError):
            problem.observed[0, 0] = 1.0

    def test_packing_copies_records(self):
        cameras, points, observations = two_camera_records()
        problem = BundleProblem.from_records(cameras, points, observations)
        problem.points[0, 0] = 42.0
        assert points[0].pos[0] == 0.0

    @pytest.mark.parametrize("observation", [
        Observation(2, 0, [0.0, 0.0]),
        Observation(-1, 0, [0.0, 0.0]),
        Observation(0, 5, [0.0, 0.0]),
    ])
    def test_bad_indices_rejected(self, observation):
        cameras, points, observations = two_camera_records()
        with pytest.raises(ValueError):
            BundleProblem.from_records(cameras, points, observations + [observation])


class TestUpdates:
    """Test snapshots and committed updates"""

    def test_updated_leaves_original(self):
        problem = BundleProblem.from_records(*two_camera_records())
        delta = np.arange(problem.num_parameters, dtype=np.float64) * 1e-3

        snapshot = problem.updated(delta)

        assert snapshot.points[1, 2] != problem.points[1, 2]
        np.testing.assert_array_equal(problem.points, [[0.0, 0.0, 5.0], [1.0, 1.0, 6.0]])
        # Observation arrays are shared
        assert snapshot.observed is problem.observed

    def test_commit_layout(self):
        """Camera blocks come first, then points"""
        problem = BundleProblem.from_records(*two_camera_records())
        rotation_before = problem.rotations[1].copy()
        delta = np.zeros(problem.num_parameters)
        delta[9] = 0.5                  # camera 1 focal
        delta[9 + 1:9 + 3] = [0.01, 0.02]
        delta[9 + 3:9 + 6] = [0.0, 1.0, 0.0]
        delta[9 + 6:9 + 9] = [0.0, 0.0, 0.3]
        delta[18 + 3:18 + 6] = [0.5, -0.5, 1.0]

        problem.commit(delta)

        assert problem.focal_lengths[1] == 2.5
        np.testing.assert_allclose(problem.distortions[1], [0.11, 0.02])
        np.testing.assert_allclose(problem.translations[1], [1.0, 1.0, 0.0])
        np.testing.assert_allclose(problem.rotations[1], rodrigues_to_matrix([0.0, 0.0, 0.3]) @ rotation_before)
        np.testing.assert_array_equal(problem.rotations[0], np.eye(3))
        np.testing.assert_allclose(problem.points[1], [1.5, 0.5, 7.0])

    def test_commit_then_negated_commit_restores(self):
        """Committing delta then -delta restores every parameter"""
        problem = BundleProblem.from_records(*two_camera_records())
        original = problem.copy()
        delta = np.zeros(problem.num_parameters)
        delta[0:6] = [0.25, 0.0625, -0.125, 0.5, -0.25, 1.0]
        delta[6:9] = [0.05, -0.02, 0.04]
        delta[9 + 6:9 + 9] = [-0.1, 0.3, 0.2]
        delta[18:24] = [0.125, -0.5, 0.75, 1.0, 2.0, -0.25]

        problem.commit(delta)
        problem.commit(-delta)

        np.testing.assert_array_equal(problem.focal_lengths, original.focal_lengths)
        np.testing.assert_array_equal(problem.distortions, original.distortions)
        np.testing.assert_array_equal(problem.translations, original.translations)
        np.testing.assert_array_equal(problem.points, original.points)
        np.testing.assert_allclose(problem.rotations, original.rotations, atol=1e-12)

    def test_split_update_wrong_size(self):
        problem = BundleProblem.from_records(*two_camera_records())
        with pytest.raises(ValueError):
            problem.split_update(np.zeros(problem.num_parameters - 1))

    def test_write_back_in_place(self):
        cameras, points, observations = two_camera_records()
        translation = cameras[1].translation
        problem = BundleProblem.from_records(cameras, points, observations)
        delta = np.zeros(problem.num_parameters)
        delta[9 + 3] = 2.0
        delta[18:21] = [0.0, 0.0, 1.0]
        problem.commit(delta)

        problem.write_back(cameras, points)

        assert cameras[1].translation is translation
        np.testing.assert_allclose(cameras[1].translation, [3.0, 0.0, 0.0])
        np.testing.assert_allclose(points[0].pos, [0.0, 0.0, 6.0])

    def test_write_back_mismatch(self):
        cameras, points, observations = two_camera_records()
        problem = BundleProblem.from_records(cameras, points, observations)
        with pytest.raises(ValueError):
            problem.write_back(cameras[:1], points)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
