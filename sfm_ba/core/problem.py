"""
Optimization context for bundle adjustment

Packs the caller's camera, point and observation records into contiguous
arrays owned by the optimizer. Evaluation works on snapshots of this context;
the canonical copy is only changed through `commit`.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .camera_model import Camera, Point3D, Observation, apply_camera_updates, apply_point_updates
from .config import NUM_CAMERA_PARAMS, NUM_POINT_PARAMS


@dataclass
class BundleProblem:
    """Packed cameras, points and observations"""

    focal_lengths: np.ndarray   # (M,)
    distortions: np.ndarray     # (M, 2)
    rotations: np.ndarray       # (M, 3, 3)
    translations: np.ndarray    # (M, 3)
    points: np.ndarray          # (N, 3)
    camera_indices: np.ndarray  # (K,)
    point_indices: np.ndarray   # (K,)
    observed: np.ndarray        # (K, 2)

    @classmethod
    def from_records(
        cls,
        cameras: Sequence[Camera],
        points: Sequence[Point3D],
        observations: Sequence[Observation],
    ) -> "BundleProblem":
        """
        Build a problem from record lists

        Raises:
            ValueError: if an observation references a missing camera or point
        """
        num_cameras = len(cameras)
        num_points = len(points)

        camera_indices = np.array([obs.camera_id for obs in observations], dtype=np.int64)
        point_indices = np.array([obs.point_id for obs in observations], dtype=np.int64)
        observed = np.array([obs.pos for obs in observations], dtype=np.float64).reshape(-1, 2)

        bad_cameras = np.flatnonzero((camera_indices < 0) | (camera_indices >= num_cameras))
        if bad_cameras.size:
            obs_idx = int(bad_cameras[0])
            raise ValueError(
                f"Observation {obs_idx} references camera {camera_indices[obs_idx]}, "
                f"but only {num_cameras} cameras were given"
            )

        bad_points = np.flatnonzero((point_indices < 0) | (point_indices >= num_points))
        if bad_points.size:
            obs_idx = int(bad_points[0])
            raise ValueError(
                f"Observation {obs_idx} references point {point_indices[obs_idx]}, "
                f"but only {num_points} points were given"
            )

        for array in (camera_indices, point_indices, observed):
            array.flags.writeable = False

        return cls(
            focal_lengths=np.array([cam.focal_length for cam in cameras], dtype=np.float64),
            distortions=np.array([cam.distortion for cam in cameras], dtype=np.float64).reshape(-1, 2),
            rotations=np.array([cam.rotation for cam in cameras], dtype=np.float64).reshape(-1, 3, 3),
            translations=np.array([cam.translation for cam in cameras], dtype=np.float64).reshape(-1, 3),
            points=np.array([pt.pos for pt in points], dtype=np.float64).reshape(-1, 3),
            camera_indices=camera_indices,
            point_indices=point_indices,
            observed=observed,
        )

    @property
    def num_cameras(self) -> int:
        return len(self.focal_lengths)

    @property
    def num_points(self) -> int:
        return len(self.points)

    @property
    def num_observations(self) -> int:
        return len(self.camera_indices)

    @property
    def num_camera_parameters(self) -> int:
        return self.num_cameras * NUM_CAMERA_PARAMS

    @property
    def num_parameters(self) -> int:
        return self.num_camera_parameters + self.num_points * NUM_POINT_PARAMS

    def split_update(self, delta: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Split a full update vector into (M, 9) camera and (N, 3) point updates"""
        delta = np.asarray(delta, dtype=np.float64)
        if delta.shape != (self.num_parameters,):
            raise ValueError(
                f"Update vector must have {self.num_parameters} entries, got {delta.shape}"
            )
        split = self.num_camera_parameters
        return (delta[:split].reshape(-1, NUM_CAMERA_PARAMS),
                delta[split:].reshape(-1, NUM_POINT_PARAMS))

    def copy(self) -> "BundleProblem":
        # Observation arrays are read-only and shared between snapshots
        return BundleProblem(
            focal_lengths=self.focal_lengths.copy(),
            distortions=self.distortions.copy(),
            rotations=self.rotations.copy(),
            translations=self.translations.copy(),
            points=self.points.copy(),
            camera_indices=self.camera_indices,
            point_indices=self.point_indices,
            observed=self.observed,
        )

    def updated(self, delta: np.ndarray) -> "BundleProblem":
        """Return a new snapshot with `delta` applied, leaving this one untouched"""
        snapshot = self.copy()
        snapshot.commit(delta)
        return snapshot

    def commit(self, delta: np.ndarray):
        """Apply `delta` to this problem in place"""
        camera_updates, point_updates = self.split_update(delta)
        apply_camera_updates(self.focal_lengths, self.distortions, self.rotations, self.translations,
                             camera_updates)
        apply_point_updates(self.points, point_updates)

    def write_back(self, cameras: List[Camera], points: List[Point3D]):
        """Copy packed values into the caller's records in place"""
        if len(cameras) != self.num_cameras or len(points) != self.num_points:
            raise ValueError("Record lists do not match the problem dimensions")

        for i, camera in enumerate(cameras):
            camera.focal_length = float(self.focal_lengths[i])
            camera.distortion[:] = self.distortions[i]
            camera.rotation[:] = self.rotations[i]
            camera.translation[:] = self.translations[i]

        for i, point in enumerate(points):
            point.pos[:] = self.points[i]
