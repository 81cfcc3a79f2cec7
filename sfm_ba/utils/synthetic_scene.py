"""
Synthetic scenes for bundle adjustment demos and tests
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from ..core.camera_model import Camera, Point3D, Observation, rodrigues_to_matrix


@dataclass
class SyntheticScene:
    """Cameras, points and the observations they generate"""

    cameras: List[Camera] = field(default_factory=list)
    points: List[Point3D] = field(default_factory=list)
    observations: List[Observation] = field(default_factory=list)

    def copy(self) -> "SyntheticScene":
        return SyntheticScene(
            cameras=[cam.copy() for cam in self.cameras],
            points=[pt.copy() for pt in self.points],
            observations=[Observation(obs.camera_id, obs.point_id, obs.pos.copy())
                          for obs in self.observations],
        )


def generate_scene(
    num_cameras: int = 3,
    num_points: int = 50,
    focal_length: float = 500.0,
    distortion: Tuple[float, float] = (0.0, 0.0),
    depth: float = 10.0,
    max_rotation: float = 0.1,
    max_translation: float = 0.5,
    pixel_noise: float = 0.0,
    visibility: float = 1.0,
    seed: Optional[int] = None,
) -> SyntheticScene:
    """
    Generate a random scene in front of a small cluster of cameras

    Points are drawn around (0, 0, depth) and every camera gets a small random
    rotation and translation, so all points stay in front of all cameras.

    Args:
        num_cameras: Number of cameras
        num_points: Number of 3D points
        focal_length: Focal length shared by all cameras
        distortion: Radial distortion (k0, k1) shared by all cameras
        depth: Distance of the point cloud center from the origin along z
        max_rotation: Bound on each axis-angle component (radians)
        max_translation: Bound on each translation component
        pixel_noise: Standard deviation of Gaussian noise added to observations
        visibility: Probability that a camera observes a point; every point
            is kept visible in at least one camera
        seed: Random seed

    Returns:
        SyntheticScene with ground truth parameters
    """
    if num_cameras < 1 or num_points < 1:
        raise ValueError("Scene needs at least one camera and one point")
    if not 0.0 < visibility <= 1.0:
        raise ValueError(f"visibility must be in (0, 1], got {visibility}")

    rng = np.random.default_rng(seed)

    positions = rng.standard_normal((num_points, 3))
    positions[:, 2] += depth
    points = [Point3D(pos=pos) for pos in positions]

    rotvecs = rng.uniform(-max_rotation, max_rotation, (num_cameras, 3))
    translations = rng.uniform(-max_translation, max_translation, (num_cameras, 3))
    cameras = [
        Camera(
            focal_length=focal_length,
            distortion=np.array(distortion, dtype=np.float64),
            rotation=rodrigues_to_matrix(rotvec),
            translation=translation,
        )
        for rotvec, translation in zip(rotvecs, translations)
    ]

    visible = rng.random((num_cameras, num_points)) < visibility
    # Every point needs at least one observation
    unseen = ~visible.any(axis=0)
    visible[rng.integers(0, num_cameras, unseen.sum()), np.flatnonzero(unseen)] = True

    observations = []
    for cam_idx, camera in enumerate(cameras):
        for point_idx in np.flatnonzero(visible[cam_idx]):
            pixel = camera.project(points[point_idx].pos)
            if pixel_noise > 0.0:
                pixel = pixel + rng.normal(0.0, pixel_noise, 2)
            observations.append(Observation(cam_idx, int(point_idx), pixel))

    return SyntheticScene(cameras=cameras, points=points, observations=observations)


def perturb_scene(
    scene: SyntheticScene,
    point_noise: float = 0.05,
    rotation_noise: float = 0.01,
    translation_noise: float = 0.05,
    focal_noise: float = 0.0,
    distortion_noise: float = 0.0,
    seed: Optional[int] = None,
) -> SyntheticScene:
    """
    Return a copy of `scene` with noisy camera and point parameters

    Observations are left unchanged, so the result is a typical bundle
    adjustment starting point.
    """
    rng = np.random.default_rng(seed)
    perturbed = scene.copy()

    for camera in perturbed.cameras:
        if focal_noise > 0.0:
            camera.focal_length += float(rng.normal(0.0, focal_noise))
        if distortion_noise > 0.0:
            camera.distortion += rng.normal(0.0, distortion_noise, 2)
        camera.rotation[:] = rodrigues_to_matrix(rng.normal(0.0, rotation_noise, 3)) @ camera.rotation
        camera.translation += rng.normal(0.0, translation_noise, 3)

    for point in perturbed.points:
        point.pos += rng.normal(0.0, point_noise, 3)

    return perturbed
