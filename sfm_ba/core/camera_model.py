"""
Parameter model for bundle adjustment

Cameras use a single focal length, two radial distortion coefficients and a
pose (R, t) mapping world points into the camera frame:

    X_cam = R @ X + t
    (x, y) = X_cam[:2] / X_cam[2]
    factor = 1 + r2 * (k0 + k1 * r2),  r2 = x^2 + y^2
    (u, v) = f * factor * (x, y)

Camera updates are 9-vectors [df, dk0, dk1, dtx, dty, dtz, w0, w1, w2]. All
entries are additive except the rotation, which is updated multiplicatively
from the left by the axis-angle increment w: R_new = Rodrigues(w) @ R_old.
"""

from dataclasses import dataclass, field

import numpy as np
from scipy.spatial.transform import Rotation

from .config import NUM_CAMERA_PARAMS, NUM_POINT_PARAMS


@dataclass
class Camera:
    """Camera intrinsics and pose"""

    focal_length: float = 1.0
    distortion: np.ndarray = field(default_factory=lambda: np.zeros(2))
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        self.focal_length = float(self.focal_length)
        self.distortion = np.array(self.distortion, dtype=np.float64).reshape(2)
        self.rotation = np.array(self.rotation, dtype=np.float64).reshape(3, 3)
        self.translation = np.array(self.translation, dtype=np.float64).reshape(3)

    def copy(self) -> "Camera":
        return Camera(
            focal_length=self.focal_length,
            distortion=self.distortion.copy(),
            rotation=self.rotation.copy(),
            translation=self.translation.copy(),
        )

    def set_from(self, other: "Camera"):
        """Overwrite this camera's values in place"""
        self.focal_length = float(other.focal_length)
        self.distortion[:] = other.distortion
        self.rotation[:] = other.rotation
        self.translation[:] = other.translation

    def project(self, point: np.ndarray) -> np.ndarray:
        """Project a single world point to pixel coordinates"""
        xc, yc, zc = self.rotation @ np.asarray(point, dtype=np.float64) + self.translation
        x, y = xc / zc, yc / zc
        r2 = x * x + y * y
        factor = 1.0 + r2 * (self.distortion[0] + self.distortion[1] * r2)
        return self.focal_length * factor * np.array([x, y])


@dataclass
class Point3D:
    """3D point position"""

    pos: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        self.pos = np.array(self.pos, dtype=np.float64).reshape(3)

    def copy(self) -> "Point3D":
        return Point3D(pos=self.pos.copy())

    def set_from(self, other: "Point3D"):
        self.pos[:] = other.pos


@dataclass
class Observation:
    """Observed pixel of point `point_id` in camera `camera_id`"""

    camera_id: int
    point_id: int
    pos: np.ndarray = field(default_factory=lambda: np.zeros(2))

    def __post_init__(self):
        self.camera_id = int(self.camera_id)
        self.point_id = int(self.point_id)
        self.pos = np.array(self.pos, dtype=np.float64).reshape(2)


def rodrigues_to_matrix(rotvec: np.ndarray) -> np.ndarray:
    """
    Convert axis-angle vector(s) to rotation matrices

    Args:
        rotvec: Axis-angle vector, shape (3,) or (N, 3)

    Returns:
        Rotation matrix, shape (3, 3) or (N, 3, 3). A zero vector maps to identity.
    """
    rotvec = np.asarray(rotvec, dtype=np.float64)
    return Rotation.from_rotvec(rotvec).as_matrix()


def apply_camera_updates(focal_lengths: np.ndarray, distortions: np.ndarray, rotations: np.ndarray,
                         translations: np.ndarray, updates: np.ndarray):
    """
    Apply camera updates to packed camera arrays in place

    Args:
        focal_lengths: (M,) focal lengths
        distortions: (M, 2) radial distortion coefficients
        rotations: (M, 3, 3) rotation matrices
        translations: (M, 3) translations
        updates: (M, 9) camera updates
    """
    updates = np.asarray(updates, dtype=np.float64).reshape(-1, NUM_CAMERA_PARAMS)
    focal_lengths += updates[:, 0]
    distortions += updates[:, 1:3]
    translations += updates[:, 3:6]
    if len(updates):
        # Left composition: R_new = dR @ R_old
        rotations[:] = np.matmul(rodrigues_to_matrix(updates[:, 6:9]), rotations)


def apply_point_updates(positions: np.ndarray, updates: np.ndarray):
    """Apply additive (N, 3) point updates to packed positions in place"""
    positions += np.asarray(updates, dtype=np.float64).reshape(-1, NUM_POINT_PARAMS)


def update_camera(camera: Camera, update: np.ndarray) -> Camera:
    """Return a new camera with a 9-parameter update applied"""
    update = np.asarray(update, dtype=np.float64)
    if update.shape != (NUM_CAMERA_PARAMS,):
        raise ValueError(f"Camera update must have {NUM_CAMERA_PARAMS} entries, got {update.shape}")

    updated = camera.copy()
    focal_length = np.array([updated.focal_length])
    apply_camera_updates(focal_length, updated.distortion[None], updated.rotation[None],
                         updated.translation[None], update[None])
    updated.focal_length = float(focal_length[0])
    return updated


def update_point(point: Point3D, update: np.ndarray) -> Point3D:
    """Return a new point with an additive 3-parameter update applied"""
    update = np.asarray(update, dtype=np.float64)
    if update.shape != (NUM_POINT_PARAMS,):
        raise ValueError(f"Point update must have {NUM_POINT_PARAMS} entries, got {update.shape}")

    updated = point.copy()
    apply_point_updates(updated.pos[None], update[None])
    return updated
