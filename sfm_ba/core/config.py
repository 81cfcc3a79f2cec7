"""
Configuration management for Levenberg-Marquardt Bundle Adjustment

Uses dataclasses for type safety and validation.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any

import psutil


# Parameters per camera: focal, 2 radial distortion, 3 translation, 3 rotation
NUM_CAMERA_PARAMS = 9
NUM_POINT_PARAMS = 3


@dataclass
class TrustRegionConfig:
    """Trust region radius control (damping = 1 / radius)"""

    initial_radius: float = 1000.0

    # Applied after a successful / unsuccessful iteration
    gain: float = 10.0
    decrement: float = 0.1

    # Optional clamp, None keeps the radius unbounded
    min_radius: Optional[float] = None
    max_radius: Optional[float] = None

    def __post_init__(self):
        """Validate radius settings"""
        if not self.initial_radius > 0.0:
            raise ValueError(f"initial_radius must be positive, got {self.initial_radius}")
        if not self.gain > 1.0:
            raise ValueError(f"gain must be > 1, got {self.gain}")
        if not (0.0 < self.decrement < 1.0):
            raise ValueError(f"decrement must be in (0, 1), got {self.decrement}")
        if self.min_radius is not None and self.max_radius is not None:
            if self.min_radius > self.max_radius:
                raise ValueError(
                    f"min_radius ({self.min_radius}) exceeds max_radius ({self.max_radius})"
                )

    def clamp(self, radius: float) -> float:
        """Apply the optional radius bounds"""
        if self.min_radius is not None:
            radius = max(radius, self.min_radius)
        if self.max_radius is not None:
            radius = min(radius, self.max_radius)
        return radius


@dataclass
class LinearSolverConfig:
    """Configuration for the preconditioned conjugate gradient inner solve"""

    cg_max_iterations: int = 1000

    # Compared against the squared residual norm
    cg_tolerance: float = 1e-20

    def __post_init__(self):
        if self.cg_max_iterations < 1:
            raise ValueError(f"cg_max_iterations must be >= 1, got {self.cg_max_iterations}")
        if self.cg_tolerance < 0.0:
            raise ValueError(f"cg_tolerance must be non-negative, got {self.cg_tolerance}")


@dataclass
class BundleAdjusterConfig:
    """Main configuration for Levenberg-Marquardt bundle adjustment"""

    # Sub-configurations
    trust_region: TrustRegionConfig = field(default_factory=TrustRegionConfig)
    linear_solver: LinearSolverConfig = field(default_factory=LinearSolverConfig)

    # Stop when the mean squared error drops below this value
    mse_threshold: float = 1e-16

    # Stop when a successful step improves the MSE by less than this ratio
    relative_mse_threshold: float = 1e-8

    # Maximum LM iterations
    max_iterations: int = 100

    # Fixed for the focal + radial distortion + pose camera model
    num_camera_params: int = NUM_CAMERA_PARAMS

    # Worker threads for residual / Jacobian evaluation (None = auto)
    num_threads: Optional[int] = None

    # Show a tqdm progress bar over LM iterations
    show_progress: bool = False

    # Logging level for the application's handler: "DEBUG", "INFO", "WARNING", "ERROR"
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration"""
        if self.num_camera_params != NUM_CAMERA_PARAMS:
            raise ValueError(
                f"num_camera_params is fixed at {NUM_CAMERA_PARAMS} for this camera model, "
                f"got {self.num_camera_params}"
            )

        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")

        if self.mse_threshold < 0.0:
            raise ValueError(f"mse_threshold must be non-negative, got {self.mse_threshold}")

        if self.relative_mse_threshold < 0.0:
            raise ValueError(
                f"relative_mse_threshold must be non-negative, got {self.relative_mse_threshold}"
            )

        if self.num_threads is None:
            self.num_threads = min(psutil.cpu_count() or 1, 8)
        elif self.num_threads < 1:
            raise ValueError(f"num_threads must be >= 1, got {self.num_threads}")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR"]:
            raise ValueError(f"Invalid log_level: {self.log_level}")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "BundleAdjusterConfig":
        """Create config from dictionary (for JSON / YAML loading)"""
        config_dict = dict(config_dict)
        trust_region = TrustRegionConfig(**config_dict.pop("trust_region", {}))
        linear_solver = LinearSolverConfig(**config_dict.pop("linear_solver", {}))

        return cls(
            trust_region=trust_region,
            linear_solver=linear_solver,
            **config_dict
        )

    def to_dict(self) -> Dict[str, Any]:
        """Export config to dictionary"""
        return {
            "trust_region": self.trust_region.__dict__.copy(),
            "linear_solver": self.linear_solver.__dict__.copy(),
            "mse_threshold": self.mse_threshold,
            "relative_mse_threshold": self.relative_mse_threshold,
            "max_iterations": self.max_iterations,
            "num_camera_params": self.num_camera_params,
            "num_threads": self.num_threads,
            "show_progress": self.show_progress,
            "log_level": self.log_level,
        }
