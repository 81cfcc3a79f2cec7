"""
SfM Bundle Adjustment Package
Levenberg-Marquardt bundle adjustment with a Schur complement solver
"""

__version__ = "0.1.0"


# Lazy imports - scipy is only loaded when a component is actually used
def __getattr__(name):
    """Lazy import for module attributes"""

    if name == "BundleAdjuster":
        from .core.lm_optimizer import BundleAdjuster
        return BundleAdjuster
    elif name == "BundleAdjustmentStatus":
        from .core.lm_optimizer import BundleAdjustmentStatus
        return BundleAdjustmentStatus
    elif name == "LMState":
        from .core.lm_optimizer import LMState
        return LMState
    elif name == "BundleAdjusterConfig":
        from .core.config import BundleAdjusterConfig
        return BundleAdjusterConfig
    elif name == "TrustRegionConfig":
        from .core.config import TrustRegionConfig
        return TrustRegionConfig
    elif name == "LinearSolverConfig":
        from .core.config import LinearSolverConfig
        return LinearSolverConfig
    elif name == "Camera":
        from .core.camera_model import Camera
        return Camera
    elif name == "Point3D":
        from .core.camera_model import Point3D
        return Point3D
    elif name == "Observation":
        from .core.camera_model import Observation
        return Observation
    # Utilities
    elif name == "QualityMetrics":
        from .utils.quality_metrics import QualityMetrics
        return QualityMetrics
    elif name == "generate_scene":
        from .utils.synthetic_scene import generate_scene
        return generate_scene
    elif name == "perturb_scene":
        from .utils.synthetic_scene import perturb_scene
        return perturb_scene

    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    # Optimizer
    "BundleAdjuster",
    "BundleAdjustmentStatus",
    "LMState",

    # Configuration
    "BundleAdjusterConfig",
    "TrustRegionConfig",
    "LinearSolverConfig",

    # Parameter model
    "Camera",
    "Point3D",
    "Observation",

    # Utilities
    "QualityMetrics",
    "generate_scene",
    "perturb_scene",
]
