"""
Utility functions for bundle adjustment
"""

from .quality_metrics import QualityMetrics
from .synthetic_scene import SyntheticScene, generate_scene, perturb_scene

__all__ = [
    "QualityMetrics",
    "SyntheticScene",
    "generate_scene",
    "perturb_scene",
]
