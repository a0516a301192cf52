"""
DeepBrainNet Brain Age Estimation

Slice-ensemble brain age prediction from T1-weighted MRI using a
pretrained 2D regression network, with optional random affine
perturbations as a stability signal.
"""

__version__ = "1.0.0"

from .data import build_slice_batch, load_volume, normalize_volume
from .estimator import BrainAgeEstimator, BrainAgeResult, estimate_brain_age

__all__ = [
    "BrainAgeEstimator",
    "BrainAgeResult",
    "build_slice_batch",
    "estimate_brain_age",
    "load_volume",
    "normalize_volume",
]
