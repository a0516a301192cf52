"""
data.py

Volume loading and slice batching for DeepBrainNet brain age prediction.

- Loads T1 volumes (.nii/.nii.gz or Analyze .hdr/.img) with nibabel
- Min-max normalizes each volume to [0, 1]
- Converts the central axial slices into a batch of 3-channel images,
  the input layout the 2D regression network was trained on.
"""

from typing import Sequence

import nibabel as nib
import numpy as np

from .config import NUM_CHANNELS, SLICE_AXIS, SLICE_START, SLICE_STOP
from .errors import DegenerateInputError, IndexOutOfRangeError, InputShapeError


def load_volume(path: str) -> np.ndarray:
    """Read a T1-weighted image as an (X, Y, Z) float array.

    Registered DeepBrainNet inputs are (181, 217, 181) on the MNI grid.
    Converters sometimes append singleton time axes; those are dropped.
    """
    t1 = nib.load(path).get_fdata()
    while t1.ndim > 3 and t1.shape[-1] == 1:
        t1 = t1[..., 0]

    if t1.ndim != 3:
        raise InputShapeError(f"{path}: expected a 3D T1 volume, got shape {t1.shape}")
    return t1


def normalize_volume(vol: np.ndarray) -> np.ndarray:
    """Rescale intensities to [0, 1] over the whole volume."""
    vol = np.asarray(vol, dtype=np.float64)
    vmin = vol.min()
    vmax = vol.max()
    if vmax == vmin:
        raise DegenerateInputError(
            f"Cannot normalize a constant volume (all voxels equal {vmin})"
        )
    return (vol - vmin) / (vmax - vmin)


def slice_indices(start: int = SLICE_START, stop: int = SLICE_STOP) -> np.ndarray:
    """Slice indices used for prediction, ascending, ``stop`` exclusive."""
    if start < 0 or stop <= start:
        raise ValueError(f"Invalid slice range [{start}, {stop})")
    return np.arange(start, stop)


def check_slice_range(shape: Sequence[int], indices: Sequence[int], axis: int = SLICE_AXIS):
    if len(shape) != 3:
        raise InputShapeError(f"Expected a 3D volume, got shape {tuple(shape)}")
    extent = shape[axis]
    bad = [int(i) for i in indices if i < 0 or i >= extent]
    if bad:
        raise IndexOutOfRangeError(
            f"Slice indices {bad[0]}..{bad[-1]} exceed the volume extent {extent} "
            f"along axis {axis} (shape {tuple(shape)})"
        )


def extract_slice(vol: np.ndarray, index: int, axis: int = SLICE_AXIS) -> np.ndarray:
    return np.take(vol, index, axis=axis)


def build_slice_batch(
    vol: np.ndarray,
    indices: Sequence[int],
    axis: int = SLICE_AXIS,
    dtype=np.float32,
) -> np.ndarray:
    """Build the network input for one volume.

    For each slice index i (in the given order):
        - extract the 2D cross-section along ``axis``
        - replicate it into NUM_CHANNELS identical channels

    Returns an array of shape (len(indices), H, W, NUM_CHANNELS). A fresh
    array is allocated on every call.
    """
    check_slice_range(vol.shape, indices, axis)

    slice_shape = tuple(s for d, s in enumerate(vol.shape) if d != axis)
    batch = np.zeros((len(indices),) + slice_shape + (NUM_CHANNELS,), dtype=dtype)
    for j, idx in enumerate(indices):
        batch[j] = extract_slice(vol, idx, axis)[..., np.newaxis]

    return batch
