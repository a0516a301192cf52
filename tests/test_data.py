import nibabel as nib
import numpy as np
import pytest

from brainage.data import (
    build_slice_batch,
    check_slice_range,
    load_volume,
    normalize_volume,
    slice_indices,
)
from brainage.errors import DegenerateInputError, IndexOutOfRangeError, InputShapeError


def test_normalize_volume_spans_unit_range(small_volume):
    norm = normalize_volume(small_volume)
    assert norm.min() == 0.0
    assert norm.max() == 1.0
    assert norm.shape == small_volume.shape


def test_normalize_volume_does_not_modify_input():
    vol = np.array([[[2.0, 4.0], [6.0, 10.0]]])
    before = vol.copy()
    norm = normalize_volume(vol)
    np.testing.assert_array_equal(vol, before)
    np.testing.assert_allclose(norm, [[[0.0, 0.25], [0.5, 1.0]]])


def test_normalize_constant_volume_raises():
    with pytest.raises(DegenerateInputError):
        normalize_volume(np.full((4, 4, 4), 7.0))


def test_default_slice_indices_cover_80_central_slices():
    indices = slice_indices()
    assert len(indices) == 80
    assert indices[0] == 45
    assert indices[-1] == 124
    assert np.all(np.diff(indices) == 1)


def test_slice_indices_rejects_empty_range():
    with pytest.raises(ValueError):
        slice_indices(10, 10)


def test_build_slice_batch_shape_and_channels(small_volume):
    indices = slice_indices(45, 125)
    batch = build_slice_batch(small_volume, indices)

    assert batch.shape == (80, 6, 7, 3)
    assert batch.dtype == np.float32
    for j, idx in enumerate(indices):
        expected = small_volume[:, :, idx].astype(np.float32)
        for c in range(3):
            np.testing.assert_array_equal(batch[j, :, :, c], expected)


def test_build_slice_batch_along_other_axis():
    vol = np.arange(4 * 5 * 6, dtype=float).reshape(4, 5, 6)
    batch = build_slice_batch(vol, [1, 3], axis=0)
    assert batch.shape == (2, 5, 6, 3)
    np.testing.assert_array_equal(batch[1, :, :, 2], vol[3])


def test_build_slice_batch_rejects_short_volume():
    vol = np.ones((6, 7, 124))
    with pytest.raises(IndexOutOfRangeError):
        build_slice_batch(vol, slice_indices())


def test_index_out_of_range_is_an_input_shape_error():
    with pytest.raises(InputShapeError):
        check_slice_range((6, 7, 100), slice_indices())


def test_check_slice_range_rejects_2d_input():
    with pytest.raises(InputShapeError):
        check_slice_range((6, 7), [0])


def test_load_volume_squeezes_trailing_dimension(tmp_path):
    data = np.random.default_rng(2).random((5, 6, 7, 1)).astype(np.float32)
    path = tmp_path / "t1.nii.gz"
    nib.save(nib.Nifti1Image(data, affine=np.eye(4)), str(path))

    vol = load_volume(str(path))
    assert vol.shape == (5, 6, 7)
    np.testing.assert_allclose(vol, data[..., 0], rtol=1e-6)


def test_load_volume_rejects_4d(tmp_path):
    path = tmp_path / "bold.nii.gz"
    nib.save(nib.Nifti1Image(np.zeros((3, 3, 3, 2), dtype=np.float32), np.eye(4)), str(path))
    with pytest.raises(InputShapeError):
        load_volume(str(path))


def test_load_volume_drops_singleton_time_axes(tmp_path):
    data = np.random.default_rng(3).random((5, 6, 7, 1, 1)).astype(np.float32)
    path = tmp_path / "t1_5d.nii.gz"
    nib.save(nib.Nifti1Image(data, affine=np.eye(4)), str(path))

    vol = load_volume(str(path))
    assert vol.shape == (5, 6, 7)
    np.testing.assert_allclose(vol, data[..., 0, 0], rtol=1e-6)
