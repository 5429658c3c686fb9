"""Tests for mask_compose module."""

import nibabel as nib
import numpy as np
import pytest

from conftest import small_atlas
from mask_compose import (
    MaskWriteFailed,
    compose_mask,
    inspection_filename,
    label_mask,
    voxel_counts,
    write_mask,
)
from volume_geometry import VolumeGeometry


class TestComposeMask:
    """Set-membership mask composition."""

    def test_membership_matches_definition(self):
        """mask[v] == 1 exactly when round(atlas[v]) is selected."""
        rng = np.random.default_rng(0)
        atlas = rng.uniform(-0.5, 8.5, size=(9, 7, 5))
        selected = {1, 4, 7}
        mask = compose_mask(atlas, [4, 1, 7])
        expected = np.isin(np.rint(atlas), list(selected))
        np.testing.assert_array_equal(mask.astype(bool), expected)

    def test_rounds_before_membership(self):
        """Float codes are rounded, not truncated."""
        atlas = np.array([2.4, 2.6, 2.999, 3.2, 1.5001]).reshape(5, 1, 1)
        mask = compose_mask(atlas, [3])
        assert mask.ravel().tolist() == [0, 1, 1, 1, 0]

    def test_binary_uint8(self):
        """Output is uint8 with values in {0, 1} and the input shape."""
        atlas = small_atlas()
        mask = compose_mask(atlas, [2, 5])
        assert mask.dtype == np.uint8
        assert mask.shape == atlas.shape
        assert set(np.unique(mask).tolist()) <= {0, 1}

    def test_idempotent(self):
        """Same inputs give bitwise identical output."""
        atlas = small_atlas().astype(float)
        a = compose_mask(atlas, [1, 3])
        b = compose_mask(atlas, [1, 3])
        assert a.tobytes() == b.tobytes()

    def test_background_not_selected(self):
        """Background voxels are 0 unless code 0 is selected."""
        atlas = small_atlas()
        mask = compose_mask(atlas, [1, 2, 3, 4, 5])
        assert np.all(mask[atlas == 0] == 0)
        assert np.all(mask[atlas != 0] == 1)

    def test_input_not_modified(self):
        """The atlas array is left untouched."""
        atlas = np.full((2, 2, 2), 1.4)
        compose_mask(atlas, [1])
        assert np.all(atlas == 1.4)

    def test_label_mask(self):
        """Single-label mask equals a one-element selection."""
        atlas = small_atlas()
        np.testing.assert_array_equal(label_mask(atlas, 4), (atlas == 4).astype(np.uint8))


class TestVoxelCounts:
    """Voxel counts per selected code."""

    def test_counts_in_selection_order(self):
        """Counts are keyed by code in selection order, absent codes are 0."""
        atlas = small_atlas()
        counts = voxel_counts(atlas, [3, 1, 9])
        assert list(counts) == [3, 1, 9]
        assert counts[1] == int((atlas == 1).sum())
        assert counts[3] == int((atlas == 3).sum())
        assert counts[9] == 0


class TestWriteMask:
    """Writing masks to NIfTI."""

    def test_write_and_reload(self, tmp_path):
        """Mask is written as uint8 on the reference affine."""
        A = np.diag([2.0, 2.0, 2.0, 1.0])
        A[:3, 3] = [-10.0, -12.0, -8.0]
        geom = VolumeGeometry((10, 12, 8), A)
        mask = compose_mask(small_atlas(), [2])
        out = write_mask(tmp_path / "sub" / "mask.nii", mask, geom, "Combined mask from atlas: atlas.nii")

        img = nib.load(str(out))
        assert img.get_data_dtype() == np.uint8
        np.testing.assert_allclose(img.affine, A)
        np.testing.assert_array_equal(np.asanyarray(img.dataobj), mask)
        assert img.header["descrip"].tobytes().startswith(b"Combined mask from atlas")

    def test_long_description_truncated(self, tmp_path):
        """Descriptions longer than the header field are cut, not rejected."""
        geom = VolumeGeometry((2, 2, 2), np.eye(4))
        write_mask(tmp_path / "m.nii", np.zeros((2, 2, 2), np.uint8), geom, "x" * 200)
        assert (tmp_path / "m.nii").exists()

    def test_shape_mismatch(self, tmp_path):
        """A mask not on the reference grid is refused."""
        geom = VolumeGeometry((2, 2, 2), np.eye(4))
        with pytest.raises(MaskWriteFailed, match="does not match"):
            write_mask(tmp_path / "m.nii", np.zeros((3, 2, 2), np.uint8), geom)

    def test_unwritable_location(self, tmp_path):
        """An output path below a regular file raises MaskWriteFailed."""
        blocker = tmp_path / "file"
        blocker.write_text("x")
        geom = VolumeGeometry((2, 2, 2), np.eye(4))
        with pytest.raises(MaskWriteFailed):
            write_mask(blocker / "m.nii", np.zeros((2, 2, 2), np.uint8), geom)


def test_inspection_filename():
    """Inspection filenames carry a zero-padded code and a safe name."""
    assert inspection_filename(7, "Left Hippocampus/CA1") == "roi_007_Left_Hippocampus_CA1.nii"


class TestWriteMaskFailures:
    """A failed write never leaves a mask behind."""

    def test_unknown_suffix(self, tmp_path):
        """A suffix nibabel cannot write is reported as MaskWriteFailed."""
        geom = VolumeGeometry((2, 2, 2), np.eye(4))
        with pytest.raises(MaskWriteFailed, match="mask.txt"):
            write_mask(tmp_path / "mask.txt", np.zeros((2, 2, 2), np.uint8), geom)
        assert list(tmp_path.iterdir()) == []

    def test_interrupted_save(self, tmp_path, monkeypatch):
        """Bytes written before a save error are removed with the partial file."""

        def _truncated_save(img, filename):
            with open(filename, "wb") as f:
                f.write(b"\x00" * 100)
            raise OSError(28, "No space left on device")

        monkeypatch.setattr("mask_compose.nib.save", _truncated_save)
        geom = VolumeGeometry((2, 2, 2), np.eye(4))
        out = tmp_path / "mask.nii.gz"
        with pytest.raises(MaskWriteFailed, match="No space left"):
            write_mask(out, np.zeros((2, 2, 2), np.uint8), geom)
        assert not out.exists()
        assert list(tmp_path.iterdir()) == []

    def test_existing_mask_kept_on_failure(self, tmp_path, monkeypatch):
        """A failed rewrite leaves the previous mask untouched."""
        geom = VolumeGeometry((2, 2, 2), np.eye(4))
        out = write_mask(tmp_path / "mask.nii", np.ones((2, 2, 2), np.uint8), geom)
        before = out.read_bytes()

        def _failing_save(img, filename):
            raise OSError("disk gone")

        monkeypatch.setattr("mask_compose.nib.save", _failing_save)
        with pytest.raises(MaskWriteFailed):
            write_mask(out, np.zeros((2, 2, 2), np.uint8), geom)
        assert out.read_bytes() == before

    def test_no_partial_after_success(self, tmp_path):
        """Only the mask itself is left after a successful save."""
        geom = VolumeGeometry((2, 2, 2), np.eye(4))
        write_mask(tmp_path / "mask.nii.gz", np.zeros((2, 2, 2), np.uint8), geom)
        assert [p.name for p in tmp_path.iterdir()] == ["mask.nii.gz"]
