"""Tests for volume_geometry module."""

import numpy as np
import pytest

from conftest import save_volume
from volume_geometry import (
    InputNotFound,
    VolumeGeometry,
    load_geometry,
    load_labeled_volume,
    same_space,
    volume_stem,
)


def _affine(scale=2.0, shift=0.0):
    A = np.diag([scale, scale, scale, 1.0])
    A[:3, 3] = [-90.0 + shift, -126.0, -72.0]
    return A


class TestVolumeGeometry:
    """Construction and validation of geometries."""

    def test_dimensions_are_int_tuple(self):
        """Dimensions are normalised to a tuple of ints."""
        g = VolumeGeometry([91, 109, 91], _affine())
        assert g.dimensions == (91, 109, 91)

    def test_rejects_singular_affine(self):
        """Singular affine raises ValueError."""
        A = _affine()
        A[2, 2] = 0.0
        with pytest.raises(ValueError, match="non-singular"):
            VolumeGeometry((4, 4, 4), A)

    def test_rejects_bad_dimensions(self):
        """Non-positive or non-3D dimensions raise ValueError."""
        with pytest.raises(ValueError):
            VolumeGeometry((4, 0, 4), _affine())
        with pytest.raises(ValueError):
            VolumeGeometry((4, 4), _affine())

    def test_affine_is_read_only_copy(self):
        """Mutating the source array does not change the geometry."""
        A = _affine()
        g = VolumeGeometry((4, 4, 4), A)
        A[0, 0] = 5.0
        assert g.affine[0, 0] == 2.0
        with pytest.raises(ValueError):
            g.affine[0, 0] = 3.0

    def test_grid_signature_stable(self):
        """Same grid gives the same signature, different grid a different one."""
        a = VolumeGeometry((4, 4, 4), _affine())
        b = VolumeGeometry((4, 4, 4), _affine())
        c = VolumeGeometry((4, 4, 5), _affine())
        assert a.grid_signature() == b.grid_signature()
        assert a.grid_signature() != c.grid_signature()
        assert len(a.grid_signature()) == 12


class TestSameSpace:
    """Space comparator."""

    def test_reflexive(self):
        """A geometry is in the same space as itself."""
        g = VolumeGeometry((64, 64, 40), _affine(3.0))
        assert same_space(g, g)

    def test_symmetric(self):
        """Comparison does not depend on argument order."""
        pairs = [
            (VolumeGeometry((4, 4, 4), _affine()), VolumeGeometry((4, 4, 4), _affine(shift=1e-7))),
            (VolumeGeometry((4, 4, 4), _affine()), VolumeGeometry((4, 4, 4), _affine(shift=1e-3))),
            (VolumeGeometry((4, 4, 4), _affine()), VolumeGeometry((4, 5, 4), _affine())),
        ]
        for a, b in pairs:
            assert same_space(a, b) == same_space(b, a)

    def test_within_tolerance(self):
        """Affine differences below 1e-6 are ignored."""
        a = VolumeGeometry((4, 4, 4), _affine())
        b = VolumeGeometry((4, 4, 4), _affine(shift=5e-7))
        assert same_space(a, b)

    def test_outside_tolerance(self):
        """Affine differences of 1e-6 or more are a different space."""
        a = VolumeGeometry((4, 4, 4), _affine())
        b = VolumeGeometry((4, 4, 4), _affine(shift=2e-6))
        assert not same_space(a, b)

    def test_dimension_mismatch(self):
        """Equal affines but different dimensions are a different space."""
        a = VolumeGeometry((64, 64, 40), _affine())
        b = VolumeGeometry((91, 109, 91), _affine())
        assert not same_space(a, b)


class TestLoading:
    """Reading geometries and atlases from disk."""

    def test_load_geometry(self, tmp_path):
        """Header geometry matches what was written."""
        p = save_volume(tmp_path / "ref.nii", np.zeros((5, 6, 7), np.uint8), _affine())
        g = load_geometry(p)
        assert g.dimensions == (5, 6, 7)
        np.testing.assert_allclose(g.affine, _affine())

    def test_load_geometry_missing(self, tmp_path):
        """Missing file raises InputNotFound."""
        with pytest.raises(InputNotFound, match="not found"):
            load_geometry(tmp_path / "nope.nii")

    def test_load_geometry_unreadable(self, tmp_path):
        """A file nibabel cannot read raises InputNotFound."""
        p = tmp_path / "broken.nii"
        p.write_text("not a nifti")
        with pytest.raises(InputNotFound, match="unreadable"):
            load_geometry(p)

    def test_load_squeezes_single_frame(self, tmp_path):
        """A 4D atlas with one frame loads as 3D."""
        data = np.arange(24, dtype=np.int16).reshape(2, 3, 4, 1)
        p = save_volume(tmp_path / "atlas4d.nii", data)
        vol = load_labeled_volume(p)
        assert vol.data.shape == (2, 3, 4)
        assert vol.geometry.dimensions == (2, 3, 4)
        assert vol.source_path == p

    def test_load_rejects_multi_frame(self, tmp_path):
        """A 4D volume with several frames is not an atlas."""
        p = save_volume(tmp_path / "bold.nii", np.zeros((2, 3, 4, 5), np.int16))
        with pytest.raises(InputNotFound, match="3D"):
            load_labeled_volume(p)


class TestVolumeStem:
    """Filename stems."""

    @pytest.mark.parametrize(
        "name,stem",
        [("atlas.nii", "atlas"), ("atlas.nii.gz", "atlas"), ("aseg.mgz", "aseg"), ("a.b.nii", "a.b")],
    )
    def test_strip_volume_suffix(self, name, stem):
        """Known volume suffixes are removed whole."""
        assert volume_stem(name) == stem
