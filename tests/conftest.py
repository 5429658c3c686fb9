"""Shared fixtures: small synthetic atlases written with nibabel."""

from pathlib import Path

import nibabel as nib
import numpy as np
import pytest

LABELS = ["Hippocampus", "Amygdala", "Thalamus", "Caudate", "Putamen"]


def save_volume(path: Path, data: np.ndarray, affine=None) -> Path:
    """Write ``data`` as NIfTI at ``path`` (identity affine by default)."""
    affine = np.eye(4) if affine is None else np.asarray(affine, float)
    nib.save(nib.Nifti1Image(data, affine), str(path))
    return path


def small_atlas() -> np.ndarray:
    """10x12x8 int16 atlas with blocks of codes 1..5 over a zero background."""
    data = np.zeros((10, 12, 8), dtype=np.int16)
    data[0:3, :, :] = 1
    data[3:5, 0:6, :] = 2
    data[3:5, 6:12, :] = 3
    data[5:8, :, 0:4] = 4
    data[5:8, :, 4:8] = 5
    return data


@pytest.fixture
def atlas_file(tmp_path):
    return save_volume(tmp_path / "atlas.nii.gz", small_atlas())


@pytest.fixture
def labels_file(tmp_path):
    p = tmp_path / "labels.txt"
    p.write_text("\n".join(LABELS) + "\n")
    return p


class SpyResampler:
    """Resampler stand-in recording calls; optionally writes a volume."""

    interpolation = "nearest"

    def __init__(self, write=True, data=None):
        self.calls = []
        self.write = write
        self.data = data

    def __call__(self, source_path, target_geometry, output_path):
        self.calls.append((Path(source_path), target_geometry, Path(output_path)))
        if self.write:
            data = self.data
            if data is None:
                data = np.zeros(target_geometry.dimensions, dtype=np.int16)
                data[0:2] = 2
            save_volume(output_path, data, target_geometry.affine)


@pytest.fixture
def spy_resampler():
    return SpyResampler()
