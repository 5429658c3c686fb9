# volume_geometry.py

import hashlib
from dataclasses import dataclass
from pathlib import Path

import nibabel as nib
import numpy as np

# Max absolute elementwise affine difference for two grids to count as the same
AFFINE_TOL = 1e-6

VOLUME_SUFFIXES = (".nii.gz", ".nii", ".mgz", ".mgh", ".img", ".hdr")


class InputNotFound(FileNotFoundError):
    """Raised when an input volume or label list is missing or unreadable."""

    pass


def volume_stem(path: Path | str) -> str:
    """Filename without its volume suffix (.nii, .nii.gz, .mgz, ...)."""
    path = Path(path)
    name = path.name
    for ext in VOLUME_SUFFIXES:
        if name.lower().endswith(ext):
            return name[: -len(ext)]
    return path.stem


@dataclass(frozen=True, eq=False)
class VolumeGeometry:
    """
    Voxel grid of a volume: 3D dimensions plus the voxel-to-world affine.

    Parameters
    ----------
    dimensions : tuple[int, int, int]
        Grid size along i, j, k.
    affine : np.ndarray
        4x4 voxel-to-world transform. Must be finite and non-singular.
    """

    dimensions: tuple
    affine: np.ndarray

    def __post_init__(self):
        dims = tuple(int(d) for d in self.dimensions)
        if len(dims) != 3 or any(d <= 0 for d in dims):
            raise ValueError(
                f"Geometry dimensions must be 3 positive integers, got {self.dimensions}"
            )
        A = np.array(self.affine, dtype=np.float64)
        if A.shape != (4, 4):
            raise ValueError(f"Geometry affine must be 4x4, got shape {A.shape}")
        if not np.all(np.isfinite(A)) or abs(np.linalg.det(A)) < np.finfo(float).eps:
            raise ValueError("Geometry affine must be finite and non-singular")
        A.setflags(write=False)
        object.__setattr__(self, "dimensions", dims)
        object.__setattr__(self, "affine", A)

    @classmethod
    def from_image(cls, img) -> "VolumeGeometry":
        """Build the geometry of a nibabel image (first three axes)."""
        return cls(tuple(img.shape[:3]), img.affine)

    def grid_signature(self) -> str:
        """12-character hex digest of shape and rounded affine, for logs."""
        A = np.asarray(self.affine, float).round(6)
        s = np.asarray(self.dimensions, int)
        h = hashlib.sha1()
        h.update(s.tobytes())
        h.update(A.tobytes())
        return h.hexdigest()[:12]


@dataclass(frozen=True, eq=False)
class LabeledVolume:
    geometry: VolumeGeometry
    data: np.ndarray
    source_path: Path | None = None

    def __post_init__(self):
        if tuple(self.data.shape) != self.geometry.dimensions:
            raise ValueError(
                f"Data shape {self.data.shape} does not match geometry {self.geometry.dimensions}"
            )


def same_space(a: VolumeGeometry, b: VolumeGeometry) -> bool:
    """
    Decide whether two geometries describe the same voxel grid.

    Dimensions must match exactly and the affines may differ by less than
    ``AFFINE_TOL`` in every element.

    Parameters
    ----------
    a, b : VolumeGeometry
        Geometries to compare.

    Returns
    -------
    bool
        True when no resampling is needed to go from one grid to the other.
    """
    if a.dimensions != b.dimensions:
        return False
    return float(np.max(np.abs(a.affine - b.affine))) < AFFINE_TOL


def _load_image(path: Path | str):
    path = Path(path)
    if not path.is_file():
        raise InputNotFound(f"Volume not found: {path}")
    try:
        return nib.load(str(path))
    except Exception as e:
        raise InputNotFound(f"Volume unreadable: {path} ({e})") from e


def load_geometry(path: Path | str) -> VolumeGeometry:
    """
    Read only the header of a volume file and return its geometry.

    Raises
    ------
    InputNotFound
        If the file does not exist or nibabel cannot read it.
    """
    img = _load_image(path)
    if len(img.shape) < 3:
        raise InputNotFound(f"Volume is not 3D: {path} (shape {img.shape})")
    return VolumeGeometry.from_image(img)


def load_labeled_volume(path: Path | str) -> LabeledVolume:
    """
    Load an atlas volume (geometry and label data).

    4D volumes with a single trailing frame are squeezed to 3D; any other
    non-3D shape is rejected.

    Parameters
    ----------
    path : Path or str
        Path to a nibabel-readable volume (.nii, .nii.gz, .mgz, ...).

    Returns
    -------
    LabeledVolume
        Geometry plus float data as returned by ``get_fdata``.
    """
    img = _load_image(path)
    data = img.get_fdata()
    if data.ndim == 4 and data.shape[3] == 1:
        data = data[..., 0]
    if data.ndim != 3:
        raise InputNotFound(f"Expected a 3D label volume: {path} (shape {data.shape})")
    return LabeledVolume(
        geometry=VolumeGeometry.from_image(img),
        data=data,
        source_path=Path(path),
    )
