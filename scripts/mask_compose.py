# mask_compose.py

import os
import re
from pathlib import Path
from typing import Iterable

import nibabel as nib
import numpy as np
from nibabel.filebasedimages import ImageFileError
from volume_geometry import VolumeGeometry, volume_stem

# NIfTI-1 descrip field holds 80 bytes including the terminator
_DESCRIP_MAX = 79


class MaskWriteFailed(OSError):
    """Raised when the combined mask cannot be written."""

    pass


def compose_mask(atlas_data: np.ndarray, indices: Iterable[int]) -> np.ndarray:
    """
    Combine selected atlas codes into one binary mask.

    Atlas values are rounded to the nearest integer once (resampled atlases
    come back as floats) and then tested for membership in ``indices``.

    Parameters
    ----------
    atlas_data : np.ndarray
        Atlas codes on the reference grid.
    indices : iterable of int
        Selected atlas codes.

    Returns
    -------
    np.ndarray
        uint8 array of the same shape with values in {0, 1}.
    """
    codes = np.rint(np.asarray(atlas_data))
    selected = np.asarray(sorted(set(int(i) for i in indices)), dtype=codes.dtype)
    return np.isin(codes, selected).astype(np.uint8)


def label_mask(atlas_data: np.ndarray, index: int) -> np.ndarray:
    """Binary uint8 mask of a single atlas code."""
    return compose_mask(atlas_data, [index])


def voxel_counts(atlas_data: np.ndarray, indices: Iterable[int]) -> dict:
    """Number of voxels per selected code, in selection order."""
    codes = np.rint(np.asarray(atlas_data)).astype(np.int64).ravel()
    values, counts = np.unique(codes, return_counts=True)
    lookup = dict(zip(values.tolist(), counts.tolist()))
    return {int(i): int(lookup.get(int(i), 0)) for i in indices}


def safe_label_name(name: str) -> str:
    """Label name reduced to word characters, for filenames."""
    return re.sub(r"[^\w]+", "_", name)


def inspection_filename(index: int, name: str) -> str:
    return f"roi_{index:03d}_{safe_label_name(name)}.nii"


def write_mask(
    path: Path | str,
    mask: np.ndarray,
    geometry: VolumeGeometry,
    description: str = "",
) -> Path:
    """
    Save a binary mask as a uint8 NIfTI on ``geometry``.

    Parameters
    ----------
    path : Path or str
        Output file (.nii or .nii.gz).
    mask : np.ndarray
        Array with shape ``geometry.dimensions``.
    geometry : VolumeGeometry
        Reference grid; its affine becomes the qform and sform.
    description : str, optional
        Stored in the header ``descrip`` field (truncated to fit).

    Returns
    -------
    Path
        The written path.

    Raises
    ------
    MaskWriteFailed
        If the mask has the wrong shape, the suffix is not a volume format
        nibabel can write, or the file cannot be written.
    """
    path = Path(path)
    if tuple(mask.shape) != geometry.dimensions:
        raise MaskWriteFailed(
            f"Mask shape {mask.shape} does not match reference grid {geometry.dimensions}"
        )

    img = nib.Nifti1Image(np.asarray(mask, dtype=np.uint8), geometry.affine)
    img.set_data_dtype(np.uint8)
    img.header["descrip"] = description.encode("utf-8")[:_DESCRIP_MAX]
    img.set_qform(geometry.affine, code=1)
    img.set_sform(geometry.affine, code=1)
    # written under a sibling name first so a failed save never leaves a partial mask at path
    stem = volume_stem(path)
    partial = path.parent / f".{stem}.partial{path.name[len(stem):]}"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        nib.save(img, str(partial))
        os.replace(partial, path)
    except (OSError, ImageFileError) as e:
        if partial.exists():
            partial.unlink()
        raise MaskWriteFailed(f"Could not write mask {path}: {e}") from e
    return path
