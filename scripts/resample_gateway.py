# resample_gateway.py

from pathlib import Path

import nibabel as nib
from nilearn.image import resample_img
from roimask_logging import get_logger
from volume_geometry import (
    InputNotFound,
    LabeledVolume,
    VolumeGeometry,
    load_labeled_volume,
    same_space,
    volume_stem,
)

# Prefix of the resliced atlas written next to the source
RESAMPLED_PREFIX = "r"

# Only interpolation allowed for label-coded data
INTERPOLATION = "nearest"


class SpaceMismatchUnresolved(RuntimeError):
    """Raised when the atlas needed resampling but no usable result was produced."""

    pass


def resampled_path_for(source_path: Path | str) -> Path:
    """
    Location of the resampled copy of ``source_path``.

    ``/data/atlas.nii.gz`` -> ``/data/ratlas.nii``
    """
    source_path = Path(source_path)
    return source_path.parent / f"{RESAMPLED_PREFIX}{volume_stem(source_path)}.nii"


class NilearnResampler:
    """
    Nearest-neighbour reslicing backed by ``nilearn.image.resample_img``.

    Any object with the same call signature can be injected into the
    pipeline instead, e.g. a wrapper around another toolbox.
    """

    interpolation = INTERPOLATION

    def __call__(
        self, source_path: Path, target_geometry: VolumeGeometry, output_path: Path
    ) -> None:
        """
        Reslice ``source_path`` onto ``target_geometry`` and save to ``output_path``.

        Parameters
        ----------
        source_path : Path
            Volume to reslice.
        target_geometry : VolumeGeometry
            Grid to reslice onto.
        output_path : Path
            Where the resliced volume is written (NIfTI).
        """
        img = resample_img(
            str(source_path),
            target_affine=target_geometry.affine,
            target_shape=target_geometry.dimensions,
            interpolation=self.interpolation,
            force_resample=True,
        )
        nib.save(img, str(output_path))


def resample_to_geometry(
    source: LabeledVolume,
    target_geometry: VolumeGeometry,
    registry,
    resampler=None,
    LOG=None,
) -> LabeledVolume:
    """
    Bring an atlas onto the target grid through the resampler.

    The output path is registered with ``registry`` before the resampler
    runs, so a partially written file is removed as well.

    Parameters
    ----------
    source : LabeledVolume
        Atlas loaded from disk (``source_path`` must be set).
    target_geometry : VolumeGeometry
        Reference grid.
    registry : TemporaryArtifactRegistry
        Registry owning the resampled file.
    resampler : callable, optional
        ``(source_path, target_geometry, output_path) -> None``. Defaults to
        NilearnResampler.
    LOG : logger, optional
        Logger instance for debug messages.

    Returns
    -------
    LabeledVolume
        Atlas data on ``target_geometry``.

    Raises
    ------
    SpaceMismatchUnresolved
        If the output path is already taken, or the resampler fails,
        produces no file, or produces a file that is not on the target grid.
    """
    LOG = LOG or get_logger(__file__)
    resampler = resampler or NilearnResampler()
    if source.source_path is None:
        raise SpaceMismatchUnresolved("Cannot resample an atlas without a source file")

    out_path = resampled_path_for(source.source_path)
    if out_path.exists():
        # never take over a file this run did not create
        raise SpaceMismatchUnresolved(
            f"Resliced atlas path already exists, remove or rename it first: {out_path}"
        )
    registry.register(out_path, "resample")
    LOG.info(f"Reslicing atlas -> reference ({INTERPOLATION} neighbour)...")
    LOG.debug(
        f"Resample {source.source_path} grid {source.geometry.grid_signature()} "
        f"-> {target_geometry.grid_signature()} {target_geometry.dimensions}"
    )
    try:
        resampler(source.source_path, target_geometry, out_path)
    except Exception as e:
        raise SpaceMismatchUnresolved(f"Resampling failed for {source.source_path}: {e}") from e

    if not out_path.exists():
        raise SpaceMismatchUnresolved(f"Resliced file not found: {out_path}")

    try:
        resampled = load_labeled_volume(out_path)
    except InputNotFound as e:
        raise SpaceMismatchUnresolved(f"Resliced file unreadable: {out_path}") from e
    if not same_space(resampled.geometry, target_geometry):
        raise SpaceMismatchUnresolved(
            f"Resliced atlas {out_path} is not on the reference grid "
            f"({resampled.geometry.dimensions} vs {target_geometry.dimensions})"
        )
    return resampled
