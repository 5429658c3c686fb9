# temp_artifacts.py

import shutil
from dataclasses import dataclass
from pathlib import Path

from roimask_logging import get_logger
from volume_geometry import volume_stem

INSPECTION_DIR_SUFFIX = "_roi_masks_for_viz"


@dataclass(frozen=True)
class TemporaryArtifact:
    path: Path
    created_by_step: str
    # kept artifacts are reported to the caller instead of deleted
    keep: bool = False


def inspection_dir_for(output_path: Path | str) -> Path:
    """
    Working area for per-label inspection volumes of one output mask.

    Derived from the output path so that runs writing different masks into
    the same directory never share it.
    """
    output_path = Path(output_path)
    return output_path.parent / f"{volume_stem(output_path)}{INSPECTION_DIR_SUFFIX}"


class TemporaryArtifactRegistry:
    """
    Track intermediate files of a single pipeline run and remove them on exit.

    Use as a context manager. Every artifact registered without ``keep``
    is deleted when the block exits, whether it exits normally or with an
    exception. Removal errors never propagate: they are logged and kept in
    ``warnings``.

    Parameters
    ----------
    LOG : logger, optional
        Logger instance for debug/warning messages.
    """

    def __init__(self, LOG=None):
        self.LOG = LOG or get_logger(__file__)
        self.artifacts: list[TemporaryArtifact] = []
        self.warnings: list[str] = []
        self.released = False

    def __enter__(self) -> "TemporaryArtifactRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        # never swallow the exception of the managed block
        return False

    def register(self, path: Path | str, step: str, keep: bool = False) -> Path:
        """
        Start tracking ``path``; the file does not need to exist yet.

        Returns
        -------
        Path
            The registered path, for chaining.
        """
        path = Path(path)
        self.artifacts.append(TemporaryArtifact(path, step, keep))
        self.LOG.debug(f"Registered {'kept' if keep else 'temporary'} artifact ({step}): {path}")
        return path

    def kept(self) -> list[Path]:
        """Paths of artifacts exempt from deletion that exist on disk."""
        return [a.path for a in self.artifacts if a.keep and a.path.exists()]

    def _remove(self, artifact: TemporaryArtifact) -> None:
        path = artifact.path
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
            self.LOG.info(f"Removed temporary file: {path}")
        except FileNotFoundError:
            # already gone
            pass
        except OSError as e:
            msg = f"Could not remove temporary artifact {path} ({artifact.created_by_step}): {e}"
            self.warnings.append(msg)
            self.LOG.warn(msg)

    def release(self) -> None:
        """
        Delete all non-kept artifacts, newest first. Safe to call repeatedly.
        """
        for artifact in reversed(self.artifacts):
            if not artifact.keep:
                self._remove(artifact)
        self.released = True
