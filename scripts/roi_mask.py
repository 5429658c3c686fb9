# roi_mask.py

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from label_catalog import (
    EmptyLabelCatalog,
    InvalidSelection,
    ROISelection,
    build_selection,
    default_output_name,
    read_label_catalog,
)
from mask_compose import (
    MaskWriteFailed,
    compose_mask,
    inspection_filename,
    label_mask,
    voxel_counts,
    write_mask,
)
from provenance import ProvenanceRecord, record, sidecar_for, write_provenance
from resample_gateway import (
    SpaceMismatchUnresolved,
    resample_to_geometry,
    resampled_path_for,
)
from roimask_logging import get_logger
from temp_artifacts import TemporaryArtifactRegistry, inspection_dir_for
from volume_geometry import (
    InputNotFound,
    load_geometry,
    load_labeled_volume,
    same_space,
)

# ------------------------------ Constants ------------------------------

# Per-label inspection volumes written at most (original overlay limit)
MAX_INSPECTION_LABELS = 12

# Single-file formats the mask can be written as
MASK_SUFFIXES = (".nii", ".nii.gz")


class ConfigError(Enum):
    MISSING_ATLAS = "missing_atlas"
    MISSING_LABELS = "missing_labels"
    BAD_ROIS = "bad_rois"
    BAD_OPTION = "bad_option"


class PipelineState(Enum):
    START = "START"
    LOAD_GEOMETRIES = "LOAD_GEOMETRIES"
    SAME_SPACE = "SAME_SPACE"
    RESAMPLE = "RESAMPLE"
    COMPOSE = "COMPOSE"
    WRITE_MASK = "WRITE_MASK"
    RECORD_PROVENANCE = "RECORD_PROVENANCE"
    CLEANUP = "CLEANUP"
    DONE = "DONE"
    ABORTED_INVALID_INPUT = "ABORTED_INVALID_INPUT"
    ABORTED_MISSING_INPUT = "ABORTED_MISSING_INPUT"
    ABORTED_RESAMPLE_FAILED = "ABORTED_RESAMPLE_FAILED"
    ABORTED_WRITE_FAILED = "ABORTED_WRITE_FAILED"
    ABORTED_EMPTY_SELECTION = "ABORTED_EMPTY_SELECTION"


class RunStatus(Enum):
    OK = "OK"
    OK_EMPTY_SELECTION = "OK_EMPTY_SELECTION"
    FAILED_INVALID_INPUT = "FAILED_INVALID_INPUT"
    FAILED_MISSING_INPUT = "FAILED_MISSING_INPUT"
    FAILED_RESAMPLE = "FAILED_RESAMPLE"
    FAILED_WRITE = "FAILED_WRITE"

    @property
    def ok(self) -> bool:
        return self in (RunStatus.OK, RunStatus.OK_EMPTY_SELECTION)


# fatal exception -> (status, terminal state)
_FAILURES = (
    (InputNotFound, RunStatus.FAILED_MISSING_INPUT, PipelineState.ABORTED_MISSING_INPUT),
    (EmptyLabelCatalog, RunStatus.FAILED_INVALID_INPUT, PipelineState.ABORTED_INVALID_INPUT),
    (InvalidSelection, RunStatus.FAILED_INVALID_INPUT, PipelineState.ABORTED_INVALID_INPUT),
    (SpaceMismatchUnresolved, RunStatus.FAILED_RESAMPLE, PipelineState.ABORTED_RESAMPLE_FAILED),
    (MaskWriteFailed, RunStatus.FAILED_WRITE, PipelineState.ABORTED_WRITE_FAILED),
)


@dataclass(frozen=True)
class RoiMaskConfig:
    atlas_path: Path
    labels_path: Path
    rois: tuple
    reference_path: Optional[Path] = None
    output_path: Optional[Path] = None
    inspect_labels: bool = False
    max_inspection_labels: int = MAX_INSPECTION_LABELS


@dataclass(frozen=True)
class ConfigValidation:
    """Either a valid ``config`` or an ``error`` with a message."""

    config: Optional[RoiMaskConfig] = None
    error: Optional[ConfigError] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunResult:
    status: RunStatus
    state: PipelineState
    message: str = ""
    mask_path: Optional[Path] = None
    provenance_path: Optional[Path] = None
    provenance: Optional[ProvenanceRecord] = None
    selection: Optional[ROISelection] = None
    resampled: bool = False
    warnings: list = field(default_factory=list)
    trace: list = field(default_factory=list)
    inspection_dir: Optional[Path] = None
    inspection_paths: list = field(default_factory=list)

    def enter(self, state: PipelineState, LOG=None) -> None:
        self.state = state
        self.trace.append(state)
        if LOG:
            LOG.debug(f"-> {state.value}")


# ------------------------------ config helpers ------------------------------


def _str2list(s):
    """Turn "[a, b]", "(a,b)" or "a,b" into a list of stripped strings."""
    if not s:
        return []
    s = str(s).strip()

    # strip outer brackets/parentheses if present
    if "[" in s and "]" in s:
        s = s[s.find("[") + 1 : s.rfind("]")]
    elif "(" in s and ")" in s:
        s = s[s.find("(") + 1 : s.rfind(")")]

    out = []
    for p in s.split(","):
        p = p.strip().strip('"').strip("'")
        if p != "":
            out.append(p)
    return out


def _rois2list(c) -> list:
    """Normalise a configured ROI value (list, comma string, single int) to a list."""
    if c is None:
        return []
    if isinstance(c, (list, tuple)):
        return list(c)
    if isinstance(c, bool):
        raise ValueError(f"Invalid rois value: {c!r}")
    if isinstance(c, (int, float)):
        return [c]
    if isinstance(c, str):
        return _str2list(c)
    raise ValueError(f"Invalid rois value: {c!r}")


def _optional_path(value) -> Optional[Path]:
    if value is None or str(value).strip() == "":
        return None
    return Path(str(value)).expanduser()


def validate_config(raw: dict) -> ConfigValidation:
    """
    Check a raw configuration mapping once, before anything is read.

    Recognised keys: ``atlas``, ``labels``, ``reference`` (optional),
    ``output`` (optional), ``rois``, ``inspect_labels``,
    ``max_inspection_labels``.

    Parameters
    ----------
    raw : dict
        Configuration as loaded from JSON / command line.

    Returns
    -------
    ConfigValidation
        Valid config, or the first error found.
    """
    atlas = _optional_path(raw.get("atlas"))
    if atlas is None:
        return ConfigValidation(error=ConfigError.MISSING_ATLAS, message="No atlas given")
    labels = _optional_path(raw.get("labels"))
    if labels is None:
        return ConfigValidation(
            error=ConfigError.MISSING_LABELS, message="No label list given"
        )

    try:
        rois = _rois2list(raw.get("rois"))
    except ValueError as e:
        return ConfigValidation(error=ConfigError.BAD_ROIS, message=str(e))

    reference = _optional_path(raw.get("reference"))
    resliced = resampled_path_for(atlas)
    if resliced in (reference, labels):
        return ConfigValidation(
            error=ConfigError.BAD_OPTION,
            message=f"Input {resliced} would be overwritten by the resliced atlas",
        )

    output = _optional_path(raw.get("output"))
    if output is not None:
        if not output.name.lower().endswith(MASK_SUFFIXES):
            return ConfigValidation(
                error=ConfigError.BAD_OPTION,
                message=f"Output {output} must end in one of {', '.join(MASK_SUFFIXES)}",
            )
        protected = {atlas, labels, reference, resliced}
        if output in protected or output.is_dir():
            return ConfigValidation(
                error=ConfigError.BAD_OPTION,
                message=f"Output {output} would overwrite an input or is a directory",
            )

    try:
        max_insp = int(raw.get("max_inspection_labels", MAX_INSPECTION_LABELS))
    except (TypeError, ValueError):
        max_insp = -1
    if max_insp < 1:
        return ConfigValidation(
            error=ConfigError.BAD_OPTION,
            message=f"max_inspection_labels must be a positive integer, got {raw.get('max_inspection_labels')!r}",
        )

    return ConfigValidation(
        config=RoiMaskConfig(
            atlas_path=atlas,
            labels_path=labels,
            rois=tuple(rois),
            reference_path=reference,
            output_path=output,
            inspect_labels=bool(raw.get("inspect_labels", False)),
            max_inspection_labels=max_insp,
        )
    )


# ------------------------------ pipeline steps ------------------------------


def _check_inputs(cfg: RoiMaskConfig) -> None:
    for what, p in (
        ("Atlas", cfg.atlas_path),
        ("Label list", cfg.labels_path),
        ("Reference", cfg.reference_path),
    ):
        if p is not None and not p.is_file():
            raise InputNotFound(f"{what} not found: {p}")


def _write_inspection_volumes(
    atlas_data, selection: ROISelection, geometry, output_path, limit, registry, result, LOG
) -> None:
    """Write one binary volume per selected label for caller-side inspection."""
    insp_dir = registry.register(inspection_dir_for(output_path), "inspect", keep=True)
    if len(selection) > limit:
        LOG.warn(
            f"Selected {len(selection)} ROIs; writing inspection volumes for the first {limit}. "
            "Run again with a subset to inspect the others."
        )
        result.warnings.append(
            f"Inspection volumes limited to the first {limit} of {len(selection)} ROIs"
        )

    try:
        insp_dir.mkdir(parents=True, exist_ok=True)
        for idx, name in list(zip(selection.indices, selection.names))[:limit]:
            p = insp_dir / inspection_filename(idx, name)
            write_mask(p, label_mask(atlas_data, idx), geometry, f"ROI {idx}: {name}")
            result.inspection_paths.append(p)
    except OSError as e:
        LOG.warn(f"Could not write inspection volumes to {insp_dir}: {e}")
        result.warnings.append(f"Inspection volumes incomplete: {e}")

    result.inspection_dir = insp_dir
    LOG.info(f"Per-ROI inspection masks saved in: {insp_dir}")
    LOG.info("You can delete this folder later if you like.")


def _run(cfg: RoiMaskConfig, result: RunResult, resampler, LOG) -> None:
    """Run the pipeline, raising the fatal error taxonomy on failure."""
    _check_inputs(cfg)

    catalog = read_label_catalog(cfg.labels_path)
    LOG.info(f"Labels: {cfg.labels_path} (n={len(catalog)})")

    selection = build_selection(catalog, cfg.rois)
    result.selection = selection
    if selection.is_empty:
        LOG.info("No ROIs selected. Nothing written.")
        result.status = RunStatus.OK_EMPTY_SELECTION
        result.enter(PipelineState.ABORTED_EMPTY_SELECTION, LOG)
        return
    LOG.info(f"Selected {len(selection)} ROI(s).")

    reference_path = cfg.reference_path or cfg.atlas_path
    output_path = cfg.output_path or (
        cfg.atlas_path.parent / default_output_name(selection.names)
    )
    LOG.info(f"Reference: {reference_path}")
    LOG.info(f"Output: {output_path}")

    registry = TemporaryArtifactRegistry(LOG)
    try:
        with registry:
            result.enter(PipelineState.LOAD_GEOMETRIES, LOG)
            ref_geometry = load_geometry(reference_path)
            atlas = load_labeled_volume(cfg.atlas_path)

            if same_space(atlas.geometry, ref_geometry):
                result.enter(PipelineState.SAME_SPACE, LOG)
                LOG.info("Atlas already matches reference space.")
            else:
                result.enter(PipelineState.RESAMPLE, LOG)
                atlas = resample_to_geometry(
                    atlas, ref_geometry, registry, resampler=resampler, LOG=LOG
                )
                result.resampled = True

            result.enter(PipelineState.COMPOSE, LOG)
            mask = compose_mask(atlas.data, selection.indices)
            counts = voxel_counts(atlas.data, selection.indices)
            for idx, name in zip(selection.indices, selection.names):
                LOG.debug(f"ROI {idx:3d} {name}: {counts[idx]} voxels")
                if counts[idx] == 0:
                    msg = f"ROI {idx} ({name}) has no voxels in the reference grid"
                    LOG.warn(msg)
                    result.warnings.append(msg)

            result.enter(PipelineState.WRITE_MASK, LOG)
            write_mask(
                output_path,
                mask,
                ref_geometry,
                f"Combined mask from atlas: {cfg.atlas_path.name}",
            )
            result.mask_path = output_path
            LOG.info(f"Wrote mask: {output_path}")

            result.enter(PipelineState.RECORD_PROVENANCE, LOG)
            rec = record(
                cfg.atlas_path, cfg.labels_path, reference_path, output_path, selection
            )
            result.provenance = rec
            json_path = sidecar_for(output_path)
            try:
                result.provenance_path = write_provenance(rec, json_path)
                LOG.info(f"Wrote metadata: {json_path}")
            except OSError as e:
                msg = f"Could not write JSON sidecar {json_path}: {e}"
                LOG.warn(msg)
                result.warnings.append(msg)

            if cfg.inspect_labels:
                _write_inspection_volumes(
                    atlas.data,
                    selection,
                    ref_geometry,
                    output_path,
                    cfg.max_inspection_labels,
                    registry,
                    result,
                    LOG,
                )
    finally:
        result.trace.append(PipelineState.CLEANUP)
        result.warnings.extend(registry.warnings)

    result.status = RunStatus.OK
    result.enter(PipelineState.DONE, LOG)


def make_roi_mask(config, resampler=None, LOG=None) -> RunResult:
    """
    Build a binary ROI mask from an indexed atlas and a label selection.

    The atlas is resliced (nearest neighbour) onto the reference grid when
    the two differ, selected codes are merged into a uint8 mask, and a JSON
    provenance sidecar is written next to it. Intermediate files are always
    removed before returning.

    Parameters
    ----------
    config : dict or RoiMaskConfig
        Raw configuration (validated here) or an already validated config.
    resampler : callable, optional
        Resampling backend ``(source_path, target_geometry, output_path)``.
        Defaults to nilearn.
    LOG : logger, optional
        Logger instance.

    Returns
    -------
    RunResult
        Status, final pipeline state, written paths and non-fatal warnings.
    """
    LOG = LOG or get_logger(__file__)
    result = RunResult(status=RunStatus.OK, state=PipelineState.START)
    result.trace.append(PipelineState.START)

    if not isinstance(config, RoiMaskConfig):
        validation = validate_config(config)
        if not validation.ok:
            LOG.error(f"Invalid configuration ({validation.error.value}): {validation.message}")
            result.status = RunStatus.FAILED_INVALID_INPUT
            result.message = validation.message
            result.enter(PipelineState.ABORTED_INVALID_INPUT, LOG)
            return result
        config = validation.config

    LOG.info(f"Atlas: {config.atlas_path}")
    try:
        _run(config, result, resampler, LOG)
    except tuple(exc for exc, _, _ in _FAILURES) as e:
        for exc, status, state in _FAILURES:
            if isinstance(e, exc):
                result.status = status
                result.enter(state, LOG)
                break
        result.message = str(e)
        LOG.error(str(e))
    return result
