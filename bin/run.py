# run.py

import argparse
import collections.abc
import json
import os
import sys
from pathlib import Path

# flat modules live next to this directory in scripts/
SCRIPTS_DIR = Path(__file__).resolve().parent.parent / "scripts"
if str(SCRIPTS_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_DIR))

from label_catalog import default_output_name  # noqa: E402
from output_lock import acquire_lock, lock_path_for, release_lock  # noqa: E402
from roi_mask import RunStatus, make_roi_mask, validate_config  # noqa: E402
from roimask_logging import get_logger  # noqa: E402

EXIT_CODES = {
    RunStatus.OK: 0,
    RunStatus.OK_EMPTY_SELECTION: 0,
    RunStatus.FAILED_INVALID_INPUT: 2,
    RunStatus.FAILED_MISSING_INPUT: 3,
    RunStatus.FAILED_RESAMPLE: 4,
    RunStatus.FAILED_WRITE: 5,
}


def _update_standard_config(in_config: dict, scripts_dir: Path) -> dict:
    """Update the input config with values from the default config file.

    Parameters
    ----------
    in_config : dict
        User-provided configuration dictionary.
    scripts_dir : Path
        Directory containing default_config.json.

    Returns
    -------
    dict
        Defaults overridden by the user configuration.

    Raises
    ------
    FileNotFoundError
        If the default config file is not found.
    """
    default_config_path = Path(scripts_dir) / "default_config.json"
    if not default_config_path.exists():
        raise FileNotFoundError(f"Default config not found: {default_config_path}")
    default_config = json.loads(default_config_path.read_text())

    def update(d, u):
        for k, v in u.items():
            if isinstance(v, collections.abc.Mapping):
                d[k] = update(d.get(k, {}), v)
            else:
                d[k] = v
        return d

    return update(default_config, in_config)


def _args2config(args: argparse.Namespace) -> dict:
    """Command line values that were actually given, under config keys."""
    overrides = {
        "atlas": args.atlas,
        "labels": args.labels,
        "reference": args.reference,
        "output": args.output,
        "rois": args.rois,
    }
    config = {k: v for k, v in overrides.items() if v is not None}
    if args.inspect:
        config["inspect_labels"] = True
    if args.verbose:
        config["verbose"] = True
    return config


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Build a binary ROI mask (NIfTI + JSON provenance) from an indexed atlas"
    )
    ap.add_argument("--config", type=str, default=None, help="Path to config JSON")
    ap.add_argument("--atlas", type=str, help="Indexed atlas volume")
    ap.add_argument("--labels", type=str, help="Label list (one label per line)")
    ap.add_argument("--reference", type=str, help="Reference volume defining the output grid")
    ap.add_argument("--output", type=str, help="Output mask path (.nii / .nii.gz)")
    ap.add_argument(
        "--rois", type=str, help='ROIs as indices or names, e.g. "3,1,4" or "[Amygdala]"'
    )
    ap.add_argument(
        "--inspect", action="store_true", help="Also write one volume per selected ROI"
    )
    ap.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return ap


def main(argv=None) -> int:
    """Entry point: merge config, lock the output and run the mask builder.

    Returns
    -------
    int
        Process exit code for the run status.
    """
    args = build_parser().parse_args(argv)

    # load the config file
    config = {}
    if args.config:
        cfg_path = Path(args.config)
        if not cfg_path.exists():
            raise FileNotFoundError(f"Config not found: {cfg_path}")
        config = json.loads(cfg_path.read_text())

    # update the config with the defaults, then the command line
    config = _update_standard_config(config, SCRIPTS_DIR)
    config.update(_args2config(args))

    if config.get("verbose"):
        # Make verbose available to modules that use env fallback
        os.environ["ROIMASK_VERBOSE"] = "1"
    LOG = get_logger(__file__, verbose=bool(config.get("verbose")))
    LOG.info("=== ROI Mask Builder (Atlas -> Binary Mask) ===")
    LOG.debug(f"Merged configuration:\n{json.dumps(config, indent=4)}")

    validation = validate_config(config)
    if not validation.ok:
        LOG.error(f"Invalid configuration: {validation.message}")
        return EXIT_CODES[RunStatus.FAILED_INVALID_INPUT]
    cfg = validation.config

    # Without --output the real name depends on the selection, which is only known
    # inside the run. The lock is deliberately coarse then: all default-named runs
    # in one atlas directory share combined_mask.nii.lock and run one at a time.
    lock_target = cfg.output_path or (cfg.atlas_path.parent / default_output_name([]))
    lock_path = lock_path_for(lock_target)
    try:
        acquire_lock(lock_path, timeout=float(config.get("lock_timeout", 60)), LOG=LOG)
    except TimeoutError as e:
        LOG.error(f"Another run is writing {lock_target}: {e}")
        return EXIT_CODES[RunStatus.FAILED_WRITE]
    try:
        result = make_roi_mask(cfg, LOG=LOG)
    finally:
        release_lock(lock_path, LOG=LOG)

    for w in result.warnings:
        LOG.debug(f"warning: {w}")
    if result.status.ok:
        LOG.info(f"Done ({result.status.value}).")
    return EXIT_CODES[result.status]


if __name__ == "__main__":
    sys.exit(main())
