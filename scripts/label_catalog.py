# label_catalog.py

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from volume_geometry import InputNotFound

DEFAULT_MASK_BASE = "combined_mask"


class EmptyLabelCatalog(ValueError):
    """Raised when a label list contains no labels."""

    pass


class InvalidSelection(ValueError):
    """Raised when a selected ROI is not in the label catalog."""

    pass


@dataclass(frozen=True)
class LabelCatalog:
    """
    Ordered atlas label names; ``names[i - 1]`` is the name of atlas code ``i``.

    The order is taken as-is from the label list and is never sorted or
    deduplicated.
    """

    names: tuple
    source_path: Path | None = None

    def __len__(self) -> int:
        return len(self.names)

    def __getitem__(self, index: int) -> str:
        if not 1 <= index <= len(self.names):
            raise IndexError(f"Label index {index} outside 1..{len(self.names)}")
        return self.names[index - 1]

    def index_of(self, name: str) -> int:
        """1-based index of the first label called ``name``."""
        try:
            return self.names.index(name) + 1
        except ValueError:
            raise InvalidSelection(f"Label '{name}' not found in label list") from None


@dataclass(frozen=True)
class ROISelection:
    """Selected atlas codes and their names, positionally aligned."""

    indices: tuple
    names: tuple

    def __post_init__(self):
        if len(self.indices) != len(self.names):
            raise ValueError("ROI indices and names must have the same length")

    def __len__(self) -> int:
        return len(self.indices)

    @property
    def is_empty(self) -> bool:
        return len(self.indices) == 0


def parse_label_list(text: str) -> list[str]:
    """
    Split label list text into label names.

    One label per line; ``\\n``, ``\\r\\n`` and ``\\r`` are all accepted, each
    line is stripped and blank lines are dropped.

    Parameters
    ----------
    text : str
        Raw content of the label list.

    Returns
    -------
    list[str]
        Labels in file order.
    """
    lines = re.split(r"\r\n|\n|\r", text)
    return [ln.strip() for ln in lines if ln.strip() != ""]


def read_label_catalog(path: Path | str) -> LabelCatalog:
    """
    Read a label list file into a LabelCatalog.

    Raises
    ------
    InputNotFound
        If the file is missing or cannot be decoded.
    EmptyLabelCatalog
        If the file holds no labels.
    """
    path = Path(path)
    if not path.is_file():
        raise InputNotFound(f"Label list not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InputNotFound(f"Label list unreadable: {path} ({e})") from e

    names = parse_label_list(text)
    if not names:
        raise EmptyLabelCatalog(f"No labels found in {path}")
    return LabelCatalog(tuple(names), source_path=path)


def _to_index(item, catalog: LabelCatalog) -> int:
    """Resolve a single ROI item (code or label name) to a catalog index."""
    if isinstance(item, bool):
        raise InvalidSelection(f"Invalid ROI selector: {item!r}")
    if isinstance(item, (int, float)):
        if float(item) != int(item):
            raise InvalidSelection(f"ROI index must be an integer, got {item}")
        idx = int(item)
    elif isinstance(item, str) and item.strip().isdigit():
        idx = int(item.strip())
    elif isinstance(item, str):
        return catalog.index_of(item.strip())
    else:
        raise InvalidSelection(f"Invalid ROI selector: {item!r}")

    if not 1 <= idx <= len(catalog):
        raise InvalidSelection(
            f"ROI index {idx} outside label list range 1..{len(catalog)}"
        )
    return idx


def build_selection(catalog: LabelCatalog, rois: Iterable) -> ROISelection:
    """
    Build an ROISelection from ROI indices and/or label names.

    Selection order is kept; repeated ROIs are dropped after their first
    occurrence. Digit-only strings are read as indices, other strings as
    label names.

    Parameters
    ----------
    catalog : LabelCatalog
        Label catalog of the atlas.
    rois : iterable
        ROI selectors (ints, digit strings or label names).

    Returns
    -------
    ROISelection
        Possibly empty selection.

    Raises
    ------
    InvalidSelection
        If a selector does not resolve to a catalog entry.
    """
    indices = []
    for item in rois or []:
        idx = _to_index(item, catalog)
        if idx not in indices:
            indices.append(idx)
    return ROISelection(tuple(indices), tuple(catalog[i] for i in indices))


def default_output_name(names: Iterable[str]) -> str:
    """
    Suggest a mask filename from the first three selected label names.

    ``["Left Hippocampus", "Amygdala"]`` -> ``combined_mask__LeftHippocampus_Amygdala.nii``
    """
    base = DEFAULT_MASK_BASE
    tokens = [re.sub(r"[^\w]+", "", n) for n in list(names)[:3]]
    tail = "_".join(tokens)
    if tail.strip("_"):
        base = f"{base}__{tail}"
    return f"{base}.nii"
