# provenance.py

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from label_catalog import ROISelection
from volume_geometry import volume_stem

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S"


@dataclass(frozen=True)
class ProvenanceRecord:
    """What produced a mask: inputs, selection, output and creation time."""

    atlas_source: str
    label_source: str
    reference_source: str
    output_path: str
    selected_indices: tuple
    selected_names: tuple
    created_at: str

    def to_dict(self) -> dict:
        """
        JSON-ready mapping; index ``k`` of ``selected_indices`` names
        ``selected_names[k]``.
        """
        return {
            "atlas_file": self.atlas_source,
            "labels_file": self.label_source,
            "reference_file": self.reference_source,
            "output_file": self.output_path,
            "selected_indices": list(self.selected_indices),
            "selected_names": list(self.selected_names),
            "timestamp": self.created_at,
        }


def record(
    atlas_path: Path | str,
    label_path: Path | str,
    reference_path: Path | str,
    output_path: Path | str,
    selection: ROISelection,
) -> ProvenanceRecord:
    """Build the provenance record of a mask, stamped with the current time."""
    return ProvenanceRecord(
        atlas_source=str(atlas_path),
        label_source=str(label_path),
        reference_source=str(reference_path),
        output_path=str(output_path),
        selected_indices=tuple(int(i) for i in selection.indices),
        selected_names=tuple(selection.names),
        created_at=datetime.now().strftime(TIMESTAMP_FORMAT),
    )


def sidecar_for(mask_path: Path | str) -> Path:
    """JSON sidecar next to a mask: ``mask.nii.gz`` -> ``mask.json``."""
    mask_path = Path(mask_path)
    return mask_path.parent / f"{volume_stem(mask_path)}.json"


def write_provenance(rec: ProvenanceRecord, path: Path | str) -> Path:
    """Write the record as indented JSON and return the path."""
    path = Path(path)
    path.write_text(json.dumps(rec.to_dict(), indent=2))
    return path
