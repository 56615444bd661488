"""In-memory state for one HDR generation session.

Each store is owned by the UI session and mutated only from the Tk event
loop. The job builder reads them; nothing here talks to the pipeline.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from path_resolver import Selection, resolve_selection

DEFAULT_VIEW_SETTINGS = {
    "xres": "",
    "yres": "",
    "diameter": "",
    "xleft": "",
    "ydown": "",
    "vv": "",
    "vh": "",
    "target_res": "1000",
}

DEFAULT_PIPELINE_SETTINGS = {
    "radiance_path": "/usr/local/radiance/bin/",
    "hdrgen_path": "/usr/local/bin/",
    "output_path": "/home/hdri-app/",
    "temp_path": "/tmp/",
}

ARTIFACT_KINDS = ("response", "fisheye", "vignetting", "neutral_density", "calibration_factor")


def take_first(selection: Selection) -> Optional[str]:
    """Return the first path of a selection and drop the rest.

    Artifact pickers allow multiple selection, but only one file per
    correction type is used. Returns None for a cancelled selection.
    """
    if selection.is_cancelled or not selection.items:
        return None
    return selection.items[0]


class InputCollection:
    """Ordered exposure inputs kept as three index-aligned lists."""

    def __init__(self):
        self.files: List[str] = []
        self.device_paths: List[str] = []
        self.display_handles: List[str] = []

    def __len__(self) -> int:
        return len(self.device_paths)

    def add_many(self, selection: Selection) -> int:
        entries = resolve_selection(selection)
        for entry in entries:
            self.files.append(entry.device_path)
            self.device_paths.append(entry.device_path)
            self.display_handles.append(entry.display_handle)
        if entries:
            logging.info(f"Added {len(entries)} input(s); {len(self)} total.")
        return len(entries)

    def remove_at(self, index: int) -> None:
        if not 0 <= index < len(self):
            raise IndexError(f"Input index {index} out of range (0..{len(self) - 1})")
        del self.files[index]
        del self.device_paths[index]
        del self.display_handles[index]

    def names(self) -> List[str]:
        return [Path(f).name for f in self.files]


class ArtifactSlot:
    def __init__(self, kind: str):
        self.kind = kind
        self._path: Optional[str] = None

    @property
    def path(self) -> str:
        return self._path or ""

    @property
    def is_empty(self) -> bool:
        return self._path is None

    def select(self, selection: Selection) -> None:
        chosen = take_first(selection)
        if chosen is None:
            return
        if len(selection.items) > 1:
            logging.warning(f"{self.kind}: {len(selection.items)} files selected, keeping {chosen}")
        self._path = chosen

    def clear(self) -> None:
        self._path = None


class ArtifactRegisters:
    def __init__(self):
        self._slots: Dict[str, ArtifactSlot] = {k: ArtifactSlot(k) for k in ARTIFACT_KINDS}

    def slot(self, kind: str) -> ArtifactSlot:
        if kind not in self._slots:
            raise KeyError(kind)
        return self._slots[kind]

    def paths(self) -> Dict[str, str]:
        return {k: s.path for k, s in self._slots.items()}


class _TextFields:
    """Free-form text fields keyed by name, seeded from a defaults dict."""

    defaults: Dict[str, str] = {}

    def __init__(self, **overrides: str):
        self._values = dict(self.defaults)
        for key, value in overrides.items():
            self.set(key, value)

    def set(self, key: str, value: str) -> None:
        if key not in self._values:
            raise KeyError(key)
        self._values[key] = "" if value is None else str(value)

    def get(self) -> Dict[str, str]:
        return dict(self._values)

    def __getitem__(self, key: str) -> str:
        return self._values[key]


class ViewSettings(_TextFields):
    defaults = DEFAULT_VIEW_SETTINGS


class PipelineSettings(_TextFields):
    defaults = DEFAULT_PIPELINE_SETTINGS


class Session:
    """All stores for one UI session, passed as a unit to the job builder."""

    def __init__(self):
        self.inputs = InputCollection()
        self.artifacts = ArtifactRegisters()
        self.view = ViewSettings()
        self.settings = PipelineSettings()
