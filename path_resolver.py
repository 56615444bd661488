from __future__ import annotations

from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence, Tuple

IMAGE_EXTENSIONS = ["jpg", "jpeg", "JPG", "JPEG"]


class SelectedInput(NamedTuple):
    device_path: str
    display_handle: str


class Selection(NamedTuple):
    """Outcome of a file/directory picker.

    ``kind`` is one of ``"cancelled"``, ``"single"`` or ``"multiple"``.
    """
    kind: str
    items: Tuple[str, ...] = ()

    @classmethod
    def cancelled(cls) -> "Selection":
        return cls("cancelled")

    @classmethod
    def single(cls, path: str) -> "Selection":
        return cls("single", (str(path),))

    @classmethod
    def multiple(cls, paths: Sequence[str]) -> "Selection":
        return cls("multiple", tuple(str(p) for p in paths))

    @property
    def is_cancelled(self) -> bool:
        return self.kind == "cancelled"

    @property
    def paths(self) -> List[str]:
        return list(self.items)


def selection_from_dialog(raw) -> Selection:
    """Convert a raw picker result into a ``Selection``.

    tkinter reports a cancelled dialog as ``""`` or ``()``; other pickers
    use ``None``. A bare string is a single path, any other sequence is a
    multi-result.
    """
    if raw is None:
        return Selection.cancelled()
    if isinstance(raw, (str, Path)):
        text = str(raw)
        return Selection.single(text) if text else Selection.cancelled()
    paths = [str(p) for p in raw if str(p)]
    if not paths:
        return Selection.cancelled()
    return Selection.multiple(paths)


def display_handle_for(path: str) -> str:
    # file:// URI, only meaningful for the front end
    return Path(path).absolute().as_uri()


def resolve_entry(path: str) -> SelectedInput:
    return SelectedInput(device_path=str(path), display_handle=display_handle_for(path))


def resolve_selection(selection: Selection) -> List[SelectedInput]:
    if selection.is_cancelled:
        return []
    return [resolve_entry(p) for p in selection.items]


# =========================
# tkinter dialog adapters
# =========================

def ask_images(initialdir: Optional[str] = None) -> Selection:
    from tkinter import filedialog
    patterns = " ".join(f"*.{ext}" for ext in IMAGE_EXTENSIONS)
    raw = filedialog.askopenfilenames(
        title="Select exposure images",
        initialdir=initialdir,
        filetypes=[["Image", patterns]],
    )
    return selection_from_dialog(raw)


def ask_directory(title: str = "Select a folder for batch processing") -> Selection:
    # tkinter only offers a single-directory picker
    from tkinter import filedialog
    return selection_from_dialog(filedialog.askdirectory(title=title, mustexist=True))


def ask_file(title: str) -> Selection:
    from tkinter import filedialog
    raw = filedialog.askopenfilenames(title=title, filetypes=[["All files", "*.*"]])
    return selection_from_dialog(raw)
