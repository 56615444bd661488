# -*- coding: utf-8 -*-
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import unquote, urlparse

from tkinter import (
    Tk, Label, Entry, StringVar, Frame, messagebox, Button, Text,
    END, BOTH, DISABLED, NORMAL
)
from tkinter import ttk
from PIL import Image, ImageTk

import path_resolver
from job_builder import JobValidationError, build_job, check_crop_fits, validate_job
from job_dispatch import JobDispatcher, SubprocessInvoker
from job_state import Session

# =========================
# UI palette (centralized)
# =========================
PALETTE = {
    "bg": "white",
    "fg": "#222222",
    "muted_fg": "#555555",
    "btn_bg": "#e6e6e6",
    "btn_fg": "#222222",
    "btn_active_bg": "#d9d9d9",
    "btn_active_fg": "#000000",
    "btn_disabled_fg": "#999999",
    "canvas_bg": "white",
    "log_bg": "#fafafa",
    "log_fg": "#333333",
    "insert_bg": "#000000",
}

def _btn_style():
    return {
        "bg": PALETTE["btn_bg"],
        "fg": PALETTE["btn_fg"],
        "activebackground": PALETTE["btn_active_bg"],
        "activeforeground": PALETTE["btn_active_fg"],
        "disabledforeground": PALETTE["btn_disabled_fg"],
    }

# Row labels for the single-file calibration inputs
ARTIFACT_ROWS = [
    ("response", "Response Function"),
    ("fisheye", "Fish Eye Correction"),
    ("vignetting", "Vignetting Correction"),
    ("neutral_density", "Neutral Density Correction"),
    ("calibration_factor", "Calibration Factor Correction"),
]

VIEW_FIELDS = [
    ("diameter", "Fisheye diameter (px)"),
    ("xleft", "X left offset (px)"),
    ("ydown", "Y down offset (px)"),
    ("xres", "X resolution (px, optional)"),
    ("yres", "Y resolution (px, optional)"),
    ("target_res", "Target resolution (px)"),
    ("vv", "Vertical view angle (deg)"),
    ("vh", "Horizontal view angle (deg)"),
]

SETTINGS_FIELDS = [
    ("radiance_path", "Radiance bin directory"),
    ("hdrgen_path", "hdrgen directory"),
    ("output_path", "Output directory"),
    ("temp_path", "Temp directory"),
]

# =========================
# UI helpers
# =========================

_root = None
_session: Optional[Session] = None
_dispatcher: Optional[JobDispatcher] = None
status_var = None
log_text = None
progress_sub = None
generate_btn = None
count_var = None
image_list_frame = None
_thumbs = []  # keep PhotoImage refs
_artifact_vars: Dict[str, StringVar] = {}

def ui_status(msg: str):
    status_var.set(msg)
    _root.update_idletasks()

def ui_log(msg: str):
    log_text.configure(state=NORMAL)
    log_text.insert(END, msg.rstrip() + "\n")
    log_text.see(END)
    log_text.configure(state=DISABLED)
    _root.update_idletasks()

def ui_log_threadsafe(msg: str):
    _root.after(0, ui_log, msg)

def _path_from_handle(handle: str) -> Path:
    parsed = urlparse(handle)
    return Path(unquote(parsed.path))

def _thumbnail(handle: str):
    path = _path_from_handle(handle)
    if not path.is_file():
        return None
    try:
        with Image.open(path) as im:
            im.thumbnail((120, 120))
            return ImageTk.PhotoImage(im)
    except OSError:
        return None

# =========================
# Input images
# =========================

def _refresh_image_list():
    for w in list(image_list_frame.children.values()):
        w.destroy()
    _thumbs.clear()
    inputs = _session.inputs
    count_var.set(f"Image count: {len(inputs)}")
    for i, (name, handle) in enumerate(zip(inputs.names(), inputs.display_handles)):
        cell = Frame(image_list_frame, bg=PALETTE["bg"])
        cell.grid(row=i // 6, column=i % 6, padx=6, pady=6, sticky="n")
        ph = _thumbnail(handle)
        if ph is not None:
            _thumbs.append(ph)
            Label(cell, image=ph, bg=PALETTE["bg"]).pack()
        else:
            Label(cell, text="(folder)" if Path(inputs.device_paths[i]).is_dir() else "(no preview)",
                  bg=PALETTE["bg"], fg=PALETTE["muted_fg"]).pack()
        Label(cell, text=name, bg=PALETTE["bg"], fg=PALETTE["fg"]).pack()
        Button(cell, text="Delete", command=lambda idx=i: _on_delete_image(idx), **_btn_style()).pack()

def _on_select_images():
    added = _session.inputs.add_many(path_resolver.ask_images())
    if added:
        ui_log(f"[INFO] Added {added} image(s).")
    _refresh_image_list()

def _on_select_batch_dir():
    added = _session.inputs.add_many(path_resolver.ask_directory())
    if added:
        ui_log("[INFO] Added folder for batch processing.")
    _refresh_image_list()

def _on_delete_image(index: int):
    _session.inputs.remove_at(index)
    _refresh_image_list()

# =========================
# Calibration files
# =========================

def _on_select_artifact(kind: str, label: str):
    slot = _session.artifacts.slot(kind)
    slot.select(path_resolver.ask_file(f"Select {label} File"))
    _artifact_vars[kind].set(slot.path)

def _on_clear_artifact(kind: str):
    _session.artifacts.slot(kind).clear()
    _artifact_vars[kind].set("")

# =========================
# Generate
# =========================

def _on_job_done(result: Optional[str], error: Optional[Exception]):
    if progress_sub is not None:
        progress_sub.stop()
        progress_sub["mode"] = "determinate"
        progress_sub["value"] = 0 if error else 100
    generate_btn.configure(state=NORMAL)
    if error is None:
        ui_log(f"[OK] Success. Result: {result}")
        ui_status("HDR image generated.")
    else:
        ui_log(f"[ERROR] {error}")
        ui_status("HDR generation failed. See log.")
        messagebox.showerror("HDR generation failed", str(error))

def on_generate():
    job = build_job(_session)
    try:
        validate_job(job)
    except JobValidationError as e:
        for field, reason in e.problems.items():
            ui_log(f"[ERROR] {field}: {reason}")
        messagebox.showwarning("Invalid settings", str(e))
        return
    try:
        for warning in check_crop_fits(job):
            ui_log(f"[WARN] {warning}")
    except OSError as e:
        ui_log(f"[WARN] Could not read first image: {e}")
    if _dispatcher.busy:
        ui_log("[WARN] An HDR job is already running.")
        return

    generate_btn.configure(state=DISABLED)
    progress_sub["mode"] = "indeterminate"
    progress_sub.start(12)
    ui_status("Generating HDR image...")
    _dispatcher.submit_async(job, lambda r, e: _root.after(0, _on_job_done, r, e))

# =========================
# GUI
# =========================

def _bind_text_field(parent, row: int, label: str, value: str, on_change, width: int = 12) -> StringVar:
    Label(parent, text=label, bg=PALETTE["bg"], fg=PALETTE["fg"]).grid(row=row, column=0, sticky="w", padx=(16, 8), pady=4)
    var = StringVar(value=value)
    var.trace_add("write", lambda *_: on_change(var.get()))
    Entry(parent, textvariable=var, width=width).grid(row=row, column=1, sticky="we", pady=4)
    return var

def _build_settings_tab(tab: Frame):
    Label(tab, text="Software", bg=PALETTE["bg"], fg=PALETTE["fg"], font=("Arial", 11, "bold")).pack(anchor="w", padx=8, pady=(10, 2))
    paths_frame = Frame(tab, bg=PALETTE["bg"])
    paths_frame.pack(fill=BOTH, pady=(2, 8))
    current = _session.settings.get()
    for row, (key, label) in enumerate(SETTINGS_FIELDS):
        var = _bind_text_field(paths_frame, row, label, current[key],
                               lambda v, k=key: _session.settings.set(k, v), width=72)

        def _browse(v=var, title=label):
            chosen = path_resolver.ask_directory(title=f"Select {title}")
            if not chosen.is_cancelled:
                v.set(chosen.items[0])

        Button(paths_frame, text="Browse", command=_browse, **_btn_style()).grid(row=row, column=2, padx=(8, 0))
    paths_frame.grid_columnconfigure(1, weight=1)

def _build_config_tab(tab: Frame):
    global count_var, image_list_frame, generate_btn
    btn_style = _btn_style()

    Label(tab, text="Image Upload", bg=PALETTE["bg"], fg=PALETTE["fg"], font=("Arial", 11, "bold")).pack(anchor="w", padx=8, pady=(10, 2))
    btns = Frame(tab, bg=PALETTE["bg"])
    btns.pack(anchor="w", padx=16)
    Button(btns, text="Select Files", command=_on_select_images, **btn_style).pack(side="left", padx=(0, 6))
    Button(btns, text="Select Folder for Batch Processing", command=_on_select_batch_dir, **btn_style).pack(side="left")
    count_var = StringVar(value="Image count: 0")
    Label(tab, textvariable=count_var, bg=PALETTE["bg"], fg=PALETTE["muted_fg"]).pack(anchor="w", padx=16)
    image_list_frame = Frame(tab, bg=PALETTE["canvas_bg"])
    image_list_frame.pack(fill=BOTH, padx=16, pady=(4, 8))

    Label(tab, text="Calibration Files", bg=PALETTE["bg"], fg=PALETTE["fg"], font=("Arial", 11, "bold")).pack(anchor="w", padx=8, pady=(10, 2))
    cal_frame = Frame(tab, bg=PALETTE["bg"])
    cal_frame.pack(fill=BOTH)
    for row, (kind, label) in enumerate(ARTIFACT_ROWS):
        Label(cal_frame, text=label, bg=PALETTE["bg"], fg=PALETTE["fg"]).grid(row=row, column=0, sticky="w", padx=(16, 8), pady=2)
        _artifact_vars[kind] = StringVar(value="")
        Label(cal_frame, textvariable=_artifact_vars[kind], bg=PALETTE["bg"], fg=PALETTE["muted_fg"], width=60, anchor="w").grid(row=row, column=1, sticky="w")
        Button(cal_frame, text="Select", command=lambda k=kind, l=label: _on_select_artifact(k, l), **btn_style).grid(row=row, column=2, padx=4)
        Button(cal_frame, text="Delete", command=lambda k=kind: _on_clear_artifact(k), **btn_style).grid(row=row, column=3, padx=4)

    Label(tab, text="Cropping, Resizing and View", bg=PALETTE["bg"], fg=PALETTE["fg"], font=("Arial", 11, "bold")).pack(anchor="w", padx=8, pady=(10, 2))
    view_frame = Frame(tab, bg=PALETTE["bg"])
    view_frame.pack(fill=BOTH)
    current = _session.view.get()
    for row, (key, label) in enumerate(VIEW_FIELDS):
        _bind_text_field(view_frame, row, label, current[key], lambda v, k=key: _session.view.set(k, v))

    generate_btn = Button(tab, text="Generate HDR Image", command=on_generate, **btn_style)
    generate_btn.pack(pady=(12, 8))

def main():
    global _root, _session, _dispatcher, status_var, log_text, progress_sub

    _root = Tk()
    _root.title("HDRI Calibration Tool")
    _root.geometry("1100x900")
    _root.configure(bg=PALETTE["bg"])
    _root.resizable(True, True)

    _session = Session()
    _dispatcher = JobDispatcher(SubprocessInvoker(log=ui_log_threadsafe))

    header = Frame(_root, bg=PALETTE["bg"])
    header.pack(pady=(14, 8))
    Label(header, text="HDRI CALIBRATION TOOL", bg=PALETTE["bg"], fg=PALETTE["fg"], font=("Arial", 12, "bold")).pack(side="left")

    prog_top = Frame(_root, bg=PALETTE["bg"])
    prog_top.pack(fill=BOTH, padx=16, pady=(0, 4))
    progress_sub = ttk.Progressbar(prog_top, orient="horizontal", mode="determinate", length=680)
    progress_sub.pack(pady=(2, 4))
    status_var = StringVar(value="Idle.")
    Label(_root, textvariable=status_var, bg=PALETTE["bg"], fg=PALETTE["fg"]).pack(pady=(0, 6))

    tabs = ttk.Notebook(_root)
    tabs.pack(fill=BOTH, expand=True, padx=16, pady=(8, 6))
    config_tab = Frame(tabs, bg=PALETTE["bg"])
    tabs.add(config_tab, text="Image Configuration")
    settings_tab = Frame(tabs, bg=PALETTE["bg"])
    tabs.add(settings_tab, text="Settings")

    log_frame = Frame(_root, bg=PALETTE["bg"])
    log_frame.pack(fill=BOTH, expand=False, padx=16, pady=(0, 12))
    log_text = Text(log_frame, height=8, bg=PALETTE["log_bg"], fg=PALETTE["log_fg"], insertbackground=PALETTE["insert_bg"])
    log_text.pack(fill=BOTH)
    log_text.configure(state=DISABLED)

    _build_config_tab(config_tab)
    _build_settings_tab(settings_tab)

    _root.mainloop()

if __name__ == "__main__":
    main()
