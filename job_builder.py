from __future__ import annotations

from pathlib import Path
from typing import Dict, List, NamedTuple, Tuple

from PIL import Image

from job_state import Session


class JobValidationError(ValueError):
    """Raised when a descriptor cannot be sent to the pipeline.

    ``problems`` maps each offending field to a short reason.
    """

    def __init__(self, problems: Dict[str, str]):
        self.problems = dict(problems)
        detail = "; ".join(f"{k}: {v}" for k, v in self.problems.items())
        super().__init__(f"Invalid job settings ({detail})")


class JobDescriptor(NamedTuple):
    radiance_path: str
    hdrgen_path: str
    output_path: str
    temp_path: str
    input_images: Tuple[str, ...]
    response_function: str
    fisheye_correction_cal: str
    vignetting_correction_cal: str
    photometric_adjustment_cal: str
    neutral_density_cal: str
    diameter: str
    xleft: str
    ydown: str
    xdim: str
    ydim: str
    vertical_angle: str
    horizontal_angle: str

    def to_invocation_params(self) -> Dict[str, object]:
        return {
            "radiancePath": self.radiance_path,
            "hdrgenPath": self.hdrgen_path,
            "outputPath": self.output_path,
            "tempPath": self.temp_path,
            "inputImages": list(self.input_images),
            "responseFunction": self.response_function,
            "fisheyeCorrectionCal": self.fisheye_correction_cal,
            "vignettingCorrectionCal": self.vignetting_correction_cal,
            "photometricAdjustmentCal": self.photometric_adjustment_cal,
            "neutralDensityCal": self.neutral_density_cal,
            "diameter": self.diameter,
            "xleft": self.xleft,
            "ydown": self.ydown,
            "xdim": self.xdim,
            "ydim": self.ydim,
            "verticalAngle": self.vertical_angle,
            "horizontalAngle": self.horizontal_angle,
        }


def build_job(session: Session) -> JobDescriptor:
    """Snapshot the session into a descriptor. Never validates, never fails."""
    view = session.view.get()
    settings = session.settings.get()
    artifacts = session.artifacts.paths()
    return JobDescriptor(
        radiance_path=settings["radiance_path"],
        hdrgen_path=settings["hdrgen_path"],
        output_path=settings["output_path"],
        temp_path=settings["temp_path"],
        input_images=tuple(session.inputs.device_paths),
        response_function=artifacts["response"],
        fisheye_correction_cal=artifacts["fisheye"],
        vignetting_correction_cal=artifacts["vignetting"],
        photometric_adjustment_cal=artifacts["calibration_factor"],
        neutral_density_cal=artifacts["neutral_density"],
        diameter=view["diameter"],
        xleft=view["xleft"],
        ydown=view["ydown"],
        xdim=view["xres"] or view["target_res"],
        ydim=view["yres"] or view["target_res"],
        vertical_angle=view["vv"],
        horizontal_angle=view["vh"],
    )


# =========================
# Numeric checks
# =========================

_PIXEL_FIELDS = {
    # field -> must be strictly positive
    "diameter": True,
    "xleft": False,
    "ydown": False,
    "xdim": True,
    "ydim": True,
}
_ANGLE_FIELDS = ("vertical_angle", "horizontal_angle")


def parse_pixels(value: str, positive: bool = False) -> int:
    """Parse a pixel count. Raises ValueError on anything but a whole number."""
    text = (value or "").strip()
    if not text:
        raise ValueError("required")
    try:
        number = int(text)
    except ValueError:
        raise ValueError(f"not a whole number: {text!r}") from None
    if number < 0 or (positive and number == 0):
        raise ValueError("must be > 0" if positive else "must be >= 0")
    return number


def parse_angle(value: str) -> float:
    text = (value or "").strip()
    if not text:
        raise ValueError("required")
    try:
        angle = float(text)
    except ValueError:
        raise ValueError(f"not a number: {text!r}") from None
    if not 0.0 < angle <= 360.0:
        raise ValueError("must be in (0, 360]")
    return angle


def validate_job(job: JobDescriptor) -> None:
    """Check every field the pipeline parses and report all failures at once."""
    problems: Dict[str, str] = {}
    if not job.input_images:
        problems["input_images"] = "no images selected"
    if not job.response_function:
        problems["response_function"] = "required"
    for name, positive in _PIXEL_FIELDS.items():
        try:
            parse_pixels(getattr(job, name), positive)
        except ValueError as e:
            problems[name] = str(e)
    for name in _ANGLE_FIELDS:
        try:
            parse_angle(getattr(job, name))
        except ValueError as e:
            problems[name] = str(e)
    if problems:
        raise JobValidationError(problems)


def check_crop_fits(job: JobDescriptor) -> List[str]:
    """Return warnings when the fisheye square falls outside the first image.

    Needs numeric fields that already passed ``validate_job``.
    """
    images = [Path(p) for p in job.input_images if Path(p).is_file()]
    if not images:
        return []
    with Image.open(images[0]) as im:
        width, height = im.size
    diameter = int(job.diameter)
    warnings = []
    if int(job.xleft) + diameter > width:
        warnings.append(f"xleft + diameter ({int(job.xleft) + diameter}) exceeds image width {width}")
    if int(job.ydown) + diameter > height:
        warnings.append(f"ydown + diameter ({int(job.ydown) + diameter}) exceeds image height {height}")
    return warnings
