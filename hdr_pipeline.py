"""
Builds calibrated fisheye HDR images with Radiance and hdrgen.

Each stage reads the previous stage's file in the temp directory:
merge exposures, nullify the exposure value, crop to the fisheye square,
resize, apply the optional correction .cal files, then write the view
angles into the header.
"""

import argparse
import logging
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, NamedTuple, Optional

from tqdm import tqdm

EXPOSURE_EXT = {".jpg", ".jpeg"}


class PipelineStageError(RuntimeError):
    def __init__(self, stage: str, cmd: List[str], detail: str = ""):
        self.stage = stage
        self.cmd = cmd
        self.detail = detail
        super().__init__(f"{stage} failed: {' '.join(cmd)}\n{detail}".rstrip())


class ToolPaths(NamedTuple):
    radiance: Path
    hdrgen: Path
    temp: Path
    output: Path

    def radiance_tool(self, name: str) -> str:
        return str(self.radiance / name)


class HdrRun(NamedTuple):
    name: str
    images: List[Path]


def _run_stage(stage: str, cmd: List[str], stdout_path: Optional[Path] = None, stdin_path: Optional[Path] = None) -> None:
    logging.info(f"[{stage}] {' '.join(cmd)}")
    try:
        if stdout_path is None:
            proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        else:
            with open(stdout_path, "wb") as out:
                if stdin_path is None:
                    proc = subprocess.run(cmd, stdout=out, stderr=subprocess.PIPE)
                else:
                    with open(stdin_path, "rb") as src:
                        proc = subprocess.run(cmd, stdin=src, stdout=out, stderr=subprocess.PIPE)
    except OSError as e:
        raise PipelineStageError(stage, cmd, str(e)) from e
    if proc.returncode != 0:
        err = proc.stderr.decode(errors="ignore") if proc.stderr else ""
        raise PipelineStageError(stage, cmd, err[:500])


# =========================
# Stage command builders
# =========================

def merge_exposures_cmd(tools: ToolPaths, images: List[Path], response: str, out: Path) -> List[str]:
    cmd = [str(tools.hdrgen / "hdrgen")]
    cmd += [str(p) for p in images]
    cmd += ["-o", str(out), "-r", response, "-a", "-e", "-f", "-g"]
    return cmd


def nullify_exposure_cmd(tools: ToolPaths, src: Path) -> List[str]:
    return [tools.radiance_tool("ra_xyze"), "-r", "-o", str(src)]


def crop_cmd(tools: ToolPaths, src: Path, diameter: str, xleft: str, ydown: str) -> List[str]:
    return [
        tools.radiance_tool("pcompos"),
        "-x", diameter, "-y", diameter,
        "=-+", str(src), f"-{xleft}", f"-{ydown}",
    ]


def resize_cmd(tools: ToolPaths, src: Path, xdim: str, ydim: str) -> List[str]:
    return [tools.radiance_tool("pfilt"), "-1", "-x", xdim, "-y", ydim, str(src)]


def correction_cmd(tools: ToolPaths, src: Path, cal_file: str, keep_header: bool = True) -> List[str]:
    cmd = [tools.radiance_tool("pcomb")]
    if not keep_header:
        cmd.append("-h")
    return cmd + ["-f", cal_file, "-o", str(src)]


def header_view_cmd(tools: ToolPaths, vertical_angle: str, horizontal_angle: str) -> List[str]:
    view = f"VIEW= -vta -vv {vertical_angle} -vh {horizontal_angle}"
    return [tools.radiance_tool("getinfo"), "-a", view]


# =========================
# Runs
# =========================

def _unique_name(name: str, taken: set) -> str:
    candidate, n = name, 1
    while candidate in taken:
        n += 1
        candidate = f"{name}_{n}"
    taken.add(candidate)
    return candidate


def collect_runs(inputs: List[Path]) -> List[HdrRun]:
    """Loose images form one run; every directory is its own batch run.

    Run names double as work directory and output file names, so clashes
    get a numeric suffix (``day1``, ``day1_2``, ...).
    """
    loose = [p for p in inputs if not p.is_dir()]
    runs = []
    taken = set()
    if loose:
        runs.append(HdrRun(name=_unique_name(loose[0].stem, taken), images=loose))
    for d in (p for p in inputs if p.is_dir()):
        imgs = sorted(p for p in d.iterdir() if p.is_file() and p.suffix.lower() in EXPOSURE_EXT)
        if not imgs:
            logging.warning(f"No exposures found in {d}; skipping.")
            continue
        runs.append(HdrRun(name=_unique_name(d.name, taken), images=imgs))
    return runs


def process_run(run: HdrRun, tools: ToolPaths, args) -> Path:
    work = tools.temp / run.name
    work.mkdir(parents=True, exist_ok=True)
    step = 1

    def next_file() -> Path:
        nonlocal step
        path = work / f"output{step}.hdr"
        step += 1
        return path

    current = next_file()
    _run_stage("merge", merge_exposures_cmd(tools, run.images, args.response_function, current))

    out = next_file()
    _run_stage("nullify", nullify_exposure_cmd(tools, current), stdout_path=out)
    current = out

    out = next_file()
    _run_stage("crop", crop_cmd(tools, current, args.diameter, args.xleft, args.ydown), stdout_path=out)
    current = out

    out = next_file()
    _run_stage("resize", resize_cmd(tools, current, args.xdim, args.ydim), stdout_path=out)
    current = out

    corrections = [
        ("fisheye", args.fisheye_correction_cal, True),
        ("vignetting", args.vignetting_correction_cal, True),
        ("neutral density", args.neutral_density_cal, True),
        ("calibration factor", args.photometric_adjustment_cal, False),
    ]
    for stage, cal_file, keep_header in corrections:
        if not cal_file:
            logging.info(f"[{stage}] no calibration file; skipped.")
            continue
        out = next_file()
        _run_stage(stage, correction_cmd(tools, current, cal_file, keep_header), stdout_path=out)
        current = out

    out = next_file()
    _run_stage("header", header_view_cmd(tools, args.vertical_angle, args.horizontal_angle), stdout_path=out, stdin_path=current)

    tools.output.mkdir(parents=True, exist_ok=True)
    final = tools.output / f"{run.name}.hdr"
    shutil.copyfile(out, final)
    return final


def run(args) -> List[Path]:
    tools = ToolPaths(
        radiance=Path(args.radiance_path),
        hdrgen=Path(args.hdrgen_path),
        temp=Path(args.temp_path),
        output=Path(args.output_path),
    )
    runs = collect_runs([Path(p) for p in args.input_images])
    if not runs:
        raise PipelineStageError("collect", [], "No input images")
    logging.info(f"Found {len(runs)} HDR run(s).")
    produced = []
    for hdr_run in tqdm(runs, desc="HDR runs", disable=len(runs) < 2):
        try:
            produced.append(process_run(hdr_run, tools, args))
        except PipelineStageError:
            if produced:
                logging.info(f"[OK] Completed before failure: {', '.join(str(p) for p in produced)}")
            raise
        logging.info(f"[OK] {hdr_run.name} -> {produced[-1]}")
    return produced


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--radiance_path", required=True)
    parser.add_argument("--hdrgen_path", required=True)
    parser.add_argument("--output_path", required=True)
    parser.add_argument("--temp_path", required=True)
    parser.add_argument("--input_images", nargs="+", required=True)
    parser.add_argument("--response_function", required=True)
    parser.add_argument("--fisheye_correction_cal", default="")
    parser.add_argument("--vignetting_correction_cal", default="")
    parser.add_argument("--photometric_adjustment_cal", default="")
    parser.add_argument("--neutral_density_cal", default="")
    parser.add_argument("--diameter", required=True)
    parser.add_argument("--xleft", required=True)
    parser.add_argument("--ydown", required=True)
    parser.add_argument("--xdim", required=True)
    parser.add_argument("--ydim", required=True)
    parser.add_argument("--vertical_angle", required=True)
    parser.add_argument("--horizontal_angle", required=True)
    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stdout)
    args = build_parser().parse_args(argv)
    try:
        produced = run(args)
    except PipelineStageError as e:
        logging.error(f"[ERROR] {e}")
        return 1
    logging.info(f"[DONE] {', '.join(str(p) for p in produced)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
