"""Hands a built job to the external HDR pipeline.

The dispatcher owns no job state. It validates a descriptor, makes exactly
one invocation and reports the outcome; a latch refuses a second submit
while one is still running.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from job_builder import JobDescriptor, validate_job

PIPELINE_SCRIPT = Path(__file__).parent / "hdr_pipeline.py"

# invocation key -> hdr_pipeline.py option
_CLI_OPTIONS = {
    "radiancePath": "--radiance_path",
    "hdrgenPath": "--hdrgen_path",
    "outputPath": "--output_path",
    "tempPath": "--temp_path",
    "responseFunction": "--response_function",
    "fisheyeCorrectionCal": "--fisheye_correction_cal",
    "vignettingCorrectionCal": "--vignetting_correction_cal",
    "photometricAdjustmentCal": "--photometric_adjustment_cal",
    "neutralDensityCal": "--neutral_density_cal",
    "diameter": "--diameter",
    "xleft": "--xleft",
    "ydown": "--ydown",
    "xdim": "--xdim",
    "ydim": "--ydim",
    "verticalAngle": "--vertical_angle",
    "horizontalAngle": "--horizontal_angle",
}


class PipelineError(RuntimeError):
    pass


class JobInFlightError(RuntimeError):
    pass


def build_pipeline_cmd(params: Dict[str, object], script: Path = PIPELINE_SCRIPT) -> List[str]:
    cmd = [sys.executable, str(script)]
    for key, option in _CLI_OPTIONS.items():
        cmd += [option, str(params[key])]
    cmd.append("--input_images")
    cmd += [str(p) for p in params["inputImages"]]
    return cmd


class SubprocessInvoker:
    """Runs hdr_pipeline.py and streams its output to ``log`` line by line."""

    def __init__(self, script: Path = PIPELINE_SCRIPT, log: Optional[Callable[[str], None]] = None):
        self.script = Path(script)
        self.log = log or logging.info

    def __call__(self, params: Dict[str, object]) -> str:
        if not self.script.exists():
            raise PipelineError(f"Missing pipeline script: {self.script}")
        cmd = build_pipeline_cmd(params, self.script)
        self.log(f"[RUN] {' '.join(cmd)}")
        last_line = ""
        try:
            with subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            ) as proc:
                if proc.stdout is not None:
                    for line in proc.stdout:
                        line = line.rstrip()
                        if line:
                            self.log(line)
                            last_line = line
                ret = proc.wait()
        except OSError as e:
            raise PipelineError(f"Could not start pipeline: {e}") from e
        if ret != 0:
            raise PipelineError(f"Pipeline exited with code {ret}: {last_line}")
        return last_line


class JobDispatcher:
    def __init__(self, invoker: Callable[[Dict[str, object]], str], validate: bool = True):
        self.invoker = invoker
        self.validate = validate
        self._in_flight = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def submit(self, job: JobDescriptor) -> str:
        if not self._in_flight.acquire(blocking=False):
            raise JobInFlightError("An HDR job is already running")
        try:
            if self.validate:
                validate_job(job)
            logging.info(f"Submitting HDR job with {len(job.input_images)} input(s)")
            try:
                return self.invoker(job.to_invocation_params())
            except PipelineError:
                raise
            except Exception as e:
                raise PipelineError(str(e)) from e
        finally:
            self._in_flight.release()

    def submit_async(self, job: JobDescriptor, on_done: Callable[[Optional[str], Optional[Exception]], None]) -> threading.Thread:
        def _worker():
            try:
                result = self.submit(job)
            except Exception as exc:
                on_done(None, exc)
            else:
                on_done(result, None)

        worker = threading.Thread(target=_worker, daemon=True)
        worker.start()
        return worker
