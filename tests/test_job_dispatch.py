import sys
import threading
from pathlib import Path

import pytest

from path_resolver import Selection
from job_builder import JobValidationError, build_job
from job_dispatch import JobDispatcher, JobInFlightError, PipelineError, SubprocessInvoker, build_pipeline_cmd
from job_state import Session


def _valid_job():
    session = Session()
    session.inputs.add_many(Selection.multiple(["/img/a.jpg", "/img/b.jpg"]))
    session.artifacts.slot("response").select(Selection.single("/cal/camera.rsp"))
    for key, value in {"diameter": "1460", "xleft": "750", "ydown": "730", "vv": "180", "vh": "180"}.items():
        session.view.set(key, value)
    return build_job(session)


def test_submit_invokes_exactly_once_with_full_params():
    calls = []

    def invoker(params):
        calls.append(params)
        return "done"

    assert JobDispatcher(invoker).submit(_valid_job()) == "done"
    assert len(calls) == 1
    assert calls[0]["inputImages"] == ["/img/a.jpg", "/img/b.jpg"]
    assert calls[0]["neutralDensityCal"] == ""


def test_invalid_job_is_not_invoked():
    calls = []
    dispatcher = JobDispatcher(lambda p: calls.append(p) or "x")
    with pytest.raises(JobValidationError):
        dispatcher.submit(build_job(Session()))
    assert calls == []
    assert not dispatcher.busy


def test_validation_can_be_disabled():
    dispatcher = JobDispatcher(lambda p: "raw", validate=False)
    assert dispatcher.submit(build_job(Session())) == "raw"


def test_second_submit_while_running_is_refused():
    holder = {}

    def invoker(params):
        with pytest.raises(JobInFlightError):
            holder["dispatcher"].submit(_valid_job())
        return "first"

    holder["dispatcher"] = JobDispatcher(invoker)
    assert holder["dispatcher"].submit(_valid_job()) == "first"
    assert not holder["dispatcher"].busy


def test_latch_released_after_failure():
    def failing(params):
        raise PipelineError("hdrgen exploded")

    dispatcher = JobDispatcher(failing)
    with pytest.raises(PipelineError):
        dispatcher.submit(_valid_job())
    assert not dispatcher.busy


def test_submit_async_reports_outcome():
    done = threading.Event()
    outcome = {}

    def on_done(result, error):
        outcome["result"], outcome["error"] = result, error
        done.set()

    JobDispatcher(lambda p: "ok").submit_async(_valid_job(), on_done)
    assert done.wait(5)
    assert outcome == {"result": "ok", "error": None}


def test_build_pipeline_cmd_passes_text_verbatim():
    params = _valid_job().to_invocation_params()
    cmd = build_pipeline_cmd(params, Path("hdr_pipeline.py"))
    assert cmd[:2] == [sys.executable, "hdr_pipeline.py"]
    assert cmd[cmd.index("--diameter") + 1] == "1460"
    assert cmd[cmd.index("--fisheye_correction_cal") + 1] == ""
    oi = cmd.index("--input_images")
    assert cmd[oi + 1:] == ["/img/a.jpg", "/img/b.jpg"]


def test_subprocess_invoker_streams_and_returns_last_line(tmp_path: Path):
    script = tmp_path / "fake_pipeline.py"
    script.write_text("print('stage one')\nprint('[DONE] /out/sky.hdr')\n", encoding="utf-8")
    lines = []
    result = SubprocessInvoker(script, log=lines.append)(_valid_job().to_invocation_params())
    assert result == "[DONE] /out/sky.hdr"
    assert "stage one" in lines
    assert lines[0].startswith("[RUN]")


def test_subprocess_invoker_raises_on_nonzero_exit(tmp_path: Path):
    script = tmp_path / "fake_pipeline.py"
    script.write_text("import sys\nprint('boom')\nsys.exit(3)\n", encoding="utf-8")
    with pytest.raises(PipelineError, match="code 3"):
        SubprocessInvoker(script, log=lambda m: None)(_valid_job().to_invocation_params())


def test_subprocess_invoker_missing_script(tmp_path: Path):
    with pytest.raises(PipelineError):
        SubprocessInvoker(tmp_path / "nope.py", log=lambda m: None)({})


def test_unexpected_invoker_errors_become_pipeline_errors():
    def broken_pipe(params):
        raise OSError("pipe broke")

    dispatcher = JobDispatcher(broken_pipe, validate=False)
    with pytest.raises(PipelineError, match="pipe broke") as info:
        dispatcher.submit(_valid_job())
    assert isinstance(info.value.__cause__, OSError)
    assert not dispatcher.busy


def test_submit_async_reports_failure():
    done = threading.Event()
    outcome = {}

    def failing(params):
        raise PipelineError("pfilt: bad resolution")

    def on_done(result, error):
        outcome["result"], outcome["error"] = result, error
        done.set()

    JobDispatcher(failing).submit_async(_valid_job(), on_done)
    assert done.wait(5)
    assert outcome["result"] is None
    assert isinstance(outcome["error"], PipelineError)


def test_submit_async_refuses_second_job_while_first_runs():
    started = threading.Event()
    release = threading.Event()
    first_done = threading.Event()
    second_done = threading.Event()
    outcomes = {}

    def slow(params):
        started.set()
        release.wait(5)
        return "first"

    def record(key, event):
        def on_done(result, error):
            outcomes[key] = (result, error)
            event.set()
        return on_done

    dispatcher = JobDispatcher(slow)
    dispatcher.submit_async(_valid_job(), record("first", first_done))
    assert started.wait(5)
    dispatcher.submit_async(_valid_job(), record("second", second_done))
    assert second_done.wait(5)
    release.set()
    assert first_done.wait(5)

    assert outcomes["first"] == ("first", None)
    result, error = outcomes["second"]
    assert result is None
    assert isinstance(error, JobInFlightError)
