import random

import pytest

from path_resolver import Selection
from job_state import (
    ArtifactRegisters, ArtifactSlot, InputCollection, PipelineSettings, Session, ViewSettings, take_first
)


def _aligned(store: InputCollection) -> bool:
    if not (len(store.files) == len(store.device_paths) == len(store.display_handles)):
        return False
    return all(h.endswith(p.split("/")[-1]) for p, h in zip(store.device_paths, store.display_handles))


def test_add_many_preserves_order():
    store = InputCollection()
    store.add_many(Selection.multiple(["/img/a.jpg", "/img/b.jpg", "/img/c.jpg"]))
    store.add_many(Selection.single("/img/d.jpg"))
    assert store.device_paths == ["/img/a.jpg", "/img/b.jpg", "/img/c.jpg", "/img/d.jpg"]
    assert store.names() == ["a.jpg", "b.jpg", "c.jpg", "d.jpg"]


def test_add_many_does_not_deduplicate():
    store = InputCollection()
    store.add_many(Selection.single("/img/a.jpg"))
    store.add_many(Selection.single("/img/a.jpg"))
    assert len(store) == 2


def test_remove_at_applies_to_all_sequences():
    store = InputCollection()
    store.add_many(Selection.multiple(["/img/a.jpg", "/img/b.jpg", "/img/c.jpg"]))
    store.remove_at(1)
    assert store.device_paths == ["/img/a.jpg", "/img/c.jpg"]
    assert store.files == ["/img/a.jpg", "/img/c.jpg"]
    assert _aligned(store)


@pytest.mark.parametrize("index", [3, 10, -1])
def test_remove_at_out_of_range_raises_and_keeps_state(index):
    store = InputCollection()
    store.add_many(Selection.multiple(["/img/a.jpg", "/img/b.jpg", "/img/c.jpg"]))
    with pytest.raises(IndexError):
        store.remove_at(index)
    assert store.device_paths == ["/img/a.jpg", "/img/b.jpg", "/img/c.jpg"]


def test_parallel_sequences_stay_aligned_under_random_edits():
    rng = random.Random(7)
    store = InputCollection()
    counter = 0
    for _ in range(200):
        if store.device_paths and rng.random() < 0.4:
            store.remove_at(rng.randrange(len(store)))
        else:
            n = rng.randint(1, 3)
            paths = [f"/img/p{counter + i}.jpg" for i in range(n)]
            counter += n
            store.add_many(Selection.multiple(paths) if n > 1 else Selection.single(paths[0]))
        assert _aligned(store)


def test_take_first_policy():
    assert take_first(Selection.multiple(["x", "y", "z"])) == "x"
    assert take_first(Selection.single("only")) == "only"
    assert take_first(Selection.cancelled()) is None


def test_artifact_slot_replaces_then_clears():
    slot = ArtifactSlot("fisheye")
    slot.select(Selection.single("/cal/a.cal"))
    slot.select(Selection.single("/cal/b.cal"))
    assert slot.path == "/cal/b.cal"
    slot.clear()
    assert slot.path == ""
    assert slot.is_empty


def test_artifact_slot_keeps_only_first_of_many():
    slot = ArtifactSlot("response")
    slot.select(Selection.multiple(["/rsp/x.rsp", "/rsp/y.rsp", "/rsp/z.rsp"]))
    assert slot.path == "/rsp/x.rsp"


def test_registers_unknown_kind():
    regs = ArtifactRegisters()
    with pytest.raises(KeyError):
        regs.slot("polarizer")
    assert set(regs.paths()) == {"response", "fisheye", "vignetting", "neutral_density", "calibration_factor"}


def test_cancelled_selection_leaves_session_unchanged():
    session = Session()
    session.inputs.add_many(Selection.single("/img/a.jpg"))
    session.artifacts.slot("response").select(Selection.single("/rsp/cam.rsp"))
    before = (
        list(session.inputs.files),
        list(session.inputs.device_paths),
        list(session.inputs.display_handles),
        session.artifacts.paths(),
    )

    session.inputs.add_many(Selection.cancelled())
    for kind in session.artifacts.paths():
        session.artifacts.slot(kind).select(Selection.cancelled())

    after = (
        list(session.inputs.files),
        list(session.inputs.device_paths),
        list(session.inputs.display_handles),
        session.artifacts.paths(),
    )
    assert after == before


def test_settings_defaults_and_set():
    settings = PipelineSettings()
    assert settings["radiance_path"] == "/usr/local/radiance/bin/"
    assert settings["temp_path"] == "/tmp/"
    settings.set("output_path", "/data/out/")
    assert settings.get()["output_path"] == "/data/out/"
    with pytest.raises(KeyError):
        settings.set("ffmpeg_path", "/usr/bin/ffmpeg")


def test_view_settings_accept_any_text():
    view = ViewSettings()
    view.set("diameter", "not a number")
    assert view["diameter"] == "not a number"
    assert view["target_res"] == "1000"
