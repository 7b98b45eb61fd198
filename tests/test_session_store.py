"""SessionStore: layout, pointer resolution, manifest mutations."""
import json
import threading
import time
from datetime import datetime, timezone

import pytest

from crit.orchestrator.session import (
    AGENTS_FILE,
    CaptureIndexError,
    CorruptDocumentError,
    InvalidFilenameError,
    NoSessionError,
    capture_filename,
    dump_json,
    session_name_for,
)
from crit.orchestrator.state import new_manifest


MOMENT = datetime(2026, 10, 17, 7, 24, 5, 999000, tzinfo=timezone.utc)


def test_session_name_is_utc_seconds():
    assert session_name_for(MOMENT) == "2026-10-17-07-24-05"


def test_capture_filename_padding():
    assert capture_filename(1) == "001.png"
    assert capture_filename(42) == "042.png"
    assert capture_filename(1000) == "1000.png"


def test_create_session_layout(store, config):
    session = store.create_session(now=MOMENT)

    assert session.name == "2026-10-17-07-24-05"
    assert session.path == config.sessions_dir / session.name
    assert session.screenshots_dir.is_dir()
    assert session.review_root == config.review_root
    assert (config.review_root / AGENTS_FILE).read_text().startswith("# Crit UI Review Feedback")


def test_create_session_same_second_gets_suffix(store):
    first = store.create_session(now=MOMENT)
    second = store.create_session(now=MOMENT)
    third = store.create_session(now=MOMENT)

    assert second.name == "2026-10-17-07-24-05-02"
    assert third.name == "2026-10-17-07-24-05-03"
    assert first.name < second.name < third.name < "2026-10-17-07-24-06"


def test_clean_sessions_missing_dir_is_noop(store):
    assert store.clean_sessions() == 0


def test_clean_then_create_leaves_one_session(store, config):
    store.create_session(now=MOMENT)
    store.create_session(now=datetime(2026, 10, 17, 8, 0, 0, tzinfo=timezone.utc))

    assert store.clean_sessions() == 2
    store.create_session()

    dirs = [p for p in config.sessions_dir.iterdir() if p.is_dir()]
    assert len(dirs) == 1


def test_write_manifest_pretty_and_overwrites(store):
    session = store.create_session(now=MOMENT)
    manifest = new_manifest("iPhone 15 Pro", [{"image": "screenshots/001.png"}])

    path = store.write_manifest(session.path, manifest)
    store.write_manifest(session.path, manifest)

    assert path == session.manifest_path
    assert path.read_text() == json.dumps(manifest, indent=2)
    assert store.read_manifest(session) == manifest


def test_latest_resolves_to_pointed_session(store):
    older = store.create_session(now=MOMENT)
    store.create_session(now=datetime(2026, 10, 18, tzinfo=timezone.utc))

    store.write_manifest(older.path, new_manifest("iPhone"))
    store.update_latest_pointer(older.name)

    assert store.latest_path.read_text() == f"sessions/{older.name}"
    assert store.get_latest_session().name == older.name


def test_latest_falls_back_to_greatest_name(store):
    store.create_session(now=MOMENT)
    newest = store.create_session(now=datetime(2026, 10, 18, tzinfo=timezone.utc))

    assert not store.latest_path.exists()
    assert store.get_latest_session().name == newest.name


def test_latest_ignores_stale_pointer(store):
    newest = store.create_session(now=MOMENT)
    store.update_latest_pointer("2020-01-01-00-00-00")
    assert store.get_latest_session().name == newest.name


def test_latest_ignores_pointer_outside_sessions(store, config):
    session = store.create_session(now=MOMENT)
    config.latest_path.write_text("../../")
    assert store.get_latest_session().name == session.name


def test_latest_none_when_empty(store):
    assert store.get_latest_session() is None
    assert store.list_sessions() == []


def test_list_sessions_newest_first(store, config):
    a = store.create_session(now=MOMENT)
    b = store.create_session(now=datetime(2026, 10, 18, tzinfo=timezone.utc))
    (config.sessions_dir / "stray.txt").write_text("not a session")

    listed = store.list_sessions()

    assert [s["name"] for s in listed] == [b.name, a.name]
    assert listed[0]["timestamp"] == b.name
    assert listed[0]["path"] == str(b.path)


def test_feedback_written_verbatim(store):
    session = store.create_session(now=MOMENT)
    document = {"captures": [{"image": "screenshots/001.png", "pins": [
        {"number": 1, "comment": "Bigger títle", "x": 12.5, "y": 40}
    ]}]}

    path = store.write_feedback(session, document)

    assert path.read_text(encoding="utf-8") == dump_json(document)
    assert "títle" in path.read_text(encoding="utf-8")


@pytest.mark.parametrize("bad", ["", ".", "..", "../x.png", "a/b.png", "a\\b.png"])
def test_write_asset_rejects_paths(store, bad):
    session = store.create_session(now=MOMENT)
    with pytest.raises(InvalidFilenameError):
        store.write_asset(session, "annotated", bad, b"x")


def test_write_and_resolve_asset(store):
    session = store.create_session(now=MOMENT)

    relative = store.write_asset(session, "references", "ref-1.png", b"data")

    assert relative == "references/ref-1.png"
    assert store.resolve_asset(session, relative).read_bytes() == b"data"
    assert store.resolve_asset(session, "references/missing.png") is None
    assert store.resolve_asset(session, "../../AGENTS.md") is None


def test_append_capture_starts_manifest_and_advances_pointer(store):
    session = store.create_session(now=MOMENT)

    manifest = store.append_capture(session, "iPhone 15 Pro", {"image": "screenshots/001.png"})

    assert manifest["device"] == "iPhone 15 Pro"
    assert manifest["captures"] == [{"image": "screenshots/001.png"}]
    assert manifest["capturedAt"].endswith("Z")
    assert store.read_manifest(session) == manifest
    assert store.latest_path.read_text() == f"sessions/{session.name}"


def _seed(store, session, count):
    captures = []
    for n in range(1, count + 1):
        name = capture_filename(n)
        (session.screenshots_dir / name).write_bytes(b"png")
        captures.append({"image": f"screenshots/{name}"})
    store.write_manifest(session.path, new_manifest("iPhone", captures))


def test_delete_capture_keeps_other_filenames(store):
    session = store.create_session(now=MOMENT)
    _seed(store, session, 3)

    removed = store.delete_capture(session, 1)

    assert removed == {"image": "screenshots/002.png"}
    assert not (session.screenshots_dir / "002.png").exists()
    assert [c["image"] for c in store.read_manifest(session)["captures"]] == [
        "screenshots/001.png",
        "screenshots/003.png",
    ]


@pytest.mark.parametrize("index", [-1, 3, 99])
def test_delete_capture_out_of_bounds(store, index):
    session = store.create_session(now=MOMENT)
    _seed(store, session, 3)

    with pytest.raises(CaptureIndexError):
        store.delete_capture(session, index)
    assert len(store.read_manifest(session)["captures"]) == 3


def test_delete_capture_without_manifest(store):
    session = store.create_session(now=MOMENT)
    with pytest.raises(NoSessionError):
        store.delete_capture(session, 0)


def test_next_capture_number_skips_surviving_ordinals(store):
    session = store.create_session(now=MOMENT)
    assert store.next_capture_number(session) == 1

    _seed(store, session, 3)
    store.delete_capture(session, 2)

    manifest = store.read_manifest(session)
    # 003.png is gone from disk and manifest; 001 and 002 remain
    assert store.next_capture_number(session, manifest) == 3

    (session.screenshots_dir / "007.png").write_bytes(b"orphan")
    assert store.next_capture_number(session, manifest) == 8


def test_delete_capture_removes_annotated_copy(store):
    session = store.create_session(now=MOMENT)
    _seed(store, session, 3)
    store.write_asset(session, "annotated", "003.png", b"pins")
    store.write_asset(session, "annotated", "001.png", b"pins")

    store.delete_capture(session, 2)

    number = store.next_capture_number(session, store.read_manifest(session))
    assert number == 3
    assert not (session.path / "annotated" / capture_filename(number)).exists()
    assert (session.path / "annotated" / "001.png").exists()


def test_dump_json_refuses_nan():
    with pytest.raises(ValueError):
        dump_json({"x": float("nan")})
    with pytest.raises(ValueError):
        dump_json({"x": float("inf")})


@pytest.mark.parametrize("filename", ["manifest.json", "critique.json"])
def test_corrupt_document_raises(store, filename):
    session = store.create_session(now=MOMENT)
    (session.path / filename).write_text("{oops", encoding="utf-8")

    reader = store.read_manifest if filename == "manifest.json" else store.read_critique
    with pytest.raises(CorruptDocumentError):
        reader(session)


def test_session_lock_serializes_concurrent_appends(store, monkeypatch):
    session = store.create_session(now=MOMENT)
    real_write = store.write_manifest

    def slow_write(session_path, manifest):
        time.sleep(0.01)
        return real_write(session_path, manifest)

    monkeypatch.setattr(store, "write_manifest", slow_write)
    start = threading.Barrier(8)
    errors = []

    def snap():
        try:
            start.wait()
            with store.session_lock(session.name):
                n = store.next_capture_number(session, store.read_manifest(session))
                time.sleep(0.005)
                name = capture_filename(n)
                (session.screenshots_dir / name).write_bytes(b"png")
                store.append_capture(session, "iPhone", {"image": f"screenshots/{name}"})
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=snap) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    images = [c["image"] for c in store.read_manifest(session)["captures"]]
    assert images == [f"screenshots/{capture_filename(n)}" for n in range(1, 9)]
