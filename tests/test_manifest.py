"""Tests for manifest: loading, merging and debounced atomic writes."""

import json
import threading
import time

from manifest import ManifestStore, write_json_atomic


def read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def test_missing_manifest_starts_empty_and_is_written_on_flush(tmp_path, capsys):
    path = tmp_path / "persisted-queries.json"

    store = ManifestStore(str(path))

    assert len(store) == 0
    assert not path.exists()
    assert "Warning" in capsys.readouterr().err

    store.close()

    assert read_json(path) == {}


def test_corrupt_manifest_warns_and_resets(tmp_path, capsys):
    path = tmp_path / "persisted-queries.json"
    path.write_text("{not json", encoding="utf-8")

    store = ManifestStore(str(path))

    assert store.entries == {}
    assert path.read_text(encoding="utf-8") == "{not json"
    assert "Could not read persisted query manifest" in capsys.readouterr().err

    store.flush()

    assert read_json(path) == {}


def test_manifest_with_wrong_shape_is_treated_as_corrupt(tmp_path):
    path = tmp_path / "persisted-queries.json"
    path.write_text(json.dumps(["a", "b"]), encoding="utf-8")

    assert len(ManifestStore(str(path))) == 0


def test_existing_entries_are_kept_and_merged_forward(tmp_path):
    path = tmp_path / "persisted-queries.json"
    path.write_text(json.dumps({"old": "query Old { a }"}), encoding="utf-8")
    store = ManifestStore(str(path))

    changed = store.merge({"new": "query New { b }", "old": "query Old { a }"})
    store.flush()

    assert changed == 1
    assert read_json(path) == {"old": "query Old { a }", "new": "query New { b }"}
    assert store.entries["new"] == "query New { b }"


def test_record_reports_changes(tmp_path):
    store = ManifestStore(str(tmp_path / "m.json"))

    assert store.record("h", "query A { a }") is True
    assert store.record("h", "query A { a }") is False


def test_flush_calls_on_flush(tmp_path):
    calls = []
    store = ManifestStore(str(tmp_path / "m.json"), on_flush=lambda: calls.append(1))
    store.record("h", "query A { a }")

    store.flush()

    assert calls == [1]


def test_schedule_flush_coalesces_bursts(tmp_path):
    path = tmp_path / "m.json"
    flushed = threading.Event()
    flushes = []

    def on_flush():
        flushes.append(read_json(path))
        flushed.set()

    store = ManifestStore(str(path), debounce=0.2, on_flush=on_flush)
    for i in range(5):
        store.record(f"h{i}", f"query Q{i} {{ a }}")
        store.schedule_flush()
    assert store.flush_pending

    assert flushed.wait(timeout=5)
    time.sleep(0.3)

    assert len(flushes) == 1
    assert len(flushes[0]) == 5
    assert not store.flush_pending


def test_close_flushes_pending_write(tmp_path):
    path = tmp_path / "m.json"
    store = ManifestStore(str(path), debounce=60)
    store.record("h", "query A { a }")
    store.schedule_flush()

    store.close()

    assert not store.flush_pending
    assert read_json(path) == {"h": "query A { a }"}


def test_write_json_atomic_creates_directories_and_leaves_no_temp_files(tmp_path):
    path = tmp_path / "nested" / "dir" / "out.json"

    write_json_atomic(str(path), {"a": 1})

    assert read_json(path) == {"a": 1}
    assert [p.name for p in path.parent.iterdir()] == ["out.json"]
