"""Tests for atomic repackaging.

Covers:
- No-edit save is a no-op; no-edit round trip preserves every entry
- Saved edits land in the container, artifacts are cleaned up
- Failure during write or rename leaves the original byte-identical
- Restore failure is reported explicitly and keeps the backup
- Auto-save failure is reported through on_save_failed
- A deleted container is recreated by save
- Reloads and auto-saves queued on the session lock see the save or close before them
"""

import shutil
import threading
import time
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

from openxml_editor.archive.engine import ArchiveEngine
from openxml_editor.archive.errors import SaveError

DOC = "word/document.xml"


def _artifacts(path: Path) -> list[Path]:
    return [
        p
        for p in (Path(f"{path}.backup"), Path(f"{path}.tmp"))
        if p.exists()
    ]


class TestSave:
    def test_no_edits_is_a_no_op(self, engine, make_container, listener):
        path = make_container()
        before = path.read_bytes()
        engine.open(path)

        outcome = engine.save(path)

        assert outcome.saved is False
        assert path.read_bytes() == before
        assert "saved" not in listener.names()

    def test_round_trip_preserves_entries(
        self, engine, make_container, sample_entries, read_container
    ):
        path = make_container()
        engine.open(path)
        engine.write_entry(path, DOC, sample_entries[DOC])

        outcome = engine.save(path)

        assert outcome.saved is True
        assert outcome.entries_written == len(sample_entries)
        assert read_container(path) == sample_entries

    def test_edit_is_committed(
        self, engine, make_container, sample_entries, read_container, listener
    ):
        path = make_container()
        session = engine.open(path)
        session.temp_files[DOC].write_bytes(b"<edited/>")

        outcome = engine.save(path)

        assert outcome.saved is True
        assert outcome.flushed == [DOC]
        on_disk = read_container(path)
        assert on_disk[DOC] == b"<edited/>"
        assert on_disk["word/media/image1.png"] == sample_entries["word/media/image1.png"]
        assert session.modified == set()
        assert session.last_known_source_mtime == path.stat().st_mtime
        assert _artifacts(path) == []
        assert ("saved", session.original_path) in listener.events

    def test_unknown_container(self, engine, tmp_path):
        from openxml_editor.archive.errors import NotFoundError

        with pytest.raises(NotFoundError):
            engine.save(tmp_path / "never-opened.docx")

    def test_recreates_deleted_container(
        self, engine, make_container, read_container, listener
    ):
        path = make_container()
        session = engine.open(path)
        engine.write_entry(path, DOC, b"<kept/>")
        path.unlink()

        outcome = engine.save(path)

        assert outcome.saved is True
        assert read_container(path)[DOC] == b"<kept/>"
        assert session.modified == set()
        assert _artifacts(path) == []
        assert ("saved", session.original_path) in listener.events


class TestLockOrdering:
    def test_reload_queued_behind_save_sees_saved_image(
        self, engine, make_container, read_container
    ):
        path = make_container()
        session = engine.open(path)
        engine.write_entry(path, DOC, b"<saved/>")

        with session.lock:
            reloader = threading.Thread(target=engine.reload, args=(path,))
            reloader.start()
            time.sleep(0.1)
            engine.save(path)
        reloader.join(timeout=5)

        assert not reloader.is_alive()
        assert session.entries == read_container(path)
        assert session.entries[DOC] == b"<saved/>"
        assert session.temp_files[DOC].read_bytes() == b"<saved/>"
        assert session.last_known_source_mtime == path.stat().st_mtime

    def test_auto_save_waiting_on_close_does_not_write(
        self, engine, make_container, listener
    ):
        path = make_container()
        before = path.read_bytes()
        session = engine.open(path)
        engine.write_entry(path, DOC, b"<discarded/>")

        with session.lock:
            saver = threading.Thread(target=engine._auto_save, args=(session,))
            saver.start()
            time.sleep(0.1)
            engine.close(path)
        saver.join(timeout=5)

        assert not saver.is_alive()
        assert path.read_bytes() == before
        assert _artifacts(path) == []
        assert "saved" not in listener.names()

    def test_save_of_closed_session_is_skipped(self, engine, make_container):
        path = make_container()
        before = path.read_bytes()
        session = engine.open(path)
        engine.write_entry(path, DOC, b"<discarded/>")
        engine.close(path)

        outcome = engine.packager.save(session)

        assert outcome.saved is False
        assert path.read_bytes() == before


class TestSaveFailure:
    def test_rename_failure_restores_original(self, engine, make_container):
        path = make_container()
        before = path.read_bytes()
        session = engine.open(path)
        engine.write_entry(path, DOC, b"<lost?/>")

        with patch(
            "openxml_editor.archive.packager.os.replace",
            side_effect=OSError("file locked"),
        ):
            with pytest.raises(SaveError) as exc_info:
                engine.save(path)

        assert exc_info.value.restore_failed is False
        assert isinstance(exc_info.value.__cause__, OSError)
        assert path.read_bytes() == before
        assert session.modified == {DOC}
        assert session.entries[DOC] == b"<lost?/>"
        assert _artifacts(path) == []

    def test_write_failure_restores_original(self, engine, make_container):
        path = make_container()
        before = path.read_bytes()
        session = engine.open(path)
        engine.write_entry(path, DOC, b"<x/>")

        with patch(
            "openxml_editor.archive.packager.codec.write_archive",
            side_effect=OSError("no space left on device"),
        ):
            with pytest.raises(SaveError, match="no space left"):
                engine.save(path)

        assert path.read_bytes() == before
        assert session.modified == {DOC}
        assert _artifacts(path) == []

    def test_restore_failure_is_explicit(self, engine, make_container):
        path = make_container()
        engine.open(path)
        engine.write_entry(path, DOC, b"<x/>")
        real_copy = shutil.copy2
        calls = []

        def copy_then_fail(src, dst, *args, **kwargs):
            calls.append((src, dst))
            if len(calls) == 1:
                return real_copy(src, dst, *args, **kwargs)
            raise OSError("read-only file system")

        with (
            patch(
                "openxml_editor.archive.packager.shutil.copy2",
                side_effect=copy_then_fail,
            ),
            patch(
                "openxml_editor.archive.packager.os.replace",
                side_effect=OSError("file locked"),
            ),
        ):
            with pytest.raises(SaveError) as exc_info:
                engine.save(path)

        assert exc_info.value.restore_failed is True
        assert "restore failed" in str(exc_info.value)
        assert Path(f"{path}.backup").exists()
        assert engine.has_unsaved_changes(path)


class TestAutoSaveFailure:
    def test_on_save_failed_emitted(
        self, fast_config, fake_watcher, listener, make_container, wait_for
    ):
        config = replace(fast_config, auto_save=True)
        with ArchiveEngine(
            config=config, listener=listener, watcher=fake_watcher
        ) as engine:
            path = make_container()
            engine.open(path)
            with patch(
                "openxml_editor.archive.packager.os.replace",
                side_effect=OSError("file locked"),
            ):
                engine.write_entry(path, DOC, b"<x/>")
                assert wait_for(lambda: "save_failed" in listener.names())

            event = next(e for e in listener.events if e[0] == "save_failed")
            assert isinstance(event[2], SaveError)
            assert engine.list_modified(path) == [DOC]
