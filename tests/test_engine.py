"""Tests for ArchiveEngine registry, entry access, URIs and status."""

from pathlib import Path

import pytest

from openxml_editor.archive.engine import ArchiveEngine, normalize_internal_path
from openxml_editor.archive.errors import ArchiveOpenError, NotFoundError
from openxml_editor.archive.session import AUTOSAVE, sync_key

DOC = "word/document.xml"
IMAGE_PATH = "word/media/image1.png"


class TestOpen:
    def test_materializes_text_entries_only(self, engine, make_container):
        path = make_container()
        session = engine.open(path)

        assert set(session.entries) == {
            "[Content_Types].xml",
            "_rels/.rels",
            DOC,
            IMAGE_PATH,
        }
        assert IMAGE_PATH not in session.temp_files
        assert set(session.temp_files) == {"[Content_Types].xml", "_rels/.rels", DOC}
        assert session.temp_files[DOC].read_bytes() == session.entries[DOC]
        assert session.temp_files[DOC].is_relative_to(session.temp_dir)
        assert session.modified == set()

    def test_attaches_watches(self, engine, make_container, fake_watcher):
        path = make_container()
        session = engine.open(path)

        assert Path(session.original_path) in fake_watcher.handles
        for temp_path in session.temp_files.values():
            assert temp_path in fake_watcher.handles

    def test_second_open_returns_same_session(self, engine, make_container):
        path = make_container()
        first = engine.open(path)
        second = engine.open(f"{path.parent}/./{path.name}")

        assert first is second
        assert engine.open_paths() == [first.original_path]

    def test_missing_file(self, engine, tmp_path):
        with pytest.raises(ArchiveOpenError, match="file not found"):
            engine.open(tmp_path / "absent.docx")
        assert engine.open_paths() == []

    def test_corrupt_file_installs_nothing(self, engine, tmp_path, fake_watcher):
        path = tmp_path / "broken.docx"
        path.write_bytes(b"this is not a zip")

        with pytest.raises(ArchiveOpenError):
            engine.open(path)
        assert engine.open_paths() == []
        assert fake_watcher.handles == {}


class TestClose:
    def test_removes_temp_dir_and_watches(self, engine, make_container, fake_watcher):
        path = make_container()
        session = engine.open(path)
        temp_dir = session.temp_dir

        engine.close(path)

        assert not temp_dir.exists()
        assert fake_watcher.handles == {}
        assert session.closed
        assert engine.open_paths() == []

    def test_idempotent(self, engine, make_container):
        path = make_container()
        engine.open(path)
        engine.close(path)
        engine.close(path)
        engine.close(path.with_name("never-opened.docx"))

    def test_cancels_pending_timers(self, engine, make_container):
        engine.config.debounce_ms = 5000
        path = make_container()
        session = engine.open(path)
        engine.handle_temp_file_event(path, DOC)
        assert session.timers.pending(sync_key(DOC))

        engine.close(path)

        assert len(session.timers) == 0

    def test_callbacks_after_close_have_no_effect(
        self, engine, make_container, listener
    ):
        path = make_container()
        session = engine.open(path)
        temp_path = session.temp_files[DOC]
        callback = engine.watcher.callbacks[temp_path]

        engine.close(path)
        callback()

        assert len(session.timers) == 0
        assert engine.syncer.sync_back(session, DOC) is False
        assert listener.events == []

    def test_discards_unsaved_edits(self, engine, make_container, sample_entries, read_container):
        path = make_container()
        engine.open(path)
        engine.write_entry(path, DOC, b"<unsaved/>")

        engine.close(path)

        assert read_container(path) == sample_entries

    def test_reopen_after_close(self, engine, make_container):
        path = make_container()
        first = engine.open(path)
        engine.close(path)

        second = engine.open(path)

        assert second is not first
        assert second.temp_dir != first.temp_dir

    def test_context_manager_closes_everything(
        self, fast_config, fake_watcher, make_container
    ):
        path = make_container()
        with ArchiveEngine(config=fast_config, watcher=fake_watcher) as eng:
            session = eng.open(path)

        assert session.closed
        assert not session.temp_dir.exists()
        assert fake_watcher.stopped is False


class TestEntryAccess:
    def test_read_entry(self, engine, make_container, sample_entries):
        path = make_container()
        engine.open(path)

        assert engine.read_entry(path, DOC) == sample_entries[DOC]

    def test_read_entry_tolerates_case_and_separators(
        self, engine, make_container, sample_entries
    ):
        path = make_container()
        engine.open(path)

        assert engine.read_entry(path, "\\WORD\\Document.XML") == sample_entries[DOC]

    def test_read_unknown_entry(self, engine, make_container):
        path = make_container()
        engine.open(path)

        with pytest.raises(NotFoundError, match="word/missing.xml"):
            engine.read_entry(path, "word/missing.xml")

    def test_read_unknown_container(self, engine, tmp_path):
        with pytest.raises(NotFoundError, match="No open container"):
            engine.read_entry(tmp_path / "x.docx", DOC)

    def test_write_entry_refreshes_temp_file(self, engine, make_container, listener):
        path = make_container()
        session = engine.open(path)

        engine.write_entry(path, DOC, "<w:document/>")

        assert session.entries[DOC] == b"<w:document/>"
        assert session.temp_files[DOC].read_bytes() == b"<w:document/>"
        assert engine.list_modified(path) == [DOC]
        assert ("changed", session.original_path, DOC) in listener.events

    def test_write_entry_survives_save(self, engine, make_container, read_container):
        path = make_container()
        engine.open(path)
        engine.write_entry(path, DOC, b"<kept/>")

        engine.save(path)

        assert read_container(path)[DOC] == b"<kept/>"

    def test_write_binary_entry_not_materialized(self, engine, make_container):
        path = make_container()
        session = engine.open(path)

        engine.write_entry(path, IMAGE_PATH, b"\x00new")

        assert session.entries[IMAGE_PATH] == b"\x00new"
        assert IMAGE_PATH not in session.temp_files

    def test_write_new_text_entry(self, engine, make_container, fake_watcher):
        path = make_container()
        session = engine.open(path)

        engine.write_entry(path, "customXml/item1.xml", b"<item/>")

        temp_path = session.temp_files["customXml/item1.xml"]
        assert temp_path.read_bytes() == b"<item/>"
        assert temp_path in fake_watcher.handles
        assert engine.list_modified(path) == ["customXml/item1.xml"]

    @pytest.mark.parametrize("bad", ["", "/", "word/"])
    def test_write_invalid_entry_path(self, engine, make_container, bad):
        path = make_container()
        engine.open(path)

        with pytest.raises(ValueError, match="Invalid entry path"):
            engine.write_entry(path, bad, b"x")

    def test_stat_entry(self, engine, make_container, sample_entries):
        path = make_container()
        engine.open(path)

        info = engine.stat_entry(path, DOC)

        assert info.internal_path == DOC
        assert info.size == len(sample_entries[DOC])
        assert info.is_text is True
        assert info.modified is False
        assert info.temp_path is not None

    def test_list_entries_sorted(self, engine, make_container):
        path = make_container()
        engine.open(path)

        names = [info.internal_path for info in engine.list_entries(path)]

        assert names == sorted(names)
        image = next(i for i in engine.list_entries(path) if i.internal_path == IMAGE_PATH)
        assert image.is_text is False
        assert image.temp_path is None

    def test_get_temp_file_path(self, engine, make_container, tmp_path):
        path = make_container()
        session = engine.open(path)

        assert engine.get_temp_file_path(path, DOC) == session.temp_files[DOC]
        assert engine.get_temp_file_path(path, IMAGE_PATH) is None
        assert engine.get_temp_file_path(path, "nope.xml") is None
        assert engine.get_temp_file_path(tmp_path / "other.docx", DOC) is None


class TestReload:
    def test_discards_edits(self, engine, make_container, sample_entries, listener):
        path = make_container()
        session = engine.open(path)
        engine.write_entry(path, DOC, b"<edit/>")

        engine.reload(path)

        assert session.entries == sample_entries
        assert session.modified == set()
        assert session.temp_files[DOC].read_bytes() == sample_entries[DOC]
        assert listener.names()[-1] == "reloaded"

    def test_picks_up_new_entries(self, engine, make_container, sample_entries):
        path = make_container()
        session = engine.open(path)
        make_container(entries={**sample_entries, "word/styles.xml": b"<styles/>"})

        engine.reload(path)

        assert session.entries["word/styles.xml"] == b"<styles/>"
        assert "word/styles.xml" in session.temp_files

    def test_removes_stale_temp_files(self, engine, make_container, sample_entries):
        path = make_container()
        session = engine.open(path)
        old_temp = session.temp_files["_rels/.rels"]
        entries = {k: v for k, v in sample_entries.items() if k != "_rels/.rels"}
        make_container(entries=entries)

        engine.reload(path)

        assert not old_temp.exists()
        assert "_rels/.rels" not in session.temp_files

    def test_cancels_pending_timers(self, engine, make_container):
        engine.config.debounce_ms = 5000
        path = make_container()
        session = engine.open(path)
        engine.handle_temp_file_event(path, DOC)
        session.timers.schedule(AUTOSAVE, 60, lambda: None)

        engine.reload(path)

        assert not session.timers.pending(sync_key(DOC))
        assert not session.timers.pending(AUTOSAVE)

    def test_unreadable_container_leaves_session(self, engine, make_container, sample_entries):
        path = make_container()
        session = engine.open(path)
        engine.write_entry(path, DOC, b"<edit/>")
        path.write_bytes(b"garbage")

        with pytest.raises(ArchiveOpenError):
            engine.reload(path)

        assert session.entries[DOC] == b"<edit/>"
        assert session.modified == {DOC}


class TestStatus:
    def test_unknown_container(self, engine, tmp_path):
        unknown = tmp_path / "unknown.docx"

        assert engine.has_unsaved_changes(unknown) is False
        assert engine.list_modified(unknown) == []

    def test_get_info(self, engine, make_container):
        path = make_container()
        engine.open(path)
        engine.write_entry(path, DOC, b"<x/>")

        info = engine.get_info(path)

        assert info.name == "sample.docx"
        assert info.size == path.stat().st_size
        assert info.type == "Microsoft Word Document"
        assert info.entry_count == 4
        assert info.has_unsaved is True
        assert info.modified_files == [DOC]

    def test_get_info_missing_on_disk(self, engine, make_container):
        path = make_container()
        engine.open(path)
        path.unlink()

        with pytest.raises(ArchiveOpenError):
            engine.get_info(path)

    def test_get_info_unknown(self, engine, tmp_path):
        with pytest.raises(NotFoundError):
            engine.get_info(tmp_path / "unknown.docx")


class TestEntryUris:
    def test_round_trip(self, engine, make_container):
        path = make_container()
        session = engine.open(path)

        uri = engine.entry_uri(path, DOC)

        assert uri.startswith("openxml:/sample.docx[")
        assert uri.endswith("]/word/document.xml")
        assert engine.resolve_entry_uri(uri) == (session.original_path, DOC)

    def test_same_name_different_directories(self, engine, make_container, tmp_path):
        first = make_container()
        (tmp_path / "other").mkdir()
        second = make_container(name="other/sample.docx")
        engine.open(first)
        engine.open(second)

        uri_a = engine.entry_uri(first, DOC)
        uri_b = engine.entry_uri(second, DOC)

        assert uri_a != uri_b
        assert engine.resolve_entry_uri(uri_b)[0] == str(second.resolve())

    def test_stable_per_container(self, engine, make_container):
        path = make_container()
        engine.open(path)

        assert engine.entry_uri(path, DOC) == engine.entry_uri(path, DOC)

    def test_malformed(self, engine):
        with pytest.raises(ValueError, match="Not an openxml entry URI"):
            engine.resolve_entry_uri("file:///tmp/sample.docx")

    def test_unknown_id(self, engine):
        with pytest.raises(NotFoundError):
            engine.resolve_entry_uri("openxml:/sample.docx[zzzzzz]/word/document.xml")


class TestNormalizeInternalPath:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("word/document.xml", "word/document.xml"),
            ("word\\document.xml", "word/document.xml"),
            ("/word/document.xml", "word/document.xml"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_internal_path(raw) == expected
