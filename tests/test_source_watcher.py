"""Tests for external-change detection and conflict arbitration.

Covers:
- Own saves and untouched containers are ignored
- External change without local edits reloads
- Deleted container is reported, never healed
- Each Resolution with local edits pending (resolver consulted once)
- Resolver failures count as declined
- Debounced notification path through the watcher
"""

import os
import zipfile
from unittest.mock import MagicMock

import pytest

from openxml_editor.archive.engine import ArchiveEngine
from openxml_editor.archive.errors import ConflictUnresolved
from openxml_editor.archive.models import (
    ConflictInfo,
    Resolution,
    SourceChangeOutcome,
)

DOC = "word/document.xml"
EXTERNAL = b"<w:document>external</w:document>"
LOCAL = b"<w:document>local</w:document>"


def _rewrite_externally(path, sample_entries, known_mtime):
    """Replace the container on disk with a newer version."""
    entries = dict(sample_entries, **{DOC: EXTERNAL})
    with zipfile.ZipFile(path, "w") as zf:
        for name, payload in entries.items():
            zf.writestr(name, payload)
    newer = known_mtime + 10
    os.utime(path, (newer, newer))
    return newer


@pytest.fixture
def resolver():
    mock = MagicMock()
    mock.resolve.return_value = Resolution.KEEP
    return mock


@pytest.fixture
def arbitrated_engine(fast_config, fake_watcher, listener, resolver):
    eng = ArchiveEngine(
        config=fast_config,
        resolver=resolver,
        listener=listener,
        watcher=fake_watcher,
    )
    yield eng
    eng.close_all()


class TestWithoutLocalEdits:
    def test_unchanged_container_is_ignored(self, arbitrated_engine, make_container):
        path = make_container()
        arbitrated_engine.open(path)
        assert arbitrated_engine.check_source(path) is SourceChangeOutcome.IGNORED

    def test_own_save_is_ignored(self, arbitrated_engine, make_container):
        path = make_container()
        arbitrated_engine.open(path)
        arbitrated_engine.write_entry(path, DOC, LOCAL)
        arbitrated_engine.save(path)
        assert arbitrated_engine.check_source(path) is SourceChangeOutcome.IGNORED

    def test_external_change_reloads(
        self, arbitrated_engine, make_container, sample_entries, listener, resolver
    ):
        path = make_container()
        session = arbitrated_engine.open(path)
        newer = _rewrite_externally(
            path, sample_entries, session.last_known_source_mtime
        )

        outcome = arbitrated_engine.check_source(path)

        assert outcome is SourceChangeOutcome.RELOADED
        assert session.entries[DOC] == EXTERNAL
        assert session.temp_files[DOC].read_bytes() == EXTERNAL
        assert session.last_known_source_mtime == newer
        assert ("reloaded", session.original_path) in listener.events
        resolver.resolve.assert_not_called()

    def test_deleted_container(self, arbitrated_engine, make_container, listener):
        path = make_container()
        session = arbitrated_engine.open(path)
        path.unlink()

        assert arbitrated_engine.check_source(path) is SourceChangeOutcome.DELETED
        assert ("source_deleted", session.original_path) in listener.events
        assert not path.exists()
        assert arbitrated_engine.read_entry(path, DOC)


class TestConflicts:
    def _conflict(self, engine, make_container, sample_entries):
        path = make_container()
        session = engine.open(path)
        engine.write_entry(path, DOC, LOCAL)
        known = session.last_known_source_mtime
        newer = _rewrite_externally(path, sample_entries, known)
        return path, session, known, newer

    def test_keep_updates_mtime_only(
        self, arbitrated_engine, make_container, sample_entries, resolver
    ):
        path, session, known, newer = self._conflict(
            arbitrated_engine, make_container, sample_entries
        )

        outcome = arbitrated_engine.check_source(path)

        assert outcome is SourceChangeOutcome.KEPT
        resolver.resolve.assert_called_once()
        conflict = resolver.resolve.call_args.args[0]
        assert isinstance(conflict, ConflictInfo)
        assert conflict.modified == [DOC]
        assert conflict.known_mtime == known
        assert conflict.current_mtime == newer
        assert session.entries[DOC] == LOCAL
        assert session.modified == {DOC}
        assert session.last_known_source_mtime == newer

        # the same change is not arbitrated twice
        assert arbitrated_engine.check_source(path) is SourceChangeOutcome.IGNORED
        resolver.resolve.assert_called_once()

    def test_reload_discards_local_edits(
        self, arbitrated_engine, make_container, sample_entries, resolver
    ):
        resolver.resolve.return_value = Resolution.RELOAD
        path, session, _, _ = self._conflict(
            arbitrated_engine, make_container, sample_entries
        )

        assert arbitrated_engine.check_source(path) is SourceChangeOutcome.RELOADED
        assert session.entries[DOC] == EXTERNAL
        assert session.modified == set()

    def test_save_then_reload_is_last_writer_wins(
        self,
        arbitrated_engine,
        make_container,
        sample_entries,
        resolver,
        read_container,
    ):
        resolver.resolve.return_value = Resolution.SAVE_THEN_RELOAD
        path, session, _, _ = self._conflict(
            arbitrated_engine, make_container, sample_entries
        )

        outcome = arbitrated_engine.check_source(path)

        assert outcome is SourceChangeOutcome.SAVED_AND_RELOADED
        assert read_container(path)[DOC] == LOCAL
        assert session.entries[DOC] == LOCAL
        assert session.modified == set()

    def test_decline_changes_nothing(
        self, arbitrated_engine, make_container, sample_entries, resolver
    ):
        resolver.resolve.return_value = Resolution.DECLINE
        path, session, known, _ = self._conflict(
            arbitrated_engine, make_container, sample_entries
        )

        assert arbitrated_engine.check_source(path) is SourceChangeOutcome.DECLINED
        assert session.entries[DOC] == LOCAL
        assert session.modified == {DOC}
        assert session.last_known_source_mtime == known

    def test_decline_strict_raises(
        self, arbitrated_engine, make_container, sample_entries, resolver
    ):
        resolver.resolve.return_value = Resolution.DECLINE
        path, _, _, _ = self._conflict(
            arbitrated_engine, make_container, sample_entries
        )
        with pytest.raises(ConflictUnresolved):
            arbitrated_engine.check_source(path, strict=True)

    def test_resolver_failure_is_declined(
        self, arbitrated_engine, make_container, sample_entries, resolver
    ):
        resolver.resolve.side_effect = RuntimeError("prompt crashed")
        path, session, _, _ = self._conflict(
            arbitrated_engine, make_container, sample_entries
        )
        assert arbitrated_engine.check_source(path) is SourceChangeOutcome.DECLINED
        assert session.entries[DOC] == LOCAL


class TestDebouncedNotification:
    def test_watch_event_triggers_check(
        self,
        arbitrated_engine,
        make_container,
        sample_entries,
        fake_watcher,
        wait_for,
    ):
        path = make_container()
        session = arbitrated_engine.open(path)
        _rewrite_externally(path, sample_entries, session.last_known_source_mtime)

        for _ in range(3):
            assert fake_watcher.fire(session.original_path)

        assert wait_for(lambda: session.entries[DOC] == EXTERNAL)
