"""Shared pytest fixtures for openxml-editor tests."""

import time
import zipfile
from pathlib import Path

import pytest

from openxml_editor.archive.engine import ArchiveEngine
from openxml_editor.archive.events import EngineListener
from openxml_editor.config import EngineConfig

CONTENT_TYPES = (
    b'<?xml version="1.0" encoding="UTF-8"?>'
    b'<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    b'<Default Extension="xml" ContentType="application/xml"/></Types>'
)
RELS = (
    b'<?xml version="1.0" encoding="UTF-8"?>'
    b'<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
    b'<Relationship Id="rId1" Target="word/document.xml"/></Relationships>'
)
DOCUMENT = b"<w:document><w:body><w:p>Hello</w:p></w:body></w:document>"
IMAGE = b"\x89PNG\r\n\x1a\n\x00\x00binary"

DEFAULT_ENTRIES = {
    "[Content_Types].xml": CONTENT_TYPES,
    "_rels/.rels": RELS,
    "word/document.xml": DOCUMENT,
    "word/media/image1.png": IMAGE,
}


def _write_container(path: Path, entries: dict[str, bytes]) -> Path:
    """Write a ZIP package with the given entries."""
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, payload in entries.items():
            zf.writestr(name, payload)
    return path


def _read_container(path: Path) -> dict[str, bytes]:
    with zipfile.ZipFile(path) as zf:
        return {info.filename: zf.read(info) for info in zf.infolist()}


def _wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll *predicate* until it is truthy or *timeout* expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


class FakeHandle:
    def __init__(self, watcher: "FakeWatcher", path: Path) -> None:
        self.watcher = watcher
        self.path = Path(path)
        self.closed = False

    def close(self) -> None:
        self.closed = True
        self.watcher.handles.pop(self.path, None)


class FakeWatcher:
    """In-memory Watcher; tests fire notifications explicitly."""

    def __init__(self) -> None:
        self.handles: dict[Path, FakeHandle] = {}
        self.callbacks: dict[Path, object] = {}
        self.stopped = False

    def watch(self, path, callback):
        path = Path(path)
        handle = FakeHandle(self, path)
        self.handles[path] = handle
        self.callbacks[path] = callback
        return handle

    def fire(self, path) -> bool:
        """Deliver a change notification if *path* is still watched."""
        path = Path(path)
        if path not in self.handles:
            return False
        self.callbacks[path]()
        return True

    def stop(self) -> None:
        self.stopped = True


class RecordingListener(EngineListener):
    """Listener that records every event as a tuple."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def on_changed(self, path, internal_path):
        self.events.append(("changed", path, internal_path))

    def on_reloaded(self, path):
        self.events.append(("reloaded", path))

    def on_saved(self, path):
        self.events.append(("saved", path))

    def on_save_failed(self, path, error):
        self.events.append(("save_failed", path, error))

    def on_source_deleted(self, path):
        self.events.append(("source_deleted", path))

    def names(self) -> list[str]:
        return [event[0] for event in self.events]


@pytest.fixture
def make_container(tmp_path):
    """Factory fixture creating a container file under tmp_path."""

    def _make(
        name: str = "sample.docx", entries: dict[str, bytes] | None = None
    ) -> Path:
        return _write_container(
            tmp_path / name, DEFAULT_ENTRIES if entries is None else entries
        )

    return _make


@pytest.fixture
def fast_config():
    """EngineConfig with short timings and auto-save disabled."""
    return EngineConfig(
        debounce_ms=20,
        auto_save_ms=50,
        file_age_threshold_ms=10000,
        auto_save=False,
    )


@pytest.fixture
def fake_watcher():
    return FakeWatcher()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def engine(fast_config, fake_watcher, listener):
    """ArchiveEngine wired to a FakeWatcher and a RecordingListener."""
    eng = ArchiveEngine(
        config=fast_config, listener=listener, watcher=fake_watcher
    )
    yield eng
    eng.close_all()


@pytest.fixture
def read_container():
    """Return a function reading a ZIP package into a name -> bytes dict."""
    return _read_container


@pytest.fixture
def wait_for():
    """Return a polling helper: wait_for(predicate, timeout=5.0) -> bool."""
    return _wait_for


@pytest.fixture
def sample_entries():
    """The entries written by make_container by default."""
    return dict(DEFAULT_ENTRIES)
