import os
import shutil
import tempfile
import pytest


@pytest.fixture()
def temp_storage_root(monkeypatch):
    tmpdir = tempfile.mkdtemp(prefix="storage_")
    os.makedirs(os.path.join(tmpdir, "sessions"), exist_ok=True)
    monkeypatch.setenv("CLIP_ENGINE_STORAGE", tmpdir)
    yield tmpdir
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture()
def store(temp_storage_root):
    from backend.clip_engine.store import JobStore

    return JobStore(temp_storage_root)


@pytest.fixture()
def session(store):
    session_id = "sess-1"
    store.ensure_session(session_id)
    return session_id
