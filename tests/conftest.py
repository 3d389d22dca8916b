"""
Pytest configuration and shared fixtures
"""

import pytest

from proxy import ActionRunner
from storage import FileSystemStore

PIPELINE_ENV = (
    'PIPELINE_CHUNK_COUNT',
    'PIPELINE_SOURCE_REFS',
    'PIPELINE_DEFAULT_BUCKET',
    'PIPELINE_DEFAULT_SCHEME',
    'S3_ENDPOINT_URL',
)


@pytest.fixture
def storage_dir(tmp_path, monkeypatch):
    """Point the filesystem backend at a temporary directory with a clean pipeline env"""
    for name in PIPELINE_ENV:
        monkeypatch.delenv(name, raising=False)
    root = tmp_path / 'storage'
    root.mkdir()
    monkeypatch.setenv('STORAGE_DIR', str(root))
    return root


@pytest.fixture
def store(storage_dir):
    return FileSystemStore(str(storage_dir))


@pytest.fixture
def sample_text():
    """Sample text for testing"""
    return """The quick brown fox jumps over the lazy dog.
The dog was really lazy.
The fox was very quick and brown.
Quick brown foxes are amazing animals.
Lazy dogs sleep all day."""


@pytest.fixture
def load_action(storage_dir):
    """Return a factory that loads an action into a fresh ActionRunner"""
    def _load(action):
        runner = ActionRunner()
        runner.init({'action': action})
        return runner
    return _load


@pytest.fixture
def run_action(load_action):
    """Run an action once with the given event and return its result"""
    def _run(action, event):
        return load_action(action).run(event)
    return _run
