import pytest

from docmirror import StorageAdapter, set_registry


@pytest.fixture(autouse=True)
def reset_default_registry(monkeypatch):
    """Each test starts without a process-wide registry and leaves none behind."""
    monkeypatch.setenv("DOCMIRROR_FLUSH_AT_EXIT", "0")
    set_registry(None)
    yield
    set_registry(None)


class RecordingAdapter:
    """Adapter double: serves stored documents, records every save."""

    def __init__(self, stored=None, *, fail_times=0):
        self.stored = dict(stored or {})
        self.saves = []
        self.loads = []
        self.fail_times = fail_times

    def load(self, name):
        self.loads.append(name)
        return self.stored.get(name)

    def save(self, name, document):
        if self.fail_times > 0:
            self.fail_times -= 1
            raise OSError("disk full")
        self.saves.append((name, document))
        self.stored[name] = document

    def as_adapter(self):
        return StorageAdapter(load=self.load, save=self.save)


@pytest.fixture
def recorder():
    return RecordingAdapter()
