import os as _os
import sys
from dataclasses import replace

import pytest

# Ensure project root is importable (so `import main` works without installing the project)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from sqlopt import db  # noqa: E402
from sqlopt.connector import ConfigOption  # noqa: E402


@pytest.fixture(autouse=True)
def journal(tmp_path, monkeypatch):
    """Isolated sqlite journal per test."""
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(tmp_path / "journal.db")))
    db.init_db()
    return db


class FakeSession:
    def __init__(self, instance: "FakeInstance"):
        self._instance = instance
        self.options = [replace(o) for o in instance.options]
        self.is_clustered = instance.is_clustered
        self.physical_name = instance.physical_name
        self.closed = False

    def commit(self) -> None:
        self._instance.commits += 1
        for o in self.options:
            if o.assigned:
                stored = next(s for s in self._instance.options if s.display_name == o.display_name)
                stored.configured_value = o.configured_value
                o.assigned = False

    def close(self) -> None:
        self.closed = True
        self._instance.closed += 1


class FakeInstance:
    """In-memory instance; every connect() returns a fresh session over the same options."""

    def __init__(self, options, is_clustered=False, physical_name=None, fail_connect=None):
        self.options = list(options)
        self.is_clustered = is_clustered
        self.physical_name = physical_name
        self.fail_connect = fail_connect
        self.connects: list[tuple[str, str]] = []
        self.commits = 0
        self.closed = 0

    def connect(self, server_name: str, instance_name: str) -> FakeSession:
        self.connects.append((server_name, instance_name))
        if self.fail_connect is not None:
            raise self.fail_connect
        return FakeSession(self)

    def value(self, name: str) -> int:
        return next(o.configured_value for o in self.options if o.display_name == name)


class RestartRecorder:
    def __init__(self, error: Exception | None = None):
        self.calls: list[tuple[str, str, int]] = []
        self.error = error

    def __call__(self, server_name: str, instance_name: str, timeout: int) -> None:
        self.calls.append((server_name, instance_name, timeout))
        if self.error is not None:
            raise self.error


@pytest.fixture
def instance():
    return FakeInstance(
        [
            ConfigOption("max server memory (MB)", 2048, is_dynamic=False, is_advanced=True),
            ConfigOption("cost threshold for parallelism", 5, is_dynamic=True, is_advanced=True),
            ConfigOption("remote access", 1, is_dynamic=False),
        ]
    )


@pytest.fixture
def restarter():
    return RestartRecorder()
