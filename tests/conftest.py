"""Pytest configuration.

The Qt backend tests need a Qt application object. The backend only uses
QtCore, so a single `QCoreApplication` is created for the whole session as
early as possible and shut down at the end.
"""

from __future__ import annotations

from typing import Any

import pytest

_APP: Any | None = None


def pytest_configure(config) -> None:  # noqa: ARG001
    """Ensure a QCoreApplication exists before collecting/running tests."""

    # Import lazily so non-Qt environments can still import this conftest.
    try:
        from PySide6.QtCore import QCoreApplication
    except ImportError:
        return

    global _APP

    app = QCoreApplication.instance()
    if app is None:
        # Keep a strong ref so it isn't GC'd mid-session.
        _APP = QCoreApplication([])
    else:
        _APP = app


def pytest_sessionfinish(session, exitstatus) -> None:  # noqa: ARG001
    try:
        from PySide6.QtCore import QCoreApplication
    except ImportError:
        return

    app = QCoreApplication.instance()
    if app is None:
        return
    app.quit()
    app.processEvents()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Keep settings/presets/temp files of every test inside its tmp_path."""
    monkeypatch.setenv("PICLET_SETTINGS", str(tmp_path / "settings.json"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("PICLET_LOG_CATS", raising=False)
    monkeypatch.setattr("tempfile.tempdir", None)
    monkeypatch.setenv("TMPDIR", str(_tmp_root(tmp_path)))


def _tmp_root(tmp_path):
    d = tmp_path / "systmp"
    d.mkdir(exist_ok=True)
    return d
