# -*- coding: utf-8 -*-
"""
Pytest configuration and fixtures for GitStatusCache tests
"""

import sys
import time
from unittest.mock import MagicMock

import pytest

from gitstatus_cache.core import log
from gitstatus_cache.core.jobs import MainThreadDispatcher
from gitstatus_cache.core.settings import PreferencesManager


@pytest.fixture(autouse=True)
def mock_console():
    """Auto-install a mock host console for all tests"""
    console_mock = MagicMock()
    log.set_console(console_mock)
    log.set_debug(False)

    yield console_mock

    log.set_console(None)
    log.set_debug(False)


@pytest.fixture
def mock_qt():
    """Mock Qt modules"""
    pyside_mock = MagicMock()
    qtcore_mock = MagicMock()
    pyside_mock.QtCore = qtcore_mock
    saved = {name: sys.modules.get(name) for name in ("PySide6", "PySide6.QtCore")}
    sys.modules["PySide6"] = pyside_mock
    sys.modules["PySide6.QtCore"] = qtcore_mock

    yield qtcore_mock

    for name, module in saved.items():
        if module is None:
            sys.modules.pop(name, None)
        else:
            sys.modules[name] = module


@pytest.fixture
def project_root(tmp_path):
    """Create a temporary project folder with the default roots"""
    root = tmp_path / "project"
    root.mkdir()
    (root / "Assets").mkdir()
    return root


@pytest.fixture
def dispatcher():
    """Dispatcher bound to the test thread"""
    return MainThreadDispatcher()


@pytest.fixture
def prefs_manager(project_root):
    """Preferences with the periodic refresh and remote queries off"""
    manager = PreferencesManager(str(project_root))
    manager._prefs.auto_refresh_interval = -1
    manager._prefs.fetch_remote_changes = False
    manager._prefs.enable_lock_prompt = False
    return manager


@pytest.fixture
def pump_until():
    """Pump a dispatcher until condition() is true or the timeout expires"""

    def _pump_until(dispatcher, condition, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            dispatcher.pump()
            if condition():
                return True
            time.sleep(0.01)
        dispatcher.pump()
        return condition()

    return _pump_until
