# -*- coding: utf-8 -*-
"""GitStatusCache Services / Composition Root

Sprint 6: One place that wires preferences, git client, fetch coordinator,
cache store and the status database together.

Design goals:
- No Qt imports at module import time.
- Explicit construction and start()/stop(). There is no app-wide
  singleton, hosts own their container.
- Factories can be injected for tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from . import log
from .errors import ErrorHintReporter
from .jobs import MainThreadDispatcher
from .settings import Preferences, PreferencesManager


@dataclass
class ServiceContainer:
    """Owns the status cache services of one project."""

    project_root: str = "."
    prefs_file: Optional[str] = None
    persist_cache: bool = True

    index: Optional[object] = None
    git_client_factory: Optional[Callable[[Preferences], object]] = None

    preferences: Optional[PreferencesManager] = None
    dispatcher: Optional[MainThreadDispatcher] = None
    hint_reporter: ErrorHintReporter = field(default_factory=ErrorHintReporter)

    _database: Optional[object] = field(default=None, init=False, repr=False)
    _pump: Optional[object] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if self.preferences is None:
            self.preferences = PreferencesManager(self.project_root, self.prefs_file)
        if self.dispatcher is None:
            self.dispatcher = MainThreadDispatcher()

    def git_client(self, prefs: Optional[Preferences] = None):
        prefs = prefs or self.preferences.snapshot()
        if self.git_client_factory is not None:
            return self.git_client_factory(prefs)

        from gitstatus_cache.git.client import GitClient

        return GitClient.from_preferences(prefs, self.project_root, self.hint_reporter)

    def fetch_coordinator(self):
        from gitstatus_cache.git.fetch import RemoteFetchCoordinator

        return RemoteFetchCoordinator.for_project(self.project_root)

    def cache_store(self):
        if not self.persist_cache:
            return None

        from gitstatus_cache.cache.store import CacheStore

        return CacheStore.for_project(self.project_root)

    @property
    def database(self):
        """The StatusDatabase, created on first access (not started)."""
        if self._database is None:
            from gitstatus_cache.cache.database import StatusDatabase

            self._database = StatusDatabase(
                self.preferences,
                self.dispatcher,
                index=self.index,
                client_factory=self.git_client,
                fetch_coordinator=self.fetch_coordinator(),
                store=self.cache_store(),
                hint_reporter=self.hint_reporter,
            )
        return self._database

    def start(self, with_qt_pump: bool = False):
        """
        Load preferences and start the database.

        Args:
            with_qt_pump: drive the dispatcher from a QTimer. Requires
                PySide6/PySide2 and must be called on the Qt main thread.

        Returns:
            StatusDatabase
        """
        result = self.preferences.load()
        if not result.ok:
            log.warning(f"Using default preferences: {result.error.message}")

        self.dispatcher.bind_to_current_thread()

        if with_qt_pump and self._pump is None:
            from .jobs import QtMainLoopPump

            self._pump = QtMainLoopPump(self.dispatcher)
            self._pump.start()

        database = self.database
        database.initialize()
        return database

    def stop(self):
        if self._pump is not None:
            self._pump.stop()
            self._pump = None

        if self._database is not None:
            self._database.shutdown()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
