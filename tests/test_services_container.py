from unittest.mock import MagicMock, patch

from gitstatus_cache.cache.database import StatusDatabase
from gitstatus_cache.cache.index import MappingResourceIndex
from gitstatus_cache.core.result import Result
from gitstatus_cache.core.services import ServiceContainer
from gitstatus_cache.git.client import GitClient


def _client_stub():
    client = MagicMock()
    client.get_tracked_remote.return_value = ""
    client.get_statuses.return_value = Result.success([])
    client.get_ignored_paths.return_value = []
    return client


def test_git_client_default_uses_preferences(tmp_path):
    services = ServiceContainer(project_root=str(tmp_path), persist_cache=False)
    services.preferences.update(git_cli_path="/opt/git/bin/git", command_timeout=3)

    client = services.git_client()
    assert isinstance(client, GitClient)
    assert client.git_cli_path == "/opt/git/bin/git"
    assert client.command_timeout == 3
    assert client.hint_reporter is services.hint_reporter


def test_git_client_factory_injected(tmp_path):
    stub = _client_stub()
    seen = []

    def _factory(prefs):
        seen.append(prefs)
        return stub

    services = ServiceContainer(project_root=str(tmp_path), git_client_factory=_factory)
    assert services.git_client() is stub
    assert seen[0] is not services.preferences.prefs


def test_start_and_stop(tmp_path):
    stub = _client_stub()
    services = ServiceContainer(
        project_root=str(tmp_path),
        git_client_factory=lambda prefs: stub,
        index=MappingResourceIndex(),
        persist_cache=False,
    )

    database = services.start()
    assert isinstance(database, StatusDatabase)
    assert database is services.database
    assert database.is_updating

    services.stop()
    assert not database._initialized


def test_context_manager(tmp_path):
    stub = _client_stub()
    with ServiceContainer(project_root=str(tmp_path), git_client_factory=lambda prefs: stub) as services:
        assert services.database._initialized
    assert not services.database._initialized


def test_containers_are_independent(tmp_path):
    first = ServiceContainer(project_root=str(tmp_path / "a"))
    second = ServiceContainer(project_root=str(tmp_path / "b"))
    assert first.preferences is not second.preferences
    assert first.dispatcher is not second.dispatcher


def test_qt_pump_started_on_request(tmp_path):
    stub = _client_stub()
    services = ServiceContainer(project_root=str(tmp_path), git_client_factory=lambda prefs: stub)

    with patch("gitstatus_cache.core.jobs._get_qt_core") as mock_qt_core:
        services.start(with_qt_pump=True)
        timer = mock_qt_core.return_value.QTimer.return_value
        timer.start.assert_called_once()

        services.stop()
        timer.stop.assert_called_once()
