"""
Tests for the CLI entry point, PAT handling and exit codes.
"""

import io
import json
import logging
import signal
from unittest.mock import Mock

import pytest

from boardsync.adapters.config.environment import ENV_KEYS
from boardsync.adapters.sqlite import SqliteStore
from boardsync.cli import ExitCode, create_parser, main
from boardsync.cli.app import read_pat, run_daemon
from boardsync.core.domain import Feature, RemoteLink, Story, StoryStatus
from boardsync.core.exceptions import (
    AuthenticationError,
    ConfigError,
    RateLimitError,
    RemoteServerError,
    StoreError,
    ValidationError,
)
from boardsync.core.ports.config_provider import AppConfig, ConnectionConfig, SyncConfig


PAT = "a" * 52


@pytest.fixture(autouse=True)
def clean_environment(tmp_path, monkeypatch):
    """No config files, no ADO variables, and root logging restored afterwards."""
    monkeypatch.chdir(tmp_path)
    for name, _ in ENV_KEYS:
        monkeypatch.delenv(name, raising=False)

    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def cli_tracker(tracker, monkeypatch):
    """Replace the Azure DevOps client built by the runtime with the tracker double."""
    factory = Mock(return_value=tracker)
    monkeypatch.setattr("boardsync.adapters.azure_devops.AzureDevOpsClient", factory)
    tracker.factory = factory
    return tracker


@pytest.fixture
def run(db_path):
    """Invoke main() with connection options and a piped PAT."""

    def _run(*args, pat=PAT):
        argv = ["--org", "acme", "--project", "Web", "--db-path", str(db_path), "--no-color", *args]
        return main(argv, stdin=io.StringIO(pat))

    return _run


# =============================================================================
# Parser
# =============================================================================


class TestParser:
    def test_global_options(self):
        args = create_parser().parse_args(
            ["--org", "acme", "--project", "Web", "--area-path", "Web\\Team", "sync", "--id", "5"]
        )

        assert args.organization == "acme"
        assert args.project == "Web"
        assert args.area_path == "Web\\Team"
        assert args.command == "sync"
        assert args.remote_id == 5

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--org", "acme"])

    def test_push_state_validates_status(self):
        parser = create_parser()
        args = parser.parse_args(["push-state", "story-1", "in_progress"])
        assert args.status == "in_progress"

        with pytest.raises(SystemExit):
            parser.parse_args(["push-state", "story-1", "blocked"])

    def test_create_type(self):
        args = create_parser().parse_args(["create", "story-1", "--type", "Bug"])
        assert args.story_id == "story-1"
        assert args.work_item_type == "Bug"

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert "boardsync" in capsys.readouterr().out


# =============================================================================
# PAT
# =============================================================================


class TestReadPat:
    def test_reads_and_strips(self):
        assert read_pat(io.StringIO(f"  {PAT}\n")) == PAT

    def test_terminal_is_refused(self):
        stream = Mock()
        stream.isatty.return_value = True

        with pytest.raises(ConfigError, match="piped"):
            read_pat(stream)
        stream.read.assert_not_called()

    def test_empty(self):
        with pytest.raises(ConfigError, match="empty"):
            read_pat(io.StringIO("\n"))

    def test_too_short(self):
        with pytest.raises(ConfigError, match="too short"):
            read_pat(io.StringIO("abc"))


# =============================================================================
# main()
# =============================================================================


class TestMain:
    def test_missing_configuration(self, capsys):
        code = main(["--no-color", "sync"], stdin=io.StringIO(PAT))

        assert code == ExitCode.CONFIG_ERROR
        out = capsys.readouterr().out
        assert "Configuration errors:" in out
        assert "organization" in out

    def test_missing_configuration_json(self, capsys):
        code = main(["-o", "json", "sync"], stdin=io.StringIO(PAT))

        assert code == ExitCode.CONFIG_ERROR
        data = json.loads(capsys.readouterr().out)
        assert data["success"] is False
        assert len(data["errors"]) == 2

    def test_short_pat(self, run, cli_tracker, capsys):
        assert run("sync", pat="short") == ExitCode.CONFIG_ERROR
        assert "too short" in capsys.readouterr().out
        cli_tracker.factory.assert_not_called()

    def test_client_receives_connection_settings(self, run, cli_tracker):
        run("sync")

        kwargs = cli_tracker.factory.call_args.kwargs
        assert kwargs["organization"] == "acme"
        assert kwargs["project"] == "Web"
        assert kwargs["pat"] == PAT

    def test_connection_failure(self, run, cli_tracker, capsys):
        cli_tracker.test_connection.return_value = False

        assert run("sync") == ExitCode.CONNECTION_ERROR
        assert "Failed to connect to Azure DevOps (acme)" in capsys.readouterr().out
        cli_tracker.query_by_filter.assert_not_called()
        cli_tracker.close.assert_called_once()

    def test_sync(self, run, cli_tracker, capsys):
        assert run("sync") == ExitCode.SUCCESS
        assert "Sync completed" in capsys.readouterr().out
        cli_tracker.close.assert_called_once()

    def test_sync_json(self, run, cli_tracker, work_item_factory, capsys):
        cli_tracker.query_by_filter.return_value = [work_item_factory(7, area_path="Web\\Ops")]

        assert run("-o", "json", "sync") == ExitCode.SUCCESS

        data = json.loads(capsys.readouterr().out)
        assert data["direction"] == "inbound"
        assert data["itemsCreated"] == 1

    def test_sync_quiet(self, run, cli_tracker, capsys):
        assert run("-q", "sync") == ExitCode.SUCCESS
        assert capsys.readouterr().out.strip().startswith("status=OK direction=inbound")

    def test_sync_failure(self, run, cli_tracker):
        cli_tracker.query_by_filter.side_effect = RemoteServerError("ADO down")
        assert run("sync") == ExitCode.SYNC_ERROR

    def test_sync_partial_failure(self, run, cli_tracker, work_item_factory, monkeypatch):
        from boardsync.application.sync import FieldMapper

        original = FieldMapper.map_remote_to_local

        def flaky(self, item):
            if item.id == 2:
                raise ValueError("bad payload")
            return original(self, item)

        monkeypatch.setattr(FieldMapper, "map_remote_to_local", flaky)
        cli_tracker.query_by_filter.return_value = [
            work_item_factory(1, area_path="Web\\A"),
            work_item_factory(2, area_path="Web\\A"),
        ]

        assert run("sync") == ExitCode.PARTIAL_SUCCESS

    def test_sync_single_item(self, run, cli_tracker, work_item_factory, capsys):
        cli_tracker.get_work_item.return_value = work_item_factory(12, area_path="Web\\Ops")

        assert run("sync", "--id", "12") == ExitCode.SUCCESS
        assert "Synced work item 12" in capsys.readouterr().out

    def test_sync_single_item_failure(self, run, cli_tracker):
        cli_tracker.get_work_item.side_effect = RemoteServerError("Work item 12 not found")
        assert run("sync", "--id", "12") == ExitCode.SYNC_ERROR

    def test_push_state_unknown_story(self, run, cli_tracker, capsys):
        assert run("push-state", "missing", "review") == ExitCode.SYNC_ERROR
        assert "STORY_NOT_FOUND" in capsys.readouterr().out

    def test_create_and_push_state(self, run, cli_tracker, db_path, work_item_factory, capsys):
        store = SqliteStore(db_path)
        feature = Feature(code="PAY", name="Payments")
        story = Story(code="PAY-001", feature_id=feature.id, title="Checkout")
        with store.session() as db:
            db.insert_feature(feature)
            db.insert_story(story)
        cli_tracker.create_item.return_value = work_item_factory(88, state="New")
        cli_tracker.get_work_item.return_value = work_item_factory(88, state="New")

        assert run("create", story.id, "--type", "User Story") == ExitCode.SUCCESS
        assert cli_tracker.create_item.call_args.args[0] == "User Story"
        assert run("push-state", story.id, "in_progress") == ExitCode.SUCCESS
        cli_tracker.update_state.assert_called_once_with(88, "Active")

        out = capsys.readouterr().out
        assert "Created work item 88" in out
        assert "'New' → 'Active'" in out

    def test_push(self, run, cli_tracker, db_path, work_item_factory):
        store = SqliteStore(db_path)
        feature = Feature(code="PAY", name="Payments")
        story = Story(
            code="PAY-001",
            feature_id=feature.id,
            title="Checkout",
            status=StoryStatus.REVIEW,
            extensions=RemoteLink(remote_id=31),
        )
        with store.session() as db:
            db.insert_feature(feature)
            db.insert_story(story)
        cli_tracker.get_work_item.return_value = work_item_factory(31, state="Active")

        assert run("push") == ExitCode.SUCCESS
        cli_tracker.update_state.assert_called_once_with(31, "Resolved")

    def test_status_json(self, run, cli_tracker, capsys):
        assert run("-o", "json", "status") == ExitCode.SUCCESS

        data = json.loads(capsys.readouterr().out)
        assert set(data) == {"health", "inboundSync", "outboundSync"}

    def test_auth_error_during_command(self, run, cli_tracker, capsys):
        cli_tracker.query_by_filter.side_effect = AuthenticationError("Authentication failed")

        # engines report auth failures on the result, so the run itself fails
        assert run("sync") == ExitCode.SYNC_ERROR

    def test_unexpected_error(self, run, cli_tracker, monkeypatch):
        def broken(*args, **kwargs):
            raise StoreError("Cannot open database")

        monkeypatch.setattr("boardsync.adapters.sqlite.SqliteStore", broken)

        assert run("sync") == ExitCode.ERROR

    def test_keyboard_interrupt(self, run, cli_tracker, capsys):
        cli_tracker.test_connection.side_effect = KeyboardInterrupt

        assert run("sync") == ExitCode.SIGINT
        assert "Interrupted" in capsys.readouterr().out

    def test_log_file(self, run, cli_tracker, tmp_path):
        log_file = tmp_path / "boardsync.log"

        run("--log-file", str(log_file), "sync")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "Sync completed" in log_file.read_text(encoding="utf-8")


# =============================================================================
# Daemon
# =============================================================================


class TestDaemon:
    def test_runs_until_signal(self, console):
        runtime = Mock()
        runtime.config = AppConfig(connection=ConnectionConfig("acme", "Web"), sync=SyncConfig())
        runtime.start.side_effect = lambda: signal.raise_signal(signal.SIGTERM)
        previous = signal.getsignal(signal.SIGTERM)

        code = run_daemon(runtime, console, Mock())

        assert code == ExitCode.SUCCESS
        runtime.start.assert_called_once()
        assert signal.getsignal(signal.SIGTERM) is previous

    def test_start_failure_restores_handlers(self, console):
        runtime = Mock()
        runtime.start.side_effect = AuthenticationError("Failed to connect to Azure DevOps")
        previous = signal.getsignal(signal.SIGINT)

        with pytest.raises(AuthenticationError):
            run_daemon(runtime, console, Mock())

        assert signal.getsignal(signal.SIGINT) is previous


# =============================================================================
# Exit codes
# =============================================================================


class TestExitCode:
    @pytest.mark.parametrize(
        "error,code",
        [
            (KeyboardInterrupt(), ExitCode.SIGINT),
            (ConfigError("bad"), ExitCode.CONFIG_ERROR),
            (AuthenticationError("401"), ExitCode.AUTH_ERROR),
            (ValidationError("400"), ExitCode.VALIDATION_ERROR),
            (RemoteServerError("503"), ExitCode.CONNECTION_ERROR),
            (ConnectionError("refused"), ExitCode.CONNECTION_ERROR),
            (RateLimitError("429"), ExitCode.SYNC_ERROR),
            (RuntimeError("?"), ExitCode.ERROR),
        ],
    )
    def test_from_exception(self, error, code):
        assert ExitCode.from_exception(error) is code

    def test_values(self):
        assert ExitCode.SUCCESS == 0
        assert ExitCode.CONFIG_ERROR == 2
        assert ExitCode.SIGINT == 130
