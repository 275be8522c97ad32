"""Tests for the background daemon."""

import os
import signal
from unittest.mock import MagicMock, call, patch

import pytest

from bbbmetrics.config import Config, OutputConfig, SECRET_KEY_ENV
from bbbmetrics.daemon import DEFAULT_OUTPUT_NAME, Daemon
from bbbmetrics.errors import ApiError, TransportError


@pytest.fixture
def daemon(tmp_path) -> Daemon:
    return Daemon(
        pid_file=tmp_path / "daemon.pid",
        log_file=tmp_path / "daemon.log",
    )


class TestPaths:
    """Tests for daemon file locations."""

    def test_explicit_paths(self, tmp_path):
        d = Daemon(pid_file=tmp_path / "x.pid", log_file=tmp_path / "x.log")
        assert d.pid_file == tmp_path / "x.pid"
        assert d.log_file == tmp_path / "x.log"

    def test_local_state_directory(self, tmp_path, monkeypatch):
        (tmp_path / ".bbbmetrics").mkdir()
        monkeypatch.chdir(tmp_path)

        d = Daemon()

        assert d.pid_file == tmp_path / ".bbbmetrics" / "daemon.pid"
        assert d.log_file == tmp_path / ".bbbmetrics" / "daemon.log"

    def test_output_path_defaults_next_to_pid_file(self, daemon, tmp_path):
        assert daemon.output_path(Config()) == tmp_path / DEFAULT_OUTPUT_NAME

    def test_output_path_from_config(self, daemon, tmp_path):
        config = Config(output=OutputConfig(path=str(tmp_path / "out" / "bbb.lp")))
        assert daemon.output_path(config) == tmp_path / "out" / "bbb.lp"


class TestPidFile:
    """Tests for PID file handling."""

    def test_running_pid_without_pid_file(self, daemon):
        assert daemon.running_pid() is None

    def test_running_pid_with_garbage(self, daemon):
        daemon.pid_file.write_text("not a pid")
        assert daemon.running_pid() is None

    def test_running_pid_for_current_process(self, daemon):
        daemon._record_pid()
        assert daemon.running_pid() == os.getpid()

    def test_running_pid_for_dead_process(self, daemon):
        daemon.pid_file.write_text("12345\n")
        with patch("bbbmetrics.daemon.os.kill", side_effect=ProcessLookupError):
            assert daemon.running_pid() is None


class TestStatusAndStop:
    """Tests for the status and stop commands."""

    def test_status_not_running(self, daemon, capsys):
        assert daemon.status() == 1
        assert "not running" in capsys.readouterr().out

    def test_status_running(self, daemon, capsys):
        daemon._record_pid()
        assert daemon.status() == 0
        out = capsys.readouterr().out
        assert f"PID: {os.getpid()}" in out
        assert str(daemon.log_file) in out

    def test_stop_not_running(self, daemon, capsys):
        assert daemon.stop() == 0
        assert "not running" in capsys.readouterr().out

    def test_stop_removes_stale_pid_file(self, daemon):
        daemon.pid_file.write_text("12345")
        with patch("bbbmetrics.daemon.os.kill", side_effect=ProcessLookupError):
            assert daemon.stop() == 0
        assert not daemon.pid_file.exists()

    def test_stop_process_gone_before_sigterm(self, daemon):
        daemon.pid_file.write_text("12345")
        with patch(
            "bbbmetrics.daemon.os.kill", side_effect=[None, ProcessLookupError]
        ), patch("bbbmetrics.daemon.time.sleep"):
            assert daemon.stop() == 0
        assert not daemon.pid_file.exists()

    def test_stop_waits_for_exit(self, daemon, capsys):
        daemon.pid_file.write_text("12345")
        # liveness check, SIGTERM, still alive once, then gone
        with patch(
            "bbbmetrics.daemon.os.kill",
            side_effect=[None, None, None, ProcessLookupError],
        ) as kill, patch("bbbmetrics.daemon.time.sleep"):
            assert daemon.stop() == 0

        assert call(12345, signal.SIGTERM) in kill.call_args_list
        assert call(12345, signal.SIGKILL) not in kill.call_args_list
        assert "Daemon stopped" in capsys.readouterr().out

    def test_stop_escalates_to_sigkill(self, daemon):
        daemon.pid_file.write_text("12345")
        with patch("bbbmetrics.daemon.os.kill") as kill, patch(
            "bbbmetrics.daemon.time.sleep"
        ):
            assert daemon.stop() == 0

        assert kill.call_args_list[-1] == call(12345, signal.SIGKILL)
        assert not daemon.pid_file.exists()

    def test_stop_permission_denied(self, daemon, capsys):
        daemon.pid_file.write_text("12345")
        with patch(
            "bbbmetrics.daemon.os.kill", side_effect=[None, PermissionError]
        ):
            assert daemon.stop() == 1
        assert "Permission denied" in capsys.readouterr().err
        assert daemon.pid_file.exists()


class TestStart:
    """Tests for daemon start checks that run before forking."""

    def test_start_without_config(self, daemon, tmp_path, capsys):
        daemon.config_path = tmp_path / "missing.toml"

        with patch("bbbmetrics.daemon.os.fork") as fork:
            assert daemon.start() == 1
            fork.assert_not_called()
        assert "Configuration error" in capsys.readouterr().err

    def test_start_without_secret(self, daemon, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv(SECRET_KEY_ENV, raising=False)
        config_path = tmp_path / "config.toml"
        config_path.write_text('[bigbluebutton]\nurl = "http://bbb.example.com"\n')
        daemon.config_path = config_path

        with patch("bbbmetrics.daemon.os.fork") as fork:
            assert daemon.start() == 1
            fork.assert_not_called()
        assert "secret key is required" in capsys.readouterr().err

    def test_start_when_already_running(self, daemon, capsys):
        daemon._record_pid()

        with patch("bbbmetrics.daemon.os.fork") as fork:
            assert daemon.start() == 1
            fork.assert_not_called()
        assert "already running" in capsys.readouterr().err

    def test_first_parent_returns_success(self, daemon, tmp_path):
        config_path = tmp_path / "config.toml"
        config_path.write_text('[bigbluebutton]\nsecret_key = "s"\n')
        daemon.config_path = config_path

        with patch("bbbmetrics.daemon.os.fork", return_value=4242) as fork:
            assert daemon.start() == 0
            fork.assert_called_once_with()
        assert not daemon.pid_file.exists()


class TestRunCycle:
    """Tests for a single daemon poll cycle."""

    def test_successful_cycle(self, daemon):
        collector = MagicMock()
        assert daemon.run_cycle(collector) is True
        collector.gather.assert_called_once_with()

    def test_transport_error_is_logged(self, daemon, caplog):
        collector = MagicMock()
        collector.gather.side_effect = TransportError("Error calling getMeetings: status 503")

        with caplog.at_level("ERROR", logger="bbbmetrics.daemon"):
            assert daemon.run_cycle(collector) is False

        assert "Poll cycle failed" in caplog.text
        assert "status 503" in caplog.text

    def test_api_error_is_logged(self, daemon, caplog):
        collector = MagicMock()
        collector.gather.side_effect = ApiError("getRecordings", "FAILED", "checksumError")

        with caplog.at_level("ERROR", logger="bbbmetrics.daemon"):
            assert daemon.run_cycle(collector) is False

        assert "checksumError" in caplog.text

    def test_unexpected_error_does_not_stop_daemon(self, daemon, caplog):
        collector = MagicMock()
        collector.gather.side_effect = RuntimeError("boom")

        with caplog.at_level("ERROR", logger="bbbmetrics.daemon"):
            assert daemon.run_cycle(collector) is False

        assert "boom" in caplog.text


class TestRunLoop:
    """Tests for the daemon loop."""

    def test_loop_runs_until_stopped(self, daemon, tmp_path):
        config = Config()
        config.bigbluebutton.secret_key = "s"
        config.daemon.interval = 1
        cycles = []

        def fake_run_cycle(collector):
            cycles.append(collector)
            daemon._running = False
            return True

        with patch.object(daemon, "run_cycle", side_effect=fake_run_cycle), patch(
            "bbbmetrics.daemon.signal.signal"
        ), patch.object(daemon, "_setup_logging"):
            with open(tmp_path / "out.lp", "a") as output:
                daemon._run_loop(config, output)

        assert len(cycles) == 1
        assert cycles[0].config is config

    def test_loop_closes_http_session(self, daemon, tmp_path):
        config = Config()
        config.bigbluebutton.secret_key = "s"
        sessions = []

        def fake_run_cycle(collector):
            sessions.append(collector.client.session)
            daemon._running = False
            return True

        with patch.object(daemon, "run_cycle", side_effect=fake_run_cycle), patch(
            "bbbmetrics.daemon.signal.signal"
        ), patch.object(daemon, "_setup_logging"), patch(
            "bbbmetrics.api.requests.Session"
        ):
            with open(tmp_path / "out.lp", "a") as output:
                daemon._run_loop(config, output)

        sessions[0].close.assert_called_once_with()
