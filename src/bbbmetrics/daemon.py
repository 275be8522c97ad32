"""Daemon implementation for bbbmetrics.

Runs poll cycles in the background and appends measurements to an output
file that a metrics agent can tail.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from bbbmetrics.errors import TransportError

if TYPE_CHECKING:
    from bbbmetrics.config import Config

# Default paths (fallback if local .bbbmetrics not found)
DEFAULT_PID_FILE = Path.home() / ".bbbmetrics" / "daemon.pid"
DEFAULT_LOG_FILE = Path.home() / ".bbbmetrics" / "daemon.log"
DEFAULT_OUTPUT_NAME = "metrics.out"
STOP_TIMEOUT = 5
STOP_POLL_INTERVAL = 0.5

logger = logging.getLogger("bbbmetrics.daemon")


class Daemon:
    """bbbmetrics daemon for background polling.

    The daemon provides:
    - One poll cycle every ``[daemon] interval`` seconds
    - Measurements appended to the configured output file
    - A rotating log of cycle results and failures
    """

    def __init__(
        self,
        pid_file: Path | None = None,
        log_file: Path | None = None,
        config_path: Path | None = None,
    ):
        """Initialize the daemon.

        Args:
            pid_file: Path to PID file. Defaults to .bbbmetrics/daemon.pid (local) or ~/.bbbmetrics/daemon.pid
            log_file: Path to log file. Defaults to .bbbmetrics/daemon.log (local) or ~/.bbbmetrics/daemon.log
            config_path: Path to config file. Searched for if omitted.
        """
        cwd_state = Path.cwd() / ".bbbmetrics"

        if pid_file:
            self.pid_file = pid_file
        elif cwd_state.exists():
            self.pid_file = cwd_state / "daemon.pid"
        else:
            self.pid_file = DEFAULT_PID_FILE

        if log_file:
            self.log_file = log_file
        elif cwd_state.exists():
            self.log_file = cwd_state / "daemon.log"
        else:
            self.log_file = DEFAULT_LOG_FILE

        self.config_path = config_path
        self._running = False

    def output_path(self, config: Config) -> Path:
        """Where measurements go when the daemon runs."""
        if config.output.path:
            return Path(config.output.path)
        return self.pid_file.parent / DEFAULT_OUTPUT_NAME

    def start(self) -> int:
        """Start the daemon.

        Returns:
            Exit code (0 for success, non-zero for failure).
        """
        from bbbmetrics.config import Config

        # Ensure directory exists
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

        # Check if already running
        pid = self.running_pid()
        if pid is not None:
            print(f"Daemon already running (PID: {pid})", file=sys.stderr)
            return 1

        # Configuration errors are fatal before we detach
        try:
            config = Config.load(self.config_path.resolve() if self.config_path else None)
            config.bigbluebutton.validate()
        except (FileNotFoundError, ValueError) as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return 1

        output_path = self.output_path(config).resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)

        print("Starting bbbmetrics daemon...")
        print(f"  PID file: {self.pid_file}")
        print(f"  Log file: {self.log_file}")
        print(f"  Output: {output_path}")

        # Double-fork daemonization
        try:
            pid = os.fork()
            if pid > 0:
                # First parent returns
                return 0
        except OSError as e:
            print(f"fork #1 failed: {e}", file=sys.stderr)
            return 1

        # Decouple from parent environment
        os.setsid()
        os.umask(0o022)

        # Do second fork
        try:
            pid = os.fork()
            if pid > 0:
                # Second parent exits
                sys.exit(0)
        except OSError as e:
            print(f"fork #2 failed: {e}", file=sys.stderr)
            sys.exit(1)

        # Redirect standard file descriptors
        sys.stdout.flush()
        sys.stderr.flush()
        with open(os.devnull, "r") as si:
            os.dup2(si.fileno(), sys.stdin.fileno())
        with open(self.log_file, "a+") as so:
            os.dup2(so.fileno(), sys.stdout.fileno())
            os.dup2(so.fileno(), sys.stderr.fileno())

        self._record_pid()

        try:
            with open(output_path, "a") as output:
                self._run_loop(config, output)
        except Exception as e:
            # Last ditch error logging (stderr is redirected to log file)
            print(f"Daemon crashed: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            self.pid_file.unlink(missing_ok=True)

        sys.exit(0)

    def stop(self) -> int:
        """Send SIGTERM to the poll loop and wait for it to exit.

        Returns:
            Exit code (0 once no daemon is running, 1 if it could not be stopped).
        """
        pid = self.running_pid()
        if pid is None:
            self.pid_file.unlink(missing_ok=True)
            print("Daemon is not running")
            return 0

        print(f"Stopping daemon (PID: {pid})...")
        try:
            os.kill(pid, signal.SIGTERM)
            if not self._wait_for_exit(pid, STOP_TIMEOUT):
                os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            print(f"Permission denied to stop daemon (PID: {pid})", file=sys.stderr)
            return 1

        self.pid_file.unlink(missing_ok=True)
        print("Daemon stopped")
        return 0

    def status(self) -> int:
        """Report whether the poll loop is running.

        Returns:
            Exit code (0 if running, 1 if not running).
        """
        pid = self.running_pid()
        if pid is None:
            print("Daemon is not running")
            return 1

        print(f"Daemon is running (PID: {pid})")
        print(f"  Log file: {self.log_file}")
        return 0

    def running_pid(self) -> int | None:
        """PID of the running daemon, or None if the PID file is missing or stale."""
        try:
            pid = int(self.pid_file.read_text().strip())
        except (OSError, ValueError):
            return None

        try:
            os.kill(pid, 0)
        except (ProcessLookupError, PermissionError):
            return None
        return pid

    def _record_pid(self) -> None:
        self.pid_file.write_text(f"{os.getpid()}\n")

    @staticmethod
    def _wait_for_exit(pid: int, timeout: float) -> bool:
        """Poll until ``pid`` is gone; False if it outlives ``timeout`` seconds."""
        for _ in range(int(timeout / STOP_POLL_INTERVAL)):
            time.sleep(STOP_POLL_INTERVAL)
            try:
                os.kill(pid, 0)
            except ProcessLookupError:
                return True
        return False

    def _setup_logging(self) -> None:
        handler = RotatingFileHandler(
            self.log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
        handler.setFormatter(formatter)

        package_logger = logging.getLogger("bbbmetrics")
        package_logger.setLevel(logging.INFO)
        # Avoid adding multiple handlers if re-initialized
        if not package_logger.handlers:
            package_logger.addHandler(handler)

    def _run_loop(self, config: Config, output) -> None:
        """Main daemon loop.

        Args:
            config: The bbbmetrics configuration.
            output: Text stream receiving the measurements.
        """
        from bbbmetrics.collector import Collector
        from bbbmetrics.emitter import make_sink

        self._setup_logging()
        logger.info("Daemon started")

        self._running = True
        collector = Collector(config, sink=make_sink(config.output.format, output))

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self._running = False

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        try:
            while self._running:
                self.run_cycle(collector)

                # Sleep loop for responsiveness
                for _ in range(config.daemon.interval):
                    if not self._running:
                        break
                    time.sleep(1)
        finally:
            collector.close()

        logger.info("Daemon stopped")

    def run_cycle(self, collector) -> bool:
        """Run one poll cycle, logging instead of raising.

        Returns:
            True if the cycle was published, False if it failed.
        """
        try:
            collector.gather()
            return True
        except TransportError as e:
            logger.error(f"Poll cycle failed: {e}")
        except Exception as e:
            logger.error(f"Error in poll cycle: {e}", exc_info=True)
        return False
