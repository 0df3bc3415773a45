import enum
import time
import logging
from typing import TYPE_CHECKING, Optional
from unicornctl import settings
from unicornctl.control import process_utils
from unicornctl.control.pidfile import PidFile
from unicornctl.control.health import HealthChecker
from unicornctl.control.launcher import ServerLauncher
from unicornctl.control.poller import Poll, wait_until
from unicornctl.control.errors import ConfigurationError, LaunchError

if TYPE_CHECKING:
    from unicornctl.config import ControllerConfig

log = logging.getLogger(__name__)


class UpgradePhase(enum.Enum):
    PREFLIGHT = "preflight"
    TRIGGERED = "triggered"
    DETECTING = "detecting"
    SETTLING = "settling"
    WATCHING = "watching"
    HEALTH_CHECKING = "health-checking"
    RETIRING = "retiring"
    VERIFYING = "verifying"
    DONE = "done"
    ROLLED_BACK = "rolled-back"


class UpgradeOutcome(enum.Enum):
    """Terminal states of an upgrade run."""
    COLD_STARTED = ("cold-started", True)
    COLD_START_FAILED = ("cold-start-failed", False)
    UPGRADED = ("upgraded", True)
    ROLLED_BACK = ("rolled-back", True)
    ROLLBACK_FAILED = ("rollback-failed", False)
    UPGRADED_UNHEALTHY = ("upgraded-unhealthy", False)

    def __init__(self, label: str, succeeded: bool) -> None:
        self.label = label
        self.succeeded = succeeded


class LifecycleController:
    """
    Drives a forking server master through its lifecycle.

    Nothing about the server is cached between steps: every decision is made
    from the pid files and the process table as they are at that moment.
    Fatal conditions raise ConfigurationError or LaunchError; every other
    outcome is returned.
    """

    def __init__(self, config: "ControllerConfig", launcher: Optional[ServerLauncher] = None,
                 health_checker: Optional[HealthChecker] = None) -> None:
        self.config = config
        self.launcher = launcher or ServerLauncher(config)
        self.health_checker = health_checker if health_checker is not None else HealthChecker.from_config(config)
        self.pid_file = PidFile(config.pid_file_path)
        self.phase: Optional[UpgradePhase] = None

    #* --- Shared Steps ---
    def _check_health(self) -> bool:
        """Runs the configured health check; passes trivially when none is configured."""
        if self.health_checker is None:
            return True
        return self.health_checker.check()

    def _running_pid(self, pid_file: PidFile) -> Optional[int]:
        """
        Returns the live PID recorded in a pid file.
        A stale or unparsable file is removed and None is returned.
        An unreadable one raises ConfigurationError and is left alone.
        """
        if not pid_file.exists():
            return None

        pid = pid_file.read()
        if pid is not None and process_utils.is_alive(pid):
            return pid

        log.warning(f"Stale pid file found, removing it: {pid_file}")
        pid_file.remove()
        return None

    def stop_process(self, pid: int, timeout: float, graceful: bool) -> bool:
        """
        Signals a process to stop, waits for it to exit, and kills it if it doesn't.

        :param pid: The process to stop.
        :param timeout: Seconds to wait for it to exit before killing it.
        :param graceful: QUIT (finish in-flight work) if True, TERM otherwise.
        :return: True if the process exited on its own.
        """
        signal_name = "QUIT" if graceful else "TERM"
        log.info(f"Sending {signal_name} signal to process with pid={pid}...")
        process_utils.send_signal(signal_name, pid)

        log.info("Waiting for the process to stop...")
        wait_until(timeout, settings.POLL_INTERVAL,
                   lambda: Poll.CONTINUE if process_utils.is_alive(pid) else Poll.DONE)

        if process_utils.is_alive(pid):
            log.warning(f"Process {pid} failed to stop in {timeout} seconds, killing!")
            process_utils.kill_tree(pid)
            return False

        log.info(f"Process {pid} stopped.")
        return True

    def _sleep_start_wait(self) -> None:
        if self.config.start_wait > 0:
            log.info(f"Waiting {self.config.start_wait} seconds for the application to load...")
            time.sleep(self.config.start_wait)

    #* --- Operations ---
    def start(self) -> bool:
        """
        Starts the server unless it is already running.

        :return: True if the server is running and healthy.
        :raises ConfigurationError: If a config file is unreadable.
        :raises LaunchError: If the server did not come up.
        """
        pid = self._running_pid(self.pid_file)
        if pid is not None:
            log.info(f"OK: The app is already running (pid={pid})")
            return self._check_health()

        for description, path in (("unicorn config", self.config.unicorn_config_path),
                                  ("rackup config", self.config.rackup_config_path)):
            if not path.is_file():
                raise ConfigurationError(f"Could not find {description}: {path}")
            try:
                with path.open("rb"):
                    pass
            except OSError as e:
                raise ConfigurationError(f"Could not read {description}: {path} ({e})") from e

        if not self.launcher.launch(wait_timeout=self.config.timeout):
            raise LaunchError(f"Failed to start {self.config.unicorn_bin}: {self.launcher.build_command()}")

        time.sleep(settings.LAUNCH_SETTLE_DELAY)

        if not self.pid_file.exists():
            raise LaunchError(f"Even though startup command succeeded, there is no pid file: {self.pid_file}")
        pid = self.pid_file.read()
        if pid is None or not process_utils.is_alive(pid):
            raise LaunchError(
                f"Even though startup command succeeded and pid file exists, there is no process with pid={pid}"
            )

        self._sleep_start_wait()
        if not self._check_health():
            log.error(f"Started process {pid} is not healthy; leaving it running for inspection.")
            return False

        log.info(f"Started! PID={pid}")
        return True

    def stop(self, graceful: bool = True) -> bool:
        """
        Stops the server master.

        :param graceful: QUIT if True, TERM otherwise.
        :return: Always True; a process that ignores signals is killed.
        """
        if not self.pid_file.exists():
            log.info("OK: The process is not running")
            return True

        pid = self._running_pid(self.pid_file)
        if pid is not None:
            self.stop_process(pid, self.config.timeout, graceful)

        log.info("Stopped!")
        return True

    def restart(self, graceful: bool = True) -> bool:
        """Stops the server (if running) and starts it again."""
        self.stop(graceful)
        return self.start()

    def reopen_logs(self) -> bool:
        """Asks the running master to reopen its log files."""
        if not self.pid_file.exists():
            log.info("OK: The process is not running")
            return True

        pid = self._running_pid(self.pid_file)
        if pid is None:
            return True

        log.info(f"Sending USR1 signal to process with pid={pid}...")
        process_utils.send_signal("USR1", pid)
        log.info("Log reopen requested.")
        return True

    def status(self) -> bool:
        """
        Reports whether the server master is running.

        :return: True if the pid file points at a live process.
        """
        if not self.pid_file.exists():
            log.info("The app is not running (no pid file)")
            return False

        pid = self._running_pid(self.pid_file)
        if pid is None:
            log.info("The app is not running (stale pid file removed)")
            return False

        log.info(f"The app is running (pid={pid})")
        return True

    #* --- Upgrade ---
    def _enter(self, phase: UpgradePhase) -> None:
        log.debug(f"Upgrade phase: {self.phase.value if self.phase else 'none'} -> {phase.value}")
        self.phase = phase

    def _cold_start(self, rolled_back: bool) -> UpgradeOutcome:
        """Falls back to a regular start. Fatal start errors propagate."""
        self._enter(UpgradePhase.ROLLED_BACK if rolled_back else UpgradePhase.DONE)
        started = self.start()
        if rolled_back:
            return UpgradeOutcome.ROLLED_BACK if started else UpgradeOutcome.ROLLBACK_FAILED
        return UpgradeOutcome.COLD_STARTED if started else UpgradeOutcome.COLD_START_FAILED

    def _new_master_pid(self, old_pid: int) -> Optional[int]:
        pid = self.pid_file.read()
        return pid if pid is not None and pid != old_pid else None

    def upgrade(self) -> UpgradeOutcome:
        """
        Replaces the running master with a freshly forked one without downtime.

        The old master is asked (USR2) to exec a new master, which takes over the
        pid file while the old one moves to <pid file>.oldbin. The new master is
        health-checked before the old one is retired. If the new master never
        shows up or is unhealthy, both are killed and a cold start is attempted.

        :return: The terminal state of the run.
        """
        timeout = self.config.timeout
        self.phase = None
        self._enter(UpgradePhase.PREFLIGHT)

        # A leftover oldbin file means an earlier upgrade died half way
        old_pid_file = self.pid_file.oldbin()
        if old_pid_file.exists():
            log.warning(f"Old pid file exists: {old_pid_file}")
            leftover_pid = self._running_pid(old_pid_file)
            if leftover_pid is not None:
                log.warning("Old binary is still running, shutting it down")
                self.stop_process(leftover_pid, timeout, graceful=False)

        if not self.pid_file.exists():
            log.warning(f"No pid file found: {self.pid_file}. Trying to do a cold startup procedure...")
            return self._cold_start(rolled_back=False)

        old_pid = self._running_pid(self.pid_file)
        if old_pid is None:
            log.warning("The app is not running. Trying to do a cold startup procedure...")
            return self._cold_start(rolled_back=False)

        self._enter(UpgradePhase.TRIGGERED)
        log.info(f"Sending USR2 signal to old master: {old_pid}...")
        process_utils.send_signal("USR2", old_pid)

        self._enter(UpgradePhase.DETECTING)
        log.info("Waiting for the new master to replace the old one...")
        detected = wait_until(timeout, settings.POLL_INTERVAL,
                              lambda: Poll.DONE if self._new_master_pid(old_pid) else Poll.CONTINUE)
        if not detected:
            log.warning(f"New master didn't start in {timeout} seconds, trying to do a cold restart...")
            self.stop_process(old_pid, timeout, graceful=False)
            return self._cold_start(rolled_back=True)

        self._enter(UpgradePhase.SETTLING)
        new_pid = self._new_master_pid(old_pid)
        if new_pid is None:
            # The new master vanished between detection and now
            log.error("New master disappeared right after startup, trying to do a cold restart...")
            self.stop_process(old_pid, timeout, graceful=False)
            return self._cold_start(rolled_back=True)
        log.info(f"New master detected with pid={new_pid}")

        initial_title = process_utils.get_title(new_pid) if self.config.watch_proctitle else None
        if self.config.watch_proctitle and initial_title is None:
            log.warning(f"Process titles are not readable for pid={new_pid}, not watching them")
        self._sleep_start_wait()

        if initial_title is not None:
            self._enter(UpgradePhase.WATCHING)
            log.info(f"Waiting for the new master to change its title from: {initial_title}")
            changed = wait_until(
                timeout, settings.POLL_INTERVAL,
                lambda: Poll.CONTINUE if process_utils.get_title(new_pid) == initial_title else Poll.DONE,
            )
            if changed:
                log.info(f"New master title changed to: {process_utils.get_title(new_pid)}")
            else:
                log.warning(f"New master title did not change in {timeout} seconds, proceeding anyway")

        if self.health_checker is not None:
            self._enter(UpgradePhase.HEALTH_CHECKING)
            if self.health_checker.check():
                log.info("Health check succeeded on the new master!")
            else:
                log.error("Failed to verify health of the new master, nuking everything and trying a cold start...")
                self.stop_process(new_pid, settings.ROLLBACK_STOP_TIMEOUT, graceful=False)
                self.stop_process(old_pid, settings.ROLLBACK_STOP_TIMEOUT, graceful=False)
                return self._cold_start(rolled_back=True)

        self._enter(UpgradePhase.RETIRING)
        log.info(f"Stopping old unicorn master: {old_pid}")
        self.stop_process(old_pid, timeout, graceful=True)

        if self.health_checker is not None:
            self._enter(UpgradePhase.VERIFYING)
            if not self.health_checker.check():
                self._enter(UpgradePhase.DONE)
                log.error(f"Upgrade finished but the new master (pid={new_pid}) is not healthy!")
                return UpgradeOutcome.UPGRADED_UNHEALTHY

        self._enter(UpgradePhase.DONE)
        log.info("OK: Upgrade is done successfully!")
        return UpgradeOutcome.UPGRADED
