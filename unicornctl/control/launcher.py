import shlex
import logging
import threading
import subprocess
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from unicornctl.config import ControllerConfig

log = logging.getLogger(__name__)

READER_JOIN_TIMEOUT = 2


def _read_pipe(pipe, process_name: str, level: int) -> None:
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").strip()
            if line:
                proc_logger.log(level, line)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()

def log_process_output(process: subprocess.Popen, name: str) -> List[threading.Thread]:
    """Starts background threads to consume and log a process's stdout/stderr."""
    readers = []
    for pipe, level in ((process.stdout, logging.INFO), (process.stderr, logging.ERROR)):
        if pipe:
            reader = threading.Thread(target=_read_pipe, args=(pipe, name, level), daemon=True)
            reader.start()
            readers.append(reader)
    return readers


class ServerLauncher:
    """Starts a daemonizing server master through the shell."""

    def __init__(self, config: "ControllerConfig") -> None:
        self.config = config

    def build_command(self) -> str:
        """
        Composes the shell command that starts the server in the background.

        :return: A shell command line with every argument quoted.
        """
        config = self.config
        parts = [
            "cd", shlex.quote(str(config.release_dir)), "&&",
            *(shlex.quote(part) for part in shlex.split(config.bundler_command or "")),
            config.unicorn_bin,
            "--env", shlex.quote(config.environment),
            "--daemonize",
            "--config-file", shlex.quote(str(config.unicorn_config_path)),
            shlex.quote(str(config.rackup_config_path)),
        ]
        return " ".join(parts)

    def launch(self, wait_timeout: Optional[float] = None) -> bool:
        """
        Runs the startup command and waits for the launching shell to exit.

        :param wait_timeout: Maximum seconds to wait for the command to return.
        :return: True if the command exited with status 0.
        """
        command = self.build_command()
        log.info(f"Starting {self.config.unicorn_bin}...")
        log.debug(f"Startup command: {command}")
        try:
            process = subprocess.Popen(command, shell=True, stdout=subprocess.PIPE,
                                       stderr=subprocess.PIPE, stdin=subprocess.DEVNULL)
        except OSError as e:
            log.error(f"Failed to run startup command: {e}")
            return False

        readers = log_process_output(process, self.config.unicorn_bin)
        try:
            returncode = process.wait(timeout=wait_timeout)
        except subprocess.TimeoutExpired:
            log.error(f"Startup command did not return within {wait_timeout} seconds")
            process.kill()
            return False
        finally:
            # A daemon that keeps the pipes open must not block us
            for reader in readers:
                reader.join(timeout=READER_JOIN_TIMEOUT)

        if returncode != 0:
            log.error(f"Startup command exited with status {returncode}: {command}")
            return False
        return True
