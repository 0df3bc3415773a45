import enum
import signal
import psutil
import logging
from typing import Optional

log = logging.getLogger(__name__)


class SignalResult(enum.Enum):
    """Outcome of a best-effort signal delivery."""
    DELIVERED = "delivered"
    TARGET_GONE = "target-gone"
    PERMISSION_DENIED = "permission-denied"
    REJECTED = "rejected"


#* --- Process Status ---
def pid_exists(pid: int) -> bool:
    """A wrapper for psutil.pid_exists for easy testing/mocking if needed."""
    return psutil.pid_exists(pid)

def is_alive(pid: int) -> bool:
    """
    Checks whether a PID denotes a live process.

    Non-positive PIDs are never alive and are not probed at all. A process
    that exists but belongs to another user still counts as alive.

    :param pid: The process id to probe.
    :return: True if the process exists.
    """
    if pid <= 0:
        return False
    return pid_exists(pid)

def get_title(pid: int) -> Optional[str]:
    """
    Reads the process title (command line) for a PID.

    :param pid: The process id to inspect.
    :return: The command line joined with spaces, or None when unavailable.
    """
    if not is_alive(pid):
        return None
    try:
        cmdline = psutil.Process(pid).cmdline()
    except psutil.Error as e:
        log.debug(f"Could not read process title for PID {pid}: {e}")
        return None
    except (NotImplementedError, OSError) as e:
        log.debug(f"Process titles are not available on this platform: {e}")
        return None
    return " ".join(cmdline) if cmdline else None


#* --- Signals ---
def send_signal(name: str, pid: int) -> SignalResult:
    """
    Sends a named signal (e.g. 'QUIT', 'USR2') to a process.

    Delivery races with process exit are expected, so failures are logged as
    warnings and returned rather than raised.

    :param name: The signal name without the SIG prefix.
    :param pid: The target process id.
    :return: The delivery outcome.
    """
    signum = getattr(signal, f"SIG{name}", None)
    if signum is None:
        log.warning(f"Failed to send signal {name} to {pid}: signal not supported on this platform")
        return SignalResult.REJECTED

    try:
        psutil.Process(pid).send_signal(signum)
    except psutil.NoSuchProcess:
        log.warning(f"Failed to send signal {name} to {pid}: process is gone")
        return SignalResult.TARGET_GONE
    except psutil.AccessDenied:
        log.warning(f"Failed to send signal {name} to {pid}: permission denied")
        return SignalResult.PERMISSION_DENIED
    except (ValueError, OSError) as e:
        log.warning(f"Failed to send signal {name} to {pid}: {e}")
        return SignalResult.REJECTED

    log.debug(f"Delivered {name} to PID {pid}")
    return SignalResult.DELIVERED

def kill_tree(pid: int) -> SignalResult:
    """
    Kills a process that refused to stop.

    Only the given PID is signalled; descendants are not enumerated. Replace
    this function to get a real process-tree kill.
    """
    return send_signal("KILL", pid)
