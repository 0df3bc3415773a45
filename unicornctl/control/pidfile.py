import logging
from pathlib import Path
from typing import Optional, Union
from unicornctl import settings
from unicornctl.control.errors import ConfigurationError

log = logging.getLogger(__name__)


class PidFile:
    """A text file holding the decimal PID of a server master."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"PidFile({str(self.path)!r})"

    def __str__(self) -> str:
        return str(self.path)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> Optional[int]:
        """
        Reads the PID from disk.

        :return: The PID, or None if the file is missing or does not hold a number.
        :raises ConfigurationError: If the file exists but cannot be read.
        """
        try:
            content = self.path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ConfigurationError(f"Could not read pid file {self.path}: {e}") from e

        try:
            return int(content.strip())
        except ValueError:
            log.warning(f"Pid file {self.path} does not hold a pid: {content.strip()!r}")
            return None

    def remove(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Could not remove pid file {self.path}: {e}") from e
        log.debug(f"Removed pid file {self.path}")

    def oldbin(self) -> "PidFile":
        """Returns the sibling file a master moves its PID to while being replaced."""
        return PidFile(self.path.with_name(self.path.name + settings.OLDBIN_SUFFIX))
