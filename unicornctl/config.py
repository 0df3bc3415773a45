import os
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
import unicornctl.settings as default_settings
from unicornctl.control.errors import ConfigurationError

log = logging.getLogger(__name__)


def app_file_path(app_dir: Path, name: str) -> Path:
    """Resolves a possibly relative override against the application directory."""
    path = Path(name)
    return path if path.is_absolute() else app_dir / path


@dataclass(frozen=True)
class ControllerConfig:
    """
    Immutable per-invocation configuration for the lifecycle controller.

    Paths derived from the application directory are computed on access, so a
    config only stores what the user (or the defaults) actually supplied.
    """
    app_dir: Path
    environment: str = default_settings.DEFAULT_ENVIRONMENT
    rails: bool = False
    bundler_command: str = default_settings.DEFAULT_BUNDLER_COMMAND
    unicorn_config: Optional[str] = None
    rackup_config: Optional[str] = None
    pid_file: Optional[str] = None
    timeout: float = default_settings.DEFAULT_TIMEOUT
    check_url: Optional[str] = None
    check_content: Optional[str] = None
    check_timeout: float = default_settings.DEFAULT_CHECK_TIMEOUT
    start_wait: float = default_settings.DEFAULT_START_WAIT
    watch_proctitle: bool = False

    @classmethod
    def from_options(cls, app_dir: Optional[str], **options) -> "ControllerConfig":
        """
        Validates the application directory and builds a config from CLI options.
        Options passed as None fall back to the defaults in settings.

        :param app_dir: The application directory as given by the user.
        :return: A resolved ControllerConfig.
        :raises ConfigurationError: If the directory is missing or invalid.
        """
        if not app_dir:
            raise ConfigurationError("Please specify application directory!")
        if not os.path.isdir(app_dir):
            raise ConfigurationError(f"Please specify a valid application directory! Got: {app_dir}")

        resolved = Path(os.path.realpath(app_dir))
        supplied = {key: value for key, value in options.items() if value is not None}
        log.debug(f"Resolved application directory: {resolved}")
        return cls(app_dir=resolved, **supplied)

    @property
    def unicorn_bin(self) -> str:
        return default_settings.UNICORN_RAILS_BIN if self.rails else default_settings.UNICORN_BIN

    @property
    def pid_file_path(self) -> Path:
        if self.pid_file:
            return app_file_path(self.app_dir, self.pid_file)
        return self.app_dir / default_settings.PID_DIR / f"{self.unicorn_bin}.pid"

    @property
    def unicorn_config_path(self) -> Path:
        if self.unicorn_config:
            return app_file_path(self.app_dir, self.unicorn_config)
        return self.app_dir / default_settings.UNICORN_CONFIG_PATH

    @property
    def rackup_config_path(self) -> Path:
        if self.rackup_config:
            return app_file_path(self.app_dir, self.rackup_config)
        return self.app_dir / default_settings.RACKUP_CONFIG_PATH

    @property
    def release_dir(self) -> Path:
        return self.app_dir / default_settings.RELEASE_DIR
