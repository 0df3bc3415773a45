class ControlError(Exception):
    """Base class for fatal lifecycle errors. The CLI maps these to exit status 1."""


class ConfigurationError(ControlError):
    """A config file or the application directory is missing or unreadable."""


class LaunchError(ControlError):
    """The server launch command failed, or no live process materialized after it."""
