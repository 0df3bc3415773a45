"""
The control package.
Drives a forking server master through its lifecycle.

This package contains the LifecycleController and its helper modules, which
together probe and signal processes, read pid files, poll for state changes,
launch the server and health-check it over HTTP.
"""
from .controller import LifecycleController, UpgradeOutcome, UpgradePhase
from .errors import ConfigurationError, ControlError, LaunchError

__all__ = [
    'LifecycleController', 'UpgradeOutcome', 'UpgradePhase',
    'ControlError', 'ConfigurationError', 'LaunchError',
]
