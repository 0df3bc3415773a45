"""
unicornctl package.
Lifecycle control for forking application servers (unicorn and friends).

The control subpackage drives a server master through start, stop, restart,
zero-downtime upgrade, log reopening and status checks, using PID files,
OS signals and HTTP health checks.
"""

__version__ = "1.0.0"
