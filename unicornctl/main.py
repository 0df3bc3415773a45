import sys
import logging
import argparse
import setproctitle
from typing import Callable, Dict, List, NoReturn, Optional
from unicornctl import __version__, settings
from unicornctl.log import setup_logging
from unicornctl.config import ControllerConfig
from unicornctl.control import ControlError, LifecycleController

log = logging.getLogger("unicornctl")

COMMANDS: Dict[str, Callable[[LifecycleController], bool]] = {
    "start": lambda controller: controller.start(),
    "stop": lambda controller: controller.stop(graceful=True),
    "force-stop": lambda controller: controller.stop(graceful=False),
    "restart": lambda controller: controller.restart(graceful=True),
    "force-restart": lambda controller: controller.restart(graceful=False),
    "upgrade": lambda controller: controller.upgrade().succeeded,
    "reopen-logs": lambda controller: controller.reopen_logs(),
    "status": lambda controller: controller.status(),
}


class ArgumentParser(argparse.ArgumentParser):
    """An ArgumentParser that exits with status 1 on bad invocations."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"ERROR: {message}\n")


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="unicornctl",
        description="Lifecycle controller for unicorn-style forking application servers.",
        epilog=f"Valid commands: {', '.join(COMMANDS)}",
    )
    parser.add_argument("command", choices=list(COMMANDS), metavar="command",
                        help="One of: %(choices)s")
    parser.add_argument("-d", "--app-dir", required=True,
                        help="Base directory for the application (required)")
    parser.add_argument("-e", "--environment",
                        help=f"RACK_ENV to use for the app (default: {settings.DEFAULT_ENVIRONMENT})")
    parser.add_argument("-U", "--health-check-url", dest="check_url",
                        help="Health check URL used to make sure the app has started")
    parser.add_argument("-C", "--health-check-content", dest="check_content",
                        help="Health check expected content (default: just check the HTTP status)")
    parser.add_argument("-T", "--health-check-timeout", dest="check_timeout", type=int,
                        help=f"Individual health check timeout (default: {settings.DEFAULT_CHECK_TIMEOUT} sec)")
    parser.add_argument("-w", "--start-wait", type=int,
                        help="Seconds to wait for the app to load before health checks (default: 0)")
    parser.add_argument("-t", "--timeout", type=int,
                        help=f"Operation (start/stop/etc) timeout (default: {settings.DEFAULT_TIMEOUT} sec)")
    parser.add_argument("-b", "--bundler-command",
                        help=f"Command wrapping the server binary (default: '{settings.DEFAULT_BUNDLER_COMMAND}')")
    parser.add_argument("-c", "--unicorn-config",
                        help=f"Unicorn config, absolute or relative to the app dir (default: {settings.UNICORN_CONFIG_PATH})")
    parser.add_argument("-r", "--rackup-config",
                        help=f"Rackup config, absolute or relative to the app dir (default: {settings.RACKUP_CONFIG_PATH})")
    parser.add_argument("-p", "--pid-file",
                        help=f"Pid file, absolute or relative to the app dir (default: {settings.PID_DIR}/<bin>.pid)")
    parser.add_argument("-W", "--watch-proctitle", action="store_true", default=None,
                        help="Wait for the new master to change its process title during upgrades")
    parser.add_argument("-R", "--rails", action="store_true", default=None,
                        help=f"Use {settings.UNICORN_RAILS_BIN} instead of {settings.UNICORN_BIN}")
    parser.add_argument("--verbose", action="store_true", help="Enable debug output")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    The main entry point for the command-line tool.

    :param argv: Command-line arguments (defaults to sys.argv[1:]).
    :return: The process exit status.
    """
    args = build_parser().parse_args(argv)
    setproctitle.setproctitle(f"unicornctl - {args.command}")
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, labels={"command": args.command})

    try:
        config = ControllerConfig.from_options(
            args.app_dir,
            environment=args.environment,
            check_url=args.check_url,
            check_content=args.check_content,
            check_timeout=args.check_timeout,
            start_wait=args.start_wait,
            timeout=args.timeout,
            bundler_command=args.bundler_command,
            unicorn_config=args.unicorn_config,
            rackup_config=args.rackup_config,
            pid_file=args.pid_file,
            watch_proctitle=args.watch_proctitle,
            rails=args.rails,
        )
        controller = LifecycleController(config)
        ok = COMMANDS[args.command](controller)
    except ControlError as e:
        log.error(f"ERROR: {e}")
        return 1
    except KeyboardInterrupt:
        log.warning("Interrupted, exiting.")
        return 1

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
