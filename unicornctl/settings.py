"""
This module contains the default settings for unicornctl.
Every value can be overridden through the environment (or a .env file in the
working directory), and most of them again through command-line options.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


#* --- Server Defaults ---
DEFAULT_ENVIRONMENT = os.getenv("UNICORNCTL_ENV", "development")
DEFAULT_BUNDLER_COMMAND = os.getenv("UNICORNCTL_BUNDLER_COMMAND", "bundle exec")
UNICORN_BIN = "unicorn"
UNICORN_RAILS_BIN = "unicorn_rails"

#* --- Application Layout (relative to the app directory) ---
PID_DIR = os.path.join("shared", "pids")
UNICORN_CONFIG_PATH = os.path.join("shared", "unicorn.rb")
RACKUP_CONFIG_PATH = os.path.join("current", "config.ru")
RELEASE_DIR = "current"
OLDBIN_SUFFIX = ".oldbin"

#* --- Timeouts (seconds) ---
DEFAULT_TIMEOUT = int(os.getenv("UNICORNCTL_TIMEOUT", "30"))
DEFAULT_CHECK_TIMEOUT = int(os.getenv("UNICORNCTL_CHECK_TIMEOUT", "5"))
DEFAULT_START_WAIT = int(os.getenv("UNICORNCTL_START_WAIT", "0"))
LAUNCH_SETTLE_DELAY = 2    # wait after the daemonizing command returns
POLL_INTERVAL = 1          # every wait loop polls at this rate
ROLLBACK_STOP_TIMEOUT = 1  # per-process stop timeout when abandoning an upgrade

#* --- Logging ---
LOKI_ENABLED = _env_flag("LOKI_ENABLED")
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "")
LOKI_BATCH_SIZE = 200
