from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from unicornctl.config import ControllerConfig
from unicornctl.control import controller, health, poller, process_utils
from unicornctl.control.pidfile import PidFile
from unicornctl.control.process_utils import SignalResult


class FakeClock:
    """Stands in for the time module: sleeping just advances the clock."""

    def __init__(self):
        self.now = 1000.0
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProcessTable:
    """
    A scripted process table. Processes in `alive` exist; QUIT/TERM/KILL
    kill them unless they are listed in `stubborn` (which only KILL affects).
    `hooks` run after a signal is delivered to a given pid.
    """

    def __init__(self):
        self.alive: Set[int] = set()
        self.stubborn: Set[int] = set()
        self.titles: Dict[int, List[str]] = {}
        self.hooks: Dict[Tuple[str, int], Callable[[], None]] = {}
        self.events: List[tuple] = []
        self.probed: List[int] = []

    def is_alive(self, pid: int) -> bool:
        self.probed.append(pid)
        return pid in self.alive

    def get_title(self, pid: int) -> Optional[str]:
        titles = self.titles.get(pid)
        if not titles or pid not in self.alive:
            return None
        # Each read consumes a title until the last one, which sticks
        return titles.pop(0) if len(titles) > 1 else titles[0]

    def send_signal(self, name: str, pid: int) -> SignalResult:
        self.events.append(("signal", name, pid))
        if pid not in self.alive:
            return SignalResult.TARGET_GONE
        if name == "KILL" or (name in ("QUIT", "TERM") and pid not in self.stubborn):
            self.alive.discard(pid)
        hook = self.hooks.get((name, pid))
        if hook:
            hook()
        return SignalResult.DELIVERED

    def signals(self) -> List[tuple]:
        return [event[1:] for event in self.events if event[0] == "signal"]


class FakeLauncher:
    """Pretends to start the server: writes the pid file and marks the pid alive."""

    def __init__(self, table: FakeProcessTable, pid_file: PidFile, pid: int = 4242):
        self.table = table
        self.pid_file = pid_file
        self.pid = pid
        self.succeed = True
        self.write_pid = True
        self.launches = 0

    def build_command(self) -> str:
        return "fake-unicorn --daemonize"

    def launch(self, wait_timeout=None) -> bool:
        self.launches += 1
        self.table.events.append(("launch",))
        if not self.succeed:
            return False
        if self.write_pid:
            self.pid_file.path.parent.mkdir(parents=True, exist_ok=True)
            self.pid_file.path.write_text(f"{self.pid}\n")
            self.table.alive.add(self.pid)
        return True


class FakeHealthChecker:
    """Returns scripted results, repeating the last one."""

    def __init__(self, *results: bool):
        self.results = list(results) or [True]
        self.calls = 0

    def check(self) -> bool:
        self.calls += 1
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    for module in (poller, controller, health):
        monkeypatch.setattr(module, "time", fake)
    return fake


@pytest.fixture
def table(monkeypatch):
    fake = FakeProcessTable()
    monkeypatch.setattr(process_utils, "is_alive", fake.is_alive)
    monkeypatch.setattr(process_utils, "get_title", fake.get_title)
    monkeypatch.setattr(process_utils, "send_signal", fake.send_signal)
    return fake


@pytest.fixture
def app_dir(tmp_path):
    """An application directory laid out the way the server expects it."""
    app = tmp_path / "app"
    (app / "shared" / "pids").mkdir(parents=True)
    (app / "current").mkdir()
    (app / "shared" / "unicorn.rb").write_text("worker_processes 2\n")
    (app / "current" / "config.ru").write_text("run App\n")
    return app


@pytest.fixture
def make_config(app_dir):
    def _make(**options) -> ControllerConfig:
        return ControllerConfig.from_options(str(app_dir), **options)
    return _make


@pytest.fixture
def make_controller(make_config, table, clock):
    """Builds a controller wired to the fake process table, launcher and clock."""
    def _make(health_checker=None, **options):
        config = make_config(**options)
        pid_file = PidFile(config.pid_file_path)
        launcher = FakeLauncher(table, pid_file)
        ctl = controller.LifecycleController(config, launcher=launcher, health_checker=health_checker)
        return ctl, launcher
    return _make
