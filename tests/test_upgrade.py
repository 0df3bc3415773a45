"""Tests for the zero-downtime upgrade state machine."""

import logging

import pytest

from unicornctl.control import LaunchError, UpgradeOutcome, UpgradePhase
from tests.conftest import FakeHealthChecker

OLD_PID = 100
NEW_PID = 200


def _running_master(ctl, table, forks=True):
    """Puts a live master in the pid file; on USR2 it forks NEW_PID like unicorn does."""
    table.alive.add(OLD_PID)
    ctl.pid_file.path.write_text(f"{OLD_PID}\n")
    oldbin = ctl.pid_file.oldbin()

    def fork_new_master():
        oldbin.path.write_text(f"{OLD_PID}\n")
        ctl.pid_file.path.write_text(f"{NEW_PID}\n")
        table.alive.add(NEW_PID)

    if forks:
        table.hooks[("USR2", OLD_PID)] = fork_new_master
    table.hooks[("QUIT", OLD_PID)] = oldbin.remove


class TestInPlaceUpgrade:
    def test_without_health_check(self, make_controller, table):
        ctl, launcher = make_controller()
        _running_master(ctl, table)

        assert ctl.upgrade() is UpgradeOutcome.UPGRADED
        assert table.signals() == [("USR2", OLD_PID), ("QUIT", OLD_PID)]
        assert launcher.launches == 0
        assert ctl.phase is UpgradePhase.DONE
        assert ctl.pid_file.read() == NEW_PID
        assert not ctl.pid_file.oldbin().exists()

    def test_health_checked_before_and_after_retiring(self, make_controller, table):
        checker = FakeHealthChecker(True)
        ctl, _ = make_controller(health_checker=checker)
        _running_master(ctl, table)

        outcome = ctl.upgrade()
        assert outcome is UpgradeOutcome.UPGRADED
        assert outcome.succeeded
        assert checker.calls == 2

    def test_start_wait_sleeps_after_detection(self, make_controller, table, clock):
        ctl, _ = make_controller(start_wait=5)
        _running_master(ctl, table)

        assert ctl.upgrade() is UpgradeOutcome.UPGRADED
        assert 5 in clock.sleeps

    def test_final_health_failure_is_reported_without_rollback(self, make_controller, table, caplog):
        ctl, launcher = make_controller(health_checker=FakeHealthChecker(True, False))
        _running_master(ctl, table)

        with caplog.at_level(logging.ERROR):
            outcome = ctl.upgrade()
        assert outcome is UpgradeOutcome.UPGRADED_UNHEALTHY
        assert not outcome.succeeded
        assert NEW_PID in table.alive
        assert OLD_PID not in table.alive
        assert launcher.launches == 0
        assert "not healthy" in caplog.text


class TestColdPath:
    def test_no_pid_file_starts_fresh(self, make_controller, table):
        ctl, launcher = make_controller()

        assert ctl.upgrade() is UpgradeOutcome.COLD_STARTED
        assert launcher.launches == 1
        assert table.signals() == []

    def test_stale_pid_file_delegates_to_start(self, make_controller, table):
        ctl, launcher = make_controller()
        ctl.pid_file.path.write_text(f"{OLD_PID}\n")

        assert ctl.upgrade() is UpgradeOutcome.COLD_STARTED
        assert launcher.launches == 1
        assert table.signals() == []
        assert ctl.pid_file.read() == 4242

    def test_cold_start_outcome_mirrors_start(self, make_controller, table):
        ctl, _ = make_controller(health_checker=FakeHealthChecker(False))
        ctl.pid_file.path.write_text(f"{OLD_PID}\n")

        outcome = ctl.upgrade()
        assert outcome is UpgradeOutcome.COLD_START_FAILED
        assert not outcome.succeeded


class TestPreflight:
    def test_live_leftover_old_master_is_force_stopped(self, make_controller, table):
        ctl, _ = make_controller()
        _running_master(ctl, table)
        table.alive.add(50)
        ctl.pid_file.oldbin().path.write_text("50\n")

        assert ctl.upgrade() is UpgradeOutcome.UPGRADED
        assert table.signals()[0] == ("TERM", 50)
        assert table.signals()[1] == ("USR2", OLD_PID)

    def test_dead_leftover_old_pid_file_is_removed(self, make_controller, table, caplog):
        ctl, _ = make_controller()
        ctl.pid_file.oldbin().path.write_text("50\n")

        with caplog.at_level(logging.WARNING):
            ctl.upgrade()
        assert "Old pid file exists" in caplog.text
        assert ("TERM", 50) not in table.signals()


class TestRollback:
    def test_new_master_never_appears(self, make_controller, table, clock):
        ctl, launcher = make_controller(timeout=3)
        _running_master(ctl, table, forks=False)

        outcome = ctl.upgrade()
        assert outcome is UpgradeOutcome.ROLLED_BACK
        assert ctl.phase is UpgradePhase.ROLLED_BACK
        # The old master is force-stopped before the fresh start is issued
        assert table.events == [
            ("signal", "USR2", OLD_PID),
            ("signal", "TERM", OLD_PID),
            ("launch",),
        ]
        assert launcher.launches == 1

    def test_missing_pid_file_is_not_a_new_master(self, make_controller, table):
        ctl, launcher = make_controller(timeout=2)
        _running_master(ctl, table, forks=False)
        # The old master renamed its pid file but the new one never wrote its own
        table.hooks[("USR2", OLD_PID)] = lambda: ctl.pid_file.path.rename(ctl.pid_file.oldbin().path)

        assert ctl.upgrade() is UpgradeOutcome.ROLLED_BACK
        assert ("TERM", OLD_PID) in table.signals()

    def test_unhealthy_new_master_kills_both(self, make_controller, table):
        checker = FakeHealthChecker(False, True)
        ctl, launcher = make_controller(health_checker=checker)
        _running_master(ctl, table)

        assert ctl.upgrade() is UpgradeOutcome.ROLLED_BACK
        assert table.events == [
            ("signal", "USR2", OLD_PID),
            ("signal", "TERM", NEW_PID),
            ("signal", "TERM", OLD_PID),
            ("launch",),
        ]
        assert ctl.pid_file.read() == 4242

    def test_phase_is_rolled_back_when_restart_raises(self, make_controller, table):
        ctl, launcher = make_controller(timeout=2)
        _running_master(ctl, table, forks=False)
        launcher.succeed = False

        with pytest.raises(LaunchError):
            ctl.upgrade()
        assert ctl.phase is UpgradePhase.ROLLED_BACK
        assert launcher.launches == 1

    def test_rollback_start_can_fail_too(self, make_controller, table):
        ctl, _ = make_controller(health_checker=FakeHealthChecker(False))
        _running_master(ctl, table)

        outcome = ctl.upgrade()
        assert outcome is UpgradeOutcome.ROLLBACK_FAILED
        assert not outcome.succeeded

    def test_stubborn_masters_are_killed_quickly(self, make_controller, table, clock):
        ctl, _ = make_controller(health_checker=FakeHealthChecker(False, True))
        _running_master(ctl, table)
        table.stubborn.update({OLD_PID, NEW_PID})

        ctl.upgrade()
        assert ("KILL", NEW_PID) in table.signals()
        assert ("KILL", OLD_PID) in table.signals()


class TestProctitleWatch:
    def test_waits_for_title_change(self, make_controller, table, caplog):
        ctl, _ = make_controller(watch_proctitle=True)
        _running_master(ctl, table)
        table.titles[NEW_PID] = ["unicorn master (old)", "unicorn master (old)", "unicorn master"]

        with caplog.at_level(logging.INFO):
            assert ctl.upgrade() is UpgradeOutcome.UPGRADED
        assert "title changed to: unicorn master" in caplog.text

    def test_unchanged_title_only_delays(self, make_controller, table, clock, caplog):
        ctl, _ = make_controller(watch_proctitle=True, timeout=3)
        _running_master(ctl, table)
        table.titles[NEW_PID] = ["unicorn master (old)"]

        with caplog.at_level(logging.WARNING):
            assert ctl.upgrade() is UpgradeOutcome.UPGRADED
        assert "did not change in 3 seconds" in caplog.text

    def test_unreadable_title_skips_watch(self, make_controller, table, caplog):
        ctl, _ = make_controller(watch_proctitle=True)
        _running_master(ctl, table)

        with caplog.at_level(logging.WARNING):
            assert ctl.upgrade() is UpgradeOutcome.UPGRADED
        assert "not watching them" in caplog.text
