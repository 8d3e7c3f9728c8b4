#!/usr/bin/env python3
"""
Regression tests for the termination monitor.
"""

import logging
import sys
import pytest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fault_injection.event_simulator import EventSimulator
from fault_injection.sim_control import SignalKind
from fault_injection.termination import TerminationCause, TerminationCondition, TerminationMonitor

OK = "/tb/terminated_no_error"
BAD = "/tb/terminated_error"
EXC = "/tb/terminated_exception"

CONDITIONS = [
    TerminationCondition(TerminationCause.EXCEPTION, "Exception", signal_path=EXC),
    TerminationCondition(TerminationCause.INCORRECT, "Incorrect", signal_path=BAD),
    TerminationCondition(TerminationCause.CORRECT, "Correct", signal_path=OK),
]


@pytest.fixture
def tb():
    sim = EventSimulator()
    for path in (OK, BAD, EXC):
        sim.add_signal(path, kind=SignalKind.NET)
    return sim


def write_at(sim, time, values):
    def apply(s):
        for path, value in values.items():
            s.write(path, value)
    sim.at(time, apply)


def monitor_for(sim, conditions=CONDITIONS, x_priority=None, post=None):
    reported = []
    monitor = TerminationMonitor(sim, conditions, reported.append, post, x_priority=x_priority)
    monitor.start()
    return monitor, reported


class TestPriorities:
    """Test selection of the reported cause."""

    def test_single_cause(self, tb):
        write_at(tb, 10_000, {OK: 1})
        monitor, reported = monitor_for(tb)

        tb.run()

        assert reported == [TerminationCause.CORRECT]
        assert monitor.reports == [(10_000, 0)]

    def test_highest_priority_wins(self, tb, caplog):
        """Test that simultaneous Correct, Incorrect and Exception report Exception once."""
        write_at(tb, 10_000, {OK: 1, BAD: 1, EXC: 1})
        monitor, reported = monitor_for(tb)

        with caplog.at_level(logging.WARNING, logger="fault_injection.termination"):
            tb.run()

        assert reported == [TerminationCause.EXCEPTION]
        assert monitor.reports == [(10_000, 3)]
        assert "Multiple Termination causes active" in caplog.text

    def test_later_causes_reported_separately(self, tb):
        write_at(tb, 10_000, {BAD: 1})
        write_at(tb, 20_000, {EXC: 1})
        _, reported = monitor_for(tb)

        tb.run()

        assert reported == [TerminationCause.INCORRECT, TerminationCause.EXCEPTION]

    def test_post_report_callback_stops_run(self, tb):
        write_at(tb, 10_000, {BAD: 1})
        write_at(tb, 20_000, {EXC: 1})
        monitor, reported = monitor_for(tb, post=tb.stop)

        tb.run()

        assert reported == [TerminationCause.INCORRECT]
        assert tb.now == 10_000

    def test_timeout(self, tb):
        conditions = CONDITIONS + [
            TerminationCondition(TerminationCause.TIMEOUT, "Timeout", timeout=50_000)]
        _, reported = monitor_for(tb, conditions)

        tb.run()

        assert reported == [TerminationCause.TIMEOUT]
        assert tb.now == 50_000


class TestUndefinedSignals:
    """Test handling of x on termination signals."""

    def test_x_reported_as_exception(self, tb):
        write_at(tb, 10_000, {OK: None})
        monitor, reported = monitor_for(tb, x_priority=TerminationCause.EXCEPTION)

        tb.run()

        assert reported == [TerminationCause.EXCEPTION]
        assert monitor.reports == [(10_000, 3)]

    def test_x_ignored(self, tb):
        write_at(tb, 10_000, {OK: None})
        _, reported = monitor_for(tb)

        tb.run()

        assert reported == []

    def test_x_outranks_incorrect(self, tb):
        write_at(tb, 10_000, {OK: None, BAD: 1})
        _, reported = monitor_for(tb, x_priority=TerminationCause.EXCEPTION)

        tb.run()

        assert reported == [TerminationCause.EXCEPTION]


class TestMonitorLifecycle:
    """Test arming and re-arming."""

    def test_stop(self, tb):
        write_at(tb, 10_000, {OK: 1})
        monitor, reported = monitor_for(tb)
        monitor.stop()

        tb.run()

        assert reported == []

    def test_reset_after_restore(self, tb):
        """Test that a monitor can be re-armed after restoring a checkpoint."""
        write_at(tb, 10_000, {OK: 1})
        tb.checkpoint("start")
        monitor, reported = monitor_for(tb)
        tb.run()

        tb.restore("start")
        monitor.reset()
        tb.run()

        assert reported == [TerminationCause.CORRECT, TerminationCause.CORRECT]

    def test_add_condition_after_reset(self, tb):
        monitor, reported = monitor_for(tb)
        monitor.add_condition(
            TerminationCondition(TerminationCause.TIMEOUT, "Timeout", timeout=30_000))
        monitor.reset()

        tb.run()

        assert reported == [TerminationCause.TIMEOUT]
        assert len(CONDITIONS) == 3

    def test_condition_needs_signal_or_timeout(self):
        with pytest.raises(ValueError):
            TerminationCondition(0, "Correct")
        with pytest.raises(ValueError):
            TerminationCondition(0, "Correct", signal_path=OK, timeout=10)

    def test_labels(self, tb):
        monitor = TerminationMonitor(tb, CONDITIONS, lambda cause: None)

        assert monitor.label_for(2) == "Incorrect"
        assert monitor.label_for(4) == "Timeout"
        assert monitor.label_for(9) == "9"
        assert TerminationCause.LATENT.label == "Latent"
