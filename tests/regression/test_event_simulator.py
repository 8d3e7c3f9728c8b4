#!/usr/bin/env python3
"""
Regression tests for the in-process event simulator.

The fault injection engine relies on the force/release asymmetry between nets
and variables, on deposits being overwritable, and on checkpoints dropping
every watcher. These tests pin that behavior down.
"""

import sys
import pytest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fault_injection.event_simulator import EventSimulator
from fault_injection.exceptions import SimulationError
from fault_injection.sim_control import ForceMode, Radix, SignalKind, SignalTrigger, TimeTrigger


class TestForceRelease:
    """Test force, deposit and release semantics."""

    def test_released_net_resolves_driver(self, small_sim):
        """Test that a net returns to its driven value on release."""
        small_sim.force("/top/d", "00000000")
        assert small_sim.examine("/top/d", Radix.BINARY) == "00000000"

        small_sim.release("/top/d")

        assert small_sim.examine("/top/d", Radix.BINARY) == "00000100"

    def test_released_variable_keeps_value(self, small_sim):
        """Test that a variable keeps the forced value until assigned again."""
        small_sim.force("/top/in", "00001010")
        small_sim.release("/top/in")

        assert small_sim.examine("/top/in", Radix.DECIMAL) == "10"
        assert small_sim.examine("/top/d", Radix.DECIMAL) == "11"

    def test_deposit_overwritten_by_design(self, small_sim):
        """Test that the next clock edge overwrites a deposited register."""
        small_sim.force("/top/q", "11111111", ForceMode.DEPOSIT)
        assert small_sim.examine("/top/q", Radix.DECIMAL) == "255"

        small_sim.run(until=5_000)

        assert small_sim.examine("/top/q", Radix.DECIMAL) == "4"

    def test_freeze_holds_through_clock_edges(self, small_sim):
        """Test that a frozen register ignores the design until released."""
        small_sim.force("/top/q", "11111111")
        small_sim.run(until=25_000)
        assert small_sim.examine("/top/q", Radix.DECIMAL) == "255"

        small_sim.release("/top/q")
        assert small_sim.examine("/top/q", Radix.DECIMAL) == "255"

        small_sim.run(until=35_000)
        assert small_sim.examine("/top/q", Radix.DECIMAL) == "4"

    def test_release_after(self, small_sim):
        """Test that a timed force releases itself."""
        small_sim.force("/top/d[2]", "0", release_after=2_000)
        assert small_sim.examine("/top/d", Radix.BINARY) == "00000000"

        small_sim.run(until=1_999)
        assert small_sim.examine("/top/d", Radix.BINARY) == "00000000"

        small_sim.run(until=2_000)
        assert small_sim.examine("/top/d", Radix.BINARY) == "00000100"

    def test_bit_select_only_touches_one_bit(self, small_sim):
        """Test forcing one bit of a wider variable."""
        small_sim.force("/top/in[7]", "1", ForceMode.DEPOSIT)

        assert small_sim.examine("/top/in", Radix.BINARY) == "10000011"
        assert small_sim.examine("/top/in[7]") == "1"
        assert small_sim.examine("/top/in[6]") == "0"

    def test_invalid_force_value(self, small_sim):
        """Test that malformed values are rejected."""
        with pytest.raises(SimulationError):
            small_sim.force("/top/in", "2")
        with pytest.raises(SimulationError):
            small_sim.force("/top/in[0]", "10")

    def test_unknown_paths(self, small_sim):
        """Test error handling for unknown paths and bit selects."""
        with pytest.raises(SimulationError) as exc_info:
            small_sim.examine("/top/missing")
        assert "no such signal" in str(exc_info.value)

        with pytest.raises(SimulationError):
            small_sim.examine("/top/d[8]")
        with pytest.raises(SimulationError):
            small_sim.describe("/top/missing")


class TestExamine:
    """Test value rendering."""

    def test_radixes(self, small_sim):
        assert small_sim.examine("/top/d", Radix.BINARY) == "00000100"
        assert small_sim.examine("/top/d", Radix.DECIMAL) == "4"
        assert small_sim.examine("/top/d") == "8'h04"
        assert small_sim.examine("/top/clk") == "0"

    def test_undefined_value(self):
        sim = EventSimulator()
        sim.add_signal("/top/u", width=4, init=None)

        assert sim.examine("/top/u", Radix.BINARY) == "xxxx"
        assert sim.examine("/top/u", Radix.DECIMAL) == "x"
        assert sim.examine("/top/u") == "4'bxxxx"

    def test_enum_literals(self, small_sim):
        """Test symbolic and numeric enum rendering."""
        assert small_sim.examine("/top/mode") == "OFF"
        small_sim.force("/top/mode", "10", ForceMode.DEPOSIT)
        assert small_sim.examine("/top/mode") == "WAIT"
        assert small_sim.examine("/top/mode", Radix.BINARY) == "10"

    def test_enum_undeclared_encoding_has_no_binary(self, small_sim):
        """Test that an out-of-range enum reads as an empty binary string."""
        small_sim.force("/top/mode", "11", ForceMode.DEPOSIT)

        assert small_sim.examine("/top/mode", Radix.BINARY) == ""
        assert small_sim.examine("/top/mode") == "2'h3"

    def test_enum_lenient_radix(self):
        sim = EventSimulator(strict_enum_radix=False)
        sim.add_enum("/top/mode", ("OFF", "ON", "WAIT"), init=3)

        assert sim.examine("/top/mode", Radix.BINARY) == "11"

    def test_descriptor(self):
        sim = EventSimulator()
        sim.add_signal("/top/bus", width=8, lsb=4)

        descriptor = sim.describe("/top/bus")

        assert descriptor.kind == SignalKind.REGISTER
        assert descriptor.width == 8
        assert descriptor.lower_index == 4
        assert sim.examine("/top/bus[11]") == "0"


class TestScheduling:
    """Test watchers, timers and stopping."""

    def test_signal_watcher_is_edge_triggered(self, small_sim):
        """Test that a watcher fires once per rising edge, not once per time step."""
        fires = []
        small_sim.schedule(SignalTrigger("/top/clk", "1"), lambda: fires.append(small_sim.now))

        small_sim.run(until=35_000)

        assert fires == [5_000, 15_000, 25_000, 35_000]

    def test_signal_watcher_not_before(self, small_sim):
        fires = []
        small_sim.schedule(SignalTrigger("/top/clk", "1", not_before=20_000),
                           lambda: fires.append(small_sim.now))

        small_sim.run(until=35_000)

        assert fires == [25_000, 35_000]

    def test_negated_watcher(self, small_sim):
        """Test a watcher on a value becoming anything other than 0."""
        fires = []
        small_sim.schedule(SignalTrigger("/top/q", "0", negate=True),
                           lambda: fires.append(small_sim.now))

        small_sim.run(until=25_000)

        assert fires == [5_000]

    def test_time_trigger_and_deschedule(self, small_sim):
        fires = []
        small_sim.schedule(TimeTrigger(12_000), lambda: fires.append(("kept", small_sim.now)))
        handle = small_sim.schedule(TimeTrigger(13_000), lambda: fires.append(("dropped", small_sim.now)))
        small_sim.deschedule(handle)

        small_sim.run(until=20_000)

        assert fires == [("kept", 12_000)]

    def test_stop(self, small_sim):
        """Test that stop ends the run after the current time step."""
        small_sim.schedule(TimeTrigger(12_000), small_sim.stop)

        small_sim.run()

        assert small_sim.now == 12_000

    def test_assertions(self, small_sim):
        small_sim.add_assertion("/top/q_small", lambda s: s.read("/top/q") < 4)

        small_sim.run(until=5_000)

        assert small_sim.assertion_failures == [(5_000, "/top/q_small")]

    def test_disabled_assertion(self, small_sim):
        small_sim.add_assertion("/top/q_small", lambda s: s.read("/top/q") < 4)
        small_sim.set_assertion_enabled("/top/q_small", False)

        small_sim.run(until=5_000)

        assert small_sim.assertion_failures == []
        with pytest.raises(SimulationError):
            small_sim.set_assertion_enabled("/top/missing", False)


class TestCheckpoint:
    """Test checkpoint and restore."""

    def test_restore_replays_design(self, small_sim):
        """Test that a restored simulation behaves like a fresh one."""
        small_sim.checkpoint("start")
        small_sim.run(until=25_000)
        assert small_sim.examine("/top/q", Radix.DECIMAL) == "4"

        small_sim.restore("start")
        assert small_sim.now == 0
        assert small_sim.examine("/top/q", Radix.DECIMAL) == "0"

        small_sim.run(until=5_000)
        assert small_sim.examine("/top/q", Radix.DECIMAL) == "4"

    def test_restore_drops_watchers_forces_and_timers(self, small_sim):
        small_sim.checkpoint("start")
        fires = []
        small_sim.schedule(SignalTrigger("/top/clk", "1"), lambda: fires.append("watcher"))
        small_sim.schedule(TimeTrigger(1_000), lambda: fires.append("timer"))
        small_sim.force("/top/q", "11111111")

        small_sim.restore("start")
        small_sim.run(until=15_000)

        assert fires == []
        assert small_sim.examine("/top/q", Radix.DECIMAL) == "4"

    def test_restore_unknown_checkpoint(self, small_sim):
        with pytest.raises(SimulationError):
            small_sim.restore("missing")

    def test_set_seed(self):
        sim = EventSimulator(seed=1)
        sim.set_seed(42)
        first = sim.rng.random()
        sim.set_seed(42)

        assert sim.rng.random() == first
        assert sim.seed == 42
