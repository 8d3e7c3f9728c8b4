#!/usr/bin/env python3
"""
Regression tests for the bit flip engine.

Covers register upsets (deposit and timed freeze), transient signal upsets
(timed release and deferred manual un-flip) and the enum special cases.
"""

import sys
import pytest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fault_injection.bitflip import BitFlipEngine, EnumFallback
from fault_injection.net_catalog import Net
from fault_injection.run_context import RunContext
from fault_injection.sim_control import ForceMode, Radix, SignalKind

Q = Net("/top/q", SignalKind.REGISTER, width=8)
IN = Net("/top/in", SignalKind.REGISTER, width=8)
D = Net("/top/d", SignalKind.NET, width=8)
MODE = Net("/top/mode", SignalKind.ENUM, width=2)
FLAG = Net("/top/flag", SignalKind.REGISTER, width=1)


def differing_bits(a: str, b: str) -> int:
    return sum(1 for x, y in zip(a, b) if x != y)


@pytest.fixture
def engine(small_sim):
    return BitFlipEngine(small_sim, signal_fault_duration=1_000, register_fault_duration=0)


class TestRegisterUpsets:
    """Test flips injected as persistent register upsets."""

    def test_one_bit_changes(self, small_sim, engine, ctx):
        """Test that exactly one bit of a multi-bit register is inverted."""
        event = engine.flip(Q, True, ctx)

        assert event.success
        assert event.previous_bits == "00000000"
        assert differing_bits(event.previous_bits, event.new_bits) == 1
        assert event.target_path == f"/top/q[{event.bit_index}]"
        assert small_sim.examine(event.target_path) == "1"

    def test_single_bit_register_toggles(self, small_sim, engine, ctx):
        small_sim.add_signal("/top/flag")

        event = engine.flip(FLAG, True, ctx)

        assert event.success
        assert event.target_path == "/top/flag"
        assert (event.previous_value, event.new_value) == ("0", "1")

    def test_deposit_overwritten_by_design(self, small_sim, engine, ctx):
        """Test that a zero register duration leaves the upset to the design."""
        engine.flip(Q, True, ctx)

        small_sim.run(until=5_000)

        assert small_sim.examine("/top/q", Radix.DECIMAL) == "4"

    def test_timed_register_upset_holds(self, small_sim, ctx):
        engine = BitFlipEngine(small_sim, register_fault_duration=10_000)
        event = engine.flip(Q, True, ctx)

        small_sim.run(until=5_000)

        assert small_sim.examine(event.target_path) == "1"

    def test_lsb_offset(self, small_sim, engine, ctx):
        """Test that bit selects honor the declared lower index."""
        small_sim.add_signal("/top/bus", width=8, lsb=4)

        event = engine.flip(Net("/top/bus", SignalKind.REGISTER, width=8, lower_index=4), True, ctx)

        assert event.success
        assert event.target_path == f"/top/bus[{event.bit_index + 4}]"

    def test_frozen_bit_is_not_a_success(self, small_sim, engine, ctx):
        """Test that a flip without visible effect is reported as failed."""
        small_sim.force("/top/in", "00000011")

        event = engine.flip(IN, True, ctx)

        assert not event.success
        assert small_sim.examine("/top/in", Radix.BINARY) == "00000011"

    def test_undefined_bit_fails(self, small_sim, engine, ctx):
        small_sim.add_signal("/top/u", width=4, init=None)

        event = engine.flip(Net("/top/u", SignalKind.REGISTER, width=4), True, ctx)

        assert not event.success
        assert event.target_path == ""

    def test_negative_duration_rejected(self, small_sim):
        with pytest.raises(ValueError):
            BitFlipEngine(small_sim, signal_fault_duration=-1)


class TestSignalUpsets:
    """Test transient signal upsets."""

    def test_net_released_after_duration(self, small_sim, engine, ctx):
        """Test that a net is frozen for the fault duration and then re-resolved."""
        event = engine.flip(D, False, ctx)
        assert event.success
        assert differing_bits(event.new_bits, "00000100") == 1

        small_sim.run(until=999)
        assert small_sim.examine("/top/d", Radix.BINARY) == event.new_bits

        small_sim.run(until=1_000)
        assert small_sim.examine("/top/d", Radix.BINARY) == "00000100"

    def test_variable_restored_by_unflip(self, small_sim, engine, ctx):
        """Test that a variable injected as a signal is deposited and un-flipped later."""
        event = engine.flip(IN, False, ctx)
        assert event.success
        assert event.target_path in ctx.pending_unflips

        small_sim.run(until=1_000)

        assert small_sim.examine("/top/in", Radix.BINARY) == "00000011"
        assert ctx.pending_unflips == {}

    def test_unflip_restores(self, small_sim, engine, ctx):
        event = engine.flip(IN, False, ctx)
        flipped = small_sim.examine(event.target_path)
        original = "0" if flipped == "1" else "1"

        assert engine.unflip(IN.path, event.target_path, flipped, original)
        assert small_sim.examine("/top/in", Radix.BINARY) == "00000011"

    def test_unflip_aborted_when_overwritten(self, small_sim, engine, ctx):
        """Test that an un-flip never clobbers a value the design wrote since."""
        event = engine.flip(IN, False, ctx)
        flipped = small_sim.examine(event.target_path)
        original = "0" if flipped == "1" else "1"
        # Design writes a new word whose flipped bit happens to match the original
        mask = 1 << event.bit_index
        written = 0xF0 | mask if original == "1" else 0xF0 & ~mask
        small_sim.force("/top/in", f"{written:08b}", ForceMode.DEPOSIT)

        restored = engine.unflip(IN.path, event.target_path, flipped, original)

        assert not restored
        assert small_sim.examine("/top/in", Radix.BINARY) == f"{written:08b}"

    def test_newer_flip_supersedes_pending_unflip(self, small_sim, engine, ctx):
        """Test that only the latest un-flip of a target stays scheduled."""
        small_sim.add_signal("/top/flag")
        engine.flip(FLAG, False, ctx)
        first_handle = ctx.pending_unflips["/top/flag"]

        small_sim.run(until=500)
        event = engine.flip(FLAG, False, ctx)
        assert (event.previous_value, event.new_value) == ("1", "0")
        assert len(ctx.pending_unflips) == 1
        assert ctx.pending_unflips["/top/flag"] != first_handle

        small_sim.run(until=1_000)
        assert small_sim.examine("/top/flag") == "0"

        small_sim.run(until=1_500)
        assert small_sim.examine("/top/flag") == "1"

    def test_failed_flip_drops_pending_unflip(self, small_sim, engine, ctx):
        small_sim.force("/top/in", "00000011")

        event = engine.flip(IN, False, ctx)

        assert not event.success
        assert ctx.pending_unflips == {}


class TestEnumFlips:
    """Test enum special cases."""

    def test_enum_forced_as_a_whole(self, small_sim, engine, ctx):
        event = engine.flip(MODE, True, ctx)

        assert event.success
        assert event.target_path == "/top/mode"
        assert event.previous_value == "OFF"
        assert event.new_value in ("ON", "WAIT")

    def test_enum_signal_restored(self, small_sim, engine, ctx):
        engine.flip(MODE, False, ctx)

        small_sim.run(until=1_000)

        assert small_sim.examine("/top/mode") == "OFF"

    def test_undeclared_encoding_skipped(self, small_sim, engine, ctx):
        """Test that an enum without a binary rendering is skipped by default."""
        small_sim.force("/top/mode", "11", ForceMode.DEPOSIT)

        event = engine.flip(MODE, True, ctx)

        assert not event.success
        assert small_sim.examine("/top/mode") == "2'h3"

    def test_undeclared_encoding_fallback_to_zero(self, small_sim, ctx):
        engine = BitFlipEngine(small_sim, enum_fallback=EnumFallback.ENCODING_ZERO)
        small_sim.force("/top/mode", "11", ForceMode.DEPOSIT)

        event = engine.flip(MODE, True, ctx)

        assert event.success
        assert event.new_value == "OFF"


class TestRunContext:
    """Test per-run bookkeeping."""

    def test_only_counted_injections_move_fault_count(self, small_sim, engine):
        ctx = RunContext(3)
        counted = engine.flip(Q, True, ctx)
        ctx.record_injection(counted, counted=True)
        uncounted = engine.flip(D, False, ctx)
        ctx.record_injection(uncounted, counted=False)

        assert ctx.num_injected == 1
        assert ctx.last_flipped_net == "/top/q"
        assert len(ctx.injections) == 2

    def test_upset_tracker_forgets_overwritten_register(self, small_sim, engine, ctx):
        engine.flip(Q, True, ctx)
        ctx.upsets.record("/top/q", small_sim.examine("/top/q", Radix.BINARY))
        assert ctx.upsets.is_upset(small_sim, "/top/q")

        small_sim.force("/top/q", "11111111", ForceMode.DEPOSIT)

        assert not ctx.upsets.is_upset(small_sim, "/top/q")
        assert "/top/q" not in ctx.upsets
