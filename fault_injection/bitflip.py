#!/usr/bin/env python3
"""
Bit Flip Engine: corrupt one bit of a net for a controlled duration

Registers are upset until the design overwrites them (or for a fixed
duration). Signals are upset transiently: plain nets are frozen and released,
variables written by procedural blocks are deposited and restored by a
deferred manual un-flip, since releasing them would keep the faulty value.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .net_catalog import Net
from .run_context import RunContext
from .sim_control import (
    ForceMode,
    Radix,
    SignalKind,
    SimulationControl,
    TimeTrigger,
    is_undefined,
)
from .timeunits import format_ns

logger = logging.getLogger(__name__)


class EnumFallback(Enum):
    """What to do when an enum holds a value the simulator cannot render in binary."""
    SKIP = "skip"                    # report a failed flip, the scheduler retries
    ENCODING_ZERO = "encoding_zero"  # force the all-zero encoding


@dataclass(frozen=True)
class InjectionEvent:
    """One attempted bit flip. ``None`` in the impact fields means unknown."""
    timestamp: int
    net_path: str
    bit_index: int
    previous_value: str
    new_value: str
    success: bool
    is_register: bool = False
    target_path: str = ""
    previous_bits: str = ""
    new_bits: str = ""
    outputs_changed: Optional[bool] = None
    state_changed: Optional[bool] = None
    propagated: Optional[bool] = None

    def __str__(self):
        kind = "register" if self.is_register else "signal"
        return (f"{format_ns(self.timestamp)}: {kind} {self.target_path or self.net_path} "
                f"{self.previous_value} -> {self.new_value}")


class BitFlipEngine:
    """Applies single bit flips through the simulation control interface."""

    def __init__(self, sim: SimulationControl, signal_fault_duration: int = 1000,
                 register_fault_duration: int = 0,
                 enum_fallback: EnumFallback = EnumFallback.SKIP):
        """
        Initialize engine.

        Args:
            sim: Simulation control
            signal_fault_duration: How long a signal upset lasts (ps)
            register_fault_duration: How long a register upset is held (ps),
                0 leaves it in place until the design overwrites it
            enum_fallback: Policy for enums without a binary rendering
        """
        if signal_fault_duration < 0 or register_fault_duration < 0:
            raise ValueError("Fault durations must not be negative")
        self.sim = sim
        self.signal_fault_duration = signal_fault_duration
        self.register_fault_duration = register_fault_duration
        self.enum_fallback = enum_fallback

    def _failed(self, net: Net, is_register: bool, bit_index: int = 0,
                shown: str = "") -> InjectionEvent:
        return InjectionEvent(
            timestamp=self.sim.now,
            net_path=net.path,
            bit_index=bit_index,
            previous_value=shown,
            new_value=shown,
            success=False,
            is_register=is_register,
        )

    def flip(self, net: Net, is_register: bool, ctx: RunContext) -> InjectionEvent:
        """
        Flip one randomly chosen bit of a net.

        Args:
            net: Net to corrupt
            is_register: Inject as a persistent register upset
            ctx: Run context (random stream, pending un-flips)

        Returns:
            InjectionEvent, ``success`` False when the displayed value did not change

        Raises:
            SimulationError: If the simulator rejects a command
        """
        reading = self.sim.examine(net.path, Radix.BINARY)
        before = self.sim.examine(net.path, Radix.SYMBOLIC)

        if not reading:
            if net.kind != SignalKind.ENUM or self.enum_fallback == EnumFallback.SKIP:
                logger.warning(f"No binary value for {net.path} (showing {before}), flip skipped")
                return self._failed(net, is_register, shown=before)
            logger.warning(f"Enum {net.path} holds undeclared value {before}, forcing encoding 0")
            bit_index = 0
            target = net.path
            flip_bits = "0" * net.width
            unflip_bits = ""
        else:
            width = len(reading)
            bit_index = int(ctx.rng.random() * width)
            position = width - 1 - bit_index
            old_bit = reading[position]
            if old_bit not in "01" or (net.kind == SignalKind.ENUM and is_undefined(reading)):
                logger.debug(f"Bit {bit_index} of {net.path} is undefined ({reading})")
                return self._failed(net, is_register, bit_index, before)
            new_bit = "0" if old_bit == "1" else "1"

            if net.kind == SignalKind.ENUM:
                # Partial forces are unsafe on enums, always force the whole encoding
                target = net.path
                flip_bits = reading[:position] + new_bit + reading[position + 1:]
                unflip_bits = reading
            else:
                target = f"{net.path}[{bit_index + net.lower_index}]" if width > 1 else net.path
                flip_bits = new_bit
                unflip_bits = old_bit

        manual_unflip = False
        if is_register:
            if self.register_fault_duration > 0:
                self.sim.force(target, flip_bits, ForceMode.FREEZE,
                               release_after=self.register_fault_duration)
            else:
                self.sim.force(target, flip_bits, ForceMode.DEPOSIT)
        elif net.kind in (SignalKind.REGISTER, SignalKind.ENUM) and unflip_bits:
            self.sim.force(target, flip_bits, ForceMode.DEPOSIT)
            self._schedule_unflip(net.path, target, flip_bits, unflip_bits, ctx)
            manual_unflip = True
        else:
            self.sim.force(target, flip_bits, ForceMode.FREEZE,
                           release_after=self.signal_fault_duration)

        after = self.sim.examine(net.path, Radix.SYMBOLIC)
        success = after != before
        if not success:
            logger.debug(f"Force on {target} had no visible effect ({before})")
            if manual_unflip:
                self.sim.deschedule(ctx.pending_unflips.pop(target, None))

        return InjectionEvent(
            timestamp=self.sim.now,
            net_path=net.path,
            bit_index=bit_index,
            previous_value=before,
            new_value=after,
            success=success,
            is_register=is_register,
            target_path=target,
            previous_bits=reading,
            new_bits=self.sim.examine(net.path, Radix.BINARY),
        )

    def _schedule_unflip(self, net_path: str, target: str, flip_bits: str,
                         unflip_bits: str, ctx: RunContext) -> None:
        """Restore ``target`` after the signal fault duration, newest flip wins."""
        previous = ctx.pending_unflips.pop(target, None)
        if previous is not None:
            self.sim.deschedule(previous)

        def fire():
            if ctx.pending_unflips.get(target) == handle:
                del ctx.pending_unflips[target]
            self.unflip(net_path, target, flip_bits, unflip_bits)

        handle = self.sim.schedule(TimeTrigger(self.sim.now + self.signal_fault_duration), fire)
        ctx.pending_unflips[target] = handle

    def unflip(self, net_path: str, target: str, flip_bits: str, unflip_bits: str) -> bool:
        """
        Restore a deposited flip if nothing has overwritten it since.

        Returns:
            True if the original value was written back
        """
        current = self.sim.examine(target, Radix.BINARY)
        shown = self.sim.examine(net_path, Radix.SYMBOLIC)
        if current and current != flip_bits:
            logger.info(f"{format_ns(self.sim.now)}: Unflip on {target} aborted because it changed to {shown}.")
            return False

        self.sim.force(target, unflip_bits, ForceMode.DEPOSIT)
        restored = self.sim.examine(net_path, Radix.SYMBOLIC)
        logger.info(f"{format_ns(self.sim.now)}: Unflipped {target} from {shown} to {restored}.")
        return True
