"""
Simulation Control Interface

Abstract set of operations the fault injection engine needs from a host
simulator: describe/examine/force signals, register watchers on simulated
time or signal values, checkpoint and restore the simulation, and seed it.

Backends:
- event_simulator.EventSimulator: in-process event-driven RTL model
- questa.QuestaSimulationControl: Questa/ModelSim driven through Tcl
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple, Union


class SignalKind(Enum):
    """Structural kind of a simulation object, decided once by the backend."""
    REGISTER = "Register"
    NET = "Net"
    ENUM = "Enum"
    INTEGER = "Integer"
    ARRAY = "Array"
    RECORD = "Record"
    UNKNOWN = "Unknown"

    @property
    def is_leaf(self) -> bool:
        """Leaf kinds can be injected directly."""
        return self in (SignalKind.REGISTER, SignalKind.NET, SignalKind.ENUM, SignalKind.INTEGER)


class Radix(Enum):
    """Value representation requested from ``examine``."""
    BINARY = "binary"      # numeric encoding, MSB first, enums included
    SYMBOLIC = "symbolic"  # display form, enum literal names
    DECIMAL = "decimal"


class ForceMode(Enum):
    """How a forced value interacts with the design's own drivers."""
    FREEZE = "freeze"    # held until released
    DEPOSIT = "deposit"  # written once, the design may overwrite it


@dataclass(frozen=True)
class SignalDescriptor:
    """Structural metadata of one simulation object."""
    path: str
    kind: SignalKind
    msb: int = 0
    lsb: int = 0
    array_length: int = 0
    field_names: Tuple[str, ...] = ()
    enum_literals: Tuple[str, ...] = ()
    raw_kind: str = ""

    @property
    def width(self) -> int:
        return abs(self.msb - self.lsb) + 1

    @property
    def lower_index(self) -> int:
        return min(self.msb, self.lsb)


@dataclass(frozen=True)
class TimeTrigger:
    """Fires once at an absolute simulation time (ps)."""
    time: int


@dataclass(frozen=True)
class SignalTrigger:
    """
    Fires every time ``signal == value`` (or ``!=`` if negated) becomes true
    at or after ``not_before``.
    """
    path: str
    value: str = "1"
    negate: bool = False
    not_before: int = 0


Trigger = Union[TimeTrigger, SignalTrigger]
Callback = Callable[[], None]


def is_undefined(value: str) -> bool:
    """Check if a binary reading contains unknown or high-impedance bits."""
    return any(ch in "xXzZ" for ch in value)


def binary_matches(reading: str, expected: str) -> bool:
    """
    Compare a binary reading to an expected value.

    Readings with x/z bits never equal a defined value.
    """
    if is_undefined(reading) or not reading:
        return False
    try:
        return int(reading, 2) == int(expected, 2)
    except ValueError:
        return reading == expected


class SimulationControl(ABC):
    """Operations the fault injection engine consumes from a simulator."""

    @property
    @abstractmethod
    def now(self) -> int:
        """Current simulation time in picoseconds."""

    @abstractmethod
    def describe(self, path: str) -> SignalDescriptor:
        """Return structural metadata for a signal, array or record."""

    @abstractmethod
    def examine(self, path: str, radix: Radix = Radix.SYMBOLIC) -> str:
        """Read the current value of a signal or bit select (``sig[3]``)."""

    @abstractmethod
    def force(self, path: str, value_bits: str, mode: ForceMode = ForceMode.FREEZE,
              release_after: Optional[int] = None) -> None:
        """
        Override a signal or bit select with a binary value.

        Args:
            path: Signal path, optionally with a bit select
            value_bits: MSB-first binary string
            mode: FREEZE holds the value, DEPOSIT writes it once
            release_after: Release a frozen value after this many ps
        """

    @abstractmethod
    def release(self, path: str) -> None:
        """Remove a force from a signal or bit select."""

    @abstractmethod
    def schedule(self, trigger: Trigger, callback: Callback) -> object:
        """Register a watcher. Returns a handle for ``deschedule``."""

    @abstractmethod
    def deschedule(self, handle: object) -> None:
        """Cancel a watcher. Unknown or already-fired handles are ignored."""

    @abstractmethod
    def checkpoint(self, name: str) -> None:
        """Save the simulation state under a name."""

    @abstractmethod
    def restore(self, name: str) -> None:
        """Restore a checkpoint. Drops all watchers, forces and timers."""

    @abstractmethod
    def set_seed(self, seed: int) -> None:
        """Seed the simulator's own random number generator."""

    @abstractmethod
    def run(self, until: Optional[int] = None) -> None:
        """Run until stopped, out of events, or ``until`` is reached."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the simulation after the current time step."""

    def set_assertion_enabled(self, name: str, enabled: bool) -> None:
        """Enable or disable a named assertion. Optional for backends."""
