"""
Event Simulator: in-process discrete-event RTL model

A small four-state (0/1/x) simulator that implements SimulationControl so the
fault injection engine can run without a commercial simulator. Designs are
described with variables (Register/Enum/Integer kinds), nets, continuous
assignments with sensitivity lists, clocked processes with non-blocking
semantics and timed testbench events.

Force/release semantics follow the commercial simulators the engine targets:
- a released Net re-resolves its driver immediately
- a released variable keeps its value until it is assigned again
- a deposit writes once and the design may overwrite it at any time
"""

import heapq
import itertools
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .exceptions import SimulationError
from .sim_control import (
    Callback,
    ForceMode,
    Radix,
    SignalDescriptor,
    SignalKind,
    SignalTrigger,
    SimulationControl,
    TimeTrigger,
    Trigger,
    binary_matches,
)

logger = logging.getLogger(__name__)

BIT_SELECT_REGEX = re.compile(r"^(.*)\[(\d+)\]$")

# Upper bound on assignment evaluations while settling one time step
MAX_SETTLE_EVALUATIONS = 100_000
# Upper bound on watcher passes within one time step
MAX_WATCHER_PASSES = 1_000


@dataclass
class _Signal:
    descriptor: SignalDescriptor
    value: int = 0
    xmask: int = 0
    force_mask: int = 0
    force_value: int = 0
    driver: Optional["_Assign"] = None

    @property
    def width(self) -> int:
        return self.descriptor.width

    @property
    def full_mask(self) -> int:
        return (1 << self.width) - 1


@dataclass
class _Assign:
    target: str
    function: Callable[["EventSimulator"], Optional[int]]
    inputs: Tuple[str, ...]


@dataclass
class _ClockedProcess:
    clock: str
    edge: int
    function: Callable[["EventSimulator"], Dict[str, Optional[int]]]


@dataclass(order=True)
class _Event:
    time: int
    seq: int
    action: Callable[[], None] = field(compare=False)
    design: bool = field(default=False, compare=False)
    handle: Optional[int] = field(default=None, compare=False)


@dataclass
class _Watcher:
    trigger: SignalTrigger
    callback: Callback
    active: bool = False


@dataclass
class _Checkpoint:
    time: int
    state: Dict[str, Tuple[int, int]]
    design_events: List[_Event]


class EventSimulator(SimulationControl):
    """Event-driven RTL model implementing the simulation control interface."""

    def __init__(self, seed: int = 0, strict_enum_radix: bool = True):
        """
        Initialize an empty design.

        Args:
            seed: Seed of the design's own random number generator
            strict_enum_radix: Render enums holding an undeclared encoding as
                an empty binary string, like commercial simulators do
        """
        self._signals: Dict[str, _Signal] = {}
        self._containers: Dict[str, SignalDescriptor] = {}
        self._assigns: List[_Assign] = []
        self._sensitivity: Dict[str, List[_Assign]] = {}
        self._clocked: Dict[str, List[_ClockedProcess]] = {}
        self._assertions: Dict[str, Tuple[Callable[["EventSimulator"], bool], bool]] = {}
        self._queue: List[_Event] = []
        self._seq = itertools.count()
        self._handles = itertools.count(1)
        self._watchers: Dict[int, _Watcher] = {}
        self._cancelled: set = set()
        self._checkpoints: Dict[str, _Checkpoint] = {}
        self._changed: List[str] = []
        self._now = 0
        self._initialized = False
        self._stop_requested = False
        self.strict_enum_radix = strict_enum_radix
        self.seed = seed
        self.rng = random.Random(seed)
        self.assertion_failures: List[Tuple[int, str]] = []

    # ------------------------------------------------------------------
    # Design construction
    # ------------------------------------------------------------------

    def add_signal(self, path: str, width: int = 1, kind: SignalKind = SignalKind.REGISTER,
                   init: Optional[int] = 0, lsb: int = 0,
                   literals: Sequence[str] = ()) -> str:
        """
        Declare a leaf signal.

        Args:
            path: Hierarchical path
            width: Number of bits
            kind: REGISTER, NET, ENUM or INTEGER
            init: Initial value, None for all-x
            lsb: Index of the least significant bit (``[msb:lsb]``)
            literals: Enum literal names, index = encoding

        Returns:
            The signal path
        """
        if not kind.is_leaf:
            raise ValueError(f"{kind.value} is not a leaf kind, use add_array/add_record")
        if path in self._signals or path in self._containers:
            raise ValueError(f"Duplicate declaration of {path}")
        descriptor = SignalDescriptor(
            path=path,
            kind=kind,
            msb=lsb + width - 1,
            lsb=lsb,
            enum_literals=tuple(literals),
            raw_kind=kind.value,
        )
        sig = _Signal(descriptor)
        if init is None:
            sig.xmask = sig.full_mask
        else:
            sig.value = init & sig.full_mask
        self._signals[path] = sig
        return path

    def add_enum(self, path: str, literals: Sequence[str], init: Optional[int] = 0) -> str:
        width = max(1, (len(literals) - 1).bit_length())
        return self.add_signal(path, width=width, kind=SignalKind.ENUM, init=init, literals=literals)

    def add_array(self, path: str, length: int) -> str:
        self._containers[path] = SignalDescriptor(
            path=path, kind=SignalKind.ARRAY, array_length=length, raw_kind="Array")
        return path

    def add_record(self, path: str, fields: Sequence[str]) -> str:
        self._containers[path] = SignalDescriptor(
            path=path, kind=SignalKind.RECORD, field_names=tuple(fields), raw_kind="Record")
        return path

    def add_opaque(self, path: str, raw_kind: str) -> str:
        """Declare an object of a kind the engine does not know (e.g. a class handle)."""
        self._containers[path] = SignalDescriptor(
            path=path, kind=SignalKind.UNKNOWN, raw_kind=raw_kind)
        return path

    def add_clock(self, path: str, period: int, start_high: bool = False) -> str:
        """Declare a free-running clock toggling every half period."""
        if period < 2:
            raise ValueError("Clock period must be at least 2 ps")
        self.add_signal(path, kind=SignalKind.NET, init=1 if start_high else 0)
        half = period // 2

        def toggle():
            sig = self._signals[path]
            self._drive(sig, (sig.value ^ 1) & 1)
            self._clock_edge(path)
            self._push(self._now + half, toggle, design=True)

        self._push(half, toggle, design=True)
        return path

    def assign(self, target: str, function: Callable[["EventSimulator"], Optional[int]],
               inputs: Sequence[str]) -> None:
        """Continuous assignment, re-evaluated whenever an input changes."""
        sig = self._lookup(target, "assign")
        process = _Assign(target, function, tuple(inputs))
        sig.driver = process
        self._assigns.append(process)
        for name in process.inputs:
            self._sensitivity.setdefault(name, []).append(process)

    def always_ff(self, clock: str, function: Callable[["EventSimulator"], Dict[str, Optional[int]]],
                  edge: int = 1) -> None:
        """Clocked process. ``function`` returns the non-blocking updates."""
        self._lookup(clock, "always_ff")
        self._clocked.setdefault(clock, []).append(_ClockedProcess(clock, edge, function))

    def at(self, time: int, function: Callable[["EventSimulator"], None]) -> None:
        """Testbench event at an absolute time."""
        self._push(time, lambda: function(self), design=True)

    def add_assertion(self, name: str, predicate: Callable[["EventSimulator"], bool]) -> None:
        self._assertions[name] = (predicate, True)

    # ------------------------------------------------------------------
    # Access for design processes
    # ------------------------------------------------------------------

    def read(self, path: str) -> int:
        """Integer value of a signal, unknown bits read as 0."""
        sig = self._lookup(path, "read")
        return sig.value & ~sig.xmask

    def is_x(self, path: str) -> bool:
        return self._lookup(path, "read").xmask != 0

    def write(self, path: str, value: Optional[int]) -> None:
        """Procedural assignment from a testbench event."""
        self._drive(self._lookup(path, "write"), value)
        self._settle()

    # ------------------------------------------------------------------
    # SimulationControl
    # ------------------------------------------------------------------

    @property
    def now(self) -> int:
        return self._now

    def describe(self, path: str) -> SignalDescriptor:
        if path in self._containers:
            return self._containers[path]
        if path in self._signals:
            return self._signals[path].descriptor
        raise SimulationError(f"describe {path}", "no such object")

    def examine(self, path: str, radix: Radix = Radix.SYMBOLIC) -> str:
        self._ensure_initialized()
        sig, bit = self._resolve(path, "examine")
        if bit is not None:
            if (sig.xmask >> bit) & 1:
                return "x"
            return str((sig.value >> bit) & 1)

        bits = self._bits(sig)
        descriptor = sig.descriptor
        if descriptor.kind == SignalKind.ENUM:
            in_range = sig.xmask == 0 and sig.value < len(descriptor.enum_literals)
            if radix == Radix.BINARY:
                if not in_range and sig.xmask == 0 and self.strict_enum_radix:
                    return ""
                return bits
            if radix == Radix.SYMBOLIC and in_range:
                return descriptor.enum_literals[sig.value]

        if radix == Radix.BINARY:
            return bits
        if sig.xmask:
            return "x" if radix == Radix.DECIMAL else f"{sig.width}'b{bits}"
        if radix == Radix.DECIMAL or sig.width == 1:
            return str(sig.value)
        digits = (sig.width + 3) // 4
        return f"{sig.width}'h{sig.value:0{digits}x}"

    def force(self, path: str, value_bits: str, mode: ForceMode = ForceMode.FREEZE,
              release_after: Optional[int] = None) -> None:
        self._ensure_initialized()
        sig, bit = self._resolve(path, "force")
        width = 1 if bit is not None else sig.width
        if not value_bits or any(ch not in "01" for ch in value_bits) or len(value_bits) > width:
            raise SimulationError(f"force {path} {value_bits}", f"invalid {width}-bit value")

        value = int(value_bits, 2)
        if bit is None:
            mask = sig.full_mask
        else:
            mask = 1 << bit
            value <<= bit

        if mode == ForceMode.FREEZE:
            sig.force_mask |= mask
            sig.force_value = (sig.force_value & ~mask) | (value & mask)
            self._set_bits(sig, mask, value)
            if release_after is not None:
                self._push(self._now + release_after, lambda: self.release(path))
        else:
            writable = mask & ~sig.force_mask
            self._set_bits(sig, writable, value)
        self._settle()

    def release(self, path: str) -> None:
        sig, bit = self._resolve(path, "release")
        mask = sig.full_mask if bit is None else 1 << bit
        sig.force_mask &= ~mask
        if sig.descriptor.kind == SignalKind.NET and sig.driver is not None:
            self._evaluate(sig.driver)
        self._settle()

    def schedule(self, trigger: Trigger, callback: Callback) -> int:
        handle = next(self._handles)
        if isinstance(trigger, TimeTrigger):
            if trigger.time >= self._now:
                self._push(trigger.time, callback, handle=handle)
        elif isinstance(trigger, SignalTrigger):
            self._lookup(trigger.path.split("[")[0] if trigger.path not in self._signals
                         else trigger.path, "schedule")
            self._watchers[handle] = _Watcher(trigger, callback)
        else:
            raise TypeError(f"Unsupported trigger {trigger!r}")
        return handle

    def deschedule(self, handle: object) -> None:
        if handle is None:
            return
        if handle in self._watchers:
            del self._watchers[handle]
        else:
            self._cancelled.add(handle)

    def checkpoint(self, name: str) -> None:
        self._ensure_initialized()
        self._checkpoints[name] = _Checkpoint(
            time=self._now,
            state={path: (sig.value, sig.xmask) for path, sig in self._signals.items()},
            design_events=[ev for ev in self._queue if ev.design],
        )

    def restore(self, name: str) -> None:
        if name not in self._checkpoints:
            raise SimulationError(f"restore {name}", "no such checkpoint")
        cp = self._checkpoints[name]
        self._now = cp.time
        for path, (value, xmask) in cp.state.items():
            sig = self._signals[path]
            sig.value, sig.xmask = value, xmask
            sig.force_mask = sig.force_value = 0
        self._queue = list(cp.design_events)
        heapq.heapify(self._queue)
        self._watchers.clear()
        self._cancelled.clear()
        self._changed.clear()
        self._stop_requested = False
        self._assertions = {name: (pred, True) for name, (pred, _) in self._assertions.items()}

    def set_seed(self, seed: int) -> None:
        self.seed = seed
        self.rng = random.Random(seed)

    def run(self, until: Optional[int] = None) -> None:
        self._ensure_initialized()
        self._stop_requested = False
        self._check_watchers()
        while self._queue and not self._stop_requested:
            time = self._queue[0].time
            if until is not None and time > until:
                self._now = until
                return
            self._now = time
            while self._queue and self._queue[0].time == time:
                event = heapq.heappop(self._queue)
                if event.handle is not None and event.handle in self._cancelled:
                    self._cancelled.discard(event.handle)
                    continue
                event.action()
                self._settle()
            self._check_assertions()
            self._check_watchers()

    def stop(self) -> None:
        self._stop_requested = True

    def set_assertion_enabled(self, name: str, enabled: bool) -> None:
        if name not in self._assertions:
            raise SimulationError(f"assertion enable {name}", "no such assertion")
        predicate, _ = self._assertions[name]
        self._assertions[name] = (predicate, enabled)

    # ------------------------------------------------------------------
    # Kernel
    # ------------------------------------------------------------------

    def _lookup(self, path: str, command: str) -> _Signal:
        try:
            return self._signals[path]
        except KeyError:
            raise SimulationError(f"{command} {path}", "no such signal") from None

    def _resolve(self, path: str, command: str) -> Tuple[_Signal, Optional[int]]:
        """Resolve a path to a signal and optional bit position (0 = LSB)."""
        if path in self._signals:
            return self._signals[path], None
        match = BIT_SELECT_REGEX.match(path)
        if match and match.group(1) in self._signals:
            sig = self._signals[match.group(1)]
            index = int(match.group(2))
            descriptor = sig.descriptor
            if not descriptor.lower_index <= index <= max(descriptor.msb, descriptor.lsb):
                raise SimulationError(f"{command} {path}", "bit select out of range")
            return sig, index - descriptor.lower_index
        raise SimulationError(f"{command} {path}", "no such signal")

    @staticmethod
    def _bits(sig: _Signal) -> str:
        chars = []
        for i in reversed(range(sig.width)):
            if (sig.xmask >> i) & 1:
                chars.append("x")
            else:
                chars.append(str((sig.value >> i) & 1))
        return "".join(chars)

    def _push(self, time: int, action: Callable[[], None], design: bool = False,
              handle: Optional[int] = None) -> None:
        heapq.heappush(self._queue, _Event(time, next(self._seq), action, design, handle))

    def _set_bits(self, sig: _Signal, mask: int, value: int) -> None:
        new_value = (sig.value & ~mask) | (value & mask)
        new_xmask = sig.xmask & ~mask
        if (new_value, new_xmask) != (sig.value, sig.xmask):
            sig.value, sig.xmask = new_value, new_xmask
            self._changed.append(sig.descriptor.path)

    def _drive(self, sig: _Signal, value: Optional[int]) -> None:
        """Write a design value, keeping frozen bits."""
        if value is None:
            new_value, new_xmask = sig.value, sig.full_mask
        else:
            new_value, new_xmask = value & sig.full_mask, 0
        fm = sig.force_mask
        new_value = (new_value & ~fm) | (sig.force_value & fm)
        new_xmask &= ~fm
        if (new_value, new_xmask) != (sig.value, sig.xmask):
            sig.value, sig.xmask = new_value, new_xmask
            self._changed.append(sig.descriptor.path)

    def _evaluate(self, process: _Assign) -> None:
        self._drive(self._signals[process.target], process.function(self))

    def _settle(self) -> None:
        evaluations = 0
        while self._changed:
            path = self._changed.pop(0)
            for process in self._sensitivity.get(path, ()):
                evaluations += 1
                if evaluations > MAX_SETTLE_EVALUATIONS:
                    raise SimulationError("run", f"combinational loop through {process.target}")
                self._evaluate(process)

    def _clock_edge(self, clock: str) -> None:
        processes = self._clocked.get(clock)
        if not processes:
            return
        value = self._signals[clock].value
        updates: List[Dict[str, Optional[int]]] = []
        for process in processes:
            if value == process.edge:
                updates.append(process.function(self))
        for update in updates:
            for path, new_value in update.items():
                self._drive(self._lookup(path, "always_ff"), new_value)

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        for process in self._assigns:
            self._evaluate(process)
        self._settle()

    def _trigger_active(self, trigger: SignalTrigger) -> bool:
        if self._now < trigger.not_before:
            return False
        matches = binary_matches(self.examine(trigger.path, Radix.BINARY), trigger.value)
        return not matches if trigger.negate else matches

    def _check_watchers(self) -> None:
        for _ in range(MAX_WATCHER_PASSES):
            fired = False
            for handle in list(self._watchers):
                watcher = self._watchers.get(handle)
                if watcher is None:
                    continue
                active = self._trigger_active(watcher.trigger)
                if active and not watcher.active:
                    watcher.active = True
                    watcher.callback()
                    self._settle()
                    fired = True
                else:
                    watcher.active = active
            if not fired:
                return
        raise SimulationError("run", "watchers keep re-triggering within one time step")

    def _check_assertions(self) -> None:
        for name, (predicate, enabled) in self._assertions.items():
            if enabled and not predicate(self):
                self.assertion_failures.append((self._now, name))
                logger.warning(f"Assertion {name} failed at {self._now} ps")
