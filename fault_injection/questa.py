#!/usr/bin/env python3
"""
Questa Adapter: SimulationControl on top of a Questa/ModelSim Tcl shell

All text parsing of simulator output is isolated here: ``examine -describe``
blobs are turned into SignalDescriptor values and ``examine -binary`` output
into plain bit strings.

The adapter sends commands through a ``tcl(command) -> str`` callable (an
embedded interpreter, a socket bridge, ...). Watchers are translated into
labeled ``when`` statements whose body calls ``dispatch_proc <label>``; the
bridge must route that call back to ``QuestaSimulationControl.dispatch``.
"""

import itertools
import logging
import re
from typing import Callable, Dict, Optional, Tuple

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
)
from .timeunits import parse_time

logger = logging.getLogger(__name__)

KIND_WORDS = {
    "Register": SignalKind.REGISTER,
    "Net": SignalKind.NET,
    "Enum": SignalKind.ENUM,
    "Integer": SignalKind.INTEGER,
    "Array": SignalKind.ARRAY,
    "Record": SignalKind.RECORD,
}

# Leading words that qualify the kind rather than name it
PREDICATE_WORDS = ("Verilog", "Signed")

RANGE_REGEX = re.compile(r"\[(\d+):(\d+)\]")
LENGTH_REGEX = re.compile(r"\[length (\d+)\]")
RECORD_REGEX = re.compile(r"^\{?\s*Record \[(\d+) elements?\]")
FIELD_REGEX = re.compile(r'\n\s*Element #\d+ "([a-zA-Z_][a-zA-Z0-9_]*)"')
ENUM_LITERALS_REGEX = re.compile(r"\{([^{}]*)\}")
BINARY_REGEX = re.compile(r"(\d*)'b([01xXzZ]+)")
PLAIN_BINARY_REGEX = re.compile(r"^[01xXzZ]+$")


def _kind_word(text: str) -> str:
    words = [w.strip(" \n\r()[]{}:") for w in text.strip().lstrip("{").split()]
    while len(words) > 1 and words[0] in PREDICATE_WORDS:
        words.pop(0)
    if not words:
        return ""
    # Verilog enums are described in lower case
    return "Enum" if words[0] == "enum" else words[0]


def parse_describe(path: str, text: str) -> SignalDescriptor:
    """
    Parse the output of ``examine -describe``.

    Args:
        path: Object path (for the descriptor and error messages)
        text: Describe output, e.g. ``{Register [7:0]}``

    Returns:
        SignalDescriptor

    Raises:
        SimulationError: If a record's field names cannot be extracted
    """
    word = _kind_word(text)
    kind = KIND_WORDS.get(word, SignalKind.UNKNOWN)

    msb = lsb = 0
    array_length = 0
    field_names: Tuple[str, ...] = ()
    enum_literals: Tuple[str, ...] = ()

    if kind == SignalKind.ARRAY:
        match = LENGTH_REGEX.search(text)
        if match:
            array_length = int(match.group(1))
    elif kind == SignalKind.RECORD:
        match = RECORD_REGEX.match(text.strip())
        expected = int(match.group(1)) if match else 0
        field_names = tuple(FIELD_REGEX.findall(text))
        if not match or len(field_names) != expected:
            raise SimulationError(
                f"examine -describe {path}",
                f"could not determine the field names of record (expected {expected} fields, "
                f"extracted {len(field_names)}: {list(field_names)})",
            )
    else:
        match = RANGE_REGEX.search(text)
        if match:
            msb, lsb = int(match.group(1)), int(match.group(2))
        if kind == SignalKind.ENUM:
            literals = ENUM_LITERALS_REGEX.search(text.strip().lstrip("{"))
            if literals:
                enum_literals = tuple(
                    name.strip().split("=")[0].strip()
                    for name in literals.group(1).split(",") if name.strip()
                )
            if not match and len(enum_literals) > 1:
                msb = (len(enum_literals) - 1).bit_length() - 1

    return SignalDescriptor(
        path=path,
        kind=kind,
        msb=msb,
        lsb=lsb,
        array_length=array_length,
        field_names=field_names,
        enum_literals=enum_literals,
        raw_kind=word,
    )


def parse_binary_value(text: str) -> str:
    """Extract the bits of ``6'b101010`` (or a bare bit string); empty if unparseable."""
    text = text.strip()
    match = BINARY_REGEX.search(text)
    if match:
        return match.group(2)
    if PLAIN_BINARY_REGEX.match(text):
        return text
    return ""


class QuestaSimulationControl(SimulationControl):
    """SimulationControl that issues Questa Tcl commands."""

    def __init__(self, tcl: Callable[[str], str],
                 dispatch_proc: str = "::fault_injection_dispatch",
                 checkpoint_dir: str = "."):
        """
        Initialize adapter.

        Args:
            tcl: Evaluates one Tcl command in the simulator and returns its result
            dispatch_proc: Tcl proc the bridge routes to ``dispatch``
            checkpoint_dir: Directory for checkpoint files
        """
        self.tcl = tcl
        self.dispatch_proc = dispatch_proc
        self.checkpoint_dir = checkpoint_dir
        self._labels = itertools.count(1)
        self._callbacks: Dict[str, Tuple[Callback, bool]] = {}

    def command(self, command: str) -> str:
        """Run a Tcl command, turning interpreter errors into SimulationError."""
        logger.debug(f"tcl: {command}")
        try:
            result = self.tcl(command)
        except Exception as e:
            raise SimulationError(command, str(e)) from e
        return "" if result is None else str(result)

    @property
    def now(self) -> int:
        return parse_time(self.command("set ::now").strip() or "0")

    def describe(self, path: str) -> SignalDescriptor:
        return parse_describe(path, self.command(f"examine -describe {path}"))

    def examine(self, path: str, radix: Radix = Radix.SYMBOLIC) -> str:
        if radix == Radix.BINARY:
            return parse_binary_value(self.command(f"examine -radixenumnumeric -binary {path}"))
        if radix == Radix.DECIMAL:
            return self.command(f"examine -decimal {path}").strip()
        return self.command(f"examine -radixenumsymbolic {path}").strip()

    def force(self, path: str, value_bits: str, mode: ForceMode = ForceMode.FREEZE,
              release_after: Optional[int] = None) -> None:
        command = f"force -{mode.value} {path} 2#{value_bits}"
        if release_after is not None:
            command += f" -cancel {release_after}ps"
        self.command(command)

    def release(self, path: str) -> None:
        self.command(f"noforce {path}")

    def _condition(self, trigger: Trigger) -> Tuple[str, bool]:
        """Tcl ``when`` expression for a trigger, and whether it fires only once."""
        if isinstance(trigger, TimeTrigger):
            return f"$now == @{trigger.time}ps", True
        if isinstance(trigger, SignalTrigger):
            operator = "!=" if trigger.negate else "=="
            expression = f"{trigger.path} {operator} {trigger.value}"
            if trigger.not_before:
                expression = f"$now >= @{trigger.not_before}ps and {expression}"
            return expression, False
        raise TypeError(f"Unsupported trigger {trigger!r}")

    def schedule(self, trigger: Trigger, callback: Callback) -> str:
        expression, one_shot = self._condition(trigger)
        label = f"fi_{next(self._labels)}"
        self.command(f"when -label {label} {{{expression}}} {{{self.dispatch_proc} {label}}}")
        self._callbacks[label] = (callback, one_shot)
        return label

    def deschedule(self, handle: object) -> None:
        if handle is None or handle not in self._callbacks:
            return
        del self._callbacks[handle]
        self.command(f"nowhen {handle}")

    def dispatch(self, label: str) -> None:
        """Entry point of the Tcl bridge when a ``when`` statement fires."""
        entry = self._callbacks.get(label)
        if entry is None:
            logger.debug(f"Ignoring fire of unknown watcher {label}")
            return
        callback, one_shot = entry
        if one_shot:
            self.deschedule(label)
        callback()

    def checkpoint(self, name: str) -> None:
        self.command(f"checkpoint {self.checkpoint_dir}/{name}.cpt")

    def restore(self, name: str) -> None:
        for label in list(self._callbacks):
            self.deschedule(label)
        self.command(f"restore {self.checkpoint_dir}/{name}.cpt")

    def set_seed(self, seed: int) -> None:
        # Questa seeds SystemVerilog randomization at elaboration; expose the
        # seed to testbench scripts instead.
        self.command(f"set ::seed {seed}")

    def run(self, until: Optional[int] = None) -> None:
        if until is None:
            self.command("run -all")
        else:
            self.command(f"run @{until}ps")

    def stop(self) -> None:
        self.command("stop")

    def set_assertion_enabled(self, name: str, enabled: bool) -> None:
        self.command(f"assertion enable -{'on' if enabled else 'off'} {name}")
