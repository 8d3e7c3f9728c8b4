#!/usr/bin/env python3
"""
Impact Statistics: measure whether injected faults propagate

Snapshots the declared output and next-state nets right before and right
after every counted injection, counts the differences and appends one row per
injection to the injection log.
"""

import csv
import dataclasses
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .bitflip import InjectionEvent
from .sim_control import SimulationControl
from .timeunits import format_ns

logger = logging.getLogger(__name__)

INJECTION_LOG_HEADER = [
    "timestamp", "net_path", "pre_flip_value", "post_flip_value",
    "outputs_changed", "state_changed",
]


def tri_state(value: Optional[bool]) -> str:
    """CSV form of a check result; disabled checks are ``x``, never ``0``."""
    if value is None:
        return "x"
    return "1" if value else "0"


class ImpactStatistics:
    """Running propagation counters and the injection log of one run."""

    def __init__(self, sim: SimulationControl, output_nets: Sequence[str] = (),
                 next_state_nets: Sequence[str] = (), check_outputs: bool = False,
                 check_next_state: bool = False, check_propagation: bool = True,
                 log_path: Optional[Path] = None,
                 display_name: Optional[Callable[[str], str]] = None):
        """
        Initialize statistics.

        Args:
            sim: Simulation control used for snapshots
            output_nets: Nets observed for output modification
            next_state_nets: Nets observed for next-state modification
            check_outputs: Compare output snapshots
            check_next_state: Compare next-state snapshots
            check_propagation: Derive the combined "propagated" flag
            log_path: Injection log file, None disables logging
            display_name: Shortens net paths in log messages
        """
        self.sim = sim
        self.output_nets = list(output_nets)
        self.next_state_nets = list(next_state_nets)
        self.check_outputs = check_outputs
        self.check_next_state = check_next_state
        self.check_propagation = check_propagation
        self.log_path = Path(log_path) if log_path else None
        self.display_name = display_name or (lambda path: path)

        self.num_injections = 0
        self.num_outputs_changed = 0
        self.num_state_changed = 0
        self.num_propagated = 0
        self.events: List[InjectionEvent] = []

        self._pre_outputs: List[str] = []
        self._pre_state: List[str] = []
        self._log_file = None
        self._writer = None

    def open_log(self) -> None:
        if self.log_path is None or self._log_file is not None:
            return
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_file = open(self.log_path, "w", newline="")
        self._writer = csv.writer(self._log_file)
        self._writer.writerow(INJECTION_LOG_HEADER)
        self._log_file.flush()
        logger.debug(f"Logging injections to {self.log_path}")

    def close_log(self) -> None:
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None
            self._writer = None

    def reset(self) -> None:
        """Clear counters (start of injection)."""
        self.num_injections = 0
        self.num_outputs_changed = 0
        self.num_state_changed = 0
        self.num_propagated = 0
        self.events = []

    def _snapshot(self, nets: Sequence[str]) -> List[str]:
        return [self.sim.examine(net) for net in nets]

    def pre_flip(self) -> None:
        """Snapshot observed nets before an injection."""
        self._pre_outputs = self._snapshot(self.output_nets) if self.check_outputs else []
        self._pre_state = self._snapshot(self.next_state_nets) if self.check_next_state else []

    def post_flip(self, event: InjectionEvent) -> InjectionEvent:
        """
        Compare against the pre-flip snapshot and record the injection.

        Args:
            event: Successful injection returned by the bit flip engine

        Returns:
            The event with ``outputs_changed``, ``state_changed`` and
            ``propagated`` filled in
        """
        outputs_changed = None
        state_changed = None
        if self.check_outputs:
            outputs_changed = self._snapshot(self.output_nets) != self._pre_outputs
        if self.check_next_state:
            state_changed = self._snapshot(self.next_state_nets) != self._pre_state

        propagated = None
        if self.check_propagation and (self.check_outputs or self.check_next_state):
            propagated = bool(outputs_changed) or bool(state_changed)

        self.num_injections += 1
        if outputs_changed:
            self.num_outputs_changed += 1
        if state_changed:
            self.num_state_changed += 1
        if propagated:
            self.num_propagated += 1

        event = dataclasses.replace(
            event,
            outputs_changed=outputs_changed,
            state_changed=state_changed,
            propagated=propagated,
        )
        self.events.append(event)
        self._report(event)
        self._write_row(event)
        return event

    def _report(self, event: InjectionEvent) -> None:
        message = (f"{format_ns(event.timestamp)}: Flipped net {self.display_name(event.net_path)} "
                   f"from {event.previous_value} to {event.new_value}.")
        if event.outputs_changed is not None:
            message += f" Output signals {'changed' if event.outputs_changed else 'not modified'}."
        if event.state_changed is not None:
            message += f" New state {'changed' if event.state_changed else 'not modified'}."
        logger.info(message)

    def _write_row(self, event: InjectionEvent) -> None:
        if self._writer is None:
            return
        self._writer.writerow([
            event.timestamp,
            event.net_path,
            event.previous_value,
            event.new_value,
            tri_state(event.outputs_changed),
            tri_state(event.state_changed),
        ])
        self._log_file.flush()

    def summary_lines(self) -> List[str]:
        """Lines of the statistics print at the end of injection."""
        lines = [
            " ========== Fault Injection Statistics ========== ",
            f" Number of Bitflips : {self.num_injections}",
        ]
        if self.check_outputs:
            lines.append(f" Number of Bitflips propagated to outputs : {self.num_outputs_changed}")
        if self.check_next_state:
            lines.append(f" Number of Bitflips propagated to new state : {self.num_state_changed}")
        if self.check_propagation and self.check_outputs and self.check_next_state:
            lines.append(f" Number of Bitflips propagated : {self.num_propagated}")
        return lines
