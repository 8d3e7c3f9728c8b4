#!/usr/bin/env python3
"""
Termination Monitor: detect how a simulation run ended

Watches a set of prioritized termination conditions (testbench signals or
absolute timeouts). Whenever one fires, all conditions are evaluated and only
the highest priority active cause is reported.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, List, Optional, Sequence, Tuple

from .sim_control import (
    Radix,
    SignalTrigger,
    SimulationControl,
    TimeTrigger,
    binary_matches,
    is_undefined,
)
from .timeunits import format_ns

logger = logging.getLogger(__name__)


class TerminationCause(IntEnum):
    """Termination ids, higher ids win when several are active."""
    CORRECT = 0
    LATENT = 1
    INCORRECT = 2
    EXCEPTION = 3
    TIMEOUT = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class TerminationCondition:
    """A termination signal or an absolute timeout, tagged with a priority."""
    priority: int
    label: str
    signal_path: Optional[str] = None
    timeout: Optional[int] = None

    def __post_init__(self):
        if (self.signal_path is None) == (self.timeout is None):
            raise ValueError(f"Termination condition '{self.label}' needs exactly one "
                             f"of signal_path and timeout")


class TerminationMonitor:
    """Reports the highest priority termination cause to a callback."""

    def __init__(self, sim: SimulationControl, conditions: Sequence[TerminationCondition],
                 report_callback: Callable[[int], None],
                 post_report_callback: Optional[Callable[[], None]] = None,
                 x_priority: Optional[int] = None):
        """
        Initialize monitor.

        Args:
            sim: Simulation control
            conditions: Termination conditions
            report_callback: Receives the winning priority
            post_report_callback: Runs after the report, typically stops the run
            x_priority: Priority reported for x/z termination signals,
                None ignores undefined readings
        """
        self.sim = sim
        self.conditions: List[TerminationCondition] = list(conditions)
        self.report_callback = report_callback
        self.post_report_callback = post_report_callback
        self.x_priority = x_priority
        self.reports: List[Tuple[int, int]] = []
        self._handles: List[object] = []
        self._last_report_time: Optional[int] = None

    def _trigger(self, condition: TerminationCondition):
        if condition.timeout is not None:
            return TimeTrigger(condition.timeout)
        if self.x_priority is not None:
            # Fires on 1 as well as on x/z
            return SignalTrigger(condition.signal_path, "0", negate=True)
        return SignalTrigger(condition.signal_path, "1")

    def start(self) -> None:
        for condition in self.conditions:
            self._handles.append(self.sim.schedule(self._trigger(condition), self.on_fire))

    def stop(self) -> None:
        for handle in self._handles:
            self.sim.deschedule(handle)
        self._handles = []

    def add_condition(self, condition: TerminationCondition) -> None:
        """Add a condition. Takes effect after ``reset``."""
        self.conditions.append(condition)

    def reset(self) -> None:
        """Re-arm all conditions, e.g. after restoring a checkpoint."""
        self.stop()
        self._last_report_time = None
        self.start()

    def label_for(self, priority: int) -> str:
        for condition in self.conditions:
            if condition.priority == priority:
                return condition.label
        try:
            return TerminationCause(priority).label
        except ValueError:
            return str(priority)

    def evaluate(self) -> List[int]:
        """Priorities of all currently active conditions."""
        active = []
        for condition in self.conditions:
            if condition.timeout is not None:
                if self.sim.now >= condition.timeout:
                    active.append(condition.priority)
                continue
            reading = self.sim.examine(condition.signal_path, Radix.BINARY)
            if not reading or is_undefined(reading):
                if self.x_priority is not None:
                    logger.debug(f"Termination signal {condition.signal_path} is {reading!r}, "
                                 f"reported as {self.label_for(self.x_priority)}")
                    active.append(self.x_priority)
                else:
                    logger.debug(f"Termination signal {condition.signal_path} is {reading!r}, ignored")
            elif binary_matches(reading, "1"):
                active.append(condition.priority)
        return active

    def on_fire(self) -> None:
        now = self.sim.now
        if self._last_report_time == now:
            return
        active = self.evaluate()
        if not active:
            return

        winner = max(active)
        if len(set(active)) > 1:
            causes = ", ".join(self.label_for(priority) for priority in sorted(set(active)))
            logger.warning(f"{format_ns(now)}: Multiple Termination causes active ({causes}), "
                           f"reporting {self.label_for(winner)}.")
        logger.info(f"{format_ns(now)}: Simulation terminated: {self.label_for(winner)}")

        self._last_report_time = now
        self.reports.append((now, winner))
        self.report_callback(winner)
        if self.post_report_callback is not None:
            self.post_report_callback()
