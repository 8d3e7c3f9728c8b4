#!/usr/bin/env python3
"""
Injection Scheduler: decide when faults are injected

Injects periodically on a clock (with a prescaler), and/or at an explicit
list of forced injection times. The scheduler is armed once per run and is
driven entirely by simulator callbacks.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .bitflip import BitFlipEngine, InjectionEvent
from .exceptions import SimulationError
from .net_catalog import Net, NetCatalog
from .run_context import RunContext
from .selector import WeightedSelector
from .sim_control import Radix, SignalTrigger, SimulationControl, TimeTrigger
from .statistics import ImpactStatistics
from .timeunits import earliest_time, format_ns, latest_time

logger = logging.getLogger(__name__)

MAX_INJECTION_ATTEMPTS = 50


class SchedulerState(Enum):
    IDLE = "idle"
    ARMED = "armed"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ForcedInjection:
    """Injection at a fixed time, into a given net or a randomly selected one."""
    time: int
    net_path: Optional[str] = None
    is_register: bool = False


@dataclass
class SchedulerSettings:
    """Timing and selection options of one injection run (times in ps)."""
    inject_start_time: int = 100_000
    inject_stop_time: int = 0
    injection_clock: Optional[str] = None
    injection_clock_trigger: str = "1"
    fault_period: int = 1
    rand_initial_injection_phase: bool = False
    max_num_fault_inject: int = 0
    forced_injections: List[ForcedInjection] = field(default_factory=list)
    include_forced_inj_in_stats: bool = False
    allow_multi_bit_upset: bool = False
    assertion_disable: List[str] = field(default_factory=list)
    print_statistics: bool = True


class InjectionScheduler:
    """Arms injection watchers on the simulator and performs the injections."""

    def __init__(self, sim: SimulationControl, catalog: NetCatalog,
                 selector: WeightedSelector, engine: BitFlipEngine,
                 statistics: ImpactStatistics, settings: SchedulerSettings,
                 ctx: RunContext):
        if settings.fault_period < 1:
            raise ValueError(f"fault_period must be at least 1, got {settings.fault_period}")
        self.sim = sim
        self.catalog = catalog
        self.selector = selector
        self.engine = engine
        self.statistics = statistics
        self.settings = settings
        self.ctx = ctx
        self.state = SchedulerState.IDLE
        self.prescaler = 0
        self._periodic_handle = None
        self._handles: List[object] = []

    @property
    def ceiling_reached(self) -> bool:
        ceiling = self.settings.max_num_fault_inject
        return ceiling != 0 and self.ctx.num_injected >= ceiling

    def arm(self) -> None:
        """Register the start, periodic, forced and stop watchers."""
        if self.state != SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler cannot be armed in state {self.state.value}")
        settings = self.settings
        rng = self.ctx.rng

        if settings.rand_initial_injection_phase:
            self.prescaler = int(rng.random() * settings.fault_period)
        else:
            self.prescaler = settings.fault_period - 1

        self.statistics.open_log()

        forced_times = [forced.time for forced in settings.forced_injections]
        start_time = earliest_time(forced_times + [settings.inject_start_time])
        if settings.inject_stop_time == 0 and settings.injection_clock:
            stop_time = None
        else:
            stop_time = latest_time(forced_times + [settings.inject_stop_time])

        self._handles.append(self.sim.schedule(TimeTrigger(start_time), self.start))

        if settings.injection_clock:
            self._periodic_handle = self.sim.schedule(
                SignalTrigger(settings.injection_clock, settings.injection_clock_trigger,
                              not_before=settings.inject_start_time),
                self.on_clock,
            )

        for forced in settings.forced_injections:
            self._handles.append(self.sim.schedule(
                TimeTrigger(forced.time), lambda forced=forced: self.forced_injection(forced)))

        if stop_time:
            # Injections at exactly the stop time still happen
            self._handles.append(self.sim.schedule(TimeTrigger(stop_time + 1), self.stop))

        self.state = SchedulerState.ARMED
        logger.info(f"Injection script running (seed {self.ctx.seed}, "
                    f"limit {settings.max_num_fault_inject or 'none'}).")

    def start(self) -> None:
        logger.info(f"{format_ns(self.sim.now)}: Starting fault injection.")
        for assertion in self.settings.assertion_disable:
            self._set_assertion(assertion, False)
        self.statistics.reset()
        self.state = SchedulerState.RUNNING

    def disarm_periodic(self) -> None:
        if self._periodic_handle is not None:
            self.sim.deschedule(self._periodic_handle)
            self._periodic_handle = None

    def on_clock(self) -> None:
        """Prescaled periodic injection."""
        if self.catalog.is_empty:
            return
        if self.ceiling_reached:
            logger.info(f"Injection limit ({self.settings.max_num_fault_inject}) reached. "
                        f"Stopping error injection...")
            self.disarm_periodic()
            return
        self.prescaler += 1
        if self.prescaler >= self.settings.fault_period:
            self.prescaler = 0
            self.inject(counted=True)
            if self.ceiling_reached:
                logger.info(f"Injection limit ({self.settings.max_num_fault_inject}) reached. "
                            f"Stopping error injection...")
                self.disarm_periodic()

    def inject(self, counted: bool = True) -> Optional[InjectionEvent]:
        """
        Inject one fault into a randomly selected net.

        Retries with another net when a flip fails, the simulator rejects the
        force, or the selected register still holds an earlier upset.

        Args:
            counted: Include the injection in statistics and the fault count

        Returns:
            The recorded event, or None if every attempt failed
        """
        if self.catalog.is_empty:
            return None
        if counted:
            self.statistics.pre_flip()

        for _ in range(MAX_INJECTION_ATTEMPTS):
            net, is_register = self.selector.select(self.ctx)
            name = self.catalog.display_name(net.path)
            if (is_register and not self.settings.allow_multi_bit_upset
                    and self.ctx.upsets.is_upset(self.sim, net.path)):
                logger.debug(f"{format_ns(self.sim.now)}: Tried to flip {name}, but was already flipped.")
                continue
            try:
                event = self.engine.flip(net, is_register, self.ctx)
            except SimulationError as e:
                logger.debug(f"{format_ns(self.sim.now)}: Failed to flip {name} ({e.reason}).")
                continue
            if event.success:
                break
            logger.debug(f"{format_ns(self.sim.now)}: Failed to flip {name}. Choosing another one.")
        else:
            logger.debug(f"{format_ns(self.sim.now)}: No net could be flipped "
                         f"within {MAX_INJECTION_ATTEMPTS} attempts.")
            return None

        if is_register and not self.settings.allow_multi_bit_upset:
            self.ctx.upsets.record(net.path, self.sim.examine(net.path, Radix.BINARY))
        return self._record(event, counted)

    def forced_injection(self, forced: ForcedInjection) -> Optional[InjectionEvent]:
        counted = self.settings.include_forced_inj_in_stats
        if forced.net_path is None:
            return self.inject(counted=counted)

        net = self.catalog.find(forced.net_path) or self._describe_net(forced.net_path)
        if net is None:
            return None
        if counted:
            self.statistics.pre_flip()
        try:
            event = self.engine.flip(net, forced.is_register, self.ctx)
        except SimulationError as e:
            logger.warning(f"Forced injection into {forced.net_path} failed: {e.reason}")
            return None
        if not event.success:
            logger.warning(f"{format_ns(self.sim.now)}: Forced injection into "
                           f"{forced.net_path} had no effect.")
            return None
        return self._record(event, counted)

    def _describe_net(self, path: str) -> Optional[Net]:
        try:
            descriptor = self.sim.describe(path)
        except SimulationError as e:
            logger.warning(f"Forced injection net {path} is unknown: {e.reason}")
            return None
        return Net(path, descriptor.kind, descriptor.width, descriptor.lower_index)

    def _record(self, event: InjectionEvent, counted: bool) -> InjectionEvent:
        if counted:
            event = self.statistics.post_flip(event)
        else:
            logger.info(f"{format_ns(event.timestamp)}: Flipped net "
                        f"{self.catalog.display_name(event.net_path)} "
                        f"from {event.previous_value} to {event.new_value}.")
        self.ctx.record_injection(event, counted)
        return event

    def _set_assertion(self, name: str, enabled: bool) -> None:
        try:
            self.sim.set_assertion_enabled(name, enabled)
        except SimulationError as e:
            logger.warning(f"Cannot {'enable' if enabled else 'disable'} assertion {name}: {e.reason}")

    def stop(self) -> int:
        """
        Stop injecting, restore assertions, print statistics, close the log.

        Returns:
            Number of counted injections
        """
        if self.state == SchedulerState.STOPPED:
            return self.ctx.num_injected
        self.disarm_periodic()
        for handle in self._handles:
            self.sim.deschedule(handle)
        self._handles = []

        if self.state == SchedulerState.RUNNING:
            for assertion in self.settings.assertion_disable:
                self._set_assertion(assertion, True)
        if self.settings.print_statistics:
            for line in self.statistics.summary_lines():
                logger.info(line)
        self.statistics.close_log()
        self.state = SchedulerState.STOPPED
        return self.ctx.num_injected
