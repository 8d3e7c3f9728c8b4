#!/usr/bin/env python3
"""
Vulnerability Bisector: find the earliest fault that breaks a run

For every seed the testbench first runs without faults (golden model) to
record its execution time and final internal state. The same seed is then
re-run with fault injection; when it fails, the injected-fault count is
bisected by re-running with an injection ceiling until the earliest fault
responsible for the failure is isolated.
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .bitflip import BitFlipEngine
from .config_loader import BisectionPolicy, FaultInjectionConfig
from .exceptions import DeterminismError, FaultInjectionError, GoldenModelError
from .net_catalog import NetCatalog, build_catalog
from .run_context import RunContext
from .scheduler import InjectionScheduler
from .selector import WeightedSelector
from .sim_control import SimulationControl
from .statistics import ImpactStatistics
from .termination import TerminationCause, TerminationCondition, TerminationMonitor
from .timeunits import format_ns

logger = logging.getLogger(__name__)

CHECKPOINT_NAME = "fault_injection_start"

VULNERABILITY_LOG_HEADER = [
    "seed", "termination_cause", "num_faults_injected", "last_injected_net_name",
]


@dataclass(frozen=True)
class GoldenModel:
    """Fault-free reference run of one seed."""
    seed: int
    execution_time: int
    final_internal_state: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RunOutcome:
    """How one injection run ended."""
    cause: int
    fault_count: int
    last_flipped_net: Optional[str]
    end_time: int
    ceiling: int = 0

    @property
    def failed(self) -> bool:
        return self.cause != TerminationCause.CORRECT


@dataclass(frozen=True)
class SeedResult:
    """Resolution of one seed."""
    seed: int
    cause: int
    fault_count: int
    last_flipped_net: Optional[str]
    vulnerable: bool
    num_runs: int

    @property
    def cause_label(self) -> str:
        try:
            return TerminationCause(self.cause).label
        except ValueError:
            return str(self.cause)

    def log_row(self) -> List:
        return [self.seed, int(self.cause), self.fault_count, self.last_flipped_net or ""]


@dataclass
class BisectionState:
    """Known-safe and known-failing fault counts of one seed."""
    seed: int
    low: int = 0
    high: Optional[int] = None
    next_try: int = 0

    @property
    def gap_closed(self) -> bool:
        return self.high is not None and self.high - self.low == 1


class Bisection:
    """
    Bisection over the injected-fault count of one seed.

    ``record`` consumes the outcome of the run made with ceiling
    ``state.next_try`` (0 = unlimited) and either resolves the seed or
    updates ``state.next_try`` for the following run.
    """

    def __init__(self, seed: int, policy: Optional[BisectionPolicy] = None):
        self.policy = policy or BisectionPolicy()
        self.state = BisectionState(seed)
        self.result: Optional[SeedResult] = None
        self.num_runs = 0
        self._failing: Optional[RunOutcome] = None
        self._confirming = False

    @property
    def done(self) -> bool:
        return self.result is not None

    def _resolve(self, outcome: RunOutcome, vulnerable: bool) -> SeedResult:
        self.result = SeedResult(
            seed=self.state.seed,
            cause=outcome.cause,
            fault_count=outcome.fault_count,
            last_flipped_net=outcome.last_flipped_net,
            vulnerable=vulnerable,
            num_runs=self.num_runs,
        )
        return self.result

    def _check_determinism(self, outcome: RunOutcome) -> None:
        state = self.state
        count = outcome.fault_count
        if outcome.failed and count == 0:
            raise DeterminismError(state.seed, count, state.low, state.high,
                                   "run failed without any injected fault")
        if outcome.failed and count <= state.low:
            raise DeterminismError(state.seed, count, state.low, state.high,
                                   "a fault count known to be safe failed")
        if not outcome.failed and state.high is not None and count >= state.high:
            raise DeterminismError(state.seed, count, state.low, state.high,
                                   "a fault count at or above a known failing count passed")
        if not outcome.failed and count < state.low:
            raise DeterminismError(state.seed, count, state.low, state.high,
                                   "a run passed with fewer faults than a known-safe count")
        # Runs share their injection prefix, a ceiling above the lower bound must inject past it
        if not outcome.failed and not self._confirming and state.high is not None \
                and count <= state.low:
            raise DeterminismError(state.seed, count, state.low, state.high,
                                   "a run passed without injecting past the known-safe count")

    def record(self, outcome: RunOutcome) -> Optional[SeedResult]:
        """
        Update the bounds with the outcome of the last run.

        Returns:
            SeedResult once the seed is resolved, else None

        Raises:
            DeterminismError: If the outcome contradicts an earlier run
        """
        if self.done:
            raise RuntimeError(f"Seed {self.state.seed} is already resolved")
        self.num_runs += 1
        state = self.state
        self._check_determinism(outcome)

        if self._confirming:
            # Lower bound reproduced as safe, the failing run holds the culprit
            self._confirming = False
            return self._resolve(self._failing, vulnerable=True)

        if state.high is None:
            if not outcome.failed:
                return self._resolve(outcome, vulnerable=False)
            if outcome.fault_count == 1 and self.policy.short_circuit_first_flip:
                return self._resolve(outcome, vulnerable=True)
            state.high = outcome.fault_count
            self._failing = outcome
        elif outcome.failed:
            state.high = outcome.fault_count
            self._failing = outcome
        else:
            state.low = max(state.low, outcome.fault_count)

        if state.gap_closed:
            if self.policy.confirm_lower_bound and state.low > 0:
                self._confirming = True
                state.next_try = state.low
                return None
            return self._resolve(self._failing, vulnerable=True)

        state.next_try = self.policy.midpoint(state.low, state.high)
        return None


class VulnerabilityAnalysis:
    """Runs golden model, injection runs and bisection for a range of seeds."""

    def __init__(self, sim: SimulationControl, config: FaultInjectionConfig,
                 catalog: Optional[NetCatalog] = None,
                 vulnerability_log: Optional[Path] = None):
        """
        Initialize analysis.

        Args:
            sim: Simulation control, positioned at the start of the testbench
            config: Fault injection configuration
            catalog: Prebuilt net catalog, built from ``config.netlists`` if None
            vulnerability_log: Explicit vulnerability CSV path, a timestamped
                file in the configured log directory if None
        """
        self.sim = sim
        self.config = config
        self.catalog = catalog
        self.vulnerability_log = vulnerability_log
        self.golden_models: Dict[int, GoldenModel] = {}
        self.results: List[SeedResult] = []
        self.outcomes: List[RunOutcome] = []
        self._checkpointed = False
        self._num_runs = 0

    def prepare(self) -> None:
        """Checkpoint the start of the simulation and build the catalog."""
        if not self._checkpointed:
            self.sim.checkpoint(CHECKPOINT_NAME)
            self._checkpointed = True
        if self.catalog is None:
            netlists = self.config.netlists
            self.catalog = build_catalog(
                self.sim,
                netlists.inject_registers,
                netlists.inject_signals,
                netlists.exclude,
                netlists.injection_safe,
            )

    def _snapshot_state(self) -> Tuple[str, ...]:
        return tuple(self.sim.examine(net) for net in self.config.analysis.internal_state)

    def _simulate(self, seed: int, conditions: Sequence[TerminationCondition],
                  scheduler: Optional[InjectionScheduler] = None) -> Tuple[Optional[int], int, Tuple[str, ...]]:
        """Run from the checkpoint until the first termination report."""
        self.sim.restore(CHECKPOINT_NAME)
        self.sim.set_seed(seed)
        reports: List[Tuple[int, int, Tuple[str, ...]]] = []

        def on_report(cause: int) -> None:
            reports.append((cause, self.sim.now, self._snapshot_state()))

        def on_post_report() -> None:
            if scheduler is not None:
                scheduler.stop()
            monitor.stop()
            self.sim.stop()

        monitor = TerminationMonitor(self.sim, conditions, on_report, on_post_report,
                                     x_priority=self.config.x_priority)
        monitor.start()
        if scheduler is not None:
            scheduler.arm()
        self._num_runs += 1
        self.sim.run()

        if not reports:
            if scheduler is not None:
                scheduler.stop()
            monitor.stop()
            return None, self.sim.now, ()
        return reports[0]

    def run_golden(self, seed: int) -> GoldenModel:
        """
        Fault-free run of one seed.

        Raises:
            GoldenModelError: If the run does not terminate correctly
        """
        cause, end_time, state = self._simulate(seed, self.config.golden_conditions())
        if cause != TerminationCause.CORRECT:
            raise GoldenModelError(seed, cause, end_time)
        golden = GoldenModel(seed, end_time, state)
        self.golden_models[seed] = golden
        logger.info(f"Golden model finished within {end_time} ps ({format_ns(end_time)}).")
        return golden

    def timeout_condition(self, golden: GoldenModel) -> TerminationCondition:
        timeout = round(golden.execution_time * self.config.termination.timeout_factor)
        return TerminationCondition(TerminationCause.TIMEOUT, "Timeout", timeout=timeout)

    def run_injection(self, seed: int, golden: GoldenModel, ceiling: int = 0) -> RunOutcome:
        """
        Injection run of one seed with an injection ceiling (0 = unlimited).

        Raises:
            FaultInjectionError: If the run stops without a termination report
        """
        config = self.config
        ctx = RunContext(seed)
        log_path = None
        if config.general.log_injections:
            log_path = config.log_path("fault_injection", suffix=f"seed{seed}_run{self._num_runs}")
        statistics = ImpactStatistics(
            self.sim,
            output_nets=config.netlists.outputs,
            next_state_nets=config.netlists.next_state,
            check_outputs=config.flip.check_output_modification,
            check_next_state=config.flip.check_next_state_modification,
            log_path=log_path,
            display_name=self.catalog.display_name,
        )
        scheduler = InjectionScheduler(
            self.sim,
            self.catalog,
            WeightedSelector(self.catalog, config.flip.reg_to_sig_ratio,
                             config.flip.use_bitwidth_as_weight),
            BitFlipEngine(self.sim, config.timing.signal_fault_duration,
                          config.timing.register_fault_duration, config.flip.enum_fallback),
            statistics,
            config.scheduler_settings(max_num_fault_inject=ceiling),
            ctx,
        )
        conditions = config.golden_conditions() + [self.timeout_condition(golden)]
        cause, end_time, state = self._simulate(seed, conditions, scheduler)
        if cause is None:
            raise FaultInjectionError(
                f"Simulation stopped at {format_ns(end_time)} without a termination report "
                f"(seed={seed}, faults injected={ctx.num_injected})"
            )

        if cause == TerminationCause.CORRECT:
            mismatches = [
                (net, expected, actual)
                for net, expected, actual in zip(config.analysis.internal_state,
                                                 golden.final_internal_state, state)
                if expected != actual
            ]
            if mismatches:
                cause = TerminationCause.LATENT
                logger.info("Internal state check failed:")
                for net, expected, actual in mismatches:
                    logger.info(f" - {net} : expected {expected}, got {actual}.")
            elif config.analysis.internal_state:
                logger.info("State check successful.")

        outcome = RunOutcome(cause, ctx.num_injected, ctx.last_flipped_net, end_time, ceiling)
        self.outcomes.append(outcome)
        logger.info(f"Injection terminated with id {int(cause)}. Flipped {ctx.num_injected} nets, "
                    f"maximum number of flips was set to {ceiling}.")
        return outcome

    def analyze_seed(self, seed: int) -> SeedResult:
        """Golden run plus bisection of one seed."""
        golden = self.run_golden(seed)
        bisection = Bisection(seed, self.config.analysis.bisection)
        while not bisection.done:
            outcome = self.run_injection(seed, golden, bisection.state.next_try)
            bisection.record(outcome)
            if not bisection.done:
                state = bisection.state
                logger.info(f"Bisection Info: Seed: {seed}, Lower Bound: {state.low}, "
                            f"Upper Bound: {state.high}, Next Try: {state.next_try}.")
        logger.info(f"Finished Testing Seed: {seed}.")
        return bisection.result

    def run(self) -> List[SeedResult]:
        """
        Analyze ``max_num_tests`` seeds starting at ``initial_seed``.

        Returns:
            One SeedResult per seed, also written to the vulnerability log
        """
        self.config.apply_verbosity()
        self.prepare()
        analysis = self.config.analysis
        log_path = Path(self.vulnerability_log) if self.vulnerability_log else \
            self.config.log_path("vulnerable_net")
        log_path.parent.mkdir(parents=True, exist_ok=True)

        with open(log_path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(VULNERABILITY_LOG_HEADER)
            f.flush()
            for seed in range(analysis.initial_seed, analysis.initial_seed + analysis.max_num_tests):
                result = self.analyze_seed(seed)
                self.results.append(result)
                writer.writerow(result.log_row())
                f.flush()

        logger.info(f"Reached the end of the vulnerable net analysis ({log_path}).")
        return self.results
