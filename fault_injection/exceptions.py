"""
Exceptions raised by the fault injection tooling.

Recoverable conditions (failed forces, unknown net kinds, x readings on
termination signals) are logged by the component that hits them. Only the
conditions that make an analysis meaningless are raised.
"""

from typing import Optional


class FaultInjectionError(Exception):
    """Base class for all fault injection errors."""


class ConfigError(FaultInjectionError, ValueError):
    """Invalid or inconsistent configuration."""


class SimulationError(FaultInjectionError):
    """The simulator rejected a command (unknown path, bad value, ...)."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Simulator rejected '{command}': {reason}")


class UnknownLeafKind(FaultInjectionError):
    """A net with a kind that cannot be injected or expanded."""

    def __init__(self, path: str, kind: str):
        self.path = path
        self.kind = kind
        super().__init__(f"Unknown type '{kind}' of net {path}")


class GoldenModelError(FaultInjectionError):
    """The fault-free reference run did not terminate correctly."""

    def __init__(self, seed: int, cause: Optional[int], end_time: int):
        self.seed = seed
        self.cause = cause
        self.end_time = end_time
        super().__init__(
            f"Golden model did not terminate correctly "
            f"(seed={seed}, termination id={cause}, time={end_time} ps)"
        )


class DeterminismError(FaultInjectionError):
    """Two runs with the same seed disagree on the outcome of a fault count."""

    def __init__(self, seed: int, fault_count: int, low: int, high: Optional[int], detail: str):
        self.seed = seed
        self.fault_count = fault_count
        self.low = low
        self.high = high
        super().__init__(
            f"Bisection is not reproducible for seed {seed}: {detail} "
            f"(faults injected={fault_count}, lower bound={low}, upper bound={high})"
        )
