"""
RTL Fault Injection and Vulnerable Net Analysis

Injects bit flips into running RTL simulations, measures whether they
propagate, and bisects the injected-fault count to find the earliest fault
responsible for a failing run.

Components:
- sim_control: simulation control interface (describe/examine/force/schedule)
- event_simulator: in-process event-driven RTL model implementing it
- questa: Questa/ModelSim backend driven through Tcl
- net_catalog: flatten hierarchies into injectable leaf nets
- selector: weighted register/signal selection
- bitflip: single bit flips with timed or manual restore
- scheduler: periodic and forced injection timing
- statistics: output/next-state propagation counters and injection log
- termination: prioritized termination monitor
- bisector: golden model and fault-count bisection
- report_generator: JSON and markdown vulnerability reports
"""

__version__ = "0.1.0"

from .bisector import Bisection, GoldenModel, SeedResult, VulnerabilityAnalysis
from .bitflip import BitFlipEngine, EnumFallback, InjectionEvent
from .config_loader import ConfigLoader, FaultInjectionConfig
from .event_simulator import EventSimulator
from .exceptions import (
    ConfigError,
    DeterminismError,
    FaultInjectionError,
    GoldenModelError,
    SimulationError,
    UnknownLeafKind,
)
from .net_catalog import Net, NetCatalog, build_catalog, extract_nets
from .questa import QuestaSimulationControl
from .report_generator import ReportGenerator
from .run_context import RunContext
from .scheduler import InjectionScheduler
from .selector import WeightedSelector
from .statistics import ImpactStatistics
from .termination import TerminationCause, TerminationCondition, TerminationMonitor

__all__ = [
    "Bisection",
    "BitFlipEngine",
    "ConfigError",
    "ConfigLoader",
    "DeterminismError",
    "EnumFallback",
    "EventSimulator",
    "FaultInjectionConfig",
    "FaultInjectionError",
    "GoldenModel",
    "GoldenModelError",
    "ImpactStatistics",
    "InjectionEvent",
    "InjectionScheduler",
    "Net",
    "NetCatalog",
    "QuestaSimulationControl",
    "ReportGenerator",
    "RunContext",
    "SeedResult",
    "SimulationError",
    "TerminationCause",
    "TerminationCondition",
    "TerminationMonitor",
    "UnknownLeafKind",
    "VulnerabilityAnalysis",
    "WeightedSelector",
    "build_catalog",
    "extract_nets",
]
