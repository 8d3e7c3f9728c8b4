#!/usr/bin/env python3
"""
Configuration file loader and validator for fault injection campaigns.

Loads YAML configuration files, expands environment variables in paths,
parses time literals and validates the settings.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .bitflip import EnumFallback
from .exceptions import ConfigError
from .scheduler import ForcedInjection, SchedulerSettings
from .termination import TerminationCause, TerminationCondition
from .timeunits import parse_time

logger = logging.getLogger(__name__)

VERBOSITY_LEVELS = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: logging.DEBUG,
}


def verbosity_to_level(verbosity: int) -> int:
    """Map the 0-3 verbosity setting to a logging level."""
    return VERBOSITY_LEVELS[max(0, min(3, int(verbosity)))]


@dataclass
class GeneralSettings:
    verbosity: int = 2
    log_injections: bool = False
    log_dir: str = "."
    seed: int = 12345
    print_statistics: bool = True


@dataclass
class TimingSettings:
    """Injection timing, all times in ps."""
    inject_start_time: int = 100_000
    inject_stop_time: int = 0
    injection_clock: Optional[str] = None
    injection_clock_trigger: str = "1"
    fault_period: int = 1
    rand_initial_injection_phase: bool = False
    max_num_fault_inject: int = 0
    forced_injection_times: List[int] = field(default_factory=list)
    forced_injection_signals: List[Tuple[str, bool]] = field(default_factory=list)
    include_forced_inj_in_stats: bool = False
    signal_fault_duration: int = 1_000
    register_fault_duration: int = 0


@dataclass
class FlipSettings:
    allow_multi_bit_upset: bool = False
    use_bitwidth_as_weight: bool = False
    check_output_modification: bool = False
    check_next_state_modification: bool = False
    reg_to_sig_ratio: float = 1.0
    enum_fallback: EnumFallback = EnumFallback.SKIP


@dataclass
class NetlistSettings:
    """Hierarchical paths (or roots) of the nets involved in injection."""
    inject_registers: List[str] = field(default_factory=list)
    inject_signals: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    next_state: List[str] = field(default_factory=list)
    assertion_disable: List[str] = field(default_factory=list)
    injection_safe: bool = True


@dataclass
class TerminationSettings:
    correct: str
    exception: str
    incorrect: Optional[str] = None
    report_x_as_exception: bool = True
    timeout_factor: float = 1.2

    def __post_init__(self):
        if self.incorrect is None:
            self.incorrect = self.exception


@dataclass
class BisectionPolicy:
    """
    Variant of the fault-count bisection.

    Attributes:
        rounding: ``floor`` or ``ceil`` midpoint between the bounds
        short_circuit_first_flip: Resolve immediately when the unlimited run
            fails after exactly one injected fault
        confirm_lower_bound: Re-run the final lower bound to confirm it is safe
    """
    rounding: str = "floor"
    short_circuit_first_flip: bool = True
    confirm_lower_bound: bool = True

    def __post_init__(self):
        if self.rounding not in ("floor", "ceil"):
            raise ConfigError(f"Invalid bisection rounding '{self.rounding}', use 'floor' or 'ceil'")

    def midpoint(self, low: int, high: int) -> int:
        if self.rounding == "ceil":
            return (low + high + 1) // 2
        return (low + high) // 2


@dataclass
class AnalysisSettings:
    initial_seed: int = 12345
    max_num_tests: int = 1
    internal_state: List[str] = field(default_factory=list)
    bisection: BisectionPolicy = field(default_factory=BisectionPolicy)


@dataclass
class FaultInjectionConfig:
    """Complete fault injection configuration."""
    termination: TerminationSettings
    general: GeneralSettings = field(default_factory=GeneralSettings)
    timing: TimingSettings = field(default_factory=TimingSettings)
    flip: FlipSettings = field(default_factory=FlipSettings)
    netlists: NetlistSettings = field(default_factory=NetlistSettings)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)
    source: Optional[str] = None

    def forced_injections(self) -> List[ForcedInjection]:
        times = self.timing.forced_injection_times
        signals = self.timing.forced_injection_signals
        if not signals:
            return [ForcedInjection(time) for time in times]
        return [ForcedInjection(time, net, is_register)
                for time, (net, is_register) in zip(times, signals)]

    def scheduler_settings(self, max_num_fault_inject: Optional[int] = None) -> SchedulerSettings:
        """Scheduler options, optionally overriding the injection ceiling."""
        timing = self.timing
        return SchedulerSettings(
            inject_start_time=timing.inject_start_time,
            inject_stop_time=timing.inject_stop_time,
            injection_clock=timing.injection_clock,
            injection_clock_trigger=timing.injection_clock_trigger,
            fault_period=timing.fault_period,
            rand_initial_injection_phase=timing.rand_initial_injection_phase,
            max_num_fault_inject=(timing.max_num_fault_inject if max_num_fault_inject is None
                                  else max_num_fault_inject),
            forced_injections=self.forced_injections(),
            include_forced_inj_in_stats=timing.include_forced_inj_in_stats,
            allow_multi_bit_upset=self.flip.allow_multi_bit_upset,
            assertion_disable=list(self.netlists.assertion_disable),
            print_statistics=self.general.print_statistics,
        )

    def golden_conditions(self) -> List[TerminationCondition]:
        """Exception, Incorrect and Correct termination signals."""
        term = self.termination
        return [
            TerminationCondition(TerminationCause.EXCEPTION, "Exception", signal_path=term.exception),
            TerminationCondition(TerminationCause.INCORRECT, "Incorrect", signal_path=term.incorrect),
            TerminationCondition(TerminationCause.CORRECT, "Correct", signal_path=term.correct),
        ]

    @property
    def x_priority(self) -> Optional[int]:
        return TerminationCause.EXCEPTION if self.termination.report_x_as_exception else None

    def apply_verbosity(self) -> int:
        """Set the level of the package loggers from ``general.verbosity``."""
        level = verbosity_to_level(self.general.verbosity)
        logging.getLogger(__package__).setLevel(level)
        return level

    def log_path(self, prefix: str, suffix: Optional[str] = None) -> Path:
        """Timestamped log file in the configured log directory."""
        name = f"{prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        if suffix:
            name += f"_{suffix}"
        return Path(self.general.log_dir) / f"{name}.log"


class ConfigLoader:
    """Loads and validates YAML configuration files."""

    @staticmethod
    def expand_env_vars(value: str) -> str:
        """Expand environment variables in a string.

        Supports $VAR and ${VAR} syntax. Unset variables are left as-is.
        """
        if not isinstance(value, str):
            return value

        def replacer(match):
            var_name = match.group(1)
            return os.environ.get(var_name, match.group(0))

        value = re.sub(r'\$\{([^}]+)\}', replacer, value)
        value = re.sub(r'\$([A-Za-z_][A-Za-z0-9_]*)', replacer, value)
        return value

    @staticmethod
    def validate_required_fields(config: Dict[str, Any], required: List[str], context: str = "config"):
        """Validate that required fields are present."""
        missing = [name for name in required if name not in config or config[name] is None]
        if missing:
            raise ConfigError(f"Missing required fields in {context}: {', '.join(missing)}")

    @staticmethod
    def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
        section = data.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"Section '{name}' must be a mapping")
        return section

    @staticmethod
    def _time(section: Dict[str, Any], key: str, default: int, context: str) -> int:
        if key not in section or section[key] is None:
            return default
        try:
            value = parse_time(section[key])
        except ValueError as e:
            raise ConfigError(f"{context}.{key}: {e}") from None
        if value < 0:
            raise ConfigError(f"{context}.{key} must not be negative")
        return value

    @staticmethod
    def _paths(section: Dict[str, Any], key: str) -> List[str]:
        value = section.get(key) or []
        if isinstance(value, str):
            value = [value]
        return [ConfigLoader.expand_env_vars(str(item)) for item in value]

    @staticmethod
    def _forced_signal(entry: Any, index: int) -> Tuple[str, bool]:
        if isinstance(entry, str):
            return ConfigLoader.expand_env_vars(entry), False
        if isinstance(entry, dict):
            ConfigLoader.validate_required_fields(entry, ['net'], context=f"forced_injection_signals[{index}]")
            return ConfigLoader.expand_env_vars(entry['net']), bool(entry.get('is_register', False))
        if isinstance(entry, (list, tuple)) and len(entry) == 2:
            return ConfigLoader.expand_env_vars(str(entry[0])), bool(entry[1])
        raise ConfigError(f"forced_injection_signals[{index}] must be a net path, "
                          f"[net, is_register] or a mapping")

    @staticmethod
    def parse_timing(section: Dict[str, Any]) -> TimingSettings:
        t = ConfigLoader._time
        defaults = TimingSettings()
        times = section.get('forced_injection_times') or []
        try:
            forced_times = [parse_time(value) for value in times]
        except ValueError as e:
            raise ConfigError(f"timing.forced_injection_times: {e}") from None
        forced_signals = [ConfigLoader._forced_signal(entry, i)
                          for i, entry in enumerate(section.get('forced_injection_signals') or [])]

        if forced_signals and len(forced_signals) != len(forced_times):
            raise ConfigError("'forced_injection_times' and 'forced_injection_signals' "
                              "don't have the same non-zero length")

        fault_period = int(section.get('fault_period', defaults.fault_period))
        if fault_period < 1:
            raise ConfigError(f"timing.fault_period must be at least 1, got {fault_period}")
        max_num = int(section.get('max_num_fault_inject', 0) or 0)
        if max_num < 0:
            raise ConfigError("timing.max_num_fault_inject must not be negative")

        clock = section.get('injection_clock') or None
        return TimingSettings(
            inject_start_time=t(section, 'inject_start_time', defaults.inject_start_time, "timing"),
            inject_stop_time=t(section, 'inject_stop_time', defaults.inject_stop_time, "timing"),
            injection_clock=ConfigLoader.expand_env_vars(clock) if clock else None,
            injection_clock_trigger=str(section.get('injection_clock_trigger', "1")),
            fault_period=fault_period,
            rand_initial_injection_phase=bool(section.get('rand_initial_injection_phase', False)),
            max_num_fault_inject=max_num,
            forced_injection_times=forced_times,
            forced_injection_signals=forced_signals,
            include_forced_inj_in_stats=bool(section.get('include_forced_inj_in_stats', False)),
            signal_fault_duration=t(section, 'signal_fault_duration',
                                    defaults.signal_fault_duration, "timing"),
            register_fault_duration=t(section, 'register_fault_duration',
                                      defaults.register_fault_duration, "timing"),
        )

    @staticmethod
    def parse_flip(section: Dict[str, Any]) -> FlipSettings:
        ratio = float(section.get('reg_to_sig_ratio', 1.0))
        if ratio < 0:
            raise ConfigError(f"flip.reg_to_sig_ratio must not be negative, got {ratio}")
        fallback = section.get('enum_fallback', EnumFallback.SKIP.value)
        try:
            enum_fallback = EnumFallback(fallback)
        except ValueError:
            choices = ", ".join(f.value for f in EnumFallback)
            raise ConfigError(f"flip.enum_fallback must be one of {choices}, got '{fallback}'") from None
        return FlipSettings(
            allow_multi_bit_upset=bool(section.get('allow_multi_bit_upset', False)),
            use_bitwidth_as_weight=bool(section.get('use_bitwidth_as_weight', False)),
            check_output_modification=bool(section.get('check_output_modification', False)),
            check_next_state_modification=bool(section.get('check_next_state_modification', False)),
            reg_to_sig_ratio=ratio,
            enum_fallback=enum_fallback,
        )

    @staticmethod
    def parse_netlists(section: Dict[str, Any]) -> NetlistSettings:
        p = ConfigLoader._paths
        return NetlistSettings(
            inject_registers=p(section, 'inject_registers'),
            inject_signals=p(section, 'inject_signals'),
            exclude=p(section, 'exclude'),
            outputs=p(section, 'outputs'),
            next_state=p(section, 'next_state'),
            assertion_disable=[str(name) for name in section.get('assertion_disable') or []],
            injection_safe=bool(section.get('injection_safe', True)),
        )

    @staticmethod
    def parse_termination(section: Dict[str, Any]) -> TerminationSettings:
        ConfigLoader.validate_required_fields(section, ['correct', 'exception'], context="termination")
        factor = float(section.get('timeout_factor', 1.2))
        if factor <= 0:
            raise ConfigError(f"termination.timeout_factor must be positive, got {factor}")
        incorrect = section.get('incorrect')
        return TerminationSettings(
            correct=ConfigLoader.expand_env_vars(section['correct']),
            exception=ConfigLoader.expand_env_vars(section['exception']),
            incorrect=ConfigLoader.expand_env_vars(incorrect) if incorrect else None,
            report_x_as_exception=bool(section.get('report_x_as_exception', True)),
            timeout_factor=factor,
        )

    @staticmethod
    def parse_analysis(section: Dict[str, Any], default_seed: int) -> AnalysisSettings:
        bisection = ConfigLoader._section(section, 'bisection')
        max_num_tests = int(section.get('max_num_tests', 1))
        if max_num_tests < 1:
            raise ConfigError(f"analysis.max_num_tests must be at least 1, got {max_num_tests}")
        return AnalysisSettings(
            initial_seed=int(section.get('initial_seed', default_seed)),
            max_num_tests=max_num_tests,
            internal_state=ConfigLoader._paths(section, 'internal_state'),
            bisection=BisectionPolicy(
                rounding=str(bisection.get('rounding', 'floor')),
                short_circuit_first_flip=bool(bisection.get('short_circuit_first_flip', True)),
                confirm_lower_bound=bool(bisection.get('confirm_lower_bound', True)),
            ),
        )

    @staticmethod
    def parse_general(section: Dict[str, Any]) -> GeneralSettings:
        verbosity = int(section.get('verbosity', 2))
        if verbosity not in VERBOSITY_LEVELS:
            raise ConfigError(f"general.verbosity must be between 0 and 3, got {verbosity}")
        return GeneralSettings(
            verbosity=verbosity,
            log_injections=bool(section.get('log_injections', False)),
            log_dir=ConfigLoader.expand_env_vars(str(section.get('log_dir', '.'))),
            seed=int(section.get('seed', 12345)),
            print_statistics=bool(section.get('print_statistics', True)),
        )

    @staticmethod
    def from_dict(data: Dict[str, Any], source: Optional[str] = None) -> FaultInjectionConfig:
        """Build a configuration from already parsed YAML data.

        Raises:
            ConfigError: If the configuration is invalid
        """
        if not data:
            raise ConfigError(f"Empty config: {source or '<dict>'}")
        if not isinstance(data, dict):
            raise ConfigError(f"Config must be a mapping: {source or '<dict>'}")

        ConfigLoader.validate_required_fields(data, ['termination'])
        section = ConfigLoader._section

        general = ConfigLoader.parse_general(section(data, 'general'))
        return FaultInjectionConfig(
            termination=ConfigLoader.parse_termination(section(data, 'termination')),
            general=general,
            timing=ConfigLoader.parse_timing(section(data, 'timing')),
            flip=ConfigLoader.parse_flip(section(data, 'flip')),
            netlists=ConfigLoader.parse_netlists(section(data, 'netlists')),
            analysis=ConfigLoader.parse_analysis(section(data, 'analysis'), general.seed),
            source=source,
        )

    @staticmethod
    def load_config(config_path: str) -> FaultInjectionConfig:
        """Load and validate a configuration file.

        Args:
            config_path: Path to YAML config file

        Returns:
            FaultInjectionConfig object

        Raises:
            FileNotFoundError: If config file not found
            ValueError: If config is invalid (ConfigError)
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, 'r') as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from None

        config = ConfigLoader.from_dict(data, source=str(config_path))
        logger.debug(f"Loaded config {config_path}")
        return config
