#!/usr/bin/env python3
"""
Command-line entry point.

  rtl-fault-inject check-config CONFIG
  rtl-fault-inject demo [--seeds N] [--output-dir DIR]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .bisector import VulnerabilityAnalysis
from .config_loader import ConfigLoader
from .demo_design import build_accumulator_design, demo_config
from .exceptions import FaultInjectionError
from .report_generator import ReportGenerator
from .timeunits import format_ns

logger = logging.getLogger(__name__)


def check_config(args) -> int:
    try:
        config = ConfigLoader.load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"✗ Error loading config: {e}")
        return 1

    timing = config.timing
    netlists = config.netlists
    print(f"✓ Successfully loaded config: {args.config}")
    print(f"  Injection window: {format_ns(timing.inject_start_time)} - "
          f"{format_ns(timing.inject_stop_time) if timing.inject_stop_time else 'end of simulation'}")
    print(f"  Injection clock: {timing.injection_clock or 'none'} "
          f"(every {timing.fault_period} trigger(s))")
    print(f"  Forced injections: {len(timing.forced_injection_times)}")
    print(f"  Register roots: {len(netlists.inject_registers)}, "
          f"signal roots: {len(netlists.inject_signals)}")
    print(f"  Termination: correct={config.termination.correct}, "
          f"incorrect={config.termination.incorrect}, exception={config.termination.exception}")
    print(f"  Seeds: {config.analysis.initial_seed} .. "
          f"{config.analysis.initial_seed + config.analysis.max_num_tests - 1}")
    if args.dump:
        print("\nFull config:")
        print(config)
    return 0


def run_demo(args) -> int:
    output_dir = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    config = demo_config(log_dir=str(output_dir), max_num_tests=args.seeds)
    if args.initial_seed is not None:
        config.analysis.initial_seed = args.initial_seed
    if args.verbosity is not None:
        config.general.verbosity = args.verbosity

    sim = build_accumulator_design()
    analysis = VulnerabilityAnalysis(sim, config,
                                     vulnerability_log=output_dir / "vulnerable_net.log")
    try:
        results = analysis.run()
    except FaultInjectionError as e:
        logger.error(str(e))
        return 1

    ReportGenerator(output_dir, config_source="demo").generate_reports(
        results, analysis.golden_models)

    for result in results:
        status = (f"vulnerable to {result.last_flipped_net} after {result.fault_count} faults"
                  if result.vulnerable else f"not vulnerable ({result.fault_count} faults)")
        print(f"Seed {result.seed}: {result.cause_label}, {status}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rtl-fault-inject",
        description="Fault injection and vulnerable net analysis for RTL simulations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate a configuration file
  %(prog)s check-config configs/accumulator_demo.yaml

  # Analyze 5 seeds of the built-in accumulator design
  %(prog)s demo --seeds 5 --output-dir output/demo
"""
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check-config", help="Load and validate a YAML configuration")
    check.add_argument("config", help="Path to config file")
    check.add_argument("--dump", action="store_true", help="Dump parsed config")
    check.set_defaults(func=check_config)

    demo = subparsers.add_parser("demo", help="Run the vulnerable net analysis on the demo design")
    demo.add_argument("--seeds", type=int, default=3,
                      help="Number of seeds to analyze (default: 3)")
    demo.add_argument("--initial-seed", type=int, default=None,
                      help="First seed (default: 12345)")
    demo.add_argument("--output-dir", type=Path, default=Path("output/demo"),
                      help="Directory for logs and reports (default: output/demo)")
    demo.add_argument("--verbosity", type=int, choices=range(4), default=None,
                      help="0 errors only, 1 warnings, 2 info, 3 debug (default: config value)")
    demo.set_defaults(func=run_demo)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except Exception as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
