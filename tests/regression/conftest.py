#!/usr/bin/env python3
"""
Pytest configuration for regression tests.
"""

import logging
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fault_injection.demo_design import build_accumulator_design, demo_config
from fault_injection.event_simulator import EventSimulator
from fault_injection.run_context import RunContext
from fault_injection.sim_control import SignalKind


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "statistical: marks tests that check random distributions"
    )


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on content."""
    for item in items:
        if "end_to_end" in item.name.lower():
            item.add_marker(pytest.mark.slow)

        if "distribution" in item.name.lower():
            item.add_marker(pytest.mark.statistical)


@pytest.fixture(autouse=True)
def package_log_level():
    """Restore the package logger level changed by ``apply_verbosity``."""
    package_logger = logging.getLogger("fault_injection")
    level = package_logger.level
    yield package_logger
    package_logger.setLevel(level)


@pytest.fixture
def demo_sim():
    """Accumulator testbench at time 0."""
    return build_accumulator_design()


@pytest.fixture
def demo_cfg(tmp_path):
    """Demo configuration logging into a temporary directory."""
    return demo_config(log_dir=str(tmp_path), max_num_tests=1)


@pytest.fixture
def ctx():
    return RunContext(seed=7)


@pytest.fixture
def small_sim():
    """
    Two-flop design with a combinational net:

        /top/q    8-bit register, loaded with /top/d on every rising edge
        /top/d    8-bit net, /top/in + 1
        /top/in   8-bit register written by the testbench
        /top/mode enum {OFF, ON, WAIT}
        /top/clk  10ns clock
    """
    sim = EventSimulator()
    clk = sim.add_clock("/top/clk", 10_000)
    sim.add_signal("/top/in", width=8, init=3)
    sim.add_signal("/top/q", width=8)
    sim.add_signal("/top/d", width=8, kind=SignalKind.NET)
    sim.add_enum("/top/mode", ("OFF", "ON", "WAIT"))
    sim.assign("/top/d", lambda s: s.read("/top/in") + 1, ["/top/in"])
    sim.always_ff(clk, lambda s: {"/top/q": s.read("/top/d")})
    return sim
