#!/usr/bin/env python3
"""
Regression tests for weighted net selection.
"""

import sys
import pytest
from collections import Counter
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fault_injection.net_catalog import Net, NetCatalog
from fault_injection.run_context import RunContext
from fault_injection.selector import WeightedSelector, WidthDistribution
from fault_injection.sim_control import SignalKind

WIDE = Net("/top/wide", SignalKind.REGISTER, width=8)
NARROW = Net("/top/narrow", SignalKind.REGISTER, width=1)
SIGNAL = Net("/top/sig", SignalKind.NET, width=1)

NUM_DRAWS = 9_000


def draw(selector, seed=1, n=NUM_DRAWS):
    ctx = RunContext(seed)
    return Counter(selector.select(ctx) for _ in range(n))


class TestWidthWeighting:
    """Test bit-width weighting of the selection."""

    def test_width_distribution_groups(self):
        distribution = WidthDistribution.from_nets([WIDE, NARROW, NARROW])

        assert distribution.total_weight == 10
        assert distribution.pick_group(7.9) == (WIDE,)
        assert distribution.pick_group(8.0) == (NARROW, NARROW)

    def test_bitwidth_weight_distribution(self):
        """Test that an 8-bit net is chosen about 8 times as often as a 1-bit net."""
        selector = WeightedSelector(NetCatalog(register_nets=(WIDE, NARROW)),
                                    use_bitwidth_as_weight=True)

        counts = draw(selector)

        assert counts[(WIDE, True)] == pytest.approx(NUM_DRAWS * 8 / 9, rel=0.05)
        assert counts[(NARROW, True)] == pytest.approx(NUM_DRAWS / 9, rel=0.2)

    def test_uniform_distribution_without_weighting(self):
        selector = WeightedSelector(NetCatalog(register_nets=(WIDE, NARROW)))

        counts = draw(selector)

        assert counts[(WIDE, True)] == pytest.approx(NUM_DRAWS / 2, rel=0.05)


class TestListChoice:
    """Test the register/signal ratio."""

    def test_even_ratio_distribution(self):
        selector = WeightedSelector(NetCatalog(register_nets=(WIDE,), signal_nets=(SIGNAL,)))

        counts = draw(selector)

        assert counts[(WIDE, True)] == pytest.approx(NUM_DRAWS / 2, rel=0.05)
        assert counts[(SIGNAL, False)] == pytest.approx(NUM_DRAWS / 2, rel=0.05)

    def test_ratio_three_distribution(self):
        """Test that a ratio of 3 picks registers three times as often."""
        selector = WeightedSelector(NetCatalog(register_nets=(WIDE,), signal_nets=(SIGNAL,)),
                                    reg_to_sig_ratio=3)

        counts = draw(selector)

        assert counts[(WIDE, True)] == pytest.approx(NUM_DRAWS * 3 / 4, rel=0.05)

    def test_zero_ratio_only_signals(self):
        selector = WeightedSelector(NetCatalog(register_nets=(WIDE,), signal_nets=(SIGNAL,)),
                                    reg_to_sig_ratio=0)

        assert set(draw(selector, n=200)) == {(SIGNAL, False)}

    def test_empty_list_forces_other(self):
        """Test that an empty list is never chosen regardless of the ratio."""
        registers_only = WeightedSelector(NetCatalog(register_nets=(WIDE,)), reg_to_sig_ratio=0)
        signals_only = WeightedSelector(NetCatalog(signal_nets=(SIGNAL,)), reg_to_sig_ratio=100)

        assert set(draw(registers_only, n=50)) == {(WIDE, True)}
        assert set(draw(signals_only, n=50)) == {(SIGNAL, False)}

    def test_empty_catalog(self):
        selector = WeightedSelector(NetCatalog())

        with pytest.raises(ValueError) as exc_info:
            selector.select(RunContext(1))

        assert "no nets" in str(exc_info.value).lower()

    def test_negative_ratio_rejected(self):
        with pytest.raises(ValueError):
            WeightedSelector(NetCatalog(register_nets=(WIDE,)), reg_to_sig_ratio=-1)

    def test_same_seed_same_sequence(self):
        """Test that selection only depends on the run context's seed."""
        selector = WeightedSelector(NetCatalog(register_nets=(WIDE, NARROW), signal_nets=(SIGNAL,)),
                                    use_bitwidth_as_weight=True)
        first, second = RunContext(99), RunContext(99)

        assert [selector.select(first) for _ in range(50)] == \
            [selector.select(second) for _ in range(50)]
