"""
Weighted Selector: draw the next net to inject.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .net_catalog import Net, NetCatalog
from .run_context import RunContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WidthDistribution:
    """Nets grouped by bit width, each group weighted by ``width * group size``."""
    total_weight: int
    groups: Tuple[Tuple[int, int, Tuple[Net, ...]], ...]  # (width, weight, nets)

    @classmethod
    def from_nets(cls, nets: Sequence[Net]) -> "WidthDistribution":
        by_width: Dict[int, List[Net]] = {}
        for net in nets:
            by_width.setdefault(net.width, []).append(net)
        groups = tuple(
            (width, width * len(members), tuple(members))
            for width, members in by_width.items()
        )
        return cls(sum(weight for _, weight, _ in groups), groups)

    def pick_group(self, draw: float) -> Tuple[Net, ...]:
        """Roulette over the groups in insertion order with ``draw`` in [0, total_weight)."""
        for _, weight, members in self.groups:
            if draw < weight:
                return members
            draw -= weight
        return self.groups[-1][2]


class WeightedSelector:
    """Chooses between registers and signals, then a net within the chosen list."""

    def __init__(self, catalog: NetCatalog, reg_to_sig_ratio: float = 1.0,
                 use_bitwidth_as_weight: bool = False):
        """
        Initialize selector.

        Args:
            catalog: Nets to choose from
            reg_to_sig_ratio: Register:Signal selection weight (1 = 50/50)
            use_bitwidth_as_weight: Give an N-bit net N times the chance of a 1-bit net
        """
        if reg_to_sig_ratio < 0:
            raise ValueError(f"reg_to_sig_ratio must not be negative, got {reg_to_sig_ratio}")
        self.catalog = catalog
        self.reg_to_sig_ratio = reg_to_sig_ratio
        self.use_bitwidth_as_weight = use_bitwidth_as_weight
        self._distributions = {
            True: WidthDistribution.from_nets(catalog.register_nets),
            False: WidthDistribution.from_nets(catalog.signal_nets),
        }

    def choose_list(self, ctx: RunContext) -> bool:
        """Return True to select from the register list."""
        if not self.catalog.register_nets:
            return False
        if not self.catalog.signal_nets:
            return True
        return ctx.rng.random() * (self.reg_to_sig_ratio + 1) >= 1

    def select(self, ctx: RunContext) -> Tuple[Net, bool]:
        """
        Draw one net.

        Args:
            ctx: Run context providing the random stream

        Returns:
            Tuple of (net, is_register)

        Raises:
            ValueError: If the catalog is empty
        """
        if self.catalog.is_empty:
            raise ValueError("No nets selected for fault injection")

        is_register = self.choose_list(ctx)
        candidates: Sequence[Net] = (
            self.catalog.register_nets if is_register else self.catalog.signal_nets
        )
        if self.use_bitwidth_as_weight:
            distribution = self._distributions[is_register]
            candidates = distribution.pick_group(ctx.rng.random() * distribution.total_weight)

        net = candidates[int(ctx.rng.random() * len(candidates))]
        return net, is_register
