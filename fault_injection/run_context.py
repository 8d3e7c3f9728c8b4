"""
Per-run mutable state.

One RunContext is created for every simulation run (golden run, injection run,
bisection run). Components never keep random state, counters or upset
bookkeeping of their own; they read and write the context they are handed.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .sim_control import Radix, SimulationControl

logger = logging.getLogger(__name__)


class UpsetTracker:
    """
    Registers currently holding an injected value.

    An entry maps the register path to the binary value it held right after
    the flip. It is dropped as soon as the register reads back anything else,
    i.e. once the design has overwritten the fault.
    """

    def __init__(self):
        self._flipped: Dict[str, str] = {}

    def record(self, path: str, flipped_value: str) -> None:
        self._flipped[path] = flipped_value

    def is_upset(self, sim: SimulationControl, path: str) -> bool:
        """Check if a register still holds its injected value."""
        flipped_value = self._flipped.get(path)
        if flipped_value is None:
            return False
        if sim.examine(path, Radix.BINARY) != flipped_value:
            del self._flipped[path]
            return False
        return True

    def clear(self) -> None:
        self._flipped.clear()

    def __contains__(self, path: str) -> bool:
        return path in self._flipped

    def __len__(self) -> int:
        return len(self._flipped)


@dataclass
class RunContext:
    """Random stream and bookkeeping owned by a single simulation run."""
    seed: int
    rng: random.Random = field(init=False, repr=False)
    upsets: UpsetTracker = field(default_factory=UpsetTracker, repr=False)
    injections: List = field(default_factory=list, repr=False)
    pending_unflips: Dict[str, object] = field(default_factory=dict, repr=False)
    num_injected: int = 0
    last_flipped_net: Optional[str] = None

    def __post_init__(self):
        self.rng = random.Random(self.seed)
        logger.debug(f"New run context for seed {self.seed}")

    def record_injection(self, event, counted: bool) -> None:
        """Append a successful injection; counted ones move the fault count."""
        self.injections.append(event)
        if counted:
            self.num_injected += 1
            self.last_flipped_net = event.net_path
