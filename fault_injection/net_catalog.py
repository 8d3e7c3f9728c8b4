#!/usr/bin/env python3
"""
Net Catalog: Flatten design hierarchies into injectable leaf nets

Expands arrays and records down to Register/Net/Enum/Integer leaves using the
structural metadata returned by the simulator, drops excluded subtrees and
splits the result into register and signal lists for the selector.
"""

import logging
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, List, Optional, Sequence, Tuple

from .exceptions import SimulationError, UnknownLeafKind
from .sim_control import SignalDescriptor, SignalKind, SimulationControl

logger = logging.getLogger(__name__)

ELLIPSIS = "[...]"

# Kinds the simulator reports for objects that are silently not injectable
IGNORED_RAW_KINDS = ("int",)


@dataclass(frozen=True)
class Net:
    """One injectable leaf signal."""
    path: str
    kind: SignalKind
    width: int = 1
    lower_index: int = 0
    is_array_or_record_element: bool = False

    @property
    def is_enum(self) -> bool:
        return self.kind == SignalKind.ENUM

    def __str__(self):
        return f"{self.width}-bit {self.kind.value} : {self.path}"


@dataclass(frozen=True)
class NetCatalog:
    """Deduplicated register and signal nets of one injection setup."""
    register_nets: Tuple[Net, ...] = ()
    signal_nets: Tuple[Net, ...] = ()
    common_path_prefix_mask: Tuple[bool, ...] = ()

    @property
    def all_nets(self) -> Tuple[Net, ...]:
        return self.register_nets + self.signal_nets

    @property
    def is_empty(self) -> bool:
        return not self.register_nets and not self.signal_nets

    def find(self, path: str) -> Optional[Net]:
        for net in self.all_nets:
            if net.path == path:
                return net
        return None

    def display_name(self, path: str) -> str:
        """Shorten a path by replacing the sections shared by all nets with ``[...]``."""
        return compress_path(path, self.common_path_prefix_mask)

    def __len__(self):
        return len(self.register_nets) + len(self.signal_nets)


def find_common_path_sections(paths: Sequence[str]) -> Tuple[bool, ...]:
    """
    Determine which ``/``-separated path sections are identical in all paths.

    Args:
        paths: Hierarchical paths

    Returns:
        One flag per section (up to the shortest path), True if common
    """
    if not paths:
        return ()
    reference = paths[0].split("/")
    split_paths = [path.split("/") for path in paths]
    num_sections = min(len(sections) for sections in split_paths)
    mask = [True] * num_sections
    for sections in split_paths:
        for i in range(num_sections):
            if mask[i] and sections[i] != reference[i]:
                mask[i] = False
    return tuple(mask)


def compress_path(path: str, mask: Sequence[bool]) -> str:
    """Replace runs of common sections by a single ``[...]``; the leaf name is always kept."""
    if not mask:
        return path
    sections = path.split("/")
    parts = []
    printed_dots = False
    for i, section in enumerate(sections):
        is_leaf = i == len(sections) - 1
        if i < len(mask) and mask[i] and not is_leaf:
            if not printed_dots:
                parts.append(ELLIPSIS)
                printed_dots = True
        else:
            parts.append(section)
            printed_dots = False
    return "/".join(parts)


def is_excluded(path: str, patterns: Iterable[str]) -> bool:
    # Literal paths match too, ``[3]`` would otherwise be read as a character class
    return any(path == pattern or fnmatchcase(path, pattern) for pattern in patterns)


class _Extractor:
    """Recursive expansion of one set of root paths."""

    def __init__(self, sim: SimulationControl, exclude_patterns: Sequence[str],
                 injection_safe: bool):
        self.sim = sim
        self.exclude_patterns = tuple(exclude_patterns)
        self.injection_safe = injection_safe
        self.skipped: List[str] = []

    def describe(self, path: str) -> Optional[SignalDescriptor]:
        try:
            return self.sim.describe(path)
        except SimulationError as e:
            logger.warning(f"Cannot describe {path}: {e.reason}. Skipping...")
            self.skipped.append(path)
            return None

    def expand(self, path: str, nested: bool = False) -> List[Net]:
        if is_excluded(path, self.exclude_patterns):
            logger.debug(f"Net {path} matches an exclude pattern")
            return []

        descriptor = self.describe(path)
        if descriptor is None:
            return []

        if descriptor.kind.is_leaf:
            return [Net(
                path=path,
                kind=descriptor.kind,
                width=descriptor.width,
                lower_index=descriptor.lower_index,
                is_array_or_record_element=nested,
            )]

        if descriptor.kind == SignalKind.ARRAY:
            return self._expand_array(path, descriptor)

        if descriptor.kind == SignalKind.RECORD:
            return self._expand_record(path, descriptor)

        if descriptor.raw_kind in IGNORED_RAW_KINDS:
            return []

        # Recoverable: log and continue with the rest of the hierarchy
        error = UnknownLeafKind(path, descriptor.raw_kind or descriptor.kind.value)
        logger.info(f"{error}. Skipping...")
        self.skipped.append(path)
        return []

    def _expand_array(self, path: str, descriptor: SignalDescriptor) -> List[Net]:
        first = f"{path}[0]"
        if self.injection_safe and descriptor.array_length > 0:
            first_descriptor = self.describe(first)
            if first_descriptor is not None and first_descriptor.kind == SignalKind.RECORD:
                logger.debug(f"Net {path} is an array of records, only index 0 is kept")
                return self.expand(first, nested=True)

        nets: List[Net] = []
        for i in range(descriptor.array_length):
            nets.extend(self.expand(f"{path}[{i}]", nested=True))
        return nets

    def _expand_record(self, path: str, descriptor: SignalDescriptor) -> List[Net]:
        nets: List[Net] = []
        for field_name in descriptor.field_names:
            field_path = f"{path}.{field_name}"
            if self.injection_safe and not is_excluded(field_path, self.exclude_patterns):
                field_descriptor = self.describe(field_path)
                if field_descriptor is not None and field_descriptor.kind == SignalKind.ARRAY:
                    logger.debug(f"Net {field_path} is an array inside a record, only index 0 is kept")
                    nets.extend(self.expand(f"{field_path}[0]", nested=True))
                    continue
            nets.extend(self.expand(field_path, nested=True))
        return nets


def dedupe(nets: Iterable[Net]) -> Tuple[Net, ...]:
    """Remove duplicate paths, first occurrence wins."""
    seen = set()
    unique = []
    for net in nets:
        if net.path not in seen:
            seen.add(net.path)
            unique.append(net)
    return tuple(unique)


def extract_nets(sim: SimulationControl, paths: Iterable[str],
                 exclude_patterns: Sequence[str] = (),
                 injection_safe: bool = True) -> List[Net]:
    """
    Recursively break the given paths down into injectable leaf nets.

    Args:
        sim: Simulation control used to describe objects
        paths: Root paths (leaves, arrays or records)
        exclude_patterns: Glob patterns; matching paths are dropped with their subtree
        injection_safe: Keep only index 0 of arrays of records and of arrays
            inside records. Questa forces index 0 no matter which index is
            requested for these shapes; other simulators may not need this.

    Returns:
        Leaf nets in expansion order (may contain duplicates)
    """
    extractor = _Extractor(sim, exclude_patterns, injection_safe)
    nets: List[Net] = []
    for path in paths:
        nets.extend(extractor.expand(path))
    if extractor.skipped:
        logger.debug(f"Skipped {len(extractor.skipped)} objects during net extraction")
    return nets


def build_catalog(sim: SimulationControl, register_roots: Iterable[str],
                  signal_roots: Iterable[str], exclude_patterns: Sequence[str] = (),
                  injection_safe: bool = True) -> NetCatalog:
    """
    Build the catalog of nets selectable for injection.

    Args:
        sim: Simulation control used to describe objects
        register_roots: Paths injected as registers (persistent upsets)
        signal_roots: Paths injected as signals (transient upsets)
        exclude_patterns: Glob patterns of paths to leave alone
        injection_safe: See ``extract_nets``

    Returns:
        NetCatalog
    """
    register_nets = dedupe(extract_nets(sim, register_roots, exclude_patterns, injection_safe))
    signal_nets = dedupe(extract_nets(sim, signal_roots, exclude_patterns, injection_safe))

    all_paths = [net.path for net in register_nets + signal_nets]
    catalog = NetCatalog(
        register_nets=register_nets,
        signal_nets=signal_nets,
        common_path_prefix_mask=find_common_path_sections(all_paths),
    )

    logger.info(f"Selected {len(register_nets)} Registers for fault injection.")
    logger.info(f"Selected {len(signal_nets)} combinatorial Signals for fault injection.")
    for net in catalog.all_nets:
        logger.debug(f" - {net}")
    return catalog
