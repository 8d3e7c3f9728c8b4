#!/usr/bin/env python3
"""
Demo Design: small accumulator core for the event simulator

A testbench around a core that sums the words of a ROM:

    IDLE -> FETCH -> ACCUM -> FETCH -> ... -> ACCUM -> DONE

FETCH latches ``rom[pc_q]`` into ``data_q`` and increments the program
counter, ACCUM adds ``data_q`` to ``acc_q``. Once all words are summed the
testbench compares the accumulator against the expected sum and raises one of
the termination signals. A program counter outside the ROM raises the
exception signal.

Used by the ``demo`` command and the end-to-end tests.
"""

from typing import Any, Dict, Optional, Sequence

from .config_loader import ConfigLoader, FaultInjectionConfig
from .event_simulator import EventSimulator
from .sim_control import SignalKind

DEFAULT_PROGRAM = (0x11, 0x22, 0x07, 0x30, 0x05, 0x2A)
ROM_DEPTH = 8
CLOCK_PERIOD = 10_000  # ps
RESET_RELEASE = 22_000  # ps

STATES = ("IDLE", "FETCH", "ACCUM", "DONE")
IDLE, FETCH, ACCUM, DONE = range(len(STATES))

TB = "/tb"
DUT = "/tb/dut"


def build_accumulator_design(program: Sequence[int] = DEFAULT_PROGRAM,
                             sim: Optional[EventSimulator] = None) -> EventSimulator:
    """
    Build the accumulator testbench.

    Args:
        program: ROM words to sum (at most ROM_DEPTH)
        sim: Simulator to populate, a new one if None

    Returns:
        The populated simulator, at time 0
    """
    if not 0 < len(program) <= ROM_DEPTH:
        raise ValueError(f"Program must hold 1 to {ROM_DEPTH} words")
    sim = sim or EventSimulator()
    num_words = len(program)
    expected = sum(program) & 0xFFF

    clk = sim.add_clock(f"{TB}/clk", CLOCK_PERIOD)
    rst_n = sim.add_signal(f"{TB}/rst_n", init=0)
    sim.at(RESET_RELEASE, lambda s: s.write(rst_n, 1))

    rom = sim.add_array(f"{DUT}/rom", ROM_DEPTH)
    words = []
    for i in range(ROM_DEPTH):
        value = program[i] if i < num_words else 0
        words.append(sim.add_signal(f"{rom}[{i}]", width=8, init=value))

    pc_q = sim.add_signal(f"{DUT}/pc_q", width=4)
    acc_q = sim.add_signal(f"{DUT}/acc_q", width=12)
    data_q = sim.add_signal(f"{DUT}/data_q", width=8)
    scratch_q = sim.add_signal(f"{DUT}/scratch_q", width=8)
    state_q = sim.add_enum(f"{DUT}/state_q", STATES)

    rdata = sim.add_signal(f"{DUT}/rdata", width=8, kind=SignalKind.NET, init=None)
    pc_d = sim.add_signal(f"{DUT}/pc_d", width=4, kind=SignalKind.NET)
    acc_d = sim.add_signal(f"{DUT}/acc_d", width=12)  # always_comb variable
    state_d = sim.add_enum(f"{DUT}/state_d", STATES)
    done = sim.add_signal(f"{DUT}/done", kind=SignalKind.NET)

    def read_rom(s):
        pc = s.read(pc_q)
        if s.is_x(pc_q) or pc >= ROM_DEPTH:
            return None
        return s.read(words[pc])

    def next_pc(s):
        return s.read(pc_q) + 1 if s.read(state_q) == FETCH else s.read(pc_q)

    def next_acc(s):
        if s.read(state_q) != ACCUM:
            return s.read(acc_q)
        if s.is_x(data_q):
            return None
        return s.read(acc_q) + s.read(data_q)

    def next_state(s):
        state = s.read(state_q)
        if state == IDLE:
            return FETCH
        if state == FETCH:
            return ACCUM
        if state == ACCUM:
            return DONE if s.read(pc_q) >= num_words else FETCH
        return DONE

    sim.assign(rdata, read_rom, [pc_q] + words)
    sim.assign(pc_d, next_pc, [pc_q, state_q])
    sim.assign(acc_d, next_acc, [acc_q, data_q, state_q])
    sim.assign(state_d, next_state, [state_q, pc_q])
    sim.assign(done, lambda s: int(s.read(state_q) == DONE), [state_q])

    def core(s) -> Dict[str, Optional[int]]:
        if not s.read(rst_n):
            return {pc_q: 0, acc_q: 0, data_q: 0, scratch_q: 0, state_q: IDLE}
        update = {pc_q: s.read(pc_d), acc_q: None if s.is_x(acc_d) else s.read(acc_d),
                  state_q: s.read(state_d)}
        if s.read(state_q) == FETCH:
            update[data_q] = None if s.is_x(rdata) else s.read(rdata)
            if s.read(pc_q) == 0:
                update[scratch_q] = s.read(rdata) ^ 0x5A
        return update

    sim.always_ff(clk, core)

    # Testbench checks
    def finished_with(match: bool):
        def check(s):
            if not s.read(done):
                return 0
            if s.is_x(acc_q):
                return None
            return int((s.read(acc_q) == expected) == match)
        return check

    sim.add_signal(f"{TB}/terminated_no_error", kind=SignalKind.NET)
    sim.add_signal(f"{TB}/terminated_error", kind=SignalKind.NET)
    sim.add_signal(f"{TB}/terminated_exception", kind=SignalKind.NET)
    sim.assign(f"{TB}/terminated_no_error", finished_with(True), [done, acc_q])
    sim.assign(f"{TB}/terminated_error", finished_with(False), [done, acc_q])
    sim.assign(f"{TB}/terminated_exception",
               lambda s: None if s.is_x(pc_q) else int(s.read(pc_q) > num_words), [pc_q])

    sim.add_assertion(f"{DUT}/assert_pc_in_rom",
                      lambda s: s.is_x(pc_q) or s.read(pc_q) <= num_words)
    return sim


DEMO_CONFIG: Dict[str, Any] = {
    "general": {
        "verbosity": 2,
        "log_injections": True,
        "print_statistics": True,
    },
    "timing": {
        "inject_start_time": "40ns",
        "injection_clock": f"{TB}/clk",
        "injection_clock_trigger": 0,
        "fault_period": 2,
        "rand_initial_injection_phase": True,
        "signal_fault_duration": "3ns",
        "register_fault_duration": "0ns",
    },
    "flip": {
        "reg_to_sig_ratio": 1,
        "use_bitwidth_as_weight": True,
        "check_output_modification": True,
        "check_next_state_modification": True,
    },
    "netlists": {
        "inject_registers": [
            f"{DUT}/pc_q", f"{DUT}/acc_q", f"{DUT}/data_q",
            f"{DUT}/scratch_q", f"{DUT}/state_q", f"{DUT}/rom",
        ],
        "inject_signals": [f"{DUT}/rdata", f"{DUT}/pc_d", f"{DUT}/acc_d", f"{DUT}/state_d"],
        "exclude": [f"{DUT}/rom[7]"],
        "outputs": [f"{DUT}/acc_q", f"{DUT}/done"],
        "next_state": [f"{DUT}/pc_d", f"{DUT}/acc_d", f"{DUT}/state_d"],
        "assertion_disable": [f"{DUT}/assert_pc_in_rom"],
    },
    "termination": {
        "correct": f"{TB}/terminated_no_error",
        "incorrect": f"{TB}/terminated_error",
        "exception": f"{TB}/terminated_exception",
        "report_x_as_exception": True,
        "timeout_factor": 1.2,
    },
    "analysis": {
        "initial_seed": 12345,
        "max_num_tests": 3,
        "internal_state": [
            f"{DUT}/pc_q", f"{DUT}/acc_q", f"{DUT}/data_q", f"{DUT}/scratch_q", f"{DUT}/state_q",
        ],
    },
}


def demo_config(log_dir: str = ".", max_num_tests: Optional[int] = None) -> FaultInjectionConfig:
    """Configuration matching ``build_accumulator_design``."""
    data = {section: dict(values) for section, values in DEMO_CONFIG.items()}
    data["general"]["log_dir"] = log_dir
    if max_num_tests is not None:
        data["analysis"]["max_num_tests"] = max_num_tests
    return ConfigLoader.from_dict(data, source="demo")
