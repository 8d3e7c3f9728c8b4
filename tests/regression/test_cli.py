#!/usr/bin/env python3
"""
Regression tests for the command-line entry point.
"""

import json
import logging
import sys
import pytest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fault_injection.cli import build_parser, main

DEMO_CONFIG = PROJECT_ROOT / "configs" / "accumulator_demo.yaml"


class TestCheckConfig:
    """Test the check-config command."""

    def test_valid_config(self, capsys):
        assert main(["check-config", str(DEMO_CONFIG)]) == 0

        out = capsys.readouterr().out
        assert "✓ Successfully loaded config" in out
        assert "Injection window: 40 ns - end of simulation" in out
        assert "Injection clock: /tb/clk (every 2 trigger(s))" in out

    def test_dump(self, capsys):
        assert main(["check-config", str(DEMO_CONFIG), "--dump"]) == 0

        assert "Full config:" in capsys.readouterr().out

    def test_missing_config(self, capsys):
        assert main(["check-config", "nonexistent.yaml"]) == 1

        assert "✗ Error loading config" in capsys.readouterr().out

    def test_invalid_config(self, tmp_path, capsys):
        bad = tmp_path / "bad.yaml"
        bad.write_text("timing:\n  fault_period: 2\n")

        assert main(["check-config", str(bad)]) == 1


class TestParser:
    """Test argument parsing."""

    def test_demo_defaults(self):
        args = build_parser().parse_args(["demo"])

        assert args.seeds == 3
        assert args.initial_seed is None
        assert args.output_dir == Path("output/demo")
        assert args.verbosity is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestDemo:
    """Test the demo command."""

    def test_demo_end_to_end(self, tmp_path, capsys, package_log_level):
        output_dir = tmp_path / "demo"

        assert main(["demo", "--seeds", "1", "--output-dir", str(output_dir),
                     "--verbosity", "1"]) == 0

        assert (output_dir / "vulnerable_net.log").exists()
        with open(output_dir / "vulnerability_report.json") as f:
            report = json.load(f)
        assert report["metadata"]["seeds_tested"] == 1
        assert report["results"][0]["seed"] == 12345
        assert report["results"][0]["golden_execution_time_ps"] == 145_000
        assert capsys.readouterr().out.startswith("Seed 12345: ")
        assert package_log_level.level == logging.WARNING
