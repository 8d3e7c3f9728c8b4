#!/usr/bin/env python3
"""
Report Generator: Create JSON and human-readable reports for vulnerability analysis

Summarizes which seeds failed, how they failed and which injected net was
the earliest fault responsible.
"""

import json
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .bisector import GoldenModel, SeedResult
from .timeunits import format_ns

logger = logging.getLogger(__name__)


class ReportGenerator:
    """Generates reports for vulnerability analysis results."""

    def __init__(self, output_dir: Path, config_source: Optional[str] = None):
        """
        Initialize report generator.

        Args:
            output_dir: Directory for output reports
            config_source: Configuration the analysis was run with
        """
        self.output_dir = Path(output_dir)
        self.config_source = config_source
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def generate_reports(self, results: List[SeedResult],
                         golden_models: Optional[Dict[int, GoldenModel]] = None) -> Dict[str, Path]:
        """
        Generate both JSON and markdown reports.

        Args:
            results: One result per analyzed seed
            golden_models: Golden model of each seed

        Returns:
            Paths of the generated reports keyed by format
        """
        golden_models = golden_models or {}

        json_file = self.output_dir / "vulnerability_report.json"
        self._generate_json_report(results, golden_models, json_file)

        md_file = self.output_dir / "vulnerability_report.md"
        self._generate_markdown_report(results, golden_models, md_file)

        logger.info("Reports generated:")
        logger.info(f"  JSON: {json_file}")
        logger.info(f"  Markdown: {md_file}")
        return {"json": json_file, "markdown": md_file}

    @staticmethod
    def vulnerable_nets(results: List[SeedResult]) -> Counter:
        """How often each net was found responsible for a failure."""
        return Counter(r.last_flipped_net for r in results if r.vulnerable and r.last_flipped_net)

    def _generate_json_report(self, results: List[SeedResult],
                              golden_models: Dict[int, GoldenModel], output_file: Path) -> None:
        """Generate machine-readable JSON report."""
        report = {
            "metadata": {
                "config": self.config_source,
                "timestamp": datetime.now().isoformat(),
                "seeds_tested": len(results),
                "vulnerable_seeds": sum(1 for r in results if r.vulnerable),
                "total_runs": sum(r.num_runs for r in results),
            },
            "results": [],
            "vulnerable_nets": dict(self.vulnerable_nets(results).most_common()),
        }

        for result in results:
            golden = golden_models.get(result.seed)
            report["results"].append({
                "seed": result.seed,
                "termination_cause": int(result.cause),
                "termination_label": result.cause_label,
                "num_faults_injected": result.fault_count,
                "last_injected_net_name": result.last_flipped_net,
                "vulnerable": result.vulnerable,
                "num_runs": result.num_runs,
                "golden_execution_time_ps": golden.execution_time if golden else None,
            })

        with open(output_file, 'w') as f:
            json.dump(report, f, indent=2)

    def _generate_markdown_report(self, results: List[SeedResult],
                                  golden_models: Dict[int, GoldenModel], output_file: Path) -> None:
        """Generate human-readable markdown report."""
        vulnerable = [r for r in results if r.vulnerable]
        by_cause = Counter(r.cause_label for r in vulnerable)

        md = []
        md.append("# Vulnerable Net Analysis Report")
        md.append("")
        if self.config_source:
            md.append(f"**Config:** `{self.config_source}`  ")
        md.append(f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}  ")
        md.append(f"**Seeds Tested:** {len(results)}  ")
        md.append(f"**Vulnerable Seeds:** {len(vulnerable)}  ")
        md.append(f"**Simulation Runs:** {sum(r.num_runs for r in results)}  ")
        md.append("")

        md.append("## Summary")
        md.append("")
        md.append("Each seed is first simulated without faults (golden model). The seed is then ")
        md.append("re-simulated with fault injection; if the run fails, the number of injected ")
        md.append("faults is bisected to find the earliest fault that causes the failure.")
        md.append("")
        if by_cause:
            md.append("| Termination Cause | Seeds |")
            md.append("|-------------------|-------|")
            for label, count in sorted(by_cause.items()):
                md.append(f"| {label} | {count} |")
            md.append("")

        md.append("## Results")
        md.append("")
        md.append("| Seed | Cause | Faults Injected | Responsible Net | Vulnerable? | Runs | Golden Time |")
        md.append("|------|-------|-----------------|-----------------|-------------|------|-------------|")
        for result in results:
            golden = golden_models.get(result.seed)
            marker = "✅ no" if not result.vulnerable else "❌ yes"
            net = f"`{result.last_flipped_net}`" if result.last_flipped_net else "-"
            golden_time = format_ns(golden.execution_time) if golden else "-"
            md.append(f"| {result.seed} | {result.cause_label} | {result.fault_count} | {net} | "
                      f"{marker} | {result.num_runs} | {golden_time} |")
        md.append("")

        md.append("## Vulnerable Nets")
        md.append("")
        nets = self.vulnerable_nets(results)
        if nets:
            md.append("The following nets were the earliest fault of at least one failing run:")
            md.append("")
            for net, count in nets.most_common():
                md.append(f"- `{net}`: {count} seed{'s' if count != 1 else ''}")
        else:
            md.append("No vulnerable nets were found. All tested seeds terminated correctly.")
        md.append("")

        with open(output_file, 'w') as f:
            f.write('\n'.join(md))
