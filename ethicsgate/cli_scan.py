#!/usr/bin/env python3
"""
EthicsGate CLI - scan and patents commands

Read-only analysis of files or directories. ``scan`` runs the ethical
pattern catalogue and reports per-file risk metrics; ``patents`` runs the
heuristic patent-risk scanner.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import List, Tuple

import click
from rich.markup import escape

from ethicsgate.cli_helpers import (
    build_examples_epilog,
    build_runtime,
    console,
    format_severity,
    print_error,
    print_success,
    print_warning,
    spinner,
)
from ethicsgate.config.manager import ConfigError
from ethicsgate.detection.language import iter_source_files
from ethicsgate.models import EnforcementMode


def _collect(paths: Tuple[str, ...]) -> List[Path]:
    files: List[Path] = []
    seen = set()
    for raw in paths:
        for path in iter_source_files(raw):
            key = path.resolve()
            if key not in seen:
                seen.add(key)
                files.append(path)
    return files


# =============================================================================
# Display Helpers
# =============================================================================

def _print_scan_report(batch, policy) -> int:
    """Print per-file results. Returns the number of threshold breaches."""
    from rich.table import Table

    console.print()
    console.print("[bold cyan]EthicsGate Scan[/bold cyan]")
    console.print("[dim]" + "-" * 50 + "[/dim]")
    console.print(f"  Policy:  [white]{policy.name}[/white] ({policy.enforcement_mode.value})")
    console.print(f"  Files:   {batch.files_scanned} scanned")
    console.print()

    breaches = 0
    for result in batch.results:
        metrics = result.metrics
        exceeded = policy.exceeded(metrics)
        breaches += len(exceeded)
        if not result.violations and not exceeded:
            continue

        console.print(
            f"[bold]{escape(result.file_path)}[/bold]  "
            f"ethics score [white]{metrics.overall_score * 100:.1f}%[/white]"
        )
        if result.violations:
            table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
            table.add_column("Line", justify="right")
            table.add_column("Severity")
            table.add_column("Category")
            table.add_column("Message")
            for v in result.violations:
                table.add_row(str(v.line), format_severity(v.severity), v.category.value, escape(v.message))
            console.print(table)
        for category, risk, limit in exceeded:
            print_warning(
                f"{category.value} risk {risk * 100:.0f}% exceeds policy threshold {limit * 100:.0f}%"
            )
        console.print()

    for path, reason in batch.skipped:
        print_warning(f"Skipped {path}: {reason}")

    total = len(batch.violations)
    if total:
        console.print(f"[bold]{total} violation(s)[/bold] in {batch.files_scanned} file(s)")
    else:
        print_success(f"No ethical violations in {batch.files_scanned} file(s)")
    return breaches


def _scan_json(batch, policy) -> str:
    data = batch.to_dict()
    data["policy"] = policy.name
    data["threshold_breaches"] = [
        {"file": r.file_path, "category": c.value, "risk": round(risk, 6), "threshold": limit}
        for r in batch.results
        for c, risk, limit in policy.exceeded(r.metrics)
    ]
    return json.dumps(data, indent=2)


# =============================================================================
# scan
# =============================================================================

@click.command(
    epilog=build_examples_epilog([
        ("ethicsgate scan src/", "Scan every source file under src/"),
        ("ethicsgate scan app.py --format json", "Machine-readable output"),
        ("ethicsgate scan . --policy-dir policies/", "Apply custom policy documents"),
    ])
)
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text",
              help="Output format (default: text)")
@click.option("--policy-dir", type=click.Path(file_okay=False),
              help="Directory of policy YAML documents")
@click.option("--workers", type=click.IntRange(1, 64), default=None,
              help="Parallel file scans (default from config)")
def scan(paths: Tuple[str, ...], fmt: str, policy_dir: str, workers: int):
    """Scan files or directories for ethically risky code.

    Exits 1 when a category risk exceeds the active policy's threshold and
    the policy's enforcement mode is error or block.
    """
    try:
        runtime = build_runtime(Path.cwd(), policy_dir)
    except ConfigError as e:
        print_error(str(e), "Check .ethicsgate.yaml and ~/.ethicsgate/config.yaml")
        sys.exit(1)

    for path, reason in runtime.policy_load.rejected:
        print_warning(f"Policy {path} rejected: {reason}")

    files = _collect(paths)
    with spinner(f"Scanning {len(files)} file(s)"):
        batch = runtime.engine.scan_files(
            files,
            root=runtime.root,
            project_context=runtime.config.project_context,
            workers=workers or runtime.config.workers,
        )

    if fmt == "json":
        click.echo(_scan_json(batch, runtime.policy))
        breaches = sum(len(runtime.policy.exceeded(r.metrics)) for r in batch.results)
    else:
        breaches = _print_scan_report(batch, runtime.policy)

    if breaches and runtime.policy.enforcement_mode >= EnforcementMode.ERROR:
        sys.exit(1)


# =============================================================================
# patents
# =============================================================================

def _print_patent_report(result) -> None:
    summary = result.summary
    console.print()
    console.print("[bold cyan]EthicsGate Patent Risk Scan[/bold cyan]")
    console.print("[dim]" + "-" * 50 + "[/dim]")
    console.print(f"  Files:          {result.scanned_files} of {result.total_files}")
    console.print(f"  Risks:          {len(result.risks)}")
    console.print(f"  Overall risk:   {format_severity(summary.overall_risk)}")
    console.print(f"  Legal cost:     {summary.estimated_legal_cost}")
    console.print()

    for risk in result.risks:
        console.print(
            f"  {format_severity(risk.risk_level)}  {escape(risk.file)}:{risk.line}  "
            f"{risk.title} [dim]({risk.match_type.value}, {risk.confidence * 100:.0f}%)[/dim]"
        )

    if summary.urgent_actions:
        console.print()
        console.print("[bold]Urgent actions[/bold]")
        for action in summary.urgent_actions:
            console.print(f"  - {action}")

    if result.recommendations:
        console.print()
        console.print("[bold]Recommendations[/bold]")
        for rec in result.recommendations:
            console.print(f"  - {rec}")

    for path, reason in result.skipped:
        print_warning(f"Skipped {path}: {reason}")


@click.command(
    epilog=build_examples_epilog([
        ("ethicsgate patents src/", "Heuristic patent-risk scan of a directory"),
        ("ethicsgate patents src/ --no-semantic", "Skip function/class body checks"),
    ])
)
@click.argument("path", type=click.Path(exists=True))
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text",
              help="Output format (default: text)")
@click.option("--semantic/--no-semantic", default=True,
              help="Include the function/class body heuristic")
def patents(path: str, fmt: str, semantic: bool):
    """Scan for code resembling patent-encumbered techniques.

    Findings are heuristic and are not legal advice. Exits 1 when any
    critical-risk finding is reported.
    """
    from ethicsgate.patent.scanner import PatentScanner

    scanner = PatentScanner(include_semantic=semantic)
    with spinner("Scanning for patent risks"):
        result = scanner.scan_workspace(path)

    if fmt == "json":
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_patent_report(result)

    if result.critical_risk_count:
        sys.exit(1)
