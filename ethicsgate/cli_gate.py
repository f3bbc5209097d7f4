#!/usr/bin/env python3
"""
EthicsGate CLI - gate and install-hooks commands

``gate`` is what the git hooks run: it evaluates a changeset, prints or
exports the compliance report, and exits 1 when the change is blocked.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Tuple

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
from ethicsgate.config.manager import ConfigError, load_gate_config
from ethicsgate.enforcement.export import EXPORT_FORMATS, render_result
from ethicsgate.enforcement.gate import Changeset, EnforcementGate, OverrideRejected
from ethicsgate.enforcement.hooks import HookInstallError, install_git_hooks
from ethicsgate.detection.language import iter_source_files

_BADGE_STYLES = {
    "passing": "[green bold]PASSING[/green bold]",
    "warning": "[yellow bold]WARNING[/yellow bold]",
    "failing": "[red bold]FAILING[/red bold]",
    "blocked": "[red bold]BLOCKED[/red bold]",
}


def _print_gate_result(result) -> None:
    report = result.report
    console.print()
    console.print("[bold cyan]EthicsGate[/bold cyan]")
    console.print("[dim]" + "-" * 50 + "[/dim]")
    console.print(f"  Status:      {_BADGE_STYLES.get(result.badge.status, result.badge.status)}")
    console.print(f"  Score:       {report.compliance_score}%")
    console.print(f"  Files:       {report.files_scanned}")
    console.print(f"  Violations:  {report.violations_found} ({report.critical_count} critical)")
    console.print(f"  Actor:       {result.actor_id}")
    console.print()

    for cv in result.violations:
        av = cv.violation
        marker = "[red]✗[/red]" if cv.blocks else "[yellow]•[/yellow]"
        severity = format_severity(av.adjusted_severity)
        if av.adjusted_severity != av.original_severity:
            severity += f" [dim](was {av.original_severity.value})[/dim]"
        console.print(f"  {marker} {escape(cv.file)}:{cv.line}  {severity}  {escape(av.message)}")
        console.print(f"      [dim]{cv.id}[/dim]")
        if cv.override is not None:
            console.print(f"      [dim]overridden by {escape(cv.override.actor)}: {escape(cv.override.reason)}[/dim]")

    if report.review_requirements:
        console.print()
        console.print("[bold]Reviews required[/bold]")
        for req in report.review_requirements:
            console.print(f"  - {req.type} review by {req.reviewer} before {req.deadline.isoformat()}")

    for warning in result.warnings:
        print_warning(warning)

    console.print()
    if result.allowed:
        print_success("Change allowed")
    else:
        for reason in result.blocking_reasons:
            print_error(reason)


@click.command(
    epilog=build_examples_epilog([
        ("ethicsgate gate --staged", "Gate the files staged for commit"),
        ("ethicsgate gate src/ --format sarif -o out.sarif", "Export SARIF for code scanning"),
        ("ethicsgate gate --override ID --reason TEXT", "Waive a non-blocking violation"),
    ])
)
@click.argument("paths", nargs=-1, type=click.Path(exists=True))
@click.option("--staged", is_flag=True, help="Gate files staged in git")
@click.option("--format", "fmt", type=click.Choice(("text",) + EXPORT_FORMATS), default="text",
              help="Report format (default: text)")
@click.option("--output", "-o", type=click.Path(dir_okay=False),
              help="Write the report to a file instead of stdout")
@click.option("--policy-dir", type=click.Path(file_okay=False),
              help="Directory of policy YAML documents")
@click.option("--patents/--no-patents", default=None,
              help="Include the patent-risk scan (default from config)")
@click.option("--override", "overrides", multiple=True, metavar="VIOLATION_ID",
              help="Violation id to waive (repeatable)")
@click.option("--reason", default="", help="Reason recorded with overrides")
@click.option("--approved-by", default=None, help="Approver recorded with overrides")
def gate(paths: Tuple[str, ...], staged: bool, fmt: str, output: Optional[str],
         policy_dir: Optional[str], patents: Optional[bool], overrides: Tuple[str, ...],
         reason: str, approved_by: Optional[str]):
    """Run the enforcement gate over a changeset.

    With no PATHS and no --staged the whole working tree is gated. Exits 1
    when the change is blocked.
    """
    try:
        runtime = build_runtime(Path.cwd(), policy_dir)
    except ConfigError as e:
        print_error(str(e), "Check .ethicsgate.yaml and ~/.ethicsgate/config.yaml")
        sys.exit(1)

    config = runtime.config
    if patents is None:
        patents = config.include_patent_scan
    patent_scanner = None
    if patents:
        from ethicsgate.patent.scanner import PatentScanner
        patent_scanner = PatentScanner()

    if staged:
        changeset = Changeset.from_staged(runtime.root)
    elif paths:
        files = [f for p in paths for f in iter_source_files(p)]
        changeset = Changeset.from_paths(files, runtime.root)
    else:
        changeset = Changeset.from_workspace(runtime.root)

    engine = EnforcementGate(runtime.engine, runtime.adjuster, config, patent_scanner)
    with spinner(f"Evaluating {len(changeset.files)} file(s)"):
        result = engine.evaluate(changeset)

    for violation_id in overrides:
        try:
            result = engine.apply_override(result, violation_id, result.actor_id, reason, approved_by)
        except OverrideRejected as e:
            print_error(str(e))

    engine.record_outcome(result)

    if fmt == "text":
        _print_gate_result(result)
    else:
        rendered = render_result(fmt, result)
        if output:
            Path(output).write_text(rendered, encoding="utf-8")
            print_success(f"Wrote {fmt} report to {output}")
        else:
            click.echo(rendered, nl=False)

    if not result.allowed:
        sys.exit(1)


@click.command("install-hooks")
@click.option("--force", is_flag=True, help="Replace existing hooks not written by ethicsgate")
def install_hooks(force: bool):
    """Install pre-commit/pre-push hooks that run the gate."""
    workspace = Path.cwd()
    try:
        written = install_git_hooks(workspace, load_gate_config(workspace), force=force)
    except (ConfigError, HookInstallError) as e:
        print_error(str(e))
        sys.exit(1)

    if not written:
        print_warning("No hooks installed (disabled in config, or existing hooks kept; use --force)")
        return
    for path in written:
        print_success(f"Installed {path.name} hook at {path}")
