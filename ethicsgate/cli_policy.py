#!/usr/bin/env python3
"""
EthicsGate CLI - policy commands

Validate, inspect, merge and live-watch policy documents.
"""
from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.markup import escape

from ethicsgate.cli_helpers import (
    build_runtime,
    console,
    print_error,
    print_success,
    print_warning,
)
from ethicsgate.config.manager import ConfigError
from ethicsgate.models import Category
from ethicsgate.policy.store import (
    PolicyLoadError,
    PolicyStore,
    export_policy,
    merge_policies,
    read_policy,
)


@click.group()
def policy():
    """Manage ethics policy documents."""
    pass


def _print_policy(p) -> None:
    from rich.table import Table

    console.print(f"[bold]{escape(p.name)}[/bold] v{escape(p.version)}  [dim]{p.enforcement_mode.value}[/dim]")
    if p.description:
        console.print(f"  {escape(p.description)}")

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Category")
    table.add_column("Threshold", justify="right")
    table.add_column("Rules", justify="right")
    for category in Category:
        count = sum(1 for r in p.enabled_rules() if r.category == category)
        table.add_row(category.value, f"{p.threshold(category):.2f}", str(count))
    table.add_row("overall", f"{p.threshold('overall'):.2f}", str(len(p.enabled_rules())))
    console.print(table)


@policy.command("validate",
    epilog="""\b
Examples:
  ethicsgate policy validate policies/strict.yaml     Check one document
  ethicsgate policy validate policies/*.yaml          Check several documents
"""
)
@click.argument("files", nargs=-1, required=True, type=click.Path(dir_okay=False))
def policy_validate(files: Tuple[str, ...]):
    """Validate policy documents without loading them into a gate.

    Exits 1 if any document is rejected.
    """
    failed = 0
    for path in files:
        try:
            p = read_policy(path)
        except PolicyLoadError as e:
            failed += 1
            print_error(f"{path}: {e.reason}")
            continue
        print_success(f"{path}: policy '{p.name}' v{p.version} with {len(p.rules)} rule(s)")
    if failed:
        sys.exit(1)


@policy.command("show")
@click.option("--policy-dir", type=click.Path(file_okay=False),
              help="Directory of policy YAML documents")
@click.option("--yaml", "as_yaml", is_flag=True, help="Print the effective policy as YAML")
def policy_show(policy_dir: Optional[str], as_yaml: bool):
    """Show the effective (merged) policy for this workspace."""
    try:
        runtime = build_runtime(Path.cwd(), policy_dir)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)

    for path, reason in runtime.policy_load.rejected:
        print_warning(f"Policy {path} rejected: {reason}")

    if as_yaml:
        click.echo(export_policy(runtime.policy), nl=False)
        return

    loaded = runtime.store.names()
    if loaded:
        console.print(f"Loaded: {escape(', '.join(loaded))}")
    else:
        console.print("[dim]No policy documents loaded; using the built-in default[/dim]")
    console.print()
    _print_policy(runtime.policy)


@policy.command("merge",
    epilog="""\b
Examples:
  ethicsgate policy merge base.yaml team.yaml              Print the merged policy
  ethicsgate policy merge base.yaml team.yaml -o out.yaml  Write it to a file
"""
)
@click.argument("files", nargs=-1, required=True, type=click.Path(dir_okay=False))
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write merged YAML here")
def policy_merge(files: Tuple[str, ...], output: Optional[str]):
    """Merge policy documents.

    Rules are unioned by id (the first file listing an id wins), thresholds
    take the most restrictive value and the strictest enforcement mode wins.
    """
    policies = []
    for path in files:
        try:
            policies.append(read_policy(path))
        except PolicyLoadError as e:
            print_error(f"{path}: {e.reason}")
            sys.exit(1)

    merged = export_policy(merge_policies(policies))
    if output:
        Path(output).write_text(merged, encoding="utf-8")
        print_success(f"Merged {len(policies)} polic{'y' if len(policies) == 1 else 'ies'} into {output}")
    else:
        click.echo(merged, nl=False)


@policy.command("watch")
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
def policy_watch(directory: str):
    """Watch a policy directory and report reloads until interrupted."""
    store = PolicyStore()
    result = store.load_directory(directory)
    for path, reason in result.rejected:
        print_warning(f"Policy {path} rejected: {reason}")

    def on_reload(name, reloaded):
        print_success(f"Reloaded '{name}' v{reloaded.version} ({len(reloaded.rules)} rule(s))")

    store.subscribe(on_reload)
    store.watch(directory)
    console.print(f"Watching [cyan]{escape(directory)}[/cyan] (Ctrl-C to stop)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        store.stop_watching()
