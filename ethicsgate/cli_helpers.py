#!/usr/bin/env python3
"""
EthicsGate CLI Helpers

Shared formatting utilities for consistent CLI output across all commands,
logging setup, and the wiring that turns a workspace and its configuration
into ready-to-use engines.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from ethicsgate.config.manager import ConfigError, load_gate_config
from ethicsgate.config.models import GateConfig
from ethicsgate.detection.catalogue import PatternCatalogue
from ethicsgate.detection.engine import DetectionEngine
from ethicsgate.logging.redaction import RedactingFilter
from ethicsgate.models import Severity
from ethicsgate.policy.store import Policy, PolicyLoadResult, PolicyStore
from ethicsgate.team.adjustment import SeverityAdjuster
from ethicsgate.team.identity import GitIdentityProvider
from ethicsgate.team.registry import ActorRegistry

# Single shared Console instance for the entire CLI
console = Console()
# Logs and diagnostics go to stderr so report output stays pipeable
stderr_console = Console(stderr=True)

SEVERITY_STYLES = {
    Severity.CRITICAL: "red bold",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "white",
}


def print_success(message: str) -> None:
    """Print a success message with green checkmark."""
    console.print(f"[green]✓[/green] {escape(message)}")


def print_warning(message: str) -> None:
    """Print a warning message with yellow triangle."""
    console.print(f"[yellow]⚠[/yellow]  {escape(message)}")


def print_error(message: str, fix_hint: str = "") -> None:
    """Print an error message with red X and optional fix hint."""
    console.print(f"[red]✗[/red] {escape(message)}")
    if fix_hint:
        console.print(f"  [white]Hint: {escape(fix_hint)}[/white]")


def format_severity(severity: Severity) -> str:
    style = SEVERITY_STYLES.get(severity, "white")
    return f"[{style}]{severity.value}[/{style}]"


def format_command_example(command: str, description: str) -> str:
    return f"  {command:<44s} {description}"


def build_examples_epilog(examples: List[Tuple[str, str]]) -> str:
    """
    Build a formatted epilog string with command examples.

    Args:
        examples: List of (command, description) tuples.

    Returns:
        Multi-line string suitable for Click's epilog parameter.
    """
    lines = ["\nExamples:"]
    for cmd, desc in examples:
        lines.append(format_command_example(cmd, desc))
    return "\n".join(lines) + "\n"


@contextmanager
def spinner(message: str):
    """Show a Rich spinner on stderr during long operations."""
    with stderr_console.status(f"[bold cyan]{message}...", spinner="dots"):
        yield


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure logging with a Rich handler on stderr and secret redaction."""
    level = logging.DEBUG if verbose else logging.WARNING

    handler = RichHandler(
        console=stderr_console,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)
    handler.addFilter(RedactingFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)
    return logging.getLogger("ethicsgate")


# =============================================================================
# Runtime wiring
# =============================================================================

@dataclass
class Runtime:
    """Everything a command needs for one workspace."""
    root: Path
    config: GateConfig
    store: PolicyStore
    policy: Policy
    policy_load: PolicyLoadResult
    engine: DetectionEngine
    registry: ActorRegistry
    adjuster: SeverityAdjuster


def _resolve(root: Path, value: Optional[Union[str, Path]]) -> Optional[Path]:
    if not value:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def build_runtime(
    root: Union[str, Path],
    policy_dir: Optional[Union[str, Path]] = None,
    config: Optional[GateConfig] = None,
) -> Runtime:
    """
    Load configuration, policies and team data for a workspace.

    Raises:
        ConfigError: If the layered configuration is invalid
    """
    root = Path(root).resolve()
    workspace = root if root.is_dir() else root.parent
    config = config or load_gate_config(workspace)

    store = PolicyStore()
    directory = _resolve(workspace, policy_dir or config.policy_dir)
    policy_load = store.load_directory(directory) if directory else PolicyLoadResult()
    policy = store.active()

    catalogue = PatternCatalogue.load_builtin()
    # The built-in default policy only supplies thresholds and mode
    if store.names():
        catalogue = catalogue.combined_with(policy.catalogue())
    engine = DetectionEngine(catalogue)

    teams_file = _resolve(workspace, config.teams_file)
    if teams_file is not None and teams_file.is_file():
        try:
            registry = ActorRegistry.from_yaml(teams_file)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot load teams file: {e}", teams_file) from e
    else:
        registry = ActorRegistry()

    return Runtime(
        root=workspace,
        config=config,
        store=store,
        policy=policy,
        policy_load=policy_load,
        engine=engine,
        registry=registry,
        adjuster=SeverityAdjuster(registry, GitIdentityProvider()),
    )
