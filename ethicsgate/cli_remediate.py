#!/usr/bin/env python3
"""
EthicsGate CLI - remediate command

Suggest fixes for the violations found on one line of a file. Rule-based
templates always run; the LLM assistant is consulted only when enabled in
the assist configuration.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.markup import escape

from ethicsgate.cli_helpers import (
    build_examples_epilog,
    build_runtime,
    console,
    format_severity,
    print_error,
    print_warning,
)
from ethicsgate.config.manager import ConfigError
from ethicsgate.detection.engine import display_path
from ethicsgate.detection.language import detect_language
from ethicsgate.models import AnalysisContext


def _print_remediation(av, result) -> None:
    from rich.panel import Panel

    console.print()
    console.print(
        f"[bold]{escape(av.file_path)}:{av.line}[/bold]  "
        f"{format_severity(av.adjusted_severity)}  {escape(av.message)}"
    )
    console.print(f"  [dim]{escape(av.snippet)}[/dim]")

    for number, s in enumerate(result.suggestions, 1):
        header = (
            f"{number}. {s.source.value}  confidence {s.confidence * 100:.0f}%  "
            f"risk reduction {s.risk_reduction * 100:.0f}%  effort {s.effort}"
        )
        body = escape(s.explanation)
        if s.suggested_code:
            body += "\n\n" + escape(s.suggested_code)
        console.print(Panel(body, title=header, title_align="left", border_style="cyan"))

    for candidate_id, reason in result.rejected:
        console.print(f"  [dim]dropped {escape(candidate_id)}: {escape(reason)}[/dim]")
    if result.assist_error:
        print_warning(f"Assisted suggestions unavailable: {result.assist_error}")


@click.command(
    epilog=build_examples_epilog([
        ("ethicsgate remediate app.py --line 42", "Suggest fixes for line 42"),
        ("ethicsgate remediate app.py --line 42 --assist", "Also ask the configured LLM"),
    ])
)
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--line", "line_number", type=click.IntRange(min=1), required=True,
              help="1-based line number of the violation")
@click.option("--assist/--no-assist", default=None,
              help="Use the LLM assistant (default from config)")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text",
              help="Output format (default: text)")
def remediate(file: str, line_number: int, assist: Optional[bool], fmt: str):
    """Suggest remediations for violations on one line of FILE."""
    from ethicsgate.llm.assistant import get_assistant
    from ethicsgate.remediation.engine import RemediationEngine

    try:
        runtime = build_runtime(Path.cwd())
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)

    path = Path(file)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        print_error(f"Cannot read {file}: {e}")
        sys.exit(1)

    context = AnalysisContext(
        content=content,
        file_name=display_path(path, runtime.root),
        language=detect_language(path),
        project_context=runtime.config.project_context,
    )
    found = [v for v in runtime.engine.analyze(context).violations if v.line == line_number]
    if not found:
        if fmt == "json":
            click.echo(json.dumps({"file": context.file_name, "line": line_number, "violations": []}, indent=2))
        else:
            console.print(f"No violations on line {line_number} of {escape(context.file_name)}")
        return

    assist_config = runtime.config.assist
    if assist is not None:
        assist_config = assist_config.model_copy(update={"enabled": assist})
    assistant = get_assistant(assist_config) if assist_config.enabled else None

    engine = RemediationEngine(assistant=assistant, catalogue=runtime.engine.catalogue)
    adjusted = runtime.adjuster.adjust(found, workspace=runtime.root)

    outcomes = [(av, engine.suggest(av, context)) for av in adjusted]
    if fmt == "json":
        data = {
            "file": context.file_name,
            "line": line_number,
            "violations": [
                {
                    "violation": av.to_dict(),
                    "suggestions": [s.to_dict() for s in result.suggestions],
                    "rejected": [{"id": i, "reason": r} for i, r in result.rejected],
                    "assist_error": result.assist_error,
                }
                for av, result in outcomes
            ],
        }
        click.echo(json.dumps(data, indent=2))
        return

    for av, result in outcomes:
        _print_remediation(av, result)
