#!/usr/bin/env python3
"""
EthicsGate CLI - ethics and compliance gate for source code.

Usage:
    ethicsgate scan PATH... [--format text|json]
    ethicsgate gate [PATH...] [--staged] [--format json|junit|sonar|markdown|sarif]
    ethicsgate patents PATH [--format text|json]
    ethicsgate remediate FILE --line N
    ethicsgate policy validate|show|merge|watch
    ethicsgate install-hooks [--force]
"""

import click

from ethicsgate import __version__
from ethicsgate.cli_helpers import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="ethicsgate")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging on stderr")
def main(verbose: bool):
    """EthicsGate - detect ethically risky code before it ships."""
    setup_logging(verbose)


# =============================================================================
# Command registration
# =============================================================================

from ethicsgate.cli_scan import scan, patents  # noqa: E402
from ethicsgate.cli_gate import gate, install_hooks  # noqa: E402
from ethicsgate.cli_policy import policy  # noqa: E402
from ethicsgate.cli_remediate import remediate  # noqa: E402

main.add_command(scan)
main.add_command(patents)
main.add_command(gate)
main.add_command(install_hooks)
main.add_command(policy)
main.add_command(remediate)


if __name__ == "__main__":
    main()
