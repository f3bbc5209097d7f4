"""
Git integration for the enforcement gate.

Reads staged files and the current commit, and installs pre-commit /
pre-push hooks that run ``ethicsgate gate``. Git failures degrade to
empty results; they never raise into the gate.
"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Union

from ethicsgate.config.models import GateConfig

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 10.0
HOOK_MARKER = "# ethicsgate hook"

PRE_COMMIT_HOOK = f"""#!/bin/sh
{HOOK_MARKER}
# Installed by `ethicsgate install-hooks`; re-run it to update.
ethicsgate gate --staged
exit $?
"""

PRE_PUSH_HOOK = f"""#!/bin/sh
{HOOK_MARKER}
# Installed by `ethicsgate install-hooks`; re-run it to update.
ethicsgate gate
exit $?
"""


class HookInstallError(Exception):
    """A hook could not be written."""


def _git(args: List[str], workspace: Union[str, Path, None]) -> Optional[str]:
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=str(workspace) if workspace else None,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"git {' '.join(args)} failed: {e}")
        return None
    if proc.returncode != 0:
        logger.debug(f"git {' '.join(args)} returned {proc.returncode}: {proc.stderr.strip()}")
        return None
    return proc.stdout


def staged_files(workspace: Union[str, Path]) -> List[Path]:
    """Added, copied or modified files in the index, as absolute paths."""
    output = _git(["diff", "--cached", "--name-only", "--diff-filter=ACM"], workspace)
    if output is None:
        return []
    root = Path(workspace)
    return [root / line.strip() for line in output.splitlines() if line.strip()]


def head_commit(workspace: Union[str, Path, None]) -> str:
    output = _git(["rev-parse", "HEAD"], workspace)
    return output.strip() if output else "unknown"


def install_git_hooks(
    workspace: Union[str, Path],
    config: Optional[GateConfig] = None,
    force: bool = False,
) -> List[Path]:
    """
    Write the hooks enabled in config into ``.git/hooks``.

    Existing hooks not written by ethicsgate are left alone unless ``force``.
    Returns the paths written.
    """
    config = config or GateConfig()
    hooks_dir = Path(workspace) / ".git" / "hooks"
    if not hooks_dir.parent.is_dir():
        raise HookInstallError(f"{workspace} is not a git repository")
    hooks_dir.mkdir(parents=True, exist_ok=True)

    wanted = []
    if config.enable_pre_commit:
        wanted.append(("pre-commit", PRE_COMMIT_HOOK))
    if config.enable_pre_push:
        wanted.append(("pre-push", PRE_PUSH_HOOK))

    written = []
    for name, body in wanted:
        path = hooks_dir / name
        if path.exists() and not force and HOOK_MARKER not in path.read_text(errors="replace"):
            logger.warning(f"Not overwriting existing {name} hook at {path}")
            continue
        try:
            path.write_text(body)
            path.chmod(0o755)
        except OSError as e:
            raise HookInstallError(f"Could not write {path}: {e}") from e
        written.append(path)
    return written
