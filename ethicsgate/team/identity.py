"""
Commit author identity for severity adjustment.

The core only needs {author name, author email, timestamp} for the latest
change. Any failure to obtain it means "unknown actor", never an error.
"""

import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, Union

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class CommitIdentity:
    """Author of the most recent change in a workspace."""
    author_name: str
    author_email: str
    timestamp: Optional[datetime] = None

    @property
    def key(self) -> str:
        return (self.author_email or self.author_name).strip().lower()


class IdentityProvider(Protocol):
    """Supplies the author of the latest change, or None when unknown."""

    def latest_identity(self, workspace: Union[str, Path, None]) -> Optional[CommitIdentity]:
        ...


class StaticIdentityProvider:
    """Returns a fixed identity; for hosts that already know the actor."""

    def __init__(self, identity: Optional[CommitIdentity]):
        self._identity = identity

    def latest_identity(self, workspace: Union[str, Path, None]) -> Optional[CommitIdentity]:
        return self._identity


class GitIdentityProvider:
    """Reads the latest commit author with ``git log``."""

    def __init__(self, git_executable: str = "git", timeout: float = GIT_TIMEOUT_SECONDS):
        self.git_executable = git_executable
        self.timeout = timeout

    def latest_identity(self, workspace: Union[str, Path, None]) -> Optional[CommitIdentity]:
        cwd = str(workspace) if workspace else None
        try:
            proc = subprocess.run(
                [self.git_executable, "log", "-1", "--pretty=format:%an|%ae|%at"],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"git identity lookup failed: {e}")
            return None

        if proc.returncode != 0 or not proc.stdout.strip():
            logger.debug(f"git log returned {proc.returncode}: {proc.stderr.strip()}")
            return None
        return parse_git_identity(proc.stdout)


def parse_git_identity(output: str) -> Optional[CommitIdentity]:
    """Parse ``%an|%ae|%at`` output into a CommitIdentity."""
    parts = output.strip().split("|")
    if len(parts) != 3:
        return None
    name, email, epoch = (p.strip() for p in parts)
    if not name and not email:
        return None
    timestamp = None
    if epoch.isdigit():
        timestamp = datetime.fromtimestamp(int(epoch), tz=timezone.utc)
    return CommitIdentity(author_name=name, author_email=email, timestamp=timestamp)
