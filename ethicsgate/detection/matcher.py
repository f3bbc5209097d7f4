"""
Text matchers for detection rules.

Rules keep their pattern as declarative text plus a flag string in the
portable ``gimsuy`` letter form, so the same policy document works with any
engine. ``RegexMatcher`` translates that form onto Python's ``re`` module.
Patterns are compiled when the matcher is built, never at scan time.
"""

import re
from dataclasses import dataclass
from typing import Iterator, Protocol

# Portable flag letters; g/u/y have no Python equivalent and are accepted as no-ops
VALID_FLAGS = frozenset("gimsuy")

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}

# (?<name>...) named groups -> (?P<name>...), leaving lookbehinds alone
_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")


class PatternSyntaxError(ValueError):
    """Raised when a rule pattern or flag string cannot be compiled."""


@dataclass(frozen=True)
class MatchSpan:
    """A single match inside one line of text."""
    start: int
    end: int
    text: str

    @property
    def length(self) -> int:
        return self.end - self.start


class Matcher(Protocol):
    """Interface every rule matcher implements."""

    pattern: str

    def finditer(self, text: str) -> Iterator[MatchSpan]:
        ...

    def search(self, text: str) -> bool:
        ...


def translate_flags(flags: str) -> int:
    """Convert a portable flag string into ``re`` flags."""
    unknown = sorted(set(flags) - VALID_FLAGS)
    if unknown:
        raise PatternSyntaxError(
            f"Unknown pattern flag(s): {''.join(unknown)} (expected letters from 'gimsuy')"
        )
    result = 0
    for letter in flags:
        result |= _FLAG_MAP.get(letter, 0)
    return result


class RegexMatcher:
    """Matcher backed by Python's ``re`` engine."""

    def __init__(self, pattern: str, flags: str = "gi"):
        if not pattern:
            raise PatternSyntaxError("Pattern must not be empty")
        self.pattern = pattern
        self.flags = flags
        try:
            self._regex = re.compile(_NAMED_GROUP.sub("(?P<", pattern), translate_flags(flags))
        except re.error as e:
            raise PatternSyntaxError(f"Invalid regex pattern {pattern!r}: {e}") from e

    def finditer(self, text: str) -> Iterator[MatchSpan]:
        for match in self._regex.finditer(text):
            if match.end() == match.start():
                continue
            yield MatchSpan(match.start(), match.end(), match.group(0))

    def search(self, text: str) -> bool:
        return any(True for _ in self.finditer(text))

    def __repr__(self) -> str:
        return f"RegexMatcher({self.pattern!r}, flags={self.flags!r})"
