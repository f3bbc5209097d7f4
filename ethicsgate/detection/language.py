"""
Language and path classification for scanned files.

Detection is text based, so language only feeds the confidence and
category multipliers. Path classification decides whether a file looks
like test/spec code or production code.
"""

import os
import re
from pathlib import Path
from typing import Iterator, Union

EXTENSION_LANGUAGES = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".cs": "csharp",
    ".go": "go",
    ".rb": "ruby",
    ".rs": "rust",
    ".php": "php",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
}

# Extensions the enforcement gate inspects in a changeset
RELEVANT_EXTENSIONS = frozenset({
    ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".cs", ".cpp", ".c",
})

SKIP_DIRECTORIES = frozenset({
    "node_modules", ".git", "dist", "build", "out", "coverage",
    "__pycache__", ".venv", "venv", ".tox", ".mypy_cache",
})

COMMENT_PREFIXES = ("//", "#", "/*", "*", "<!--")

_TEST_PATH = re.compile(r"(?:^|[/\\._-])(?:tests?|specs?|__tests__|fixtures?)(?:[/\\._-]|$)", re.IGNORECASE)
_CAMEL_TEST_NAME = re.compile(r"[a-z0-9](?:Test|Tests|Spec)\.[A-Za-z]+$")


def detect_language(path: Union[str, Path]) -> str:
    """Map a file path to a language name by extension."""
    return EXTENSION_LANGUAGES.get(Path(path).suffix.lower(), "unknown")


def is_test_path(path: Union[str, Path]) -> bool:
    """True when the path looks like test or spec code."""
    text = str(path)
    return bool(_TEST_PATH.search(text) or _CAMEL_TEST_NAME.search(text))


def is_production_path(path: Union[str, Path]) -> bool:
    """True when the path name implies production code (prod/main)."""
    lowered = str(path).lower()
    return "prod" in lowered or "main" in lowered


def is_comment_line(line: str) -> bool:
    return line.lstrip().startswith(COMMENT_PREFIXES)


def is_relevant_file(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in RELEVANT_EXTENSIONS


def iter_source_files(root: Union[str, Path]) -> Iterator[Path]:
    """Walk a workspace yielding relevant source files in sorted order."""
    root = Path(root)
    if root.is_file():
        if is_relevant_file(root):
            yield root
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRECTORIES)
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if is_relevant_file(path):
                yield path
