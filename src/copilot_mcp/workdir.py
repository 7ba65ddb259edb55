"""
Working-directory resolution for Copilot CLI invocations.

Priority chain, first resolvable wins:

1. Explicit directory argument (a file path resolves to its parent)
2. Environment variables, in fixed order
3. ``@path`` references embedded in the prompt, walked up to the
   nearest project root
4. The server process's current directory
"""

import logging
import os
import re
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence, Union

logger = logging.getLogger(__name__)

ENV_VARS = ("COPILOT_MCP_CWD", "MCP_PROJECT_ROOT")

PROJECT_MARKERS = (
    "package.json",
    "pyproject.toml",
    "setup.py",
    "Cargo.toml",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "Gemfile",
    "composer.json",
    ".git",
)

MAX_WALK_DEPTH = 10

# @"quoted path", @'quoted path' or @unquoted/path, at start or after whitespace
_AT_REFERENCE = re.compile(r"""(?<!\S)@(?:"([^"]+)"|'([^']+)'|([^\s"']+))""")
_TRAILING_PUNCTUATION = ".,;:!?)]}"


def extract_path_references(prompt_text: str) -> Iterator[str]:
    """Yield ``@`` path references in order of appearance."""
    for match in _AT_REFERENCE.finditer(prompt_text or ""):
        yield next(group for group in match.groups() if group)


def _as_directory(candidate: Union[str, Path]) -> Optional[Path]:
    """Return candidate as an absolute directory, or None if it does not exist."""
    path = Path(os.path.expanduser(str(candidate)))
    try:
        if path.is_dir():
            return path.resolve()
        if path.exists():
            return path.resolve().parent
    except OSError:
        return None
    return None


class WorkingDirectoryResolver:
    """
    Determine the effective working directory for a CLI invocation.

    Never raises: falls back to ``Path.cwd()``.
    """

    def __init__(
        self,
        env_vars: Sequence[str] = ENV_VARS,
        markers: Iterable[str] = PROJECT_MARKERS,
        max_depth: int = MAX_WALK_DEPTH,
    ):
        self.env_vars = tuple(env_vars)
        self.markers = tuple(markers)
        self.max_depth = max_depth

    def resolve(
        self,
        explicit_dir: Optional[Union[str, Path]] = None,
        prompt_text: Optional[str] = None,
    ) -> Path:
        if explicit_dir:
            resolved = _as_directory(explicit_dir)
            if resolved is not None:
                logger.debug(f"Working directory from explicit argument: {resolved}")
                return resolved
            logger.warning(f"Explicit working directory does not exist: {explicit_dir}")

        for name in self.env_vars:
            value = os.environ.get(name)
            if not value:
                continue
            resolved = _as_directory(value)
            if resolved is not None:
                logger.debug(f"Working directory from ${name}: {resolved}")
                return resolved
            logger.warning(f"${name} points to a missing path: {value}")

        if prompt_text:
            resolved = self._from_prompt(prompt_text)
            if resolved is not None:
                return resolved

        try:
            cwd = Path.cwd()
        except OSError:
            cwd = Path(os.path.expanduser("~"))
        logger.debug(f"Working directory from process default: {cwd}")
        return cwd

    def _from_prompt(self, prompt_text: str) -> Optional[Path]:
        for reference in extract_path_references(prompt_text):
            path = self._existing_absolute(reference)
            if path is None:
                continue
            start = path if path.is_dir() else path.parent
            root = self.find_project_root(start)
            if root is not None:
                logger.debug(f"Working directory from project root of @{reference}: {root}")
                return root
            logger.debug(f"Working directory from @{reference} (no project marker): {start}")
            return start
        return None

    def _existing_absolute(self, reference: str) -> Optional[Path]:
        for candidate in (reference, reference.rstrip(_TRAILING_PUNCTUATION)):
            path = Path(os.path.expanduser(candidate))
            if not path.is_absolute():
                return None
            try:
                if path.exists():
                    return path.resolve()
            except OSError:
                return None
        return None

    def find_project_root(self, start: Path) -> Optional[Path]:
        """Walk up from start (at most max_depth levels) looking for a marker file."""
        current = start
        for _ in range(self.max_depth + 1):
            if any((current / marker).exists() for marker in self.markers):
                return current
            if current.parent == current:
                break
            current = current.parent
        return None


_default_resolver = WorkingDirectoryResolver()


def resolve_working_dir(
    explicit_dir: Optional[Union[str, Path]] = None,
    prompt_text: Optional[str] = None,
) -> Path:
    return _default_resolver.resolve(explicit_dir, prompt_text)
