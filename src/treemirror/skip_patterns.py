from __future__ import annotations

from pathlib import Path
import re
from typing import TYPE_CHECKING, Iterable, Sequence

import pathspec

if TYPE_CHECKING:
    from treemirror.directives import Directive


PATTERN_SYNTAXES = ("regex", "gitignore")


def compile_patterns(raw_patterns: Iterable[str], syntax: str = "regex") -> list[re.Pattern[str]]:
    """Compile regex skip patterns.

    Gitignore patterns are handed to pathspec as-is, so for that syntax this
    only validates them and returns an empty list.
    """
    if syntax not in PATTERN_SYNTAXES:
        raise ValueError(f"pattern syntax must be one of: {', '.join(PATTERN_SYNTAXES)}")

    patterns = [item for item in raw_patterns if item]
    if syntax == "gitignore":
        pathspec.GitIgnoreSpec.from_lines(patterns)
        return []

    compiled: list[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            raise ValueError(f"invalid skip pattern {pattern!r}: {exc}") from exc
    return compiled


class SkipMatcher:
    """Decides whether a source file is excluded from copying.

    Regex patterns are searched anywhere in the full source path string.
    Gitignore patterns match the path relative to the source root.
    """

    def __init__(
        self,
        regex_patterns: Sequence[re.Pattern[str]] = (),
        gitignore_patterns: Sequence[str] = (),
    ) -> None:
        self._regexes = list(regex_patterns)
        self._spec = (
            pathspec.GitIgnoreSpec.from_lines(gitignore_patterns)
            if gitignore_patterns
            else None
        )

    def __bool__(self) -> bool:
        return bool(self._regexes) or self._spec is not None

    def is_skipped(self, absolute_path: Path, relative_path: Path) -> bool:
        if self._regexes:
            full_path = str(absolute_path)
            if any(pattern.search(full_path) for pattern in self._regexes):
                return True
        if self._spec is not None:
            return self._spec.match_file(relative_path.as_posix())
        return False


def build_skip_matcher(directive: Directive) -> SkipMatcher:
    if directive.pattern_syntax == "gitignore":
        return SkipMatcher(gitignore_patterns=directive.raw_patterns)
    return SkipMatcher(regex_patterns=directive.skip_patterns)
