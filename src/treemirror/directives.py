from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import re
from typing import Any, Iterable, Mapping, Union

import json
import yaml

from treemirror.skip_patterns import PATTERN_SYNTAXES, compile_patterns


FIELD_SEPARATOR = ":"
PATTERN_SEPARATOR = ","
COMMENT_PREFIX = "#"


class DirectiveParseError(ValueError):
    """A directive line that cannot be turned into a valid direction."""

    def __init__(self, reason: str, line: str, line_number: int | None = None) -> None:
        self.reason = reason
        self.line = line
        self.line_number = line_number
        location = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"{location}{reason} in directive \"{line}\"")


@dataclass(slots=True, frozen=True)
class Directive:
    source_root: Path
    destination_root: Path
    skip_patterns: list[re.Pattern[str]] = field(default_factory=list)
    pattern_syntax: str = "regex"
    raw_patterns: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[Path, Path]:
        return (self.source_root, self.destination_root)


@dataclass(slots=True, frozen=True)
class DirectiveItem:
    """A direction read from a structured (YAML / JSON) directive file."""

    source: str
    target: str
    skip: list[str] = field(default_factory=list)

    def describe(self) -> str:
        return f"{self.source}{FIELD_SEPARATOR}{self.target}"


DirectiveEntry = Union[str, DirectiveItem]


def _as_path(value: str, field_name: str, line: str, line_number: int | None) -> Path:
    stripped = value.strip()
    if not stripped:
        raise DirectiveParseError(f"Unable to parse `{field_name}`", line, line_number)
    return Path(stripped).expanduser()


def _split_patterns(value: str) -> list[str]:
    return [item.strip() for item in value.split(PATTERN_SEPARATOR) if item.strip()]


def _build_directive(
    source_root: Path,
    destination_root: Path,
    raw_patterns: list[str],
    pattern_syntax: str,
    line: str,
    line_number: int | None,
) -> Directive:
    try:
        compiled = compile_patterns(raw_patterns, pattern_syntax)
    except ValueError as exc:
        raise DirectiveParseError(str(exc), line, line_number) from exc

    return Directive(
        source_root=source_root,
        destination_root=destination_root,
        skip_patterns=compiled,
        pattern_syntax=pattern_syntax,
        raw_patterns=raw_patterns,
    )


def parse_directive_line(
    line: str,
    line_number: int | None = None,
    pattern_syntax: str = "regex",
) -> Directive:
    # Only the first two separators split fields; patterns may contain ':'.
    fields = line.strip().split(FIELD_SEPARATOR, 2)
    if len(fields) < 2:
        raise DirectiveParseError("Unable to parse `to_path`", line, line_number)

    source_root = _as_path(fields[0], "from_path", line, line_number)
    destination_root = _as_path(fields[1], "to_path", line, line_number)
    raw_patterns = _split_patterns(fields[2]) if len(fields) == 3 else []
    return _build_directive(source_root, destination_root, raw_patterns, pattern_syntax, line, line_number)


def parse_directive_item(
    item: DirectiveItem,
    line_number: int | None = None,
    pattern_syntax: str = "regex",
) -> Directive:
    """Build a directive from a structured item; patterns are taken verbatim."""
    line = item.describe()
    source_root = _as_path(item.source, "from_path", line, line_number)
    destination_root = _as_path(item.target, "to_path", line, line_number)
    raw_patterns = [pattern for pattern in item.skip if pattern]
    return _build_directive(source_root, destination_root, raw_patterns, pattern_syntax, line, line_number)


def iter_directive_entries(entries: Iterable[DirectiveEntry]) -> Iterable[tuple[int, DirectiveEntry]]:
    for line_number, entry in enumerate(entries, start=1):
        if isinstance(entry, DirectiveItem):
            yield line_number, entry
            continue
        stripped = entry.strip()
        if not stripped or stripped.startswith(COMMENT_PREFIX):
            continue
        yield line_number, stripped


def parse_directives(
    entries: Iterable[DirectiveEntry],
    pattern_syntax: str = "regex",
) -> dict[tuple[Path, Path], Directive]:
    """Validate a batch of directives before anything is copied.

    Rejects entries that do not parse, sources that do not exist and
    destination roots already claimed by an earlier entry, however the
    path is spelled.
    """
    if pattern_syntax not in PATTERN_SYNTAXES:
        raise ValueError(f"pattern syntax must be one of: {', '.join(PATTERN_SYNTAXES)}")

    directives: dict[tuple[Path, Path], Directive] = {}
    claimed: dict[Path, Directive] = {}

    for line_number, entry in iter_directive_entries(entries):
        if isinstance(entry, DirectiveItem):
            line = entry.describe()
            directive = parse_directive_item(entry, line_number, pattern_syntax)
        else:
            line = entry
            directive = parse_directive_line(entry, line_number, pattern_syntax)

        if not directive.source_root.exists():
            raise DirectiveParseError(
                f"Unable to locate `from_path` \"{directive.source_root}\"", line, line_number
            )

        claim = directive.destination_root.resolve()
        owner = claimed.get(claim)
        if owner is not None:
            raise DirectiveParseError(
                f"`to_path` value \"{directive.destination_root}\" is already in use "
                f"(as \"{owner.destination_root}\") for \"{owner.source_root}\"",
                line,
                line_number,
            )
        claimed[claim] = directive
        directives[directive.key] = directive

    return directives


def _structured_item(item: Any, field_name: str) -> DirectiveEntry:
    if isinstance(item, str):
        return item
    if not isinstance(item, dict):
        raise ValueError(f"{field_name} must be a string or an object")

    source = item.get("from")
    target = item.get("to")
    if not isinstance(source, str) or not source.strip():
        raise ValueError(f"{field_name}.from must be a non-empty string path")
    if not isinstance(target, str) or not target.strip():
        raise ValueError(f"{field_name}.to must be a non-empty string path")

    skip = item.get("skip")
    if skip is None:
        skip = []
    if not isinstance(skip, list) or any(not isinstance(value, str) for value in skip):
        raise ValueError(f"{field_name}.skip must be a list of strings")

    return DirectiveItem(source=source, target=target, skip=list(skip))


def _structured_entries(loaded: Any) -> list[DirectiveEntry]:
    if isinstance(loaded, Mapping):
        loaded = loaded.get("directives")
    if not isinstance(loaded, list):
        raise ValueError("Directive file must contain a 'directives' list")
    return [
        _structured_item(item, f"directives[{index}]")
        for index, item in enumerate(loaded)
    ]


def read_directive_entries(path: Path) -> list[DirectiveEntry]:
    """Load directives from a text, YAML or JSON file.

    Text files yield raw lines. Structured files yield directive strings
    and ``DirectiveItem`` objects whose skip lists are kept as written.
    """
    if not path.exists():
        raise ValueError(f"Directive file does not exist: {path}")

    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix in {".yml", ".yaml"}:
        return _structured_entries(yaml.safe_load(text))
    if suffix == ".json":
        return _structured_entries(json.loads(text))
    return text.splitlines()
