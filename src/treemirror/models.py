from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class CopyKind(str, Enum):
    CREATE = "copy"
    UPDATE = "update"


class Disposition(str, Enum):
    SKIP = "skip"
    CREATE = "create"
    UPDATE = "update"
    UNCHANGED = "unchanged"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class WalkEntry:
    absolute_path: Path
    relative_path: Path
    destination_path: Path
    is_directory: bool


@dataclass(slots=True, frozen=True)
class CopyTask:
    source_file: Path
    destination_file: Path
    kind: CopyKind


@dataclass(slots=True, frozen=True)
class CopyOutcome:
    kind: CopyKind
    success: bool


@dataclass(slots=True)
class Summary:
    new: int = 0
    existing: int = 0
    updated: int = 0
    errors: int = 0
    total: int = 0

    def record(self, outcome: CopyOutcome) -> None:
        """Fold one finished copy into the counters."""
        if not outcome.success:
            self.errors += 1
        elif outcome.kind is CopyKind.CREATE:
            self.new += 1
        else:
            self.updated += 1

    def absorb(self, other: Summary) -> None:
        self.new += other.new
        self.existing += other.existing
        self.updated += other.updated
        self.errors += other.errors
        self.total += other.total

    def __add__(self, other: Summary) -> Summary:
        merged = Summary(self.new, self.existing, self.updated, self.errors, self.total)
        merged.absorb(other)
        return merged

    def describe(self) -> str:
        return (
            f"new={self.new} existing={self.existing} updated={self.updated} "
            f"errors={self.errors} total={self.total}"
        )
