from __future__ import annotations

from concurrent.futures import Executor, Future
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shutil
import tempfile
from typing import Iterable, Iterator

from treemirror.directives import Directive
from treemirror.models import (
    CopyKind,
    CopyOutcome,
    CopyTask,
    Disposition,
    Summary,
    WalkEntry,
)
from treemirror.skip_patterns import SkipMatcher, build_skip_matcher


class DirectionError(ValueError):
    """A direction whose preconditions do not hold; nothing was copied."""


@dataclass(slots=True)
class MirrorRunOptions:
    dry_run: bool = False
    verbose: bool = False
    follow_symlinks: bool = False
    count_skipped_in_total: bool = True


# Copies get the mode open() gives a new file. Read once: os.umask is process-wide.
_UMASK = os.umask(0o022)
os.umask(_UMASK)
DEFAULT_FILE_MODE = 0o666 & ~_UMASK


def _make_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _copy_file(source_file: Path, destination_file: Path) -> None:
    with tempfile.NamedTemporaryFile(
        delete=False, dir=str(destination_file.parent), prefix=".treemirror-"
    ) as tmp:
        tmp_path = Path(tmp.name)
    try:
        shutil.copyfile(source_file, tmp_path)
        os.chmod(tmp_path, DEFAULT_FILE_MODE)
        tmp_path.replace(destination_file)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def _is_representable(name: str) -> bool:
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def validate_direction(source_root: Path, destination_root: Path) -> None:
    if not source_root.exists() or not source_root.is_dir():
        raise DirectionError(f"Source directory does not exist or is not a directory: {source_root}")

    source_resolved = source_root.resolve()
    destination_resolved = destination_root.resolve()

    if source_resolved == destination_resolved:
        raise DirectionError(f"Invalid mapping: source and destination are equal: {source_root}")

    if source_resolved in destination_resolved.parents:
        raise DirectionError(
            f"Invalid mapping: destination is inside source, which can recurse: {destination_root}"
        )

    if destination_root.exists() and not destination_root.is_dir():
        raise DirectionError(f"Destination exists and is not a directory: {destination_root}")


class TreeWalker:
    """Depth-first walk of a source tree using an explicit stack.

    A directory's mirrored destination is created before any of its files
    are yielded. Per-entry problems are counted in ``errors``.
    """

    def __init__(
        self,
        source_root: Path,
        destination_root: Path,
        options: MirrorRunOptions | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.source_root = source_root
        self.destination_root = destination_root
        self.options = options or MirrorRunOptions()
        self.errors = 0
        self._log = logger or logging.getLogger("treemirror.engine")

    def _trace(self, message: str, *args: object) -> None:
        if self.options.verbose:
            self._log.info(message, *args)

    def _prepare_destination(self, destination_dir: Path, is_root: bool) -> bool:
        if destination_dir.is_dir():
            return True
        if destination_dir.exists():
            if is_root:
                raise DirectionError(f"Destination exists and is not a directory: {destination_dir}")
            self.errors += 1
            self._log.warning("failed: %s exists and is not a directory", destination_dir)
            return False
        if self.options.dry_run:
            return True
        self._trace(" mkdir: %s", destination_dir)
        try:
            _make_directory(destination_dir)
        except OSError as exc:
            if is_root:
                raise DirectionError(
                    f"Unable to create destination directory {destination_dir}: {exc}"
                ) from exc
            self.errors += 1
            self._log.warning("failed to create %s: %s", destination_dir, exc)
            return False
        return True

    def _list_children(self, directory: Path) -> list[os.DirEntry[str]]:
        with os.scandir(directory) as entries:
            return list(entries)

    def _already_visited(self, directory: Path, visited: set[tuple[int, int]]) -> bool:
        try:
            info = directory.stat()
        except OSError:
            return False
        identity = (info.st_dev, info.st_ino)
        if identity in visited:
            return True
        visited.add(identity)
        return False

    def walk(self) -> Iterator[WalkEntry]:
        stack = [self.source_root]
        visited: set[tuple[int, int]] = set()

        while stack:
            working_dir = stack.pop()
            if self.options.follow_symlinks and self._already_visited(working_dir, visited):
                self._trace("  skip cycle: %s", working_dir)
                continue
            relative_dir = working_dir.relative_to(self.source_root)
            is_root = relative_dir == Path(".")
            destination_dir = self.destination_root if is_root else self.destination_root / relative_dir

            self._trace("process: %s -> %s", working_dir, destination_dir)
            if not self._prepare_destination(destination_dir, is_root):
                continue

            try:
                children = self._list_children(working_dir)
            except OSError as exc:
                if is_root:
                    raise DirectionError(f"Unable to list source directory {working_dir}: {exc}") from exc
                self.errors += 1
                self._log.warning("failed to list %s: %s", working_dir, exc)
                continue

            yield WalkEntry(
                absolute_path=working_dir,
                relative_path=relative_dir,
                destination_path=destination_dir,
                is_directory=True,
            )

            for child in children:
                child_path = working_dir / child.name
                if not _is_representable(child.name):
                    self.errors += 1
                    self._log.warning("failed: unrepresentable file name %r", child_path)
                    continue

                try:
                    is_directory = child.is_dir(follow_symlinks=self.options.follow_symlinks)
                    is_linked_directory = not is_directory and child.is_symlink() and child.is_dir()
                except OSError as exc:
                    self.errors += 1
                    self._log.warning("failed to inspect %s: %s", child_path, exc)
                    continue

                if is_directory:
                    stack.append(child_path)
                    continue
                if is_linked_directory:
                    self._trace("  skip link: %s", child_path)
                    continue

                yield WalkEntry(
                    absolute_path=child_path,
                    relative_path=relative_dir / child.name,
                    destination_path=destination_dir / child.name,
                    is_directory=False,
                )


def classify_entry(entry: WalkEntry, matcher: SkipMatcher) -> Disposition:
    if matcher and matcher.is_skipped(entry.absolute_path, entry.relative_path):
        return Disposition.SKIP

    try:
        source_stat = entry.absolute_path.stat()
        try:
            destination_stat = entry.destination_path.stat()
        except FileNotFoundError:
            return Disposition.CREATE
    except OSError:
        return Disposition.ERROR

    if source_stat.st_mtime_ns > destination_stat.st_mtime_ns:
        return Disposition.UPDATE
    return Disposition.UNCHANGED


class CopyDispatcher:
    """Starts file copies on an executor without waiting for them."""

    def __init__(
        self,
        executor: Executor,
        options: MirrorRunOptions | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._executor = executor
        self._options = options or MirrorRunOptions()
        self._log = logger or logging.getLogger("treemirror.engine")

    def dispatch(self, task: CopyTask) -> Future[CopyOutcome]:
        return self._executor.submit(self._run, task)

    def _run(self, task: CopyTask) -> CopyOutcome:
        if self._options.verbose:
            self._log.info("  %s: %s -> %s", task.kind.value, task.source_file, task.destination_file)
        if self._options.dry_run:
            return CopyOutcome(task.kind, True)
        try:
            _copy_file(task.source_file, task.destination_file)
        except OSError as exc:
            self._log.warning(
                "%s failed: %s -> %s: %s", task.kind.value, task.source_file, task.destination_file, exc
            )
            return CopyOutcome(task.kind, False)
        return CopyOutcome(task.kind, True)


def aggregate_outcomes(summary: Summary, pending: Iterable[Future[CopyOutcome]]) -> Summary:
    for future in pending:
        summary.record(future.result())
    return summary


def mirror_direction(
    directive: Directive,
    executor: Executor,
    options: MirrorRunOptions | None = None,
    logger: logging.Logger | None = None,
) -> Summary:
    options = options or MirrorRunOptions()
    log = logger or logging.getLogger("treemirror.engine")

    validate_direction(directive.source_root, directive.destination_root)

    matcher = build_skip_matcher(directive)
    walker = TreeWalker(directive.source_root, directive.destination_root, options, log)
    dispatcher = CopyDispatcher(executor, options, log)
    summary = Summary()
    pending: list[Future[CopyOutcome]] = []

    for entry in walker.walk():
        if entry.is_directory:
            continue

        disposition = classify_entry(entry, matcher)
        if disposition is Disposition.SKIP:
            if options.count_skipped_in_total:
                summary.total += 1
            continue

        summary.total += 1
        if disposition is Disposition.ERROR:
            summary.errors += 1
            log.warning("failed to stat %s or %s", entry.absolute_path, entry.destination_path)
        elif disposition is Disposition.UNCHANGED:
            summary.existing += 1
        else:
            kind = CopyKind.CREATE if disposition is Disposition.CREATE else CopyKind.UPDATE
            pending.append(dispatcher.dispatch(CopyTask(entry.absolute_path, entry.destination_path, kind)))

    summary.errors += walker.errors
    return aggregate_outcomes(summary, pending)
