from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
import os
from typing import Iterable

from treemirror.directives import Directive
from treemirror.mirror_engine import MirrorRunOptions, mirror_direction
from treemirror.models import Summary


EXIT_SUCCESS = 0
EXIT_RUNTIME_OR_CONFIG_ERROR = 1
EXIT_PARTIAL_FAILURES = 2
EXIT_INVALID_CONFIG = 3


def default_workers() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


@dataclass(slots=True)
class DirectionFailure:
    directive: Directive
    message: str


@dataclass(slots=True)
class DirectionResult:
    directive: Directive
    summary: Summary


@dataclass(slots=True)
class RunReport:
    summary: Summary = field(default_factory=Summary)
    results: list[DirectionResult] = field(default_factory=list)
    failures: list[DirectionFailure] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.failures:
            return EXIT_RUNTIME_OR_CONFIG_ERROR
        if self.summary.errors:
            return EXIT_PARTIAL_FAILURES
        return EXIT_SUCCESS


def run_directions(
    directives: Iterable[Directive],
    options: MirrorRunOptions | None = None,
    workers: int | None = None,
    logger: logging.Logger | None = None,
) -> RunReport:
    """Mirror every direction concurrently and merge the summaries.

    Each direction runs on its own thread and shares one copy pool. A
    direction that fails its preconditions is reported in ``failures`` and
    left out of the merged summary.
    """
    log = logger or logging.getLogger("treemirror.run")
    options = options or MirrorRunOptions()
    batch = list(directives)
    report = RunReport()
    if not batch:
        return report

    engine_log = log.getChild("engine")
    with ThreadPoolExecutor(
        max_workers=workers or default_workers(), thread_name_prefix="copy"
    ) as copy_pool, ThreadPoolExecutor(
        max_workers=len(batch), thread_name_prefix="direction"
    ) as direction_pool:
        futures = {
            direction_pool.submit(mirror_direction, directive, copy_pool, options, engine_log): directive
            for directive in batch
        }
        for future, directive in futures.items():
            try:
                stats = future.result()
            except Exception as exc:
                report.failures.append(DirectionFailure(directive, str(exc)))
                log.error("%s -> %s failed: %s", directive.source_root, directive.destination_root, exc)
                continue
            report.results.append(DirectionResult(directive, stats))
            log.info("%s -> %s | %s", directive.source_root, directive.destination_root, stats.describe())

    # Merge after every direction has joined its own copies.
    for result in report.results:
        report.summary.absorb(result.summary)
    return report
