"""Reconciliation loop — resolve, compare, pull, label, apply, persist.

One cycle::

    resolve version ─┬─ nothing published ──────────────────────── idle
                     ├─ same as last seen ───────────────────────── idle
                     └─ changed → pull → label → apply → persist ── idle

Cycles run strictly one after another with a fixed sleep in between. A
failed cycle is logged and leaves the last-seen marker untouched, so the
next cycle retries from scratch.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

import structlog

from kaw.config import WatchConfig
from kaw.manifests.annotator import AnnotationReport, ManifestAnnotator
from kaw.manifests.applier import ApplyReport, KubectlApplier
from kaw.registry.models import ResolvedVersion
from kaw.registry.puller import Puller, build_puller
from kaw.sync.resolver import VersionResolver, build_resolver
from kaw.sync.state import StateStore
from kaw.utils.file_scanner import sanitize_path

logger = structlog.get_logger(__name__)


class Annotator(Protocol):
    def annotate(self, directory: Path, version: str) -> AnnotationReport: ...


class Applier(Protocol):
    def apply(self, directory: Path) -> ApplyReport: ...


class Clock(Protocol):
    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class CycleOutcome(Enum):
    NO_VERSIONS = "no_versions"
    UNCHANGED = "unchanged"
    APPLIED = "applied"


@dataclass
class CycleResult:
    """What a single reconciliation cycle did."""

    outcome: CycleOutcome
    previous: str = ""
    latest: str = ""
    dest_dir: Path | None = None
    annotation: AnnotationReport | None = None
    apply: ApplyReport | None = None

    @property
    def changed(self) -> bool:
        return self.outcome == CycleOutcome.APPLIED


class ReconcileLoop:
    """Drives the watcher's collaborators on a fixed polling interval."""

    def __init__(
        self,
        resolver: VersionResolver,
        state: StateStore,
        puller: Puller,
        annotator: Annotator,
        applier: Applier,
        work_dir: str | Path,
        poll_interval: int,
        clock: Clock | None = None,
    ):
        self.resolver = resolver
        self.state = state
        self.puller = puller
        self.annotator = annotator
        self.applier = applier
        self.work_dir = Path(work_dir)
        self.poll_interval = poll_interval
        self.clock = clock or SystemClock()

    def destination_for(self, version: str) -> Path:
        return self.work_dir / f"image-{sanitize_path(version)}"

    def run_once(self) -> CycleResult:
        """Run one cycle.

        Raises:
            WatcherError: If resolving or pulling fails.
            OSError: On directory-level or state file I/O failures.
        """
        resolved = self.resolver.resolve()
        if resolved is None:
            logger.info("no_versions_found")
            return CycleResult(outcome=CycleOutcome.NO_VERSIONS)

        latest = resolved.identifier
        previous = self.state.read()
        if latest == previous:
            logger.info("no_change", latest=latest)
            return CycleResult(outcome=CycleOutcome.UNCHANGED, previous=previous, latest=latest)

        log = logger.bind(previous=previous, latest=latest)
        log.info("change_detected")
        return self._reconcile(resolved, previous, log)

    def _reconcile(self, resolved: ResolvedVersion, previous: str, log) -> CycleResult:
        latest = resolved.identifier
        dest_dir = self.destination_for(latest)

        self.puller.pull(resolved, dest_dir)
        annotation = self.annotator.annotate(dest_dir, latest)
        applied = self.applier.apply(dest_dir)
        if applied.failed:
            log.warning("some_manifests_failed", failed=applied.failed)

        self.state.write(latest)
        log.info("reconciled", dest=str(dest_dir), applied=len(applied.results))

        return CycleResult(
            outcome=CycleOutcome.APPLIED,
            previous=previous,
            latest=latest,
            dest_dir=dest_dir,
            annotation=annotation,
            apply=applied,
        )

    def run_forever(self, max_iterations: int | None = None) -> None:
        """Run cycles until the process is stopped.

        Any exception from a cycle is logged and the loop carries on after
        the usual sleep. ``max_iterations`` bounds the loop for tests.
        """
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            iteration += 1
            try:
                self.run_once()
            except Exception as e:
                logger.exception("watch_loop_error", iteration=iteration, error=str(e))
            self.clock.sleep(self.poll_interval)


def build_loop(config: WatchConfig) -> ReconcileLoop:
    """Wire the production collaborators for *config*."""
    return ReconcileLoop(
        resolver=build_resolver(config),
        state=StateStore(config.last_file),
        puller=build_puller(config),
        annotator=ManifestAnnotator(),
        applier=KubectlApplier(command=config.apply_command),
        work_dir=config.work_dir,
        poll_interval=config.poll_interval,
    )
