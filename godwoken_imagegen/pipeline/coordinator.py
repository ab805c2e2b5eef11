"""Pipeline coordinator.

This module provides the top-level run:
- Resolve every component's version
- Build or reuse every component with bounded parallelism
- Assemble the release only once the whole matched set is built
- Hand the image over to the downstream runner

The first failure cancels every in-flight build and no release is
assembled from an incomplete component set.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import TYPE_CHECKING

from godwoken_imagegen.builds.builder import ComponentBuilder, Toolchain, create_builders
from godwoken_imagegen.errors import (
    BuildCancelled,
    ImageBuildError,
    PipelineError,
    PipelineTimeout,
    ReleaseDefect,
    ResolutionError,
)
from godwoken_imagegen.manifest.schema import ComponentSpec, validate_component_set
from godwoken_imagegen.release.assembler import ReleaseAssembler
from godwoken_imagegen.release.handoff import HandoffEmitter
from godwoken_imagegen.release.tags import TriggerRef
from godwoken_imagegen.types import (
    COMPONENT_ORDER,
    BuildResult,
    ComponentKind,
    ReleaseDescriptor,
    ResolvedComponent,
)
from godwoken_imagegen.versions.resolver import VersionResolver

if TYPE_CHECKING:
    from godwoken_imagegen.cache.store import CacheStore
    from godwoken_imagegen.config import Settings
    from godwoken_imagegen.release.docker import DockerCLI, PublishPolicy
    from godwoken_imagegen.versions.git import GitClient

logger = logging.getLogger(__name__)

# Seconds between abort/deadline checks while builds run
POLL_INTERVAL = 0.5


def _require_deadline(expires_at: float | None, deadline: float | None) -> None:
    if expires_at is not None and deadline is None:
        raise ValueError("expires_at needs the deadline it was computed from")


@contextmanager
def abort_on_signals(
    signals: Sequence[signal.Signals] = (signal.SIGTERM, signal.SIGINT),
) -> Iterator[threading.Event]:
    """Turn termination signals into a pipeline abort.

    Toolchains run in their own sessions and never see signals sent to
    this process. While the context is active the given signals set the
    yielded event instead; pass it to ``Coordinator.run`` so in-flight
    builds are terminated. Previous handlers are restored on exit.

    Handlers can only be installed from the main thread; elsewhere the
    event is yielded without them.
    """
    abort = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield abort
        return

    def _handle(signum: int, frame: object) -> None:
        logger.warning(
            "Received %s; aborting the pipeline", signal.Signals(signum).name
        )
        abort.set()

    previous = {sig: signal.signal(sig, _handle) for sig in signals}
    try:
        yield abort
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)


class Coordinator:
    """Runs resolve, build, assemble and handoff for the fixed component set.

    Args:
        resolver: Version resolver.
        builders: One builder per component kind.
        assembler: Release assembler.
        emitter: Optional handoff emitter run after a successful assembly.
        max_workers: Maximum concurrent component builds.
        poll_interval: Seconds between abort/deadline checks.
    """

    def __init__(
        self,
        resolver: VersionResolver,
        builders: Mapping[ComponentKind | str, ComponentBuilder],
        assembler: ReleaseAssembler,
        emitter: HandoffEmitter | None = None,
        max_workers: int = len(COMPONENT_ORDER),
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.resolver = resolver
        self.builders = {ComponentKind(k).value: b for k, b in builders.items()}
        missing = [k.value for k in COMPONENT_ORDER if k.value not in self.builders]
        if missing:
            raise ValueError(f"No builder for component(s): {', '.join(missing)}")
        self.assembler = assembler
        self.emitter = emitter
        self.max_workers = max(1, max_workers)
        self.poll_interval = poll_interval

    def resolve(self, specs: Sequence[ComponentSpec]) -> list[ResolvedComponent]:
        """Resolve the manifest.

        Raises:
            PipelineError: If the component set is wrong or a ref cannot be
                resolved.
        """
        try:
            validate_component_set([spec.name for spec in specs])
        except ValueError as e:
            raise PipelineError("manifest", ResolutionError(str(e))) from e
        try:
            return self.resolver.resolve(specs)
        except ResolutionError as e:
            raise PipelineError(e.component or "manifest", e) from e

    def build_all(
        self,
        resolved: Sequence[ResolvedComponent],
        *,
        abort: threading.Event | None = None,
        expires_at: float | None = None,
        deadline: float | None = None,
    ) -> list[BuildResult]:
        """Build every component concurrently and join.

        Args:
            resolved: Resolved components to build.
            abort: Event an outside caller sets to abort the run.
            expires_at: ``time.monotonic()`` value the run must finish by.
            deadline: Caller-supplied deadline in seconds, for reporting.

        Returns:
            BuildResults in the order of ``resolved``.

        Raises:
            PipelineError: On the first failing build, an abort or an
                expired deadline. In-flight builds are cancelled and joined
                before it is raised.
            ValueError: If ``expires_at`` is given without ``deadline``.
        """
        _require_deadline(expires_at, deadline)
        order = {c.name: i for i, c in enumerate(resolved)}
        cancel = threading.Event()
        results: dict[str, BuildResult] = {}
        futures: dict[Future[BuildResult], str] = {}
        completed = False

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(resolved)) or 1,
            thread_name_prefix="gw-build",
        )
        try:
            for component in resolved:
                builder = self.builders[component.name]
                future = executor.submit(builder.build, component, cancel)
                futures[future] = component.name

            pending = set(futures)
            while pending:
                done, pending = wait(
                    pending, timeout=self.poll_interval, return_when=FIRST_EXCEPTION
                )

                failures = {
                    futures[f]: exc for f in done if (exc := f.exception()) is not None
                }
                if failures:
                    # Report the root failure, not the builds it cancelled
                    name = min(
                        failures,
                        key=lambda n: (
                            isinstance(failures[n], BuildCancelled),
                            order[n],
                        ),
                    )
                    cause = failures[name]
                    logger.error(
                        "Build of %s failed: %s; cancelling in-flight builds",
                        name,
                        cause,
                    )
                    cancel.set()
                    raise PipelineError(name, cause) from cause

                for future in done:
                    result = future.result()
                    results[result.component_name] = result
                    logger.info(
                        "%s ready (%s, %.1fs)",
                        result.component_name,
                        "cache hit" if result.cache_hit else "built",
                        result.duration,
                    )

                if not pending:
                    break
                if abort is not None and abort.is_set():
                    logger.warning("Pipeline aborted; cancelling in-flight builds")
                    cancel.set()
                    raise PipelineError("pipeline", BuildCancelled("pipeline"))
                if expires_at is not None and time.monotonic() >= expires_at:
                    logger.error("Deadline of %gs expired during builds", deadline)
                    cancel.set()
                    raise PipelineError("pipeline", PipelineTimeout(deadline))

            completed = True
        finally:
            if not completed:
                cancel.set()
            executor.shutdown(wait=True, cancel_futures=True)

        return [results[c.name] for c in resolved]

    @staticmethod
    def _check_abort(abort: threading.Event | None) -> None:
        if abort is not None and abort.is_set():
            raise PipelineError("pipeline", BuildCancelled("pipeline"))

    @staticmethod
    def _check_deadline(expires_at: float | None, deadline: float | None) -> None:
        _require_deadline(expires_at, deadline)
        if expires_at is not None and time.monotonic() >= expires_at:
            raise PipelineError("pipeline", PipelineTimeout(deadline))

    def run(
        self,
        specs: Sequence[ComponentSpec],
        *,
        trigger: TriggerRef,
        invoking_commit: str,
        deadline: float | None = None,
        abort: threading.Event | None = None,
    ) -> ReleaseDescriptor:
        """Run the whole pipeline.

        Args:
            specs: Component specs from the version manifest.
            trigger: Ref that triggered the run.
            invoking_commit: Commit of the pipeline checkout.
            deadline: Optional bound on the whole run, in seconds.
            abort: Event an outside caller sets to abort the run.

        Returns:
            ReleaseDescriptor of the released image.

        Raises:
            PipelineError: On any failure; ``failed_component`` names the
                component, or ``manifest``, ``pipeline`` or ``release``.
        """
        expires_at = time.monotonic() + deadline if deadline is not None else None

        resolved = self.resolve(specs)
        self._check_deadline(expires_at, deadline)
        self._check_abort(abort)

        results = self.build_all(
            resolved, abort=abort, expires_at=expires_at, deadline=deadline
        )
        self._check_deadline(expires_at, deadline)
        self._check_abort(abort)

        try:
            descriptor = self.assembler.assemble(
                results, resolved, invoking_commit, trigger=trigger
            )
        except (ReleaseDefect, ImageBuildError, OSError) as e:
            logger.error("Release assembly failed: %s", e)
            raise PipelineError("release", e) from e

        if self.emitter is not None:
            self.emitter.emit(descriptor)

        hits = sum(1 for hit in descriptor.cache_hits.values() if hit)
        logger.info(
            "Released %s (%d/%d components from cache)",
            descriptor.image_reference,
            hits,
            len(results),
        )
        return descriptor


def create_coordinator(
    settings: Settings,
    policy: PublishPolicy,
    *,
    store: CacheStore | None = None,
    git: GitClient | None = None,
    toolchain: Toolchain | None = None,
    docker: DockerCLI | None = None,
    output_path: Path | None = None,
) -> Coordinator:
    """Wire a Coordinator from settings.

    Args:
        settings: Effective settings.
        policy: Publish policy decided at pipeline start.
        store: Cache store (defaults to a DiskCacheStore under cache_dir).
        git: Ref lookup collaborator.
        toolchain: Toolchain collaborator.
        docker: Image builder, registry and inspector.
        output_path: Step output file for the handoff record.
    """
    from godwoken_imagegen.cache.store import DiskCacheStore
    from godwoken_imagegen.db import create_all_tables, get_engine, get_session_factory
    from godwoken_imagegen.release.docker import DockerCLI
    from godwoken_imagegen.release.smoke import SmokeChecker

    if store is None:
        engine = get_engine(settings.db_url)
        create_all_tables(engine)
        store = DiskCacheStore(
            settings.cache_dir,
            get_session_factory(engine),
            lock_timeout=settings.lock_timeout,
        )
    if docker is None:
        docker = DockerCLI()

    context_dir = settings.context_dir
    if context_dir is None:
        context_dir = settings.workspace / "build" / "image-context"

    assembler = ReleaseAssembler(
        image_builder=docker,
        smoke_checker=SmokeChecker(docker),
        context_dir=settings.resolve_path(context_dir),
        dockerfile=settings.resolve_path(settings.dockerfile),
        policy=policy,
        registry=docker,
        registry_prefix=settings.registry,
        image=settings.image_name,
        repository=settings.repository,
        maintainer=settings.maintainer,
        tag_prefix=settings.tag_prefix,
    )
    return Coordinator(
        resolver=VersionResolver(git=git, workspace=settings.workspace),
        builders=create_builders(store, toolchain, settings.logs_dir),
        assembler=assembler,
        emitter=HandoffEmitter(output_path),
        max_workers=settings.max_concurrent_builds,
    )


__all__ = ["POLL_INTERVAL", "Coordinator", "abort_on_signals", "create_coordinator"]
