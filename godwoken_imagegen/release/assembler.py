"""Release assembly.

This module handles:
- Checking that every component of the matched set is present
- Naming, tagging and labelling the image
- Staging component artifacts into the image build context
- Building, smoke-checking and (when trusted) pushing the image
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from godwoken_imagegen.builds.artifacts import (
    describe_artifact,
    generate_manifest,
    write_manifest,
)
from godwoken_imagegen.builds.cache_key import compute_release_cache_key
from godwoken_imagegen.errors import ReleaseDefect
from godwoken_imagegen.release.docker import ImageBuilder, PublishPolicy, Registry
from godwoken_imagegen.release.smoke import SmokeChecker
from godwoken_imagegen.release.tags import (
    TriggerRef,
    build_labels,
    compose_image_name,
    compute_image_tag,
)
from godwoken_imagegen.types import (
    COMPONENT_ORDER,
    ArtifactInfo,
    BuildResult,
    ComponentKind,
    ReleaseDescriptor,
    ResolvedComponent,
)

logger = logging.getLogger(__name__)

INCOMPLETE_RELEASE = "incomplete_release"
MISSING_CREDENTIALS = "missing_credentials"

# Components whose artifacts are on-chain scripts bundled under /scripts
SCRIPT_COMPONENTS = frozenset(
    {
        ComponentKind.CKB_PRODUCTION_SCRIPTS.value,
        ComponentKind.GWOS.value,
        ComponentKind.GWOS_EVM.value,
    }
)

MANIFEST_FILENAME = "manifest.json"


def stage_context(
    context_dir: Path,
    build_results: Sequence[BuildResult],
) -> dict[str, tuple[ArtifactInfo, ...]]:
    """Copy every component's artifacts into ``<context>/<component>/``.

    Each component directory is emptied first so nothing from an earlier
    run can leak into the image.

    Returns:
        Component -> staged artifacts (hashed after copying).
    """
    context_dir.mkdir(parents=True, exist_ok=True)
    staged: dict[str, tuple[ArtifactInfo, ...]] = {}
    for result in build_results:
        component_dir = context_dir / result.component_name
        if component_dir.exists():
            shutil.rmtree(component_dir)
        copies = []
        for artifact in result.artifacts:
            dest = component_dir / artifact.name
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(artifact.path, dest)
            copies.append(describe_artifact(dest, component_dir))
        staged[result.component_name] = tuple(copies)
        logger.debug("Staged %d artifacts of %s", len(copies), result.component_name)
    return staged


class ReleaseAssembler:
    """Turns a complete set of BuildResults into a tagged image.

    Args:
        image_builder: Image build collaborator.
        smoke_checker: Post-build checker.
        context_dir: Image build context directory.
        dockerfile: Dockerfile used for the build.
        policy: Publish policy decided at pipeline start.
        registry: Registry collaborator; required when the policy is trusted.
        registry_prefix: Registry prefix of the image name.
        image: Image repository name.
        repository: Source identity as ``owner/repo``.
        maintainer: Maintainer label value.
        tag_prefix: Prefix stripped from release tags.
        components: Component names a release must contain.
    """

    def __init__(
        self,
        image_builder: ImageBuilder,
        smoke_checker: SmokeChecker,
        context_dir: Path,
        dockerfile: Path,
        policy: PublishPolicy,
        registry: Registry | None = None,
        registry_prefix: str = "ghcr.io/",
        image: str = "godwoken",
        repository: str = "godwokenrises/godwoken",
        maintainer: str = "Godwoken Core Dev",
        tag_prefix: str = "",
        components: Sequence[str] = tuple(k.value for k in COMPONENT_ORDER),
    ) -> None:
        self.image_builder = image_builder
        self.smoke_checker = smoke_checker
        self.context_dir = context_dir
        self.dockerfile = dockerfile
        self.policy = policy
        self.registry = registry
        self.registry_prefix = registry_prefix
        self.image = image
        self.repository = repository
        self.maintainer = maintainer
        self.tag_prefix = tag_prefix
        self.components = tuple(components)

    def _check_complete(
        self,
        build_results: Sequence[BuildResult],
        resolved_components: Sequence[ResolvedComponent],
    ) -> None:
        required = set(self.components)
        built = [r.component_name for r in build_results]
        resolved = [c.name for c in resolved_components]
        for label, names in (("build result", built), ("resolved component", resolved)):
            if len(set(names)) != len(names):
                raise ReleaseDefect(
                    f"Duplicate {label} in release inputs", code=INCOMPLETE_RELEASE
                )
            missing = sorted(required - set(names))
            unexpected = sorted(set(names) - required)
            if missing or unexpected:
                raise ReleaseDefect(
                    f"Release needs exactly {sorted(required)}; "
                    f"missing {label}s {missing}, unexpected {unexpected}",
                    code=INCOMPLETE_RELEASE,
                )

    def _expected_scripts(
        self,
        staged: dict[str, tuple[ArtifactInfo, ...]],
    ) -> dict[str, str]:
        expected: dict[str, str] = {}
        for component, artifacts in staged.items():
            if component not in SCRIPT_COMPONENTS:
                continue
            for artifact in artifacts:
                path = self.smoke_checker.script_path(component, artifact.name)
                expected[path] = artifact.sha256
        return expected

    def _publish(self, image_reference: str) -> bool:
        if not self.policy.trusted:
            logger.info("Untrusted trigger; not pushing %s", image_reference)
            return False
        if self.registry is None or self.policy.credentials is None:
            raise ReleaseDefect(
                "Trusted run has no registry credentials; refusing to push",
                code=MISSING_CREDENTIALS,
            )
        self.registry.login(self.policy.credentials)
        self.registry.push(image_reference)
        logger.info("Pushed %s", image_reference)
        return True

    def assemble(
        self,
        build_results: Sequence[BuildResult],
        resolved_components: Sequence[ResolvedComponent],
        invoking_commit: str,
        *,
        trigger: TriggerRef,
        built_at: datetime | None = None,
    ) -> ReleaseDescriptor:
        """Assemble, verify and (when trusted) publish the release image.

        Args:
            build_results: One BuildResult per component.
            resolved_components: One ResolvedComponent per component.
            invoking_commit: Commit of the pipeline checkout.
            trigger: Ref that triggered the run.
            built_at: Build time; defaults to now (UTC).

        Returns:
            ReleaseDescriptor of the assembled image.

        Raises:
            ReleaseDefect: If the component set is incomplete or a push is
                impossible. SmokeCheckError if verification fails.
            ImageBuildError: If the image builder or registry fails.
        """
        self._check_complete(build_results, resolved_components)
        if built_at is None:
            built_at = datetime.now(timezone.utc)

        order = {name: i for i, name in enumerate(self.components)}
        results = sorted(build_results, key=lambda r: order[r.component_name])
        resolved = sorted(resolved_components, key=lambda c: order[c.name])

        release_key = compute_release_cache_key(
            {r.component_name: r.cache_key for r in results}, invoking_commit
        )
        image_name = compose_image_name(
            self.registry_prefix, self.repository, self.image
        )
        image_tag = compute_image_tag(
            trigger, built_at, self.tag_prefix, commit=invoking_commit
        )
        image_reference = f"{image_name}:{image_tag}"
        labels = build_labels(
            resolved,
            maintainer=self.maintainer,
            repository=self.repository,
            invoking_commit=invoking_commit,
            release_key=release_key,
            created=built_at,
        )

        logger.info("Assembling %s (release key %s)", image_reference, release_key[:32])
        staged = stage_context(self.context_dir, results)
        manifest = generate_manifest(
            staged,
            release_key=release_key,
            extra_metadata={"image": image_reference, "labels": labels},
        )
        write_manifest(manifest, self.context_dir / MANIFEST_FILENAME)

        self.smoke_checker.check_staged(
            staged,
            {r.component_name: {a.name: a.sha256 for a in r.artifacts} for r in results},
        )
        self.image_builder.build(
            self.context_dir, self.dockerfile, [image_reference], labels
        )
        self.smoke_checker.check_image(image_reference, self._expected_scripts(staged))
        pushed = self._publish(image_reference)

        return ReleaseDescriptor(
            image_name=image_name,
            image_tag=image_tag,
            labels=labels,
            component_refs={c.name: (c.ref, c.content_hash) for c in resolved},
            release_key=release_key,
            pushed=pushed,
            cache_hits={r.component_name: r.cache_hit for r in results},
        )


__all__ = [
    "MANIFEST_FILENAME",
    "SCRIPT_COMPONENTS",
    "ReleaseAssembler",
    "stage_context",
]
