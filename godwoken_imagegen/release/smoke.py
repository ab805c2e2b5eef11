"""Post-build smoke check of the assembled image.

This module handles:
- Re-hashing staged artifacts against the checksums recorded in the cache
- Asking every bundled executable for its version
- Hashing the bundled scripts inside the image

Any mismatch is a release defect: it means the cache served an artifact
that does not match the declared component ref.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from godwoken_imagegen.builds.artifacts import verify_checksums
from godwoken_imagegen.errors import (
    VERSION_PROBE_FAILED,
    ImageBuildError,
    SmokeCheckError,
)
from godwoken_imagegen.release.docker import ImageInspector
from godwoken_imagegen.types import ArtifactInfo

logger = logging.getLogger(__name__)

DEFAULT_PROBES: tuple[tuple[str, ...], ...] = (
    ("godwoken", "--version"),
    ("gw-tools", "--version"),
    ("ckb", "--version"),
    ("ckb-cli", "--version"),
)

SCRIPTS_DIR = "/scripts"


@dataclass(frozen=True)
class SmokeReport:
    """What the smoke check observed in the image."""

    image_reference: str
    versions: dict[str, str] = field(default_factory=dict)
    script_checksums: dict[str, str] = field(default_factory=dict)


def parse_checksum_listing(output: str) -> dict[str, str]:
    """Parse ``sha256sum`` output into path -> digest."""
    checksums: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.strip().split(maxsplit=1)
        if len(parts) != 2:
            continue
        digest, path = parts
        # Binary-mode marker
        checksums[path.lstrip("*")] = digest.lower()
    return checksums


class SmokeChecker:
    """Verifies staged artifacts and the image built from them.

    Args:
        inspector: Runs commands inside the image.
        probes: Version commands that must succeed.
        scripts_dir: In-image directory holding the bundled scripts.
    """

    def __init__(
        self,
        inspector: ImageInspector,
        probes: Sequence[Sequence[str]] = DEFAULT_PROBES,
        scripts_dir: str = SCRIPTS_DIR,
    ) -> None:
        self.inspector = inspector
        self.probes = tuple(tuple(p) for p in probes)
        self.scripts_dir = scripts_dir.rstrip("/")

    def script_path(self, component: str, name: str) -> str:
        """In-image path of a staged script artifact."""
        return f"{self.scripts_dir}/{component}/{name}"

    def check_staged(
        self,
        staged: Mapping[str, Sequence[ArtifactInfo]],
        expected: Mapping[str, Mapping[str, str]],
    ) -> None:
        """Compare staged files with the checksums recorded in the cache.

        Args:
            staged: Component -> staged artifacts.
            expected: Component -> artifact name -> recorded sha256.

        Raises:
            SmokeCheckError: On any missing or altered artifact.
        """
        mismatches: list[str] = []
        for component, artifacts in staged.items():
            want = expected.get(component, {})
            for name in sorted(set(want) - {a.name for a in artifacts}):
                mismatches.append(f"{component}/{name}: not staged")
            for problem in verify_checksums(artifacts, want):
                mismatches.append(f"{component}/{problem}")

        if mismatches:
            for problem in mismatches:
                logger.error("Staged artifact mismatch: %s", problem)
            raise SmokeCheckError(
                f"{len(mismatches)} staged artifact(s) differ from the cache",
                mismatches=mismatches,
            )
        logger.info("Staged artifacts match their recorded checksums")

    def probe_versions(self, image_reference: str) -> dict[str, str]:
        """Run every version probe.

        Raises:
            SmokeCheckError: If a probe fails or prints nothing.
        """
        versions: dict[str, str] = {}
        for probe in self.probes:
            executable = probe[0]
            try:
                output = self.inspector.run(image_reference, probe).strip()
            except ImageBuildError as e:
                raise SmokeCheckError(
                    f"{executable} failed its version probe: {e}",
                    mismatches=[executable],
                    code=VERSION_PROBE_FAILED,
                ) from e
            if not output:
                raise SmokeCheckError(
                    f"{executable} reported no version",
                    mismatches=[executable],
                    code=VERSION_PROBE_FAILED,
                )
            versions[executable] = output.splitlines()[0]
            logger.info("%s: %s", executable, versions[executable])
        return versions

    def hash_scripts(self, image_reference: str) -> dict[str, str]:
        """Hash every file under the scripts directory inside the image."""
        output = self.inspector.run(
            image_reference,
            ["find", self.scripts_dir, "-type", "f", "-exec", "sha256sum", "{}", "+"],
        )
        return parse_checksum_listing(output)

    def check_image(
        self,
        image_reference: str,
        expected_scripts: Mapping[str, str],
    ) -> SmokeReport:
        """Probe versions and compare in-image script hashes.

        Args:
            image_reference: Image to check.
            expected_scripts: In-image path -> expected sha256.

        Returns:
            SmokeReport of the observed versions and checksums.

        Raises:
            SmokeCheckError: On a failed probe or a checksum mismatch.
            ImageBuildError: If the image cannot be run at all.
        """
        versions = self.probe_versions(image_reference)
        observed = self.hash_scripts(image_reference)

        mismatches: list[str] = []
        for path in sorted(expected_scripts):
            actual = observed.get(path)
            if actual is None:
                mismatches.append(f"{path}: missing from image")
            elif actual != expected_scripts[path]:
                mismatches.append(
                    f"{path}: expected {expected_scripts[path]}, got {actual}"
                )

        if mismatches:
            for problem in mismatches:
                logger.error("Image script mismatch: %s", problem)
            raise SmokeCheckError(
                f"{len(mismatches)} script(s) in {image_reference} differ "
                "from the recorded checksums",
                mismatches=mismatches,
            )

        logger.info(
            "Smoke check passed for %s (%d scripts)",
            image_reference,
            len(expected_scripts),
        )
        return SmokeReport(
            image_reference=image_reference,
            versions=versions,
            script_checksums=observed,
        )


__all__ = [
    "DEFAULT_PROBES",
    "SCRIPTS_DIR",
    "SmokeChecker",
    "SmokeReport",
    "parse_checksum_listing",
]
