"""Image builder, registry and inspector collaborators.

This module handles:
- The publish policy, decided once when a run starts
- Registry credentials
- Building, pushing and probing images through the docker CLI
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from godwoken_imagegen.errors import ImageBuildError

logger = logging.getLogger(__name__)

# Events whose code is not trusted with registry credentials
UNTRUSTED_EVENTS = frozenset({"pull_request"})

DEFAULT_REGISTRY_HOST = "docker.io"


def registry_host(registry: str) -> str:
    """Host part of a registry prefix such as ``ghcr.io/``."""
    host = registry.strip().strip("/").split("/", 1)[0]
    return host or DEFAULT_REGISTRY_HOST


@dataclass(frozen=True)
class RegistryCredentials:
    """Principal and credential for a registry host."""

    registry: str
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class PublishPolicy:
    """Whether a run may push its image.

    Attributes:
        trusted: Push is allowed.
        credentials: Credentials used to log in before pushing.
    """

    trusted: bool
    credentials: RegistryCredentials | None = None

    @classmethod
    def from_event(
        cls,
        event_name: str | None,
        credentials: RegistryCredentials | None = None,
    ) -> PublishPolicy:
        """Derive the policy from the triggering event.

        Pull requests, and runs with no event at all, never push.
        """
        trusted = bool(event_name) and event_name not in UNTRUSTED_EVENTS
        if not trusted:
            logger.info("Event %r is untrusted; the image will not be pushed", event_name)
        return cls(trusted=trusted, credentials=credentials)


class ImageBuilder(Protocol):
    """Builds an image from a context directory."""

    def build(
        self,
        context_dir: Path,
        dockerfile: Path,
        tags: Sequence[str],
        labels: Mapping[str, str],
    ) -> str: ...


class Registry(Protocol):
    """Authenticates against and pushes to a registry."""

    def login(self, credentials: RegistryCredentials) -> None: ...

    def push(self, image_reference: str) -> None: ...


class ImageInspector(Protocol):
    """Runs a command inside an image and returns its stdout."""

    def run(self, image_reference: str, command: Sequence[str]) -> str: ...


class DockerCLI:
    """ImageBuilder, Registry and ImageInspector backed by the docker CLI.

    Args:
        docker: Docker executable.
        timeout: Per-command timeout in seconds (None = no limit).
    """

    def __init__(self, docker: str = "docker", timeout: float | None = None) -> None:
        self.docker = docker
        self.timeout = timeout

    def _run(
        self,
        args: Sequence[str],
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        cmd = [self.docker, *args]
        cmd_str = shlex.join(cmd)
        logger.debug("Executing: %s", cmd_str)
        try:
            return subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.TimeoutExpired as e:
            raise ImageBuildError(
                f"{cmd_str} timed out after {self.timeout}s", exit_code=-1
            ) from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise ImageBuildError(
                f"{cmd_str} failed: {stderr[-2000:]}", exit_code=e.returncode
            ) from e
        except OSError as e:
            raise ImageBuildError(f"Failed to run {cmd_str}: {e}") from e

    def build(
        self,
        context_dir: Path,
        dockerfile: Path,
        tags: Sequence[str],
        labels: Mapping[str, str],
    ) -> str:
        """Build an image and return its first tag.

        Raises:
            ImageBuildError: If no tag is given or the build fails.
        """
        if not tags:
            raise ImageBuildError("At least one image tag is required")
        args = ["build", "-f", str(dockerfile)]
        for tag in tags:
            args += ["-t", tag]
        for name in sorted(labels):
            args += ["--label", f"{name}={labels[name]}"]
        args.append(str(context_dir))
        logger.info("Building image %s from %s", tags[0], context_dir)
        self._run(args)
        return tags[0]

    def login(self, credentials: RegistryCredentials) -> None:
        """Log in with the password passed on stdin."""
        logger.info(
            "Logging in to %s as %s", credentials.registry, credentials.username
        )
        self._run(
            [
                "login",
                credentials.registry,
                "--username",
                credentials.username,
                "--password-stdin",
            ],
            input_text=credentials.password,
        )

    def push(self, image_reference: str) -> None:
        logger.info("Pushing %s", image_reference)
        self._run(["push", image_reference])

    def run(self, image_reference: str, command: Sequence[str]) -> str:
        return self._run(["run", "--rm", image_reference, *command]).stdout


__all__ = [
    "DockerCLI",
    "ImageBuilder",
    "ImageInspector",
    "PublishPolicy",
    "Registry",
    "RegistryCredentials",
    "UNTRUSTED_EVENTS",
    "registry_host",
]
