"""Image naming, tagging and labels.

This module handles:
- Parsing the ref that triggered a run
- Computing the single image tag for that trigger
- Composing the image name from the registry and the source identity
- Rendering the metadata labels attached to the image
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from godwoken_imagegen.errors import ReleaseDefect
from godwoken_imagegen.types import RefKind, ResolvedComponent

logger = logging.getLogger(__name__)

TAG_REF_PREFIX = "refs/tags/"
BRANCH_REF_PREFIX = "refs/heads/"
PULL_REF_PREFIX = "refs/pull/"

# Second resolution, UTC
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
SHORT_COMMIT_LENGTH = 7

# Docker tags allow [A-Za-z0-9_.-], max 128 chars, no leading '.' or '-'
MAX_TAG_LENGTH = 128
_INVALID_TAG_CHARS = re.compile(r"[^A-Za-z0-9_.-]")

INVALID_TRIGGER = "invalid_trigger"


@dataclass(frozen=True)
class TriggerRef:
    """The git ref that triggered a run.

    Attributes:
        kind: Tag or branch.
        name: Short ref name (``v1.2.0``, ``develop``, ``pr-42``).
    """

    kind: RefKind
    name: str


def parse_trigger_ref(ref: str) -> TriggerRef:
    """Parse a full git ref such as ``refs/tags/v1.2.0``.

    Pull-request merge refs (``refs/pull/42/merge``) are treated as a
    floating branch named ``pr-42``. A bare name is taken as a branch.

    Raises:
        ReleaseDefect: If the ref is empty or names nothing.
    """
    ref = ref.strip()
    if ref.startswith(TAG_REF_PREFIX):
        kind, name = RefKind.TAG, ref[len(TAG_REF_PREFIX) :]
    elif ref.startswith(BRANCH_REF_PREFIX):
        kind, name = RefKind.BRANCH, ref[len(BRANCH_REF_PREFIX) :]
    elif ref.startswith(PULL_REF_PREFIX):
        number = ref[len(PULL_REF_PREFIX) :].split("/", 1)[0]
        kind, name = RefKind.BRANCH, f"pr-{number}" if number else ""
    elif ref.startswith("refs/"):
        raise ReleaseDefect(f"Unsupported trigger ref '{ref}'", code=INVALID_TRIGGER)
    else:
        kind, name = RefKind.BRANCH, ref

    if not name:
        raise ReleaseDefect(f"Trigger ref '{ref}' names nothing", code=INVALID_TRIGGER)
    return TriggerRef(kind=kind, name=name)


def sanitize_tag(value: str) -> str:
    """Map an arbitrary ref name onto the Docker tag alphabet."""
    tag = _INVALID_TAG_CHARS.sub("-", value).lstrip(".-")
    return tag[:MAX_TAG_LENGTH]


def compute_image_tag(
    trigger: TriggerRef,
    now: datetime | None = None,
    tag_prefix: str = "",
    commit: str = "",
) -> str:
    """Compute the one image tag for a trigger.

    A release tag is used as is (minus ``tag_prefix``). A branch gets a
    ``<branch>-<YYYYMMDDHHmmss>-<short commit>`` tag so every build of a
    floating branch is distinct.

    Args:
        trigger: Parsed trigger ref.
        now: Build time; defaults to the current UTC time.
        tag_prefix: Prefix stripped from release tags (e.g. ``web3@``).
        commit: Invoking commit; its short form ends branch tags.

    Raises:
        ReleaseDefect: If no valid tag remains.
    """
    if trigger.kind is RefKind.TAG:
        name = trigger.name
        if tag_prefix and name.startswith(tag_prefix):
            name = name[len(tag_prefix) :]
        tag = sanitize_tag(name)
    else:
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        suffix = "-" + now.strftime(TIMESTAMP_FORMAT)
        short = sanitize_tag(commit)[:SHORT_COMMIT_LENGTH]
        if short:
            suffix += "-" + short
        branch = sanitize_tag(trigger.name)[: MAX_TAG_LENGTH - len(suffix)]
        tag = branch + suffix if branch else ""

    if not tag:
        raise ReleaseDefect(
            f"Trigger {trigger.kind.value} '{trigger.name}' yields no image tag",
            code=INVALID_TRIGGER,
        )
    return tag


def compose_image_name(registry: str, repository: str, image: str) -> str:
    """Compose ``<registry><owner>/<image>`` from an ``owner/repo`` identity."""
    owner = repository.split("/", 1)[0].strip()
    if not owner or not image:
        raise ReleaseDefect(
            f"Cannot name image from repository '{repository}' and image '{image}'"
        )
    if registry and not registry.endswith("/"):
        registry += "/"
    # Registries require lowercase repository names
    return f"{registry}{owner}/{image}".lower()


def source_url(component: ResolvedComponent) -> str:
    """Browsable location of the exact source a component was built from."""
    base = component.source_location.rstrip("/")
    if base.endswith(".git"):
        base = base[: -len(".git")]
    url = f"{base}/tree/{component.commit}"
    if component.subdir:
        url += "/" + component.subdir.strip("/")
    return url


def build_labels(
    resolved: Iterable[ResolvedComponent],
    *,
    maintainer: str,
    repository: str,
    invoking_commit: str,
    release_key: str,
    created: datetime,
) -> dict[str, str]:
    """Render the image labels.

    Args:
        resolved: Every resolved component of the release.
        maintainer: Maintainer and authors label value.
        repository: Source identity as ``owner/repo``.
        invoking_commit: Commit of the pipeline checkout.
        release_key: Release cache key.
        created: Build time.

    Returns:
        Label name -> value.
    """
    labels = {
        "maintainer": maintainer,
        "org.opencontainers.image.authors": maintainer,
        "org.opencontainers.image.source": f"https://github.com/{repository}",
        "org.opencontainers.image.revision": invoking_commit,
        "org.opencontainers.image.created": created.isoformat(),
        "release.cache-key": release_key,
    }
    for component in resolved:
        labels[f"source.component.{component.name}"] = source_url(component)
        labels[f"ref.component.{component.name}"] = component.ref
        labels[f"ref.component.{component.name}-sha1"] = component.commit
        labels[f"ref.component.{component.name}-hash"] = component.content_hash
    return labels


__all__ = [
    "SHORT_COMMIT_LENGTH",
    "TIMESTAMP_FORMAT",
    "TriggerRef",
    "build_labels",
    "compose_image_name",
    "compute_image_tag",
    "parse_trigger_ref",
    "sanitize_tag",
    "source_url",
]
