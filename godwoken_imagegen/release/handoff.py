"""Hand the released image over to the integration-test runner."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from godwoken_imagegen.outputs import write_outputs
from godwoken_imagegen.types import ReleaseDescriptor

logger = logging.getLogger(__name__)

# Variable the integration-test runner reads the image reference from
DOWNSTREAM_IMAGE_VAR = "GODWOKEN_PREBUILD_IMAGE_NAME"


@dataclass(frozen=True)
class HandoffRecord:
    """The minimal data passed downstream: image name and tag."""

    image_name: str
    image_tag: str

    @property
    def image_reference(self) -> str:
        return f"{self.image_name}:{self.image_tag}"

    def to_outputs(self) -> dict[str, str]:
        """Named outputs of the pipeline run."""
        return {"image_name": self.image_name, "image_tag": self.image_tag}


def downstream_env(record: HandoffRecord) -> dict[str, str]:
    """Environment for the integration-test runner."""
    return {DOWNSTREAM_IMAGE_VAR: record.image_reference}


class HandoffEmitter:
    """Emits the handoff record, optionally to a step output file.

    Args:
        output_path: File the ``image_name``/``image_tag`` outputs are
            appended to (e.g. ``$GITHUB_OUTPUT``).
    """

    def __init__(self, output_path: Path | None = None) -> None:
        self.output_path = output_path

    def emit(self, descriptor: ReleaseDescriptor) -> HandoffRecord:
        record = HandoffRecord(
            image_name=descriptor.image_name,
            image_tag=descriptor.image_tag,
        )
        if self.output_path is not None:
            write_outputs(record.to_outputs(), self.output_path)
        logger.info("Handoff: %s", record.image_reference)
        return record


__all__ = [
    "DOWNSTREAM_IMAGE_VAR",
    "HandoffEmitter",
    "HandoffRecord",
    "downstream_env",
]
