"""Step outputs in the GitHub Actions ``key=value`` format."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)


def format_outputs(outputs: Mapping[str, str]) -> str:
    """Render outputs as ``key=value`` lines.

    Raises:
        ValueError: If a key or value spans lines.
    """
    lines = []
    for key, value in outputs.items():
        if "\n" in key or "\n" in value or "=" in key:
            raise ValueError(f"Output {key!r} is not a single key=value line")
        lines.append(f"{key}={value}\n")
    return "".join(lines)


def write_outputs(outputs: Mapping[str, str], path: Path) -> Path:
    """Append outputs to a step output file."""
    text = format_outputs(outputs)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(text)
    logger.info("Wrote %d outputs to %s", len(outputs), path)
    return path


__all__ = ["format_outputs", "write_outputs"]
