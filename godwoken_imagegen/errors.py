"""Error taxonomy for the image pipeline.

Every error carries a stable ``code`` for programmatic handling. None of
these are retried automatically: the caller may re-run the whole pipeline,
which is safe because cache puts are idempotent.
"""

from __future__ import annotations

from typing import Any

# Stable error codes
RESOLUTION_ERROR = "resolution_error"
CHECKOUT_MISMATCH = "checkout_mismatch"
CACHE_MISS = "cache_miss"
CACHE_INCONSISTENCY = "cache_inconsistency"
BUILD_FAILED = "build_failed"
BUILD_CANCELLED = "build_cancelled"
IMAGE_BUILD_ERROR = "image_build_error"
CHECKSUM_MISMATCH = "checksum_mismatch"
VERSION_PROBE_FAILED = "version_probe_failed"
RELEASE_DEFECT = "release_defect"
PIPELINE_TIMEOUT = "pipeline_timeout"
PIPELINE_ERROR = "pipeline_error"


class ResolutionError(Exception):
    """Raised when a version selector cannot be resolved or the manifest is bad."""

    def __init__(
        self,
        message: str,
        component: str | None = None,
        code: str = RESOLUTION_ERROR,
    ) -> None:
        super().__init__(message)
        self.component = component
        self.code = code


class CacheMiss(KeyError):
    """Raised when fetching a key that is not in the cache."""

    def __init__(self, key: str, code: str = CACHE_MISS) -> None:
        super().__init__(key)
        self.key = key
        self.code = code

    def __str__(self) -> str:
        return f"Cache key not found: {self.key}"


class CacheInconsistency(Exception):
    """Raised when a key is put again with different content."""

    def __init__(
        self,
        key: str,
        stored: dict[str, str],
        offered: dict[str, str],
        code: str = CACHE_INCONSISTENCY,
    ) -> None:
        super().__init__(f"Cache key {key} already holds different content")
        self.key = key
        self.stored = stored
        self.offered = offered
        self.code = code


class BuildFailure(Exception):
    """Raised when a component toolchain fails or produces no artifact."""

    def __init__(
        self,
        component: str,
        exit_status: int | None,
        message: str | None = None,
        log_path: str | None = None,
        code: str = BUILD_FAILED,
    ) -> None:
        if message is None:
            message = f"Build of {component} failed with exit status {exit_status}"
        super().__init__(message)
        self.component = component
        self.exit_status = exit_status
        self.log_path = log_path
        self.code = code


class BuildCancelled(Exception):
    """Raised when an in-flight build is aborted by the pipeline."""

    def __init__(self, component: str, code: str = BUILD_CANCELLED) -> None:
        super().__init__(f"Build of {component} was cancelled")
        self.component = component
        self.code = code


class ImageBuildError(Exception):
    """Raised when the image builder, registry or inspector fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = IMAGE_BUILD_ERROR,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


class ReleaseDefect(Exception):
    """Raised when the release cannot be assembled from the given inputs."""

    def __init__(self, message: str, code: str = RELEASE_DEFECT) -> None:
        super().__init__(message)
        self.code = code


class SmokeCheckError(ReleaseDefect):
    """Raised when the assembled image fails its smoke check."""

    def __init__(
        self,
        message: str,
        mismatches: list[str] | None = None,
        code: str = CHECKSUM_MISMATCH,
    ) -> None:
        super().__init__(message, code=code)
        self.mismatches = mismatches or []


class PipelineTimeout(Exception):
    """Raised when the caller-supplied deadline expires."""

    def __init__(self, deadline: float, code: str = PIPELINE_TIMEOUT) -> None:
        super().__init__(f"Pipeline exceeded its deadline of {deadline:g}s")
        self.deadline = deadline
        self.code = code


class PipelineError(Exception):
    """Top-level failure of a pipeline run.

    Attributes:
        failed_component: Component (or stage) that failed.
        cause: The underlying error.
    """

    def __init__(
        self,
        failed_component: str,
        cause: BaseException,
        code: str = PIPELINE_ERROR,
    ) -> None:
        super().__init__(f"Pipeline failed at {failed_component}: {cause}")
        self.failed_component = failed_component
        self.cause = cause
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "code": self.code,
            "failed_component": self.failed_component,
            "cause_code": getattr(self.cause, "code", None),
            "message": str(self.cause),
        }
        exit_status = getattr(self.cause, "exit_status", None)
        if exit_status is not None:
            result["exit_status"] = exit_status
        log_path = getattr(self.cause, "log_path", None)
        if log_path is not None:
            result["log_path"] = log_path
        return result


__all__ = [
    "BUILD_CANCELLED",
    "BUILD_FAILED",
    "CACHE_INCONSISTENCY",
    "CACHE_MISS",
    "CHECKOUT_MISMATCH",
    "CHECKSUM_MISMATCH",
    "IMAGE_BUILD_ERROR",
    "PIPELINE_ERROR",
    "PIPELINE_TIMEOUT",
    "RELEASE_DEFECT",
    "RESOLUTION_ERROR",
    "VERSION_PROBE_FAILED",
    "BuildCancelled",
    "BuildFailure",
    "CacheInconsistency",
    "CacheMiss",
    "ImageBuildError",
    "PipelineError",
    "PipelineTimeout",
    "ReleaseDefect",
    "ResolutionError",
    "SmokeCheckError",
]
