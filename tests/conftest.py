"""Shared fixtures: a component workspace, fake collaborators and stores."""

from __future__ import annotations

import hashlib
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from godwoken_imagegen.builds.builder import create_builders
from godwoken_imagegen.builds.runner import ToolchainInvocation, ToolchainResult
from godwoken_imagegen.cache.store import DiskCacheStore, InMemoryCacheStore
from godwoken_imagegen.db import create_all_tables, get_engine, get_session_factory
from godwoken_imagegen.errors import (
    CHECKOUT_MISMATCH,
    BuildCancelled,
    ImageBuildError,
    ResolutionError,
)
from godwoken_imagegen.manifest.io import default_manifest
from godwoken_imagegen.release.docker import RegistryCredentials
from godwoken_imagegen.types import ComponentKind
from godwoken_imagegen.versions.resolver import VersionResolver

# Files each fake build writes, relative to the recipe workdir
FAKE_OUTPUTS: dict[str, tuple[str, ...]] = {
    "ckb-production-scripts": ("build/omni_lock",),
    "gwos": (
        "build/release/custodian-lock",
        "c/build/sudt-generator",
        "c/build/sudt-validator",
        "c/build/account_locks/eth-account-lock",
    ),
    "gwos-evm": ("build/polyjuice-generator", "build/polyjuice-validator"),
    "godwoken": ("target/release/godwoken", "target/release/gw-tools"),
}

SCRIPT_COMPONENTS = ("ckb-production-scripts", "gwos", "gwos-evm")


class FakeGit:
    """GitClient that derives a stable commit from source and ref.

    Args:
        missing: Refs that upstream does not advertise.
        stale: Checkout directory names whose HEAD is some other commit.
    """

    def __init__(
        self, missing: set[str] | None = None, stale: set[str] | None = None
    ) -> None:
        self.missing = missing or set()
        self.stale = stale or set()
        self.calls: list[tuple[str, str]] = []
        self.checked: list[tuple[Path, str]] = []

    def resolve_ref(self, source_location: str, ref: str) -> str:
        self.calls.append((source_location, ref))
        if ref in self.missing:
            raise ResolutionError(f"Ref '{ref}' not found in {source_location}")
        return hashlib.sha1(f"{source_location}@{ref}".encode()).hexdigest()

    def check_checkout(self, path: Path, commit: str) -> None:
        self.checked.append((path, commit))
        if path.name in self.stale:
            raise ResolutionError(
                f"Checkout {path} is at {'0' * 12}, expected {commit[:12]}",
                code=CHECKOUT_MISMATCH,
            )


class FakeToolchain:
    """Toolchain that writes FAKE_OUTPUTS instead of compiling.

    Args:
        fail: Components whose build exits non-zero.
        block: Components whose build waits until cancelled.
        skip_outputs: Components whose build exits 0 but writes nothing.
    """

    def __init__(
        self,
        fail: set[str] | None = None,
        block: set[str] | None = None,
        skip_outputs: set[str] | None = None,
    ) -> None:
        self.fail = fail or set()
        self.block = block or set()
        self.skip_outputs = skip_outputs or set()
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def run(
        self,
        invocation: ToolchainInvocation,
        cancel: threading.Event | None = None,
    ) -> ToolchainResult:
        component = invocation.component
        with self._lock:
            self.calls.append(component)
        started = datetime.now(timezone.utc)

        if component in self.block:
            assert cancel is not None
            if cancel.wait(timeout=10):
                raise BuildCancelled(component)

        exit_code = 2 if component in self.fail else 0
        if exit_code == 0 and component not in self.skip_outputs:
            for rel in FAKE_OUTPUTS[component]:
                path = invocation.workdir / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(f"{component}:{rel}\n")

        return ToolchainResult(
            success=exit_code == 0,
            exit_code=exit_code,
            log_path=invocation.log_path,
            started_at=started,
            finished_at=datetime.now(timezone.utc),
            command="fake",
            error_message=None if exit_code == 0 else "fake failure",
        )


class FakeDocker:
    """ImageBuilder, Registry and ImageInspector recording every call.

    ``build`` snapshots the checksums of the staged scripts, which is what
    ``find /scripts ... sha256sum`` later reports from inside the image.
    """

    def __init__(self, failing_probes: set[str] | None = None) -> None:
        self.failing_probes = failing_probes or set()
        self.builds: list[dict] = []
        self.logins: list[RegistryCredentials] = []
        self.pushes: list[str] = []
        self.images: dict[str, dict[str, str]] = {}

    def build(self, context_dir, dockerfile, tags, labels) -> str:
        scripts: dict[str, str] = {}
        for component in SCRIPT_COMPONENTS:
            root = context_dir / component
            for path in sorted(p for p in root.rglob("*") if p.is_file()):
                name = path.relative_to(root).as_posix()
                digest = hashlib.sha256(path.read_bytes()).hexdigest()
                scripts[f"/scripts/{component}/{name}"] = digest
        self.builds.append(
            {
                "context": context_dir,
                "dockerfile": dockerfile,
                "tags": list(tags),
                "labels": dict(labels),
            }
        )
        for tag in tags:
            self.images[tag] = scripts
        return tags[0]

    def login(self, credentials: RegistryCredentials) -> None:
        self.logins.append(credentials)

    def push(self, image_reference: str) -> None:
        self.pushes.append(image_reference)

    def run(self, image_reference, command) -> str:
        if image_reference not in self.images:
            raise ImageBuildError(f"No such image: {image_reference}", exit_code=125)
        if command[0] == "find":
            scripts = self.images[image_reference]
            return "".join(f"{digest}  {path}\n" for path, digest in scripts.items())
        if command[0] in self.failing_probes:
            raise ImageBuildError(f"{command[0]}: not found", exit_code=127)
        return f"{command[0]} 1.0.0\n"


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A checkout holding every component's sources."""
    root = tmp_path / "workspace"
    files = {
        "docker/build/ckb-production-scripts/Makefile": "all-via-docker:\n",
        "docker/build/ckb-production-scripts/c/omni_lock.c": "int main() {}\n",
        "gwos/c/Makefile": "all:\n",
        "gwos/contracts/custodian-lock/src/main.rs": "fn main() {}\n",
        "gwos-evm/Makefile": "all-via-docker:\n",
        "gwos-evm/c/polyjuice.c": "int main() {}\n",
        "crates/node/src/main.rs": "fn main() {}\n",
        "Cargo.toml": "[workspace]\n",
        "Cargo.lock": "# lock\n",
    }
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def specs():
    """Component specs of the built-in manifest."""
    return default_manifest().components


@pytest.fixture
def engine(tmp_path: Path):
    """File-backed SQLite engine (build threads share it)."""
    engine = get_engine(f"sqlite:///{tmp_path / 'index' / 'cache.sqlite'}")
    create_all_tables(engine)
    return engine


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return get_session_factory(engine)


@pytest.fixture
def disk_store(tmp_path: Path, session_factory) -> DiskCacheStore:
    """Disk cache store under a temporary directory."""
    return DiskCacheStore(tmp_path / "cache", session_factory, lock_timeout=5)


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def resolved(specs, workspace, fake_git):
    """Resolved components of the built-in manifest, keyed by name."""
    components = VersionResolver(git=fake_git, workspace=workspace).resolve(specs)
    return {c.name: c for c in components}


@pytest.fixture
def build_results(resolved, tmp_path: Path):
    """One BuildResult per component, built with FakeToolchain."""
    builders = create_builders(InMemoryCacheStore(), FakeToolchain(), tmp_path / "logs")
    return [
        builders[ComponentKind(name)].build(component)
        for name, component in resolved.items()
    ]
