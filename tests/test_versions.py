"""Tests for the versions package: git lookup, content hash, resolver."""

import os
import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeGit

from godwoken_imagegen.errors import CHECKOUT_MISMATCH, ResolutionError
from godwoken_imagegen.manifest.schema import ComponentSpec
from godwoken_imagegen.versions.content_hash import compute_tree_hash, hash_ref
from godwoken_imagegen.versions.git import GitCLI, parse_ls_remote
from godwoken_imagegen.versions.resolver import (
    VersionResolver,
    resolution_order,
    version_outputs,
)

COMMIT_A = "a" * 40
COMMIT_B = "b" * 40
COMMIT_C = "c" * 40

LS_REMOTE = (
    f"{COMMIT_A}\trefs/heads/v1.2.0\n"
    f"{COMMIT_B}\trefs/tags/v1.2.0\n"
    f"{COMMIT_C}\trefs/tags/v1.2.0^{{}}\n"
    f"{COMMIT_A}\trefs/heads/develop\n"
)


class TestParseLsRemote:
    """Tests for parse_ls_remote."""

    def test_peeled_tag_wins(self):
        """An annotated tag resolves to the commit it points at."""
        assert parse_ls_remote(LS_REMOTE, "v1.2.0") == COMMIT_C

    def test_branch(self):
        assert parse_ls_remote(LS_REMOTE, "develop") == COMMIT_A

    def test_full_ref_name(self):
        assert parse_ls_remote(LS_REMOTE, "refs/heads/develop") == COMMIT_A

    def test_unknown_ref(self):
        assert parse_ls_remote(LS_REMOTE, "main") is None


class TestGitCLI:
    """Tests for GitCLI with mocked subprocess."""

    def test_commit_passthrough(self):
        """A full commit id needs no lookup."""
        with patch("subprocess.run") as mock_run:
            assert GitCLI().resolve_ref("https://example.com/r", COMMIT_B) == COMMIT_B
            mock_run.assert_not_called()

    def test_resolves_via_ls_remote(self):
        result = MagicMock(stdout=LS_REMOTE)
        with patch("subprocess.run", return_value=result) as mock_run:
            commit = GitCLI().resolve_ref("https://example.com/r", "develop")
        assert commit == COMMIT_A
        cmd = mock_run.call_args[0][0]
        assert cmd == ["git", "ls-remote", "https://example.com/r", "develop"]

    def test_missing_ref(self):
        """A ref the upstream does not advertise is a resolution error."""
        result = MagicMock(stdout=LS_REMOTE)
        with patch("subprocess.run", return_value=result):
            with pytest.raises(ResolutionError, match="does not exist"):
                GitCLI().resolve_ref("https://example.com/r", "no-such-branch")

    def test_git_failure(self):
        error = subprocess.CalledProcessError(128, ["git"], stderr="fatal: no repo")
        with patch("subprocess.run", side_effect=error):
            with pytest.raises(ResolutionError, match="fatal: no repo"):
                GitCLI().resolve_ref("https://example.com/r", "develop")

    def test_git_missing(self):
        with patch("subprocess.run", side_effect=FileNotFoundError("git")):
            with pytest.raises(ResolutionError):
                GitCLI().resolve_ref("https://example.com/r", "develop")

    def test_checkout_at_commit(self, tmp_path: Path):
        result = MagicMock(stdout=f"{COMMIT_A}\n")
        with patch("subprocess.run", return_value=result) as mock_run:
            GitCLI().check_checkout(tmp_path, COMMIT_A)
        cmd = mock_run.call_args[0][0]
        assert cmd == ["git", "-C", str(tmp_path), "rev-parse", "HEAD"]

    def test_checkout_at_other_commit(self, tmp_path: Path):
        """A stale checkout must not be hashed under the resolved commit."""
        result = MagicMock(stdout=f"{COMMIT_B}\n")
        with patch("subprocess.run", return_value=result):
            with pytest.raises(ResolutionError) as exc_info:
                GitCLI().check_checkout(tmp_path, COMMIT_A)
        assert exc_info.value.code == CHECKOUT_MISMATCH
        assert "bbbbbbbbbbbb" in str(exc_info.value)

    def test_checkout_not_a_repository(self, tmp_path: Path):
        error = subprocess.CalledProcessError(
            128, ["git"], stderr="fatal: not a git repository"
        )
        with patch("subprocess.run", side_effect=error):
            with pytest.raises(ResolutionError, match="not a git checkout") as exc_info:
                GitCLI().check_checkout(tmp_path, COMMIT_A)
        assert exc_info.value.code == CHECKOUT_MISMATCH

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    def test_real_checkout_behind_upstream(self, tmp_path: Path):
        """Resolving a moved branch against an old clone is refused."""
        git = ["git", "-c", "user.name=ci", "-c", "user.email=ci@example.com"]
        upstream = tmp_path / "upstream"
        upstream.mkdir()
        subprocess.run([*git, "init", "-q", "-b", "main", str(upstream)], check=True)
        (upstream / "Makefile").write_text("all:\n")
        subprocess.run([*git, "-C", str(upstream), "add", "."], check=True)
        subprocess.run(
            [*git, "-C", str(upstream), "commit", "-q", "-m", "one"], check=True
        )
        clone = tmp_path / "clone"
        subprocess.run([*git, "clone", "-q", str(upstream), str(clone)], check=True)
        (upstream / "Makefile").write_text("all: lock\n")
        subprocess.run(
            [*git, "-C", str(upstream), "commit", "-q", "-am", "two"], check=True
        )

        cli = GitCLI()
        commit = cli.resolve_ref(str(upstream), "main")
        with pytest.raises(ResolutionError) as exc_info:
            cli.check_checkout(clone, commit)
        assert exc_info.value.code == CHECKOUT_MISMATCH

        subprocess.run([*git, "-C", str(clone), "pull", "-q"], check=True)
        cli.check_checkout(clone, commit)


class TestComputeTreeHash:
    """Tests for compute_tree_hash."""

    @pytest.fixture
    def tree(self, tmp_path: Path) -> Path:
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "main.rs").write_text("fn main() {}\n")
        (tmp_path / "Cargo.toml").write_text("[package]\n")
        return tmp_path

    def test_deterministic(self, tree: Path):
        assert compute_tree_hash(tree) == compute_tree_hash(tree)

    def test_content_change(self, tree: Path):
        """Changing one byte changes the hash."""
        before = compute_tree_hash(tree)
        (tree / "src" / "main.rs").write_text("fn main() { }\n")
        assert compute_tree_hash(tree) != before

    def test_rename_changes_hash(self, tree: Path):
        before = compute_tree_hash(tree)
        (tree / "src" / "main.rs").rename(tree / "src" / "lib.rs")
        assert compute_tree_hash(tree) != before

    def test_mode_change(self, tree: Path):
        """Making a file executable changes the hash."""
        before = compute_tree_hash(tree)
        os.chmod(tree / "Cargo.toml", 0o755)
        assert compute_tree_hash(tree) != before

    def test_build_outputs_ignored(self, tree: Path):
        """Outputs under build/ and target/ do not perturb the hash."""
        before = compute_tree_hash(tree)
        (tree / "build").mkdir()
        (tree / "build" / "omni_lock").write_bytes(b"\x7fELF")
        (tree / "target" / "release").mkdir(parents=True)
        (tree / "target" / "release" / "godwoken").write_bytes(b"\x7fELF")
        assert compute_tree_hash(tree) == before

    def test_hash_paths_restrict(self, tree: Path):
        """Files outside hash_paths do not affect the hash."""
        before = compute_tree_hash(tree, ["src"])
        (tree / "README.md").write_text("docs\n")
        (tree / "Cargo.toml").write_text("[package]\nname = 'x'\n")
        assert compute_tree_hash(tree, ["src"]) == before

    def test_missing_root(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            compute_tree_hash(tmp_path / "missing")

    def test_missing_hash_path(self, tree: Path):
        with pytest.raises(FileNotFoundError):
            compute_tree_hash(tree, ["crates"])

    def test_hash_ref(self):
        assert hash_ref(COMMIT_A) == hash_ref(COMMIT_A)
        assert hash_ref(COMMIT_A) != hash_ref(COMMIT_B)


class TestResolutionOrder:
    """Tests for resolution_order."""

    def test_followed_component_first(self, specs):
        order = resolution_order(specs)
        assert order.index("godwoken") < order.index("gwos")
        assert order.index("godwoken") < order.index("gwos-evm")

    def test_unknown_follow_target(self):
        specs = [ComponentSpec(name="gwos", follows="godwoken")]
        with pytest.raises(ResolutionError, match="unknown component"):
            resolution_order(specs)

    def test_cycle(self):
        specs = [
            ComponentSpec(name="gwos", follows="gwos-evm"),
            ComponentSpec(name="gwos-evm", follows="gwos"),
        ]
        with pytest.raises(ResolutionError, match="Cycle"):
            resolution_order(specs)

    def test_duplicate(self):
        spec = ComponentSpec(name="gwos", source_location="x", ref="main")
        with pytest.raises(ResolutionError, match="Duplicate"):
            resolution_order([spec, spec])


class TestVersionResolver:
    """Tests for VersionResolver."""

    def test_resolves_in_given_order(self, specs, workspace, fake_git):
        resolved = VersionResolver(git=fake_git, workspace=workspace).resolve(specs)
        assert [c.name for c in resolved] == [s.name for s in specs]

    def test_followers_share_ref_and_commit(self, specs, workspace, fake_git):
        """Co-versioned components inherit godwoken's ref and commit."""
        resolved = {
            c.name: c
            for c in VersionResolver(git=fake_git, workspace=workspace).resolve(specs)
        }
        godwoken = resolved["godwoken"]
        for name in ("gwos", "gwos-evm"):
            assert resolved[name].ref == godwoken.ref
            assert resolved[name].commit == godwoken.commit
            assert resolved[name].source_location == godwoken.source_location

    def test_followers_keep_own_content_hash(self, specs, workspace, fake_git):
        """Each co-versioned component hashes its own subtree."""
        resolved = {
            c.name: c
            for c in VersionResolver(git=fake_git, workspace=workspace).resolve(specs)
        }
        hashes = {c.content_hash for c in resolved.values()}
        assert len(hashes) == 4

    def test_ref_looked_up_once_per_tracked_component(self, specs, workspace, fake_git):
        VersionResolver(git=fake_git, workspace=workspace).resolve(specs)
        assert sorted(ref for _, ref in fake_git.calls) == ["develop", "rc_lock"]

    def test_stable_across_runs(self, specs, workspace, fake_git):
        resolver = VersionResolver(git=fake_git, workspace=workspace)
        assert resolver.resolve(specs) == resolver.resolve(specs)

    def test_source_change_changes_only_that_component(
        self, specs, workspace, fake_git
    ):
        resolver = VersionResolver(git=fake_git, workspace=workspace)
        before = {c.name: c.content_hash for c in resolver.resolve(specs)}
        polyjuice = workspace / "gwos-evm" / "c" / "polyjuice.c"
        polyjuice.write_text("int main() { return 1; }\n")
        after = {c.name: c.content_hash for c in resolver.resolve(specs)}
        assert after["gwos-evm"] != before["gwos-evm"]
        for name in ("ckb-production-scripts", "gwos", "godwoken"):
            assert after[name] == before[name]

    def test_no_checkout_hashes_commit(self, specs, tmp_path, fake_git):
        """Without a checkout the content hash falls back to the commit."""
        resolved = VersionResolver(git=fake_git, workspace=tmp_path / "empty").resolve(
            specs
        )
        for component in resolved:
            assert component.content_hash == hash_ref(component.commit)

    def test_unknown_ref(self, specs, workspace):
        """A missing upstream ref fails resolution for that component."""
        git = FakeGit(missing={"rc_lock"})
        with pytest.raises(ResolutionError) as exc_info:
            VersionResolver(git=git, workspace=workspace).resolve(specs)
        assert exc_info.value.component == "ckb-production-scripts"

    def test_checkouts_verified_against_resolved_commit(
        self, specs, workspace, fake_git
    ):
        resolved = {
            c.name: c
            for c in VersionResolver(git=fake_git, workspace=workspace).resolve(specs)
        }
        checked = dict(fake_git.checked)
        assert checked[workspace / "gwos"] == resolved["godwoken"].commit
        assert checked[workspace] == resolved["godwoken"].commit
        scripts = workspace / "docker" / "build" / "ckb-production-scripts"
        assert checked[scripts] == resolved["ckb-production-scripts"].commit

    def test_stale_checkout(self, specs, workspace):
        """A checkout at another commit fails resolution instead of being hashed."""
        git = FakeGit(stale={"ckb-production-scripts"})
        with pytest.raises(ResolutionError) as exc_info:
            VersionResolver(git=git, workspace=workspace).resolve(specs)
        assert exc_info.value.component == "ckb-production-scripts"
        assert exc_info.value.code == CHECKOUT_MISMATCH


class TestVersionOutputs:
    """Tests for version_outputs."""

    def test_keys(self, specs, workspace, fake_git):
        resolved = VersionResolver(git=fake_git, workspace=workspace).resolve(specs)
        outputs = version_outputs(resolved)
        godwoken = next(c for c in resolved if c.name == "godwoken")
        assert outputs["godwoken-ref"] == "develop"
        assert outputs["godwoken-sha1"] == godwoken.commit
        assert outputs["gwos-sha1"] == godwoken.commit
        assert outputs["ckb-production-scripts-ref"] == "rc_lock"
        assert len(outputs) == 12
