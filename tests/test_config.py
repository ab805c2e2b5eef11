"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from godwoken_imagegen.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert (
            settings.cache_dir
            == Path.home() / ".cache" / "godwoken-imagegen" / "components"
        )
        assert "sqlite" in settings.db_url
        assert settings.registry == "ghcr.io/"
        assert settings.image_name == "godwoken"
        assert settings.maintainer == "Godwoken Core Dev"
        assert settings.context_dir is None
        assert settings.max_concurrent_builds >= 1

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "GW_IMG_LOG_LEVEL": "DEBUG",
                "GW_IMG_MAX_CONCURRENT_BUILDS": "2",
                "GW_IMG_TAG_PREFIX": "web3@",
            },
        ):
            settings = Settings()
            assert settings.log_level == "DEBUG"
            assert settings.max_concurrent_builds == 2
            assert settings.tag_prefix == "web3@"

    def test_settings_cache_dir_from_env(self) -> None:
        """Cache dir should be configurable via env."""
        with patch.dict(os.environ, {"GW_IMG_CACHE_DIR": "/tmp/test-cache"}):
            settings = Settings()
            assert settings.cache_dir == Path("/tmp/test-cache")

    def test_max_concurrent_builds_bounded(self) -> None:
        """Concurrency outside 1..8 should be rejected."""
        with patch.dict(os.environ, {"GW_IMG_MAX_CONCURRENT_BUILDS": "0"}):
            with pytest.raises(ValidationError):
                Settings()

    def test_resolve_path(self, tmp_path: Path) -> None:
        """Relative paths resolve against the workspace, absolute ones do not."""
        settings = Settings(workspace=tmp_path)
        assert settings.resolve_path(Path("docker/Dockerfile")) == (
            tmp_path / "docker" / "Dockerfile"
        )
        assert settings.resolve_path(Path("/etc/hosts")) == Path("/etc/hosts")


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        settings = Settings()
        parsed = json.loads(print_settings_json(settings))

        assert "cache_dir" in parsed
        assert "db_url" in parsed
        assert "registry" in parsed
        assert "max_concurrent_builds" in parsed

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        parsed = json.loads(print_settings_json())
        assert "cache_dir" in parsed
