"""Tests for release/handoff.py, outputs.py and the ReleaseDescriptor type."""

from pathlib import Path

import pytest

from godwoken_imagegen.outputs import format_outputs, write_outputs
from godwoken_imagegen.release.handoff import (
    DOWNSTREAM_IMAGE_VAR,
    HandoffEmitter,
    HandoffRecord,
    downstream_env,
)
from godwoken_imagegen.types import ReleaseDescriptor

DESCRIPTOR = ReleaseDescriptor(
    image_name="ghcr.io/godwokenrises/godwoken-prebuilds",
    image_tag="v1.2.0",
    release_key="sha256:abc",
)


class TestHandoffEmitter:
    """Tests for HandoffEmitter."""

    def test_record(self):
        record = HandoffEmitter().emit(DESCRIPTOR)
        assert record == HandoffRecord(
            image_name="ghcr.io/godwokenrises/godwoken-prebuilds", image_tag="v1.2.0"
        )
        assert record.image_reference == DESCRIPTOR.image_reference

    def test_writes_outputs(self, tmp_path: Path):
        output = tmp_path / "github_output"
        output.write_text("godwoken-ref=develop\n")
        HandoffEmitter(output).emit(DESCRIPTOR)
        assert output.read_text().splitlines() == [
            "godwoken-ref=develop",
            "image_name=ghcr.io/godwokenrises/godwoken-prebuilds",
            "image_tag=v1.2.0",
        ]

    def test_downstream_env(self):
        record = HandoffEmitter().emit(DESCRIPTOR)
        assert downstream_env(record) == {
            DOWNSTREAM_IMAGE_VAR: "ghcr.io/godwokenrises/godwoken-prebuilds:v1.2.0"
        }
        assert DOWNSTREAM_IMAGE_VAR == "GODWOKEN_PREBUILD_IMAGE_NAME"


class TestOutputs:
    """Tests for format_outputs and write_outputs."""

    def test_format(self):
        assert format_outputs({"a": "1", "b": "2"}) == "a=1\nb=2\n"

    @pytest.mark.parametrize("key,value", [("a\nb", "1"), ("a", "1\n2"), ("a=b", "1")])
    def test_rejects_multiline(self, key, value):
        with pytest.raises(ValueError):
            format_outputs({key: value})

    def test_write_creates_parent(self, tmp_path: Path):
        path = write_outputs({"a": "1"}, tmp_path / "out" / "file")
        assert path.read_text() == "a=1\n"


class TestReleaseDescriptor:
    """Tests for ReleaseDescriptor."""

    def test_mappings_copied_and_frozen(self):
        hits = {"godwoken": False}
        descriptor = ReleaseDescriptor(
            image_name="ghcr.io/org/godwoken", image_tag="v1.0.0", cache_hits=hits
        )
        hits["godwoken"] = True
        assert descriptor.cache_hits == {"godwoken": False}
        with pytest.raises(TypeError):
            descriptor.cache_hits["gwos"] = True
