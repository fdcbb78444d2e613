"""Unit tests for image path parsing, digest extraction and liveness classification."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from krelease.collector.kubernetes import extract_digest
from krelease.liveness.tracker import classify
from krelease.models.liveness import LivenessStatus
from krelease.models.releases import ImageRef, parse_image_path

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


class TestParseImagePath:
    @pytest.mark.parametrize(
        ("image", "expected"),
        [
            ("nginx", ("", "nginx", "latest")),
            ("nginx:1.25", ("", "nginx", "1.25")),
            ("library/nginx:1.25", ("library", "nginx", "1.25")),
            ("registry.example.com/team/api:1.0.0", ("registry.example.com/team", "api", "1.0.0")),
            ("registry.example.com:5000/api", ("registry.example.com:5000", "api", "latest")),
            ("registry.example.com:5000/api:2.1", ("registry.example.com:5000", "api", "2.1")),
            ("ghcr.io/org/api:1.0@sha256:" + "c" * 64, ("ghcr.io/org", "api", "1.0")),
        ],
    )
    def test_split(self, image: str, expected: tuple[str, str, str]) -> None:
        """Image strings split into repo, name and tag."""
        assert parse_image_path(image) == expected

    def test_full_path_round_trip(self) -> None:
        """full_path rebuilds the parsed image string."""
        repo, name, tag = parse_image_path("registry.example.com/team/api:1.0.0")
        ref = ImageRef(repo=repo, name=name, tag=tag, digest="d" * 64)
        assert ref.full_path == "registry.example.com/team/api:1.0.0"

    def test_full_path_without_repo(self) -> None:
        """full_path omits an empty repo."""
        assert ImageRef(repo="", name="nginx", tag="latest", digest="d").full_path == "nginx:latest"


class TestExtractDigest:
    @pytest.mark.parametrize(
        "image_id",
        [
            "docker-pullable://registry.example.com/api@sha256:" + "e" * 64,
            "docker://sha256:" + "e" * 64,
            "registry.example.com/api@sha256:" + "e" * 64,
            "sha256:" + "e" * 64 + "trailing",
        ],
    )
    def test_formats(self, image_id: str) -> None:
        """The digest is found in every runtime image id format."""
        assert extract_digest(image_id) == "e" * 64

    def test_no_digest(self) -> None:
        """An image id without a digest yields an empty string."""
        assert extract_digest("registry.example.com/api:1.0") == ""


class TestClassifyLiveness:
    @pytest.mark.parametrize(
        ("age", "expected"),
        [
            (timedelta(minutes=9), LivenessStatus.ONLINE),
            (timedelta(minutes=10), LivenessStatus.ONLINE),
            (timedelta(minutes=12), LivenessStatus.WARNING),
            (timedelta(minutes=15), LivenessStatus.WARNING),
            (timedelta(minutes=20), LivenessStatus.OFFLINE),
        ],
    )
    def test_thresholds(self, age: timedelta, expected: LivenessStatus) -> None:
        """Heartbeat age maps to online, warning and offline."""
        assert classify(NOW, NOW - age) == expected

    def test_never(self) -> None:
        """No heartbeat at all is reported as never."""
        assert classify(NOW, None) == LivenessStatus.NEVER
