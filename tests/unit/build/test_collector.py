"""Unit tests for ArtifactCollector."""

import hashlib
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cascade.build import ArtifactCollector, BuildJob, BuildResult, output_dir_name, sha256_file
from cascade.config import FeatureSet, Platform, RepositoryRegistry, Variant
from cascade.errors import ArtifactIntegrityError, StaleArtifactError

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_result(tmp_path, repo_name, variant=Variant.BASE, platform=Platform.NATIVE, success=True, content=None):
    repo = RepositoryRegistry.default().get(repo_name)
    release_dir = platform.release_dir(tmp_path / "ws" / repo_name)
    release_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for binary in repo.binaries:
        path = release_dir / platform.binary_name(binary)
        path.write_bytes(content if content is not None else f"{binary}-{variant.value}".encode())
        paths.append(path)
    job = BuildJob(repo, variant, platform, FeatureSet(), platform.target_triple)
    return BuildResult(job=job, success=success, binary_paths=paths if success else [])


class TestHelpers:
    def test_sha256_file(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"hello")
        assert sha256_file(path) == hashlib.sha256(b"hello").hexdigest()

    @pytest.mark.parametrize(
        "variant,platform,expected",
        [
            (Variant.BASE, Platform.NATIVE, "binaries"),
            (Variant.EXPERIMENTAL, Platform.NATIVE, "binaries-experimental"),
            (Variant.BASE, Platform.WINDOWS, "binaries-windows"),
            (Variant.EXPERIMENTAL, Platform.WINDOWS, "binaries-experimental-windows"),
        ],
    )
    def test_output_dir_name(self, variant, platform, expected):
        assert output_dir_name(variant, platform) == expected


class TestArtifactCollector:
    """Test suite for ArtifactCollector."""

    @pytest.fixture
    def collector(self, tmp_path):
        return ArtifactCollector(tmp_path / "artifacts", ttl=timedelta(days=90), show_progress=False)

    def test_collect_copies_and_hashes(self, tmp_path, collector):
        result = make_result(tmp_path, "blvm-node")

        artifacts = collector.collect([result], Variant.BASE, Platform.NATIVE, now=NOW)

        assert len(artifacts) == 1
        artifact = artifacts[0]
        assert artifact.name == "blvm-node"
        assert artifact.repo == "blvm-node"
        assert artifact.path == tmp_path / "artifacts" / "binaries" / "blvm-node"
        assert artifact.sha256 == hashlib.sha256(b"blvm-node-base").hexdigest()
        assert artifact.size == len(b"blvm-node-base")
        assert artifact.expires_at == NOW + timedelta(days=90)

    def test_collect_only_matching_variant_and_platform(self, tmp_path, collector):
        native = make_result(tmp_path, "blvm")
        windows = make_result(tmp_path, "blvm", platform=Platform.WINDOWS)

        artifacts = collector.collect([native, windows], Variant.BASE, Platform.WINDOWS, now=NOW)

        assert [a.name for a in artifacts] == ["blvm.exe"]
        assert artifacts[0].path.parent.name == "binaries-windows"

    def test_failed_results_are_not_collected(self, tmp_path, collector):
        result = make_result(tmp_path, "blvm-commons", success=False)
        assert collector.collect([result], Variant.BASE, Platform.NATIVE, now=NOW) == []

    def test_collect_is_idempotent(self, tmp_path, collector):
        result = make_result(tmp_path, "blvm-sdk")
        first = collector.collect([result], Variant.BASE, Platform.NATIVE, now=NOW)
        second = collector.collect([result], Variant.BASE, Platform.NATIVE, now=NOW)
        assert [(a.name, a.sha256) for a in first] == [(a.name, a.sha256) for a in second]
        assert [a.name for a in first] == ["blvm-keygen", "blvm-sign", "blvm-verify"]

    def test_missing_binary_after_success(self, tmp_path, collector):
        result = make_result(tmp_path, "blvm")
        result.binary_paths[0].unlink()
        with pytest.raises(ArtifactIntegrityError, match="missing"):
            collector.collect([result], Variant.BASE, Platform.NATIVE, now=NOW)

    def test_index_written_and_loaded(self, tmp_path, collector):
        collector.collect([make_result(tmp_path, "blvm")], Variant.BASE, Platform.NATIVE, now=NOW)
        loaded = collector.load_index(Variant.BASE, Platform.NATIVE)
        assert [a.name for a in loaded] == ["blvm"]
        assert loaded[0].collected_at == NOW

    def test_corrupt_index_is_ignored(self, collector):
        out_dir = collector.output_dir(Variant.BASE, Platform.NATIVE)
        out_dir.mkdir(parents=True)
        (out_dir / ".index.json").write_text("{not json")
        assert collector.load_index(Variant.BASE, Platform.NATIVE) == []

    def test_reuse_carries_previous_artifacts(self, tmp_path, collector):
        collector.collect(
            [make_result(tmp_path, "blvm-sdk"), make_result(tmp_path, "blvm")],
            Variant.BASE,
            Platform.NATIVE,
            now=NOW,
        )

        rebuilt = make_result(tmp_path, "blvm", content=b"new blvm")
        artifacts = collector.collect(
            [rebuilt], Variant.BASE, Platform.NATIVE, reuse={"blvm-sdk"}, now=NOW + timedelta(days=1)
        )

        names = [a.name for a in artifacts]
        assert names == ["blvm", "blvm-keygen", "blvm-sign", "blvm-verify"]
        blvm = artifacts[0]
        assert blvm.sha256 == hashlib.sha256(b"new blvm").hexdigest()

    def test_skipped_repo_stays_indexed_but_is_not_returned(self, tmp_path, collector):
        collector.collect([make_result(tmp_path, "blvm-commons")], Variant.BASE, Platform.NATIVE, now=NOW)

        failed = make_result(tmp_path, "blvm-commons", success=False)
        failed.skipped = True
        artifacts = collector.collect([failed], Variant.BASE, Platform.NATIVE, now=NOW)

        assert artifacts == []
        indexed = collector.load_index(Variant.BASE, Platform.NATIVE)
        assert [a.name for a in indexed] == ["blvm-commons"]
        assert indexed[0].collected_at == NOW

    def test_expired_reuse_raises_stale(self, tmp_path, collector):
        collector.collect([make_result(tmp_path, "blvm-sdk")], Variant.BASE, Platform.NATIVE, now=NOW)

        with pytest.raises(StaleArtifactError) as exc_info:
            collector.collect(
                [], Variant.BASE, Platform.NATIVE, reuse={"blvm-sdk"}, now=NOW + timedelta(days=91)
            )
        assert exc_info.value.repos == ["blvm-sdk"]

    def test_verify_detects_tampering(self, tmp_path, collector):
        artifacts = collector.collect([make_result(tmp_path, "blvm")], Variant.BASE, Platform.NATIVE, now=NOW)
        Path(artifacts[0].path).write_bytes(b"tampered")
        with pytest.raises(ArtifactIntegrityError, match="Checksum mismatch"):
            collector.verify(artifacts[0])

    def test_artifact_expiry(self, tmp_path, collector):
        artifact = collector.collect(
            [make_result(tmp_path, "blvm")], Variant.BASE, Platform.NATIVE, now=NOW
        )[0]
        assert not artifact.is_expired(NOW + timedelta(days=89))
        assert artifact.is_expired(NOW + timedelta(days=90))

    def test_no_ttl_never_expires(self, tmp_path):
        collector = ArtifactCollector(tmp_path / "artifacts", ttl=None, show_progress=False)
        artifact = collector.collect(
            [make_result(tmp_path, "blvm")], Variant.BASE, Platform.NATIVE, now=NOW
        )[0]
        assert artifact.expires_at is None
        assert not artifact.is_expired(NOW + timedelta(days=3650))
