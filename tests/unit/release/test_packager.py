"""Unit tests for ReleasePackager and checksum manifests."""

import hashlib
import tarfile
import zipfile
from datetime import datetime, timezone

import pytest

from cascade.build import Artifact, sha256_file
from cascade.config import Platform, Variant
from cascade.errors import ArtifactIntegrityError, ConfigurationError
from cascade.release import ReleasePackager, archive_name, format_checksums, parse_checksums, sums_file_name
from cascade.release.packager import parse_group_name

NOW = datetime(2026, 10, 19, tzinfo=timezone.utc)


def make_artifact(directory, name, variant=Variant.BASE, platform=Platform.NATIVE, content=None):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    data = content if content is not None else name.encode()
    path.write_bytes(data)
    return Artifact(
        name=name,
        repo="blvm",
        platform=platform,
        variant=variant,
        sha256=hashlib.sha256(data).hexdigest(),
        size=len(data),
        path=path,
        collected_at=NOW,
    )


class TestChecksumFormat:
    def test_format_sorted_sha256sum_lines(self):
        text = format_checksums({"b": "1" * 64, "a": "2" * 64})
        assert text == f"{'2' * 64}  a\n{'1' * 64}  b\n"

    def test_parse(self):
        digest = "ab" * 32
        assert parse_checksums(f"{digest}  blvm\n{digest} *blvm.exe\n\n") == {
            "blvm": digest,
            "blvm.exe": digest,
        }

    def test_parse_malformed(self):
        with pytest.raises(ArtifactIntegrityError, match="Malformed"):
            parse_checksums("not-a-hash  blvm\n")

    def test_names(self):
        assert sums_file_name(Variant.BASE, Platform.NATIVE) == "SHA256SUMS-linux-x86_64"
        assert sums_file_name(Variant.EXPERIMENTAL, Platform.WINDOWS) == (
            "SHA256SUMS-experimental-windows-x86_64"
        )
        assert archive_name("bllvm", "v1.0.0", Variant.EXPERIMENTAL, Platform.NATIVE) == (
            "bllvm-experimental-v1.0.0-linux-x86_64.tar.gz"
        )
        assert archive_name("bllvm", "v1.0.0", Variant.BASE, Platform.WINDOWS) == (
            "bllvm-v1.0.0-windows-x86_64.zip"
        )

    def test_parse_group_name(self):
        assert parse_group_name("SHA256SUMS-experimental-linux-x86_64", "bllvm") == (
            Variant.EXPERIMENTAL,
            Platform.NATIVE,
        )
        assert parse_group_name("bllvm-experimental-v1-windows-x86_64.zip", "bllvm") == (
            Variant.EXPERIMENTAL,
            Platform.WINDOWS,
        )
        assert parse_group_name("bllvm-v1-linux-x86_64.tar.gz", "bllvm") == (
            Variant.BASE,
            Platform.NATIVE,
        )
        assert parse_group_name("README.md", "bllvm") is None


class TestReleasePackager:
    """Test suite for ReleasePackager."""

    @pytest.fixture
    def packager(self, tmp_path):
        return ReleasePackager(tmp_path / "release", show_progress=False)

    def test_manifest_lists_every_artifact_once(self, tmp_path, packager):
        artifacts = [
            make_artifact(tmp_path / "binaries", "blvm"),
            make_artifact(tmp_path / "binaries", "blvm-node"),
            make_artifact(tmp_path / "binaries-windows", "blvm.exe", platform=Platform.WINDOWS),
        ]

        manifest = packager.package(artifacts, "v0.2.0")

        sums = manifest.checksums()
        assert set(sums) == {"SHA256SUMS-linux-x86_64", "SHA256SUMS-windows-x86_64"}
        native = sums["SHA256SUMS-linux-x86_64"]
        assert native["blvm"] == artifacts[0].sha256
        assert native["blvm-node"] == artifacts[1].sha256
        assert native["bllvm-v0.2.0-linux-x86_64.tar.gz"] == sha256_file(manifest.archives[0])
        assert "blvm.exe" in sums["SHA256SUMS-windows-x86_64"]
        listed = [name for entries in sums.values() for name in entries if not name.startswith("bllvm")]
        assert sorted(listed) == ["blvm", "blvm-node", "blvm.exe"]

    def test_archive_contents(self, tmp_path, packager):
        native = make_artifact(tmp_path / "binaries", "blvm")
        windows = make_artifact(tmp_path / "binaries-windows", "blvm.exe", platform=Platform.WINDOWS)

        manifest = packager.package([native, windows], "v0.2.0")

        tar_path, zip_path = sorted(manifest.archives, key=lambda p: p.name.endswith(".zip"))
        with tarfile.open(tar_path, "r:gz") as tar:
            assert tar.getnames() == ["blvm"]
            assert tar.getmember("blvm").mtime == 0
        with zipfile.ZipFile(zip_path) as zf:
            assert zf.namelist() == ["blvm.exe"]
            assert zf.read("blvm.exe") == b"blvm.exe"

    def test_archives_are_reproducible(self, tmp_path):
        artifacts = [
            make_artifact(tmp_path / "binaries", "blvm"),
            make_artifact(tmp_path / "binaries-windows", "blvm.exe", platform=Platform.WINDOWS),
        ]
        first = ReleasePackager(tmp_path / "one", show_progress=False).package(artifacts, "v1")
        second = ReleasePackager(tmp_path / "two", show_progress=False).package(artifacts, "v1")
        assert [sha256_file(p) for p in first.archives] == [sha256_file(p) for p in second.archives]

    def test_variants_get_separate_archives(self, tmp_path, packager):
        artifacts = [
            make_artifact(tmp_path / "binaries", "blvm"),
            make_artifact(tmp_path / "binaries-experimental", "blvm", variant=Variant.EXPERIMENTAL),
        ]
        manifest = packager.package(artifacts, "v1")
        assert sorted(p.name for p in manifest.archives) == [
            "bllvm-experimental-v1-linux-x86_64.tar.gz",
            "bllvm-v1-linux-x86_64.tar.gz",
        ]
        assert len(manifest.checksums_files) == 2

    def test_changed_artifact_rejected(self, tmp_path, packager):
        artifact = make_artifact(tmp_path / "binaries", "blvm")
        artifact.path.write_bytes(b"changed")
        with pytest.raises(ArtifactIntegrityError, match="changed since collection"):
            packager.package([artifact], "v1")

    def test_empty_rejected(self, packager):
        with pytest.raises(ConfigurationError, match="No artifacts"):
            packager.package([], "v1")

    def test_invalid_tag_rejected(self, tmp_path, packager):
        with pytest.raises(ConfigurationError, match="version tag"):
            packager.package([make_artifact(tmp_path / "b", "blvm")], "")

    def test_verify_detects_modified_archive(self, tmp_path, packager):
        manifest = packager.package([make_artifact(tmp_path / "binaries", "blvm")], "v1")
        manifest.verify()
        manifest.archives[0].write_bytes(b"corrupt")
        with pytest.raises(ArtifactIntegrityError, match="changed after packaging"):
            manifest.verify()

    def test_release_notes_table(self, tmp_path, packager):
        artifact = make_artifact(tmp_path / "binaries", "blvm")
        manifest = packager.package([artifact], "v1")
        notes = manifest.release_notes(header="Nightly build")
        assert notes.startswith("Nightly build\n")
        assert f"| `blvm` | base | linux-x86_64 | 4 | `{artifact.sha256}` |" in notes
        assert manifest.assets == list(manifest.archives) + list(manifest.checksums_files)

    def test_identical_content_gets_identical_checksums(self, tmp_path):
        artifacts = [
            make_artifact(tmp_path / "binaries", "blvm", content=b"same bytes"),
            make_artifact(tmp_path / "binaries", "blvm-node", content=b"same bytes"),
        ]
        manifest = ReleasePackager(tmp_path / "one", show_progress=False).package(artifacts, "v1")

        entries = manifest.checksums()["SHA256SUMS-linux-x86_64"]
        assert entries["blvm"] == entries["blvm-node"] == hashlib.sha256(b"same bytes").hexdigest()

        changed = [
            make_artifact(tmp_path / "binaries2", "blvm", content=b"same bytes"),
            make_artifact(tmp_path / "binaries2", "blvm-node", content=b"other bytes"),
        ]
        rebuilt = ReleasePackager(tmp_path / "two", show_progress=False).package(changed, "v1")

        assert sha256_file(rebuilt.checksums_files[0]) != sha256_file(manifest.checksums_files[0])
        assert rebuilt.checksums()["SHA256SUMS-linux-x86_64"]["blvm"] == entries["blvm"]
