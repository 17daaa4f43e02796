"""
Integration tests for the build pipeline.

Runs the real scheduler, collector and packager against a fake cargo that
writes binaries into each repository's target directory.
"""

import subprocess
from datetime import timedelta
from pathlib import Path

import pytest

from cascade.build import ArtifactCollector
from cascade.config import BuildConfig, Platform, RepositoryRegistry, Variant
from cascade.errors import BuildFailure
from cascade.pipeline import Pipeline

pytestmark = pytest.mark.integration


class FakeCargo:
    """Writes each repository's binaries, optionally failing some repositories."""

    def __init__(self, registry, fail=()):
        self.registry = registry
        self.fail = set(fail)
        self.builds = []

    def __call__(self, cmd, cwd, **kwargs):
        repo = self.registry.get(Path(cwd).name)
        platform = Platform.WINDOWS if "--target" in cmd else Platform.NATIVE
        self.builds.append((repo.name, platform))
        if repo.name in self.fail:
            return subprocess.CompletedProcess(cmd, 101, stdout="", stderr="error: could not compile")
        release_dir = platform.release_dir(Path(cwd))
        release_dir.mkdir(parents=True, exist_ok=True)
        for binary in repo.binaries:
            (release_dir / platform.binary_name(binary)).write_bytes(
                f"{binary} {' '.join(cmd)}".encode()
            )
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


@pytest.fixture
def registry():
    return RepositoryRegistry.default()


@pytest.fixture
def workspace(tmp_path, registry):
    for name in registry.names:
        (tmp_path / name).mkdir()
    return tmp_path


def make_pipeline(workspace, registry, cargo, mode="release", ttl=timedelta(days=90)):
    config = BuildConfig.create(mode=mode, workspace=workspace, max_workers=3, artifact_ttl=ttl)
    pipeline = Pipeline(
        config,
        registry=registry,
        collector=ArtifactCollector(config.output_root, ttl=ttl, show_progress=False),
        show_progress=False,
    )
    pipeline.executor.runner = cargo
    return pipeline


class TestPipeline:
    """End-to-end build, collect and package."""

    def test_full_build_both_platforms(self, workspace, registry):
        cargo = FakeCargo(registry)
        pipeline = make_pipeline(workspace, registry, cargo)

        result = pipeline.build(None, Variant.BASE, [Platform.NATIVE, Platform.WINDOWS])

        assert len(cargo.builds) == 12
        names = sorted((a.platform.value, a.name) for a in result.artifacts)
        assert ("native", "blvm-node") in names
        assert ("windows", "blvm-keygen.exe") in names
        assert len(result.artifacts) == 12
        assert (workspace / "artifacts" / "binaries-windows" / "blvm.exe").is_file()

    def test_optional_failure_excluded_from_release(self, workspace, registry):
        cargo = FakeCargo(registry, fail={"blvm-commons"})
        pipeline = make_pipeline(workspace, registry, cargo)

        result = pipeline.build(None, Variant.EXPERIMENTAL, [Platform.NATIVE])
        manifest = pipeline.package(result.artifacts, "v0.2.0")

        assert result.skipped == ["blvm-commons"]
        assert "blvm-commons" not in {a.name for a in result.artifacts}
        assert "blvm" in {a.name for a in result.artifacts}
        manifest.verify()
        assert [p.name for p in manifest.archives] == ["bllvm-experimental-v0.2.0-linux-x86_64.tar.gz"]

    def test_required_failure_in_dev_aborts(self, workspace, registry):
        cargo = FakeCargo(registry, fail={"blvm-commons"})
        pipeline = make_pipeline(workspace, registry, cargo, mode="dev")

        with pytest.raises(BuildFailure):
            pipeline.build(None, Variant.BASE, [Platform.NATIVE])

    def test_scoped_rebuild_reuses_previous_artifacts(self, workspace, registry):
        cargo = FakeCargo(registry)
        pipeline = make_pipeline(workspace, registry, cargo)
        pipeline.build(None, Variant.BASE, [Platform.NATIVE])
        cargo.builds.clear()

        result = pipeline.build(["blvm"], Variant.BASE, [Platform.NATIVE])

        assert cargo.builds == [("blvm", Platform.NATIVE)]
        assert {a.name for a in result.artifacts} == {
            "blvm", "blvm-node", "blvm-commons", "blvm-keygen", "blvm-sign", "blvm-verify",
        }
        assert result.rebuilt == []

    def test_expired_artifacts_are_rebuilt(self, workspace, registry):
        cargo = FakeCargo(registry)
        pipeline = make_pipeline(workspace, registry, cargo, ttl=timedelta(0))
        pipeline.build(None, Variant.BASE, [Platform.NATIVE])
        cargo.builds.clear()

        result = pipeline.build(["blvm"], Variant.BASE, [Platform.NATIVE])

        assert result.rebuilt == ["blvm-commons", "blvm-node", "blvm-sdk"]
        assert ("blvm-sdk", Platform.NATIVE) in cargo.builds
        assert len(result.artifacts) == 6

    def test_experimental_binaries_carry_experimental_features(self, workspace, registry):
        cargo = FakeCargo(registry)
        pipeline = make_pipeline(workspace, registry, cargo)

        result = pipeline.build(["blvm-node"], Variant.EXPERIMENTAL, [Platform.NATIVE])

        node = next(a for a in result.artifacts if a.name == "blvm-node")
        content = Path(node.path).read_text()
        assert "--features production,utxo-commitments,dandelion,stratum-v2,bip158,sigop" in content
        assert node.path.parent.name == "binaries-experimental"

    def test_skipped_optional_repo_keeps_last_good_artifact_for_reuse(self, workspace, registry):
        cargo = FakeCargo(registry)
        pipeline = make_pipeline(workspace, registry, cargo)
        pipeline.build(None, Variant.BASE, [Platform.NATIVE])

        cargo.fail = {"blvm-commons"}
        skipped = pipeline.build(["blvm-commons"], Variant.BASE, [Platform.NATIVE])
        assert skipped.skipped == ["blvm-commons"]
        assert "blvm-commons" not in {a.name for a in skipped.artifacts}

        cargo.fail = set()
        result = pipeline.build(["blvm"], Variant.BASE, [Platform.NATIVE])

        assert {a.name for a in result.artifacts} == {
            "blvm", "blvm-node", "blvm-commons", "blvm-keygen", "blvm-sign", "blvm-verify",
        }
