"""
Command-line interface for Cascade.

This module provides the `cascade` CLI tool for building, packaging and
releasing the BLLVM repositories.
"""

import argparse
import os
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from cascade import __version__
from cascade.cli_utils import BannerFormatter, ErrorFormatter, SummaryPrinter
from cascade.config import BuildConfig, Platform, RepositoryRegistry, Variant
from cascade.dispatch import Dispatcher, DispatchEvent, ScopePolicy, WorkflowTrigger
from cascade.errors import CascadeError
from cascade.log import setup_logging
from cascade.packages import PrerequisiteInstaller
from cascade.pipeline import Pipeline
from cascade.release import ArtifactDownloader, GitHubClient, ReleasePublisher


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    mode: str = "dev"
    variant: str = "base"
    platform: str = "native"
    jobs: Optional[str] = None
    repos: List[str] = field(default_factory=list)
    version: Optional[str] = None
    workspace: Optional[Path] = None
    output: Optional[Path] = None
    verbose: bool = False


@dataclass
class DispatchArgs:
    """Arguments for the dispatch command."""

    event_type: str
    sha: str = ""
    ref: str = "refs/heads/main"
    repo: Optional[str] = None
    scope_policy: str = "affected"
    platform: str = "all"
    jobs: Optional[str] = None
    workspace: Optional[Path] = None
    output: Optional[Path] = None
    dry_run: bool = False
    verbose: bool = False


@dataclass
class PublishArgs:
    """Arguments for the publish command."""

    tag: str
    notes: Optional[Path] = None
    repo: Optional[str] = None
    output: Optional[Path] = None
    prerelease: bool = False
    verbose: bool = False


@dataclass
class FetchArgs:
    """Arguments for the fetch command."""

    tag: str
    dest: Path
    repo: Optional[str] = None
    verbose: bool = False


@dataclass
class TriggerArgs:
    """Arguments for the trigger command."""

    version_tag: str = "v0.2.0-prerelease"
    platform: str = "linux"
    repo: Optional[str] = None
    ref: str = "main"
    verbose: bool = False


@dataclass
class SetupArgs:
    """Arguments for the setup command."""

    distribution: Optional[str] = None
    dry_run: bool = False
    verbose: bool = False


def _github_client(repo: Optional[str]) -> GitHubClient:
    if repo:
        return GitHubClient.from_slug(repo)
    return GitHubClient()


def _publisher(client: GitHubClient, config: BuildConfig) -> ReleasePublisher:
    return ReleasePublisher(
        client,
        attempts=config.publish_attempts,
        backoff=config.publish_backoff,
        product=config.product,
    )


def _run(command, args) -> None:
    """Run a command body with the CLI's standard error handling."""
    try:
        command(args)
    except CascadeError as e:
        ErrorFormatter.handle_cascade_error(e)
    except FileNotFoundError as e:
        ErrorFormatter.print_error("Error: File not found", str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def _build(args: BuildArgs) -> None:
    config = BuildConfig.from_env(
        mode=args.mode,
        jobs=args.jobs,
        workspace=args.workspace,
        output_root=args.output,
    )
    variant = Variant.from_string(args.variant)
    platforms = Platform.parse_many(args.platform)
    pipeline = Pipeline(config)
    scope = args.repos or None

    if args.verbose:
        print(f"Workspace: {config.workspace}")
        print(f"Output: {config.output_root}")
        print(f"Jobs: {config.jobs or 'all cores'}")
        print()

    start_time = time.time()
    result = pipeline.build(scope, variant, platforms)
    build_time = time.time() - start_time

    SummaryPrinter.print_skipped(result.skipped)
    ErrorFormatter.print_success("Build successful!")
    print()
    print("Artifacts:")
    print(SummaryPrinter.format_artifacts(result.artifacts))

    if args.version:
        manifest = pipeline.package(result.artifacts, args.version)
        print()
        for path in manifest.assets:
            print(f"Packaged: {path}")

    print()
    print(f"Build time: {build_time:.2f}s")
    sys.exit(0)


def build_command(args: BuildArgs) -> None:
    """Build repositories for one variant.

    Examples:
        cascade build                                   # dev build, base, native
        cascade build --mode release --variant experimental
        cascade build --platform all --jobs 8
        cascade build --repo blvm-commons               # rebuild just the governance app
        cascade build --version v0.2.0                  # also package archives
    """
    BannerFormatter.print_banner(f"Cascade Build System v{__version__}")
    print()
    _run(_build, args)


def _dispatch(args: DispatchArgs) -> None:
    config = BuildConfig.from_env(
        mode="release",
        jobs=args.jobs,
        workspace=args.workspace,
        output_root=args.output,
    )
    registry = RepositoryRegistry.default()
    event = DispatchEvent.from_payload(
        {"event_type": args.event_type, "sha": args.sha, "ref": args.ref},
        registry,
    )
    pipeline = Pipeline(config, registry=registry)

    publisher = None
    notifier = None
    if not args.dry_run:
        client = _github_client(args.repo)
        publisher = _publisher(client, config)
        notifier = GitHubClient(owner=client.owner, token=client.token)

    dispatcher = Dispatcher(
        pipeline,
        publisher=publisher,
        notifier=notifier,
        platforms=Platform.parse_many(args.platform),
        scope_policy=ScopePolicy.from_string(args.scope_policy),
    )
    print(f"Event: {event.event_type}")
    print(f"Scope: {', '.join(dispatcher.compute_scope(event))}")
    print()

    outcome = dispatcher.handle(event)

    SummaryPrinter.print_skipped(outcome.skipped)
    if outcome.released:
        ErrorFormatter.print_success(f"Released {outcome.version_tag}")
        if not outcome.notified:
            ErrorFormatter.print_warning("Deployment notification could not be delivered")
    else:
        ErrorFormatter.print_success(f"Built {outcome.version_tag} (dry run, not released)")
    print()
    print(SummaryPrinter.format_artifacts(outcome.artifacts))
    sys.exit(0)


def dispatch_command(args: DispatchArgs) -> None:
    """Handle a cross-repository dispatch event.

    Examples:
        cascade dispatch --event-type build_protocol --sha $GITHUB_SHA
        cascade dispatch --event-type build_all
        cascade dispatch --event-type nightly --dry-run
    """
    BannerFormatter.print_banner(f"Cascade Dispatcher v{__version__}")
    print()
    _run(_dispatch, args)


def _publish(args: PublishArgs) -> None:
    config = BuildConfig.from_env(mode="release", output_root=args.output)
    pipeline = Pipeline(config)

    artifacts = []
    for variant in Variant:
        for platform in Platform:
            artifacts.extend(pipeline.collector.load_index(variant, platform))
    for artifact in artifacts:
        pipeline.collector.verify(artifact)

    manifest = pipeline.package(artifacts, args.tag)
    notes = args.notes.read_text(encoding="utf-8") if args.notes else ""
    release_id = _publisher(_github_client(args.repo), config).publish(
        manifest, notes, prerelease=args.prerelease
    )
    ErrorFormatter.print_success(f"Published {args.tag} (release id {release_id})")
    sys.exit(0)


def publish_command(args: PublishArgs) -> None:
    """Package previously collected artifacts and upload them to a release."""
    _run(_publish, args)


def _fetch(args: FetchArgs) -> None:
    client = _github_client(args.repo)
    publisher = ReleasePublisher(client, downloader=ArtifactDownloader())
    manifest = publisher.fetch(args.tag, args.dest)
    ErrorFormatter.print_success(f"Fetched and verified {args.tag}")
    print()
    print(SummaryPrinter.format_artifacts(list(manifest.artifacts)))
    sys.exit(0)


def fetch_command(args: FetchArgs) -> None:
    """Download a published release and verify every checksum."""
    _run(_fetch, args)


def _trigger(args: TriggerArgs) -> None:
    client = _github_client(args.repo)
    if not client.token:
        ErrorFormatter.print_error(
            "GITHUB_TOKEN environment variable is required",
            "Usage: GITHUB_TOKEN=your_token cascade trigger [version_tag] [platform]",
        )
        sys.exit(1)

    def on_status(status: str, conclusion: Optional[str]) -> None:
        stamp = time.strftime("%Y-%m-%d %H:%M:%S")
        print(f"[{stamp}] Status: {status}" + (f" ({conclusion})" if conclusion else ""))

    print(f"Repository: {client.slug}")
    print(f"Version: {args.version_tag}")
    print(f"Platform: {args.platform}")
    print()

    report = WorkflowTrigger(client, on_status=on_status).run(
        args.version_tag, platform=args.platform, ref=args.ref
    )
    if report.run_id is None:
        ErrorFormatter.print_warning("Could not find workflow run, but workflow was triggered")
        print(f"Check manually: https://github.com/{client.slug}/actions")
        sys.exit(0)

    if report.succeeded:
        ErrorFormatter.print_success("Workflow completed successfully!")
        if report.release_assets:
            print("Release artifacts:")
            for name in report.release_assets:
                print(f"  - {name}")
        else:
            ErrorFormatter.print_warning("Release not found yet or has no artifacts")
        print(f"Workflow URL: {report.html_url}")
        sys.exit(0)

    ErrorFormatter.print_error(
        f"Workflow failed with conclusion: {report.conclusion}",
        f"Workflow URL: {report.html_url}",
    )
    sys.exit(1)


def trigger_command(args: TriggerArgs) -> None:
    """Trigger the prerelease workflow and monitor it to completion."""
    _run(_trigger, args)


def _setup(args: SetupArgs) -> None:
    report = PrerequisiteInstaller(dry_run=args.dry_run).install(args.distribution)
    ErrorFormatter.print_success(
        f"Prerequisites ready on {report.distribution}: {' '.join(report.succeeded or ())}"
    )
    sys.exit(0)


def setup_command(args: SetupArgs) -> None:
    """Install cross-compilation prerequisites for this host."""
    _run(_setup, args)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def _add_paths(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Directory containing the repository checkouts (default: $CASCADE_WORKSPACE or cwd)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Artifact output directory (default: <workspace>/artifacts)",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        default=None,
        help="Parallel compile workers passed to cargo (0 = all cores)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cascade",
        description="Cascade - build, package and release the BLLVM repositories",
    )
    parser.add_argument("--version", action="version", version=f"cascade {__version__}")
    parser.add_argument(
        "--log-file",
        type=Path,
        default=os.environ.get("CASCADE_LOG_FILE"),
        help="Also write logs to a rotating file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build = subparsers.add_parser("build", help="Build repositories for one variant")
    build.add_argument("--mode", choices=["dev", "release"], default="dev")
    build.add_argument("--variant", choices=["base", "experimental"], default="base")
    build.add_argument(
        "--platform",
        default="native",
        help="native, windows, or all (default: native)",
    )
    build.add_argument(
        "--repo",
        dest="repos",
        action="append",
        default=[],
        help="Limit the build to a repository (repeatable; default: all)",
    )
    build.add_argument(
        "--version",
        dest="release_version",
        default=None,
        help="Package archives and SHA256SUMS for this version after building",
    )
    _add_paths(build)
    _add_common(build)

    # Dispatch command
    dispatch = subparsers.add_parser("dispatch", help="Handle a cross-repository dispatch event")
    dispatch.add_argument(
        "--event-type",
        required=True,
        help="build_<repo>, build_all, or nightly",
    )
    dispatch.add_argument("--sha", default=os.environ.get("GITHUB_SHA", ""))
    dispatch.add_argument("--ref", default="refs/heads/main")
    dispatch.add_argument("--repo", default=None, help="Release repository as owner/name")
    dispatch.add_argument("--scope-policy", choices=["affected", "full"], default="affected")
    dispatch.add_argument("--platform", default="all")
    dispatch.add_argument("--dry-run", action="store_true", help="Build but do not publish")
    _add_paths(dispatch)
    _add_common(dispatch)

    # Publish command
    publish = subparsers.add_parser("publish", help="Upload collected artifacts to a release")
    publish.add_argument("--tag", required=True)
    publish.add_argument("--notes", type=Path, default=None, help="Markdown file for the release body")
    publish.add_argument("--repo", default=None, help="Release repository as owner/name")
    publish.add_argument("--output", type=Path, default=None)
    publish.add_argument("--prerelease", action="store_true")
    _add_common(publish)

    # Fetch command
    fetch = subparsers.add_parser("fetch", help="Download and verify a published release")
    fetch.add_argument("--tag", required=True)
    fetch.add_argument("--dest", type=Path, default=Path("fetched"))
    fetch.add_argument("--repo", default=None)
    _add_common(fetch)

    # Trigger command
    trigger = subparsers.add_parser("trigger", help="Trigger and monitor the prerelease workflow")
    trigger.add_argument("version_tag", nargs="?", default="v0.2.0-prerelease")
    trigger.add_argument("platform", nargs="?", default="linux")
    trigger.add_argument("--repo", default=None)
    trigger.add_argument("--ref", default="main")
    _add_common(trigger)

    # Setup command
    setup = subparsers.add_parser("setup", help="Install cross-compilation prerequisites")
    setup.add_argument("--distribution", default=None, help="Override detected distribution id")
    setup.add_argument("--dry-run", action="store_true")
    _add_common(setup)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Cascade - build, package and release the BLLVM repositories."""
    parser = build_parser()
    parsed_args = parser.parse_args(argv)

    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    setup_logging(verbose=parsed_args.verbose, log_file=parsed_args.log_file)

    if parsed_args.command == "build":
        build_command(
            BuildArgs(
                mode=parsed_args.mode,
                variant=parsed_args.variant,
                platform=parsed_args.platform,
                jobs=parsed_args.jobs,
                repos=parsed_args.repos,
                version=parsed_args.release_version,
                workspace=parsed_args.workspace,
                output=parsed_args.output,
                verbose=parsed_args.verbose,
            )
        )
    elif parsed_args.command == "dispatch":
        dispatch_command(
            DispatchArgs(
                event_type=parsed_args.event_type,
                sha=parsed_args.sha,
                ref=parsed_args.ref,
                repo=parsed_args.repo,
                scope_policy=parsed_args.scope_policy,
                platform=parsed_args.platform,
                jobs=parsed_args.jobs,
                workspace=parsed_args.workspace,
                output=parsed_args.output,
                dry_run=parsed_args.dry_run,
                verbose=parsed_args.verbose,
            )
        )
    elif parsed_args.command == "publish":
        publish_command(
            PublishArgs(
                tag=parsed_args.tag,
                notes=parsed_args.notes,
                repo=parsed_args.repo,
                output=parsed_args.output,
                prerelease=parsed_args.prerelease,
                verbose=parsed_args.verbose,
            )
        )
    elif parsed_args.command == "fetch":
        fetch_command(
            FetchArgs(
                tag=parsed_args.tag,
                dest=parsed_args.dest,
                repo=parsed_args.repo,
                verbose=parsed_args.verbose,
            )
        )
    elif parsed_args.command == "trigger":
        trigger_command(
            TriggerArgs(
                version_tag=parsed_args.version_tag,
                platform=parsed_args.platform,
                repo=parsed_args.repo,
                ref=parsed_args.ref,
                verbose=parsed_args.verbose,
            )
        )
    elif parsed_args.command == "setup":
        setup_command(
            SetupArgs(
                distribution=parsed_args.distribution,
                dry_run=parsed_args.dry_run,
                verbose=parsed_args.verbose,
            )
        )


if __name__ == "__main__":
    main()
