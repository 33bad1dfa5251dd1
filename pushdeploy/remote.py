"""pushdeploy remote entry point.

Invoked on the target host by the Transporter, never by an operator:

    pushdeploy-remote ARCHIVE DEPLOY_PATH NAME RELEASE_ID CHECKSUM \\
        --settings SETTINGS_JSON [--hooks HOOKS_FILE]

Standard error carries the progress log. Standard output carries exactly
one structured result line for the local side to parse.
"""

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from pushdeploy.config.schema import RemoteSettings
from pushdeploy.exceptions import ConfigurationError, DeployError
from pushdeploy.hooks import Hooks, ShellHooks, load_hooks_file
from pushdeploy.output import abort_message, configure_logging
from pushdeploy.pipeline import PipelineResult, Release, RemotePipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pushdeploy-remote",
        description="Run the deployment pipeline for an uploaded release (internal)",
    )
    parser.add_argument("archive", type=Path, help="Uploaded release archive")
    parser.add_argument("deploy_path", type=Path, help="Remote base directory")
    parser.add_argument("name", help="Application name")
    parser.add_argument("release_id", help="Release identifier (YYYYMMDDHHmm)")
    parser.add_argument("checksum", help="Expected SHA-1 of the archive")
    parser.add_argument(
        "--settings",
        type=Path,
        required=True,
        help="JSON file with the remote pipeline settings",
    )
    parser.add_argument(
        "--hooks",
        type=Path,
        help="Python file defining pre_deploy/post_deploy/on_step",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def load_settings(path: Path) -> RemoteSettings:
    try:
        return RemoteSettings.model_validate_json(path.read_text())
    except (OSError, ValidationError) as e:
        raise ConfigurationError(f"Cannot read remote settings {path}: {e}") from e


def build_hooks(settings: RemoteSettings, hooks_file: Path | None) -> Hooks:
    """Shell hooks from the settings, overridden by a hooks file if given."""
    hooks: Hooks = ShellHooks(settings.pre_deploy, settings.post_deploy)
    if hooks_file is not None:
        hooks = load_hooks_file(hooks_file, fallback=hooks)
    return hooks


def run_remote(args: argparse.Namespace) -> PipelineResult:
    """Run the pipeline for the release described by the parsed arguments."""
    settings = load_settings(args.settings)
    release = Release(
        archive=args.archive,
        deploy_path=args.deploy_path,
        name=args.name,
        release_id=args.release_id,
        checksum=args.checksum,
    )
    logger.info(f"Deploying {release.name} release {release.release_id} to {release.deploy_path}")
    pipeline = RemotePipeline(release, settings, build_hooks(settings, args.hooks))
    return pipeline.run()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        result = run_remote(args)
    except DeployError as e:
        result = PipelineResult(
            release_id=args.release_id,
            status="aborted",
            failed_step="setup",
            message=str(e),
        )

    print(result.to_line(), flush=True)
    if result.status != "success":
        abort_message(f"aborted at {result.failed_step}: {result.message}")
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
