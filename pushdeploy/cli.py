"""pushdeploy command line.

Usage:
    pushdeploy --host HOST [--port PORT] [-i IDENTITY] [--branch BRANCH] [--path DEPLOY_PATH]
"""

import argparse
import logging
import sys
from pathlib import Path

from pushdeploy.config.loader import load_config
from pushdeploy.exceptions import DeployError
from pushdeploy.orchestrator import run_local
from pushdeploy.output import abort_message, configure_logging, success_message

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pushdeploy",
        description="Package the working tree and deploy it to a remote host",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --host app.example.com                 Deploy using deploy.toml
  %(prog)s -H 10.0.0.5 -p 2222 -i ~/.ssh/deploy   Custom port and identity
  %(prog)s -H app.example.com -b release          Deploy the release branch
  %(prog)s -H app.example.com -d /srv/myapp       Custom deploy path
        """,
    )
    parser.add_argument("-H", "--host", help="Remote host")
    parser.add_argument("-p", "--port", type=int, help="SSH port (default: 22)")
    parser.add_argument("-u", "--user", help="Remote SSH user (default: deploy)")
    parser.add_argument("-i", "--identity", type=Path, help="SSH identity file")
    parser.add_argument("-b", "--branch", help="Branch to check out before packaging")
    parser.add_argument("-d", "--path", dest="deploy_path", help="Remote deploy path")
    parser.add_argument("-c", "--config", type=Path, help="Config file (default: ./deploy.toml)")
    parser.add_argument(
        "-C", "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Project to deploy (default: current directory)",
    )
    parser.add_argument("--no-tag", action="store_true", help="Do not create a release tag")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    overrides = {
        "host": args.host,
        "port": args.port,
        "user": args.user,
        "identity": args.identity,
        "branch": args.branch,
        "deploy_path": args.deploy_path,
        "tag": False if args.no_tag else None,
    }

    try:
        config = load_config(args.project_dir, args.config, overrides)
        outcome = run_local(config, args.project_dir)
    except DeployError as e:
        abort_message(str(e))
        return 1
    except KeyboardInterrupt:
        abort_message("Interrupted")
        return 130

    artifact = outcome.artifact
    success_message(f"Deployed {artifact.name} {artifact.version} (release {artifact.release_id})")
    if outcome.tag:
        print(f"Tagged {outcome.tag}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
