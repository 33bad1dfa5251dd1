"""Local orchestrator: package, transfer, run remotely, tag on success.

The annotated git tag is the single record that a deploy went all the
way through. It is only created after the remote pipeline reported
success through its structured result.
"""

import logging
import shlex
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from invoke.context import Context

from pushdeploy.config.schema import DeployConfig
from pushdeploy.exceptions import ConfigurationError, StepError
from pushdeploy.packager import Artifact, Packager
from pushdeploy.pipeline import PipelineResult
from pushdeploy.transport import Transporter

logger = logging.getLogger(__name__)


@dataclass
class DeployOutcome:
    """What a completed local run produced."""

    artifact: Artifact
    result: PipelineResult
    tag: str | None = None


def validate(config: DeployConfig, project_dir: Path) -> None:
    """Fail before any work if the configuration cannot work.

    Raises:
        ConfigurationError: If the host or the version marker is missing.
    """
    if not config.host:
        raise ConfigurationError(
            "No remote host specified. Pass --host or set host in deploy.toml "
            "(or PUSHDEPLOY_HOST)"
        )
    if not (project_dir / config.version_file).is_file():
        raise ConfigurationError(
            f"Version marker {config.version_file} not found in {project_dir}"
        )
    if config.hooks_file and not (project_dir / config.hooks_file).is_file():
        raise ConfigurationError(f"Hooks file {config.hooks_file} not found in {project_dir}")


def tag_release(ctx: Context, project_dir: Path, config: DeployConfig, artifact: Artifact) -> str | None:
    """Create and publish the annotated release tag.

    Returns:
        The tag name, or None if tagging failed (the release is live
        either way, so a failure is only reported).
    """
    tag = artifact.tag
    message = f"Deployed {artifact.name} {artifact.version} to {config.host} ({artifact.release_id})"
    with ctx.cd(str(project_dir)):
        result = ctx.run(f"git tag -a {tag} -m {shlex.quote(message)}", hide=True, warn=True)
        if not result.ok:
            logger.warning(f"Could not create tag {tag}: {result.stderr.strip()}")
            return None
        result = ctx.run(f"git push {config.git_remote} {tag}", hide=True, warn=True)
        if not result.ok:
            logger.warning(f"Tag {tag} created but not pushed: {result.stderr.strip()}")
            return tag
    logger.info(f"Tagged release {tag}")
    return tag


def run_local(
    config: DeployConfig,
    project_dir: Path | None = None,
    ctx: Context | None = None,
    now: datetime | None = None,
) -> DeployOutcome:
    """Deploy the working tree to the configured host.

    Raises:
        ConfigurationError: Before any work, for unusable configuration
        BuildError: Packaging failed; nothing was sent
        TransportError: Copy or invocation failed; no tag created
        StepError: The remote pipeline aborted; no tag created
    """
    project_dir = project_dir or Path.cwd()
    ctx = ctx or Context()
    validate(config, project_dir)

    packager = Packager(config, project_dir, ctx)
    try:
        artifact = packager.build(now)
        # The deploy path defaults from the resolved name
        config = config.model_copy(update={"name": artifact.name})
        hooks_file = project_dir / config.hooks_file if config.hooks_file else None

        transporter = Transporter(config)
        paths = transporter.upload(artifact, packager.workdir, hooks_file)
        try:
            result = transporter.invoke(paths, artifact)
        finally:
            transporter.cleanup(paths)
    finally:
        packager.cleanup()

    for step in result.steps:
        logger.debug(f"  {step.name}: {'ok' if step.ok else f'failed ({step.outcome})'}")

    if result.status != "success":
        message = result.message or "remote pipeline aborted"
        if result.rolled_back:
            message += " (rolled back to the previous release)"
        raise StepError(result.failed_step or "unknown", message)

    tag = tag_release(ctx, project_dir, config, artifact) if config.tag else None
    return DeployOutcome(artifact=artifact, result=result, tag=tag)
