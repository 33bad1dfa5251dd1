"""Transport: copy the release to the remote host and run the pipeline there.

Everything goes through the system ssh and scp binaries, so the operator's
ssh configuration (agents, jump hosts, known_hosts) applies unchanged.
"""

import logging
import shlex
import shutil
import subprocess
import tempfile
import zipapp
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

import pushdeploy
from pushdeploy.config.schema import DeployConfig
from pushdeploy.exceptions import TransportError
from pushdeploy.packager import Artifact
from pushdeploy.pipeline import RESULT_PREFIX, PipelineResult

logger = logging.getLogger(__name__)

# ssh's own exit status when the connection itself fails
SSH_CONNECTION_FAILED = 255

BUNDLE_MAIN = """\
import sys

from pushdeploy.remote import main

sys.exit(main())
"""


@dataclass(frozen=True)
class RemotePaths:
    """Where the uploaded files live on the remote host."""

    archive: str
    program: str
    settings: str
    hooks: str | None = None

    def all(self) -> list[str]:
        return [p for p in (self.archive, self.program, self.settings, self.hooks) if p]


# =============================================================================
# Command construction
# =============================================================================

def ssh_options(config: DeployConfig) -> list[str]:
    options = [
        "-o", "StrictHostKeyChecking=accept-new",
        "-o", "BatchMode=yes",
        "-o", f"ConnectTimeout={config.connect_timeout}",
    ]
    if config.identity:
        options += ["-i", str(config.identity)]
    return options


def ssh_command(config: DeployConfig, remote_cmd: str) -> list[str]:
    """Build SSH command with custom port and identity."""
    return [
        "ssh",
        "-p", str(config.port),
        *ssh_options(config),
        f"{config.user}@{config.host}",
        remote_cmd,
    ]


def scp_command(config: DeployConfig, local_path: Path, remote_path: str) -> list[str]:
    return [
        "scp",
        "-P", str(config.port),
        *ssh_options(config),
        str(local_path),
        f"{config.user}@{config.host}:{remote_path}",
    ]


def build_program_bundle(output: Path) -> Path:
    """Zip the pushdeploy package into a runnable pipeline program.

    The interpreter on the remote host still needs pushdeploy's
    dependencies installed.
    """
    package_dir = Path(pushdeploy.__file__).parent
    with tempfile.TemporaryDirectory(prefix="pushdeploy-bundle-") as staging:
        shutil.copytree(
            package_dir,
            Path(staging) / "pushdeploy",
            ignore=shutil.ignore_patterns("__pycache__", "*.pyc"),
        )
        # zipapp's generated main would drop the exit status
        (Path(staging) / "__main__.py").write_text(BUNDLE_MAIN)
        zipapp.create_archive(staging, target=output, interpreter="/usr/bin/env python3")
    return output


# =============================================================================
# Transporter
# =============================================================================

class Transporter:
    """Delivers one artifact to one host and triggers one pipeline run."""

    def __init__(self, config: DeployConfig):
        if not config.host:
            raise TransportError("No remote host configured")
        self.config = config

    @property
    def destination(self) -> str:
        return f"{self.config.user}@{self.config.host}"

    def copy(self, local_path: Path, remote_path: str) -> None:
        """Upload a file to remote host via SCP.

        Raises:
            TransportError: If the copy fails or times out.
        """
        cmd = scp_command(self.config, local_path, remote_path)
        logger.debug(f"  $ {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.config.transfer_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TransportError(
                f"Upload of {local_path.name} to {self.destination} timed out "
                f"after {self.config.transfer_timeout:.0f}s"
            ) from e
        if result.returncode != 0:
            raise TransportError(
                f"Error uploading {local_path.name} to {self.destination}:{remote_path}\n"
                f"{result.stderr.strip()}"
            )

    def upload(self, artifact: Artifact, workdir: Path, hooks_file: Path | None = None) -> RemotePaths:
        """Copy archive, pipeline program, settings and hooks file.

        Any failure raises before the pipeline is invoked.
        """
        tmp = self.config.remote_tmp.rstrip("/")
        stem = artifact.archive.name.removesuffix(".tar.gz")

        program = build_program_bundle(workdir / f"pushdeploy-{pushdeploy.__version__}.pyz")
        settings = workdir / f"{stem}.settings.json"
        settings.write_text(self.config.remote_settings().model_dump_json(indent=2))

        paths = RemotePaths(
            archive=f"{tmp}/{artifact.archive.name}",
            program=f"{tmp}/{stem}.pyz",
            settings=f"{tmp}/{settings.name}",
            hooks=f"{tmp}/{stem}.hooks.py" if hooks_file else None,
        )

        uploads = [
            (artifact.archive, paths.archive),
            (program, paths.program),
            (settings, paths.settings),
        ]
        if hooks_file and paths.hooks:
            uploads.append((hooks_file, paths.hooks))

        logger.info(f"Uploading {artifact.archive.name} to {self.destination}")
        copied: list[str] = []
        try:
            for local_path, remote_path in uploads:
                self.copy(local_path, remote_path)
                copied.append(remote_path)
        except TransportError:
            if copied:
                self.remove(copied)
            raise
        return paths

    def remote_command(self, paths: RemotePaths, artifact: Artifact) -> str:
        args = [
            self.config.remote_python,
            paths.program,
            paths.archive,
            self.config.remote_base,
            artifact.name,
            artifact.release_id,
            artifact.checksum,
            "--settings", paths.settings,
        ]
        if paths.hooks:
            args += ["--hooks", paths.hooks]
        return shlex.join(args)

    def invoke(self, paths: RemotePaths, artifact: Artifact) -> PipelineResult:
        """Run the remote pipeline once and return its structured result.

        The remote progress log streams to our stderr as it happens.

        Raises:
            TransportError: If no result came back. The remote pipeline may
                have run partially or completely in that case.
        """
        cmd = ssh_command(self.config, self.remote_command(paths, artifact))
        logger.info(f"Running remote pipeline on {self.destination}")
        try:
            proc = subprocess.run(
                cmd,
                check=False,
                stdout=subprocess.PIPE,
                text=True,
                timeout=self.config.remote_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TransportError(
                f"Remote pipeline did not finish within {self.config.remote_timeout:.0f}s; "
                f"remote outcome unknown, check {self.config.remote_base}/current"
            ) from e

        try:
            result = PipelineResult.from_output(proc.stdout or "")
        except ValidationError as e:
            raise TransportError(f"Malformed result from remote pipeline: {e}") from e

        for line in (proc.stdout or "").splitlines():
            if not line.startswith(RESULT_PREFIX):
                logger.info(f"  remote: {line}")

        if result is not None:
            return result
        if proc.returncode == SSH_CONNECTION_FAILED:
            raise TransportError(
                f"Connection to {self.destination} failed or dropped; remote outcome unknown, "
                f"check {self.config.remote_base}/current"
            )
        raise TransportError(
            f"Remote failed to execute properly (exit status {proc.returncode})"
        )

    def cleanup(self, paths: RemotePaths) -> None:
        """Remove uploaded files. Failures are only logged."""
        self.remove(paths.all())

    def remove(self, remote_paths: list[str]) -> None:
        cmd = ssh_command(self.config, "rm -f " + " ".join(shlex.quote(p) for p in remote_paths))
        try:
            result = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.config.transfer_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Timed out removing uploaded files from remote host")
            return
        if result.returncode != 0:
            logger.warning(f"Could not remove uploaded files: {result.stderr.strip()}")
